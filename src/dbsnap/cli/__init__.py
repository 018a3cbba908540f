"""CLI for capturing and comparing database schema snapshots.

Usage:
    DB_TYPE=sqlite DB_NAME=app.db dbsnap capture before_migration
    dbsnap compare before_migration after_migration
    dbsnap compare before_migration after_migration --format html --out-file diff.html
    dbsnap list
    dbsnap show before_migration
    dbsnap driver list
    dbsnap driver install postgres

Commands:
    capture   - Capture a snapshot of the configured database (aliases: save, snapshot)
    compare   - Compare two snapshots and report the changes (alias: diff)
    list      - List saved snapshots (alias: ls)
    show      - Show the tables of a saved snapshot
    driver    - List, install, uninstall or inspect drivers
    version   - Show the dbsnap version
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dbsnap import __version__
from dbsnap.capture import capture_snapshot
from dbsnap.config import CaptureConfig, ConfigError, load_config
from dbsnap.drivers.base import DriverFailure, DriverNotFound
from dbsnap.drivers.plugin import PluginDriver, find_driver_executable, list_local_drivers
from dbsnap.drivers.registry import RegistryError, RegistryManager
from dbsnap.report import render
from dbsnap.schema.comparator import compare_snapshots
from dbsnap.storage import SnapshotNotFoundError, SnapshotStorage

console = Console()

# Failures reported as a one-line error and exit code 1
EXPECTED_ERRORS = (
    DriverFailure,
    ConfigError,
    SnapshotNotFoundError,
    RegistryError,
    ValidationError,
    ValueError,
    OSError,
)


def _error(e: Exception) -> int:
    console.print(f"[bold red]x[/bold red] {escape(str(e))}")
    return 1


def _load_config(args: argparse.Namespace, overrides: dict[str, Any] | None = None) -> CaptureConfig:
    return load_config(
        config_path=getattr(args, "config", None),
        env_prefix=getattr(args, "env_prefix", ""),
        overrides=overrides,
    )


def _storage(args: argparse.Namespace) -> SnapshotStorage:
    config = _load_config(args, {"output_dir": getattr(args, "output", None)})
    return SnapshotStorage(config.output_dir)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_capture(args: argparse.Namespace) -> int:
    """Async implementation for capture command.

    Args:
        args: Parsed arguments with key, connection flags and capture options.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = _load_config(
            args,
            {
                "db_type": args.dbtype,
                "host": args.host,
                "port": args.port,
                "user": args.user,
                "password": args.password,
                "database": args.database,
                "output_dir": args.output,
                "verify_data": True if args.verify_data else None,
                "verify_row_counts": False if args.no_verify_counts else None,
                "workers": args.workers,
                "timeout": args.timeout,
            },
        )
        console.print(
            f"Capturing [bold]{escape(config.db_type)}[/bold] database "
            f"[bold cyan]{escape(config.database)}[/bold cyan]...",
            style="dim",
        )
        result = await capture_snapshot(config, key=args.key)
    except EXPECTED_ERRORS as e:
        return _error(e)

    snapshot = result.snapshot
    console.print()
    console.print(
        f"[bold green]v[/bold green] Snapshot saved: "
        f"[bold cyan]{escape(snapshot.key)}[/bold cyan]"
    )
    console.print(f"  Tables: {len(snapshot.tables)}")
    console.print(f"  File: [dim]{escape(str(result.path))}[/dim]")
    if snapshot.metadata.duration:
        console.print(f"  Duration: {snapshot.metadata.duration}")
    return 0


async def _async_driver_list(args: argparse.Namespace) -> int:
    """Async implementation for driver list command.

    Shows registry drivers with install status, or only locally available
    drivers with ``--installed``.
    """
    try:
        config = _load_config(args)
    except ConfigError as e:
        return _error(e)
    manager = RegistryManager(config.registry_url)
    installed = {meta.name: meta for meta in manager.list_installed()}

    if args.installed:
        table = Table(title="Installed Drivers", show_header=True, header_style="bold")
        table.add_column("Driver")
        table.add_column("Version")
        table.add_column("Location", style="dim")
        for meta in installed.values():
            table.add_row(meta.name, meta.version, meta.path)
        for name in list_local_drivers(manager.drivers_dir):
            if name in installed:
                continue
            try:
                path = find_driver_executable(name, manager.drivers_dir)
            except DriverNotFound:
                continue
            table.add_row(name, "-", str(path))
        console.print(table)
        return 0

    try:
        registry = await manager.fetch_registry()
    except RegistryError as e:
        return _error(e)

    table = Table(title="Available Drivers", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Driver")
    table.add_column("Version")
    table.add_column("Description")
    for name, info in sorted(registry.drivers.items()):
        marker = "[bold green]*[/bold green]" if name in installed else " "
        table.add_row(marker, name, info.version, info.description)
    console.print(table)
    if installed:
        console.print("\n[bold green]*[/bold green] = installed")
    return 0


async def _async_driver_install(args: argparse.Namespace) -> int:
    """Async implementation for driver install command."""
    try:
        config = _load_config(args)
        manager = RegistryManager(config.registry_url)
        console.print(f"Installing driver [bold]{escape(args.name)}[/bold]...", style="dim")
        meta = await manager.install_driver(args.name, version=args.version)
    except (ConfigError, RegistryError, OSError) as e:
        return _error(e)

    console.print(
        f"[bold green]v[/bold green] Installed {escape(meta.name)} {escape(meta.version)}"
    )
    console.print(f"  Location: [dim]{escape(meta.path)}[/dim]")
    return 0


async def _async_driver_info(args: argparse.Namespace) -> int:
    """Async implementation for driver info command.

    Probes the local driver for its version and features.
    """
    try:
        config = _load_config(args)
        driver = await PluginDriver.create(args.name, timeout=config.timeout)
    except EXPECTED_ERRORS as e:
        return _error(e)

    table = Table(title=f"Driver: {driver.name}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Version", driver.version)
    table.add_row("Location", str(driver.path))
    for feature, enabled in driver.supported_features.model_dump().items():
        table.add_row(feature, "[green]yes[/green]" if enabled else "[dim]no[/dim]")
    console.print(table)
    return 0


# ============================================================================
# Sync command wrappers (list, show, compare read local files only)
# ============================================================================


def cmd_capture(args: argparse.Namespace) -> int:
    """Capture a snapshot of the configured database.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_capture(args))


def cmd_compare(args: argparse.Namespace) -> int:
    """Compare two saved snapshots and print or write the report.

    Args:
        args: Parsed CLI arguments with baseline, target, format, out_file.

    Returns:
        0 on success (changes or not), 1 on failure.
    """
    try:
        config = _load_config(
            args, {"output_dir": args.output, "format": args.format}
        )
        storage = SnapshotStorage(config.output_dir)
        baseline = storage.load(args.baseline)
        target = storage.load(args.target)
    except EXPECTED_ERRORS as e:
        return _error(e)

    changes = compare_snapshots(baseline, target)
    report = render(changes, config.format)

    if args.out_file:
        try:
            Path(args.out_file).write_text(report, encoding="utf-8")
        except OSError as e:
            return _error(e)
        console.print(
            f"[bold green]v[/bold green] Report written to "
            f"[dim]{escape(args.out_file)}[/dim]"
        )
    else:
        end = "" if report.endswith("\n") else "\n"
        console.print(
            report, markup=False, highlight=False, emoji=False, soft_wrap=True, end=end
        )
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List saved snapshots, newest first.

    Reads only local snapshot files.

    Returns:
        0 always unless the configuration is invalid.
    """
    try:
        storage = _storage(args)
    except ConfigError as e:
        return _error(e)

    snapshots = storage.list()
    if not snapshots:
        console.print(f"[yellow]No snapshots in {escape(str(storage.base_dir))}[/yellow]")
        console.print("[dim]Run[/dim] [cyan]dbsnap capture <key>[/cyan] [dim]first.[/dim]")
        return 0

    table = Table(title="Snapshots", show_header=True, header_style="bold")
    table.add_column("Key", style="bold cyan")
    table.add_column("Database")
    table.add_column("Captured")
    table.add_column("Tables", justify="right")
    for info in snapshots:
        table.add_row(
            info.key,
            info.database,
            info.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(info.tables),
        )
    console.print(table)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show the tables of the newest snapshot for a key.

    Returns:
        0 on success, 1 if the snapshot is missing or unreadable.
    """
    try:
        snapshot = _storage(args).load(args.key)
    except EXPECTED_ERRORS as e:
        return _error(e)

    console.print(
        f"[bold]{escape(snapshot.key)}[/bold] "
        f"[dim]{escape(snapshot.db_type)} {escape(snapshot.database)} "
        f"@ {snapshot.timestamp.isoformat()}[/dim]"
    )
    table = Table(show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Columns", justify="right")
    table.add_column("Indexes", justify="right")
    table.add_column("Foreign Keys", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Checksum", style="dim")
    for t in sorted(snapshot.tables, key=lambda t: t.name):
        table.add_row(
            t.name,
            str(len(t.columns)),
            str(len(t.indexes)),
            str(len(t.foreign_keys)),
            str(t.exact_row_count if t.exact_row_count is not None else t.row_count),
            t.checksum[:12],
        )
    console.print(table)
    return 0


def cmd_driver_list(args: argparse.Namespace) -> int:
    return asyncio.run(_async_driver_list(args))


def cmd_driver_install(args: argparse.Namespace) -> int:
    return asyncio.run(_async_driver_install(args))


def cmd_driver_uninstall(args: argparse.Namespace) -> int:
    """Remove an installed driver."""
    try:
        config = _load_config(args)
        RegistryManager(config.registry_url).uninstall_driver(args.name)
    except (ConfigError, RegistryError, OSError) as e:
        return _error(e)
    console.print(f"[bold green]v[/bold green] Uninstalled {escape(args.name)}")
    return 0


def cmd_driver_info(args: argparse.Namespace) -> int:
    return asyncio.run(_async_driver_info(args))


def cmd_version(args: argparse.Namespace) -> int:
    console.print(f"dbsnap {__version__}")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="dbsnap",
        description="Capture database schema snapshots and report schema drift",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_HOST)"
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a TOML config file (default: ./dbsnap.toml if present)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging on stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # capture command
    p_capture = subparsers.add_parser(
        "capture",
        aliases=["save", "snapshot"],
        help="Capture a snapshot of the configured database",
    )
    p_capture.add_argument(
        "key",
        nargs="?",
        default=None,
        help="Snapshot key (default: snapshot_<timestamp>)",
    )
    p_capture.add_argument("--dbtype", help="Database type (mysql, postgres, sqlite, ...)")
    p_capture.add_argument("--host", help="Database host")
    p_capture.add_argument("--port", type=int, help="Database port")
    p_capture.add_argument("--user", help="Database user")
    p_capture.add_argument("--password", help="Database password")
    p_capture.add_argument("--database", help="Database name (file path for sqlite)")
    p_capture.add_argument("--output", help="Snapshot directory")
    p_capture.add_argument(
        "--verify-data",
        action="store_true",
        help="Compute per-table data checksums",
    )
    p_capture.add_argument(
        "--no-verify-counts",
        action="store_true",
        help="Skip exact row counts",
    )
    p_capture.add_argument("--workers", type=int, help="Parallel workers hint for the driver")
    p_capture.add_argument("--timeout", type=float, help="Driver call timeout in seconds")
    p_capture.set_defaults(func=cmd_capture)

    # compare command
    p_compare = subparsers.add_parser(
        "compare",
        aliases=["diff"],
        help="Compare two snapshots",
    )
    p_compare.add_argument("baseline", help="Baseline snapshot key")
    p_compare.add_argument("target", help="Target snapshot key")
    p_compare.add_argument("--output", help="Snapshot directory")
    p_compare.add_argument(
        "--format",
        choices=["text", "json", "html"],
        default=None,
        help="Report format (default: text)",
    )
    p_compare.add_argument("--out-file", help="Write the report to this file")
    p_compare.set_defaults(func=cmd_compare)

    # list command
    p_list = subparsers.add_parser("list", aliases=["ls"], help="List saved snapshots")
    p_list.add_argument("--output", help="Snapshot directory")
    p_list.set_defaults(func=cmd_list)

    # show command
    p_show = subparsers.add_parser("show", help="Show a saved snapshot")
    p_show.add_argument("key", help="Snapshot key")
    p_show.add_argument("--output", help="Snapshot directory")
    p_show.set_defaults(func=cmd_show)

    # driver command group
    p_driver = subparsers.add_parser("driver", help="Manage drivers")
    driver_sub = p_driver.add_subparsers(dest="driver_command", required=True)

    p_dlist = driver_sub.add_parser("list", help="List available drivers")
    p_dlist.add_argument(
        "--installed",
        action="store_true",
        help="Only show drivers available locally",
    )
    p_dlist.set_defaults(func=cmd_driver_list)

    p_dinstall = driver_sub.add_parser("install", help="Install a driver from the registry")
    p_dinstall.add_argument("name", help="Driver name")
    p_dinstall.add_argument("--version", default=None, help="Driver version to install")
    p_dinstall.set_defaults(func=cmd_driver_install)

    p_duninstall = driver_sub.add_parser("uninstall", help="Remove an installed driver")
    p_duninstall.add_argument("name", help="Driver name")
    p_duninstall.set_defaults(func=cmd_driver_uninstall)

    p_dinfo = driver_sub.add_parser("info", help="Show a driver's version and features")
    p_dinfo.add_argument("name", help="Driver name")
    p_dinfo.set_defaults(func=cmd_driver_info)

    # version command
    p_version = subparsers.add_parser("version", help="Show the dbsnap version")
    p_version.set_defaults(func=cmd_version)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Loads ``.env``, parses command line arguments and dispatches to the
    appropriate handler.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
