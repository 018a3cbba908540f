"""Capture configuration loading.

Precedence, lowest to highest:
1. ``CaptureConfig`` defaults
2. ``[capture]`` table of ``dbsnap.toml``
3. Environment variables (optionally prefixed, e.g. ``APP_DB_HOST``)
4. Explicit overrides (CLI flags); ``None`` values are ignored

Example ``dbsnap.toml``:

    [capture]
    db_type = "postgres"
    host = "db.internal"
    port = 5432
    database = "shop"
    verify_data = true
"""

import os
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from dbsnap.config.models import CaptureConfig

DEFAULT_CONFIG_FILE = "dbsnap.toml"


class ConfigError(Exception):
    """Raised when the config file or resulting settings are invalid."""

    pass


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def _parse_positive_int(value: str) -> int | None:
    number = _parse_int(value)
    return number if number is not None and number > 0 else None


def _parse_float(value: str) -> float | None:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if number > 0 else None


def _parse_bool(value: str) -> bool:
    return value.lower() == "true"


# Environment variable -> (config field, parser). Parsers return None to
# ignore a value.
ENV_VARS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "DB_TYPE": ("db_type", str),
    "DB_HOST": ("host", str),
    "DB_PORT": ("port", _parse_int),
    "DB_USER": ("user", str),
    "DB_PASSWORD": ("password", str),
    "DB_NAME": ("database", str),
    "DBSNAP_OUTPUT_DIR": ("output_dir", str),
    "DBSNAP_VERIFY_DATA": ("verify_data", _parse_bool),
    "DBSNAP_VERIFY_COUNTS": ("verify_row_counts", _parse_bool),
    "DBSNAP_WORKERS": ("workers", _parse_positive_int),
    "DBSNAP_AUTO_INSTALL": ("auto_install", _parse_bool),
    "DBSNAP_REGISTRY_URL": ("registry_url", str),
    "DBSNAP_TIMEOUT": ("timeout", _parse_float),
}


def read_config_file(config_path: Path) -> dict[str, Any]:
    """Read the ``[capture]`` table from a TOML file.

    Raises:
        ConfigError: If the file is not valid TOML or ``capture`` is not a table.
    """
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    section = data.get("capture", {})
    if not isinstance(section, dict):
        raise ConfigError(f"[capture] in {config_path} must be a table")
    return section


def read_env(env_prefix: str = "") -> dict[str, Any]:
    """Collect config values from environment variables.

    Args:
        env_prefix: Prefix prepended to every variable name
            (e.g. ``"APP_"`` reads ``APP_DB_HOST``).

    Returns:
        Dict of config field values. Empty and unparseable values are left out.
    """
    values: dict[str, Any] = {}
    for name, (field, parse) in ENV_VARS.items():
        raw = os.environ.get(f"{env_prefix}{name}")
        if not raw:
            continue
        value = parse(raw)
        if value is not None:
            values[field] = value
    return values


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "",
    overrides: dict[str, Any] | None = None,
) -> CaptureConfig:
    """Build the effective capture configuration.

    Args:
        config_path: Path to a TOML file. When ``None``, ``./dbsnap.toml`` is
            read if it exists.
        env_prefix: Prefix for environment variable lookup.
        overrides: Highest-precedence values (CLI flags). ``None`` values
            are skipped.

    Returns:
        ``CaptureConfig`` with all layers applied.

    Raises:
        ConfigError: If an explicitly given file is missing, the file is
            invalid, or the merged values fail validation.
    """
    values: dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        values.update(read_config_file(path))
    else:
        default_path = Path.cwd() / DEFAULT_CONFIG_FILE
        if default_path.exists():
            values.update(read_config_file(default_path))

    values.update(read_env(env_prefix))

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return CaptureConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
