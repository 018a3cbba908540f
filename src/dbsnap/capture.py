"""Snapshot capture: driver -> snapshot -> storage.

Resolves the driver for ``config.db_type`` (installing it from the
registry when allowed), extracts a snapshot, assigns its key and host, and
saves it. Any driver failure propagates unchanged and nothing is saved.

Usage:
    from dbsnap.capture import capture_snapshot
    from dbsnap.config import load_config

    config = load_config(overrides={"db_type": "sqlite", "database": "app.db"})
    result = await capture_snapshot(config, key="before_migration")
    print(result.path)
"""

import logging
from pathlib import Path

from pydantic import BaseModel

from dbsnap.config.models import CaptureConfig
from dbsnap.drivers.base import Driver, DriverNotFound
from dbsnap.drivers.plugin import PluginDriver
from dbsnap.drivers.protocol import ExtractParams
from dbsnap.drivers.registry import RegistryManager
from dbsnap.schema.models import SchemaSnapshot
from dbsnap.storage import TIMESTAMP_FORMAT, SnapshotStorage

logger = logging.getLogger(__name__)


class CaptureResult(BaseModel):
    """Result of a successful capture.

    Attributes:
        snapshot: The saved snapshot, with key and host assigned.
        path: File the snapshot was written to.
    """

    snapshot: SchemaSnapshot
    path: Path


def build_extract_params(config: CaptureConfig) -> ExtractParams:
    """Map capture settings onto driver ``extract_schema`` parameters."""
    return ExtractParams(
        host=config.host,
        port=config.port,
        user=config.user,
        password=config.password,
        database=config.database,
        connection_string=config.connection_string(),
        verify_data=config.verify_data,
        verify_row_counts=config.verify_row_counts,
        workers=config.workers,
    )


def default_key(snapshot: SchemaSnapshot) -> str:
    """Key derived from the snapshot timestamp, e.g. ``snapshot_20250101_120000``."""
    return f"snapshot_{snapshot.timestamp.strftime(TIMESTAMP_FORMAT)}"


async def resolve_driver(
    config: CaptureConfig,
    registry: RegistryManager | None = None,
) -> PluginDriver:
    """Load the driver for ``config.db_type``.

    When the driver is not found and ``config.auto_install`` is set, it is
    installed from the registry and discovery is retried once.

    Raises:
        DriverNotFound: If the driver is missing and cannot be installed.
        RegistryError: If auto-install fails.
        DriverFailure: If the driver does not answer its startup probes.
    """
    try:
        return await PluginDriver.create(config.db_type, timeout=config.timeout)
    except DriverNotFound:
        if not config.auto_install:
            raise
        manager = registry or RegistryManager(config.registry_url)
        logger.info("Driver %s not found, installing from registry", config.db_type)
        await manager.install_driver(config.db_type)
        return await PluginDriver.create(
            config.db_type, timeout=config.timeout, drivers_dir=manager.drivers_dir
        )


async def capture_snapshot(
    config: CaptureConfig,
    key: str | None = None,
    driver: Driver | None = None,
    storage: SnapshotStorage | None = None,
) -> CaptureResult:
    """Capture and save a snapshot of the configured database.

    Args:
        config: Effective capture configuration.
        key: Snapshot label. Derived from the snapshot timestamp when omitted.
        driver: Driver to use instead of resolving ``config.db_type``.
        storage: Store to save into (default: ``config.output_dir``).

    Returns:
        ``CaptureResult`` with the final snapshot and its file path.

    Raises:
        ValueError: If no database is configured.
        DriverFailure: If the driver cannot be loaded or extraction fails.
    """
    if not config.database:
        raise ValueError("Database name is required (set DB_NAME or --database)")

    if driver is None:
        driver = await resolve_driver(config)
    if storage is None:
        storage = SnapshotStorage(config.output_dir)

    logger.info("Capturing %s database %s", config.db_type, config.database)
    snapshot = await driver.extract_schema(build_extract_params(config))

    snapshot = snapshot.model_copy(
        update={
            "key": key or default_key(snapshot),
            "host": snapshot.host or config.host,
            "db_type": snapshot.db_type or config.db_type,
        }
    )
    path = storage.save(snapshot)
    return CaptureResult(snapshot=snapshot, path=path)
