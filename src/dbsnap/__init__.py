"""dbsnap: database schema snapshots and schema drift reports.

Captures a database's structure through out-of-process drivers, stores
snapshots as JSON files, and compares two snapshots into a change set.

Usage:
    from dbsnap import capture_snapshot, load_config
    from dbsnap import SnapshotStorage, compare_snapshots, format_text
    from dbsnap import PluginDriver, ExtractParams, DriverFailure
"""

__version__ = "0.1.0"

# Config
from dbsnap.config import CaptureConfig, ConfigError, load_config

# Drivers
from dbsnap.drivers import (
    Driver,
    DriverError,
    DriverFailure,
    DriverNotFound,
    DriverProtocolError,
    DriverTimeout,
    ExtractParams,
    PluginDriver,
    RegistryError,
    RegistryManager,
)

# Schema
from dbsnap.schema import ChangeSet, SchemaSnapshot, compare_snapshots

# Storage
from dbsnap.storage import SnapshotInfo, SnapshotNotFoundError, SnapshotStorage

# Reports
from dbsnap.report import format_html, format_json, format_text

# Capture
from dbsnap.capture import CaptureResult, capture_snapshot

__all__ = [
    # Config
    "CaptureConfig",
    "ConfigError",
    "load_config",
    # Drivers
    "Driver",
    "PluginDriver",
    "ExtractParams",
    "DriverFailure",
    "DriverNotFound",
    "DriverProtocolError",
    "DriverTimeout",
    "DriverError",
    "RegistryManager",
    "RegistryError",
    # Schema
    "SchemaSnapshot",
    "ChangeSet",
    "compare_snapshots",
    # Storage
    "SnapshotStorage",
    "SnapshotInfo",
    "SnapshotNotFoundError",
    # Reports
    "format_text",
    "format_json",
    "format_html",
    # Capture
    "capture_snapshot",
    "CaptureResult",
]
