"""Driver protocol engine: discovery, process-backed calls and the registry.

Usage:
    from dbsnap.drivers import PluginDriver, ExtractParams, DriverFailure
    from dbsnap.drivers import RegistryManager, find_driver_executable
"""

from dbsnap.drivers.base import (
    Driver,
    DriverError,
    DriverFailure,
    DriverNotFound,
    DriverProtocolError,
    DriverTimeout,
)
from dbsnap.drivers.plugin import (
    DEFAULT_TIMEOUT,
    PluginDriver,
    driver_executable_name,
    find_driver_executable,
    list_local_drivers,
    load_driver,
)
from dbsnap.drivers.protocol import (
    DriverFeatures,
    DriverRequest,
    DriverResponse,
    ExtractParams,
    VersionInfo,
)
from dbsnap.drivers.registry import (
    DriverMetadata,
    DriverRegistry,
    RegistryError,
    RegistryManager,
)

__all__ = [
    # Protocol
    "Driver",
    "DriverRequest",
    "DriverResponse",
    "DriverFeatures",
    "ExtractParams",
    "VersionInfo",
    # Failures
    "DriverFailure",
    "DriverNotFound",
    "DriverProtocolError",
    "DriverTimeout",
    "DriverError",
    # Plugin engine
    "PluginDriver",
    "DEFAULT_TIMEOUT",
    "driver_executable_name",
    "find_driver_executable",
    "list_local_drivers",
    "load_driver",
    # Registry
    "RegistryManager",
    "RegistryError",
    "DriverRegistry",
    "DriverMetadata",
]
