"""Driver registry client: download, install, uninstall and list drivers.

The registry is a JSON document listing drivers and a download URL per
platform:

    {"drivers": {"postgres": {"name": "postgres", "version": "v1.2.0",
                              "description": "...",
                              "platforms": {"linux-amd64": {"url": "..."}}}}}

Installed drivers live in ``~/.dbsnap/drivers/<name>/`` next to a
``metadata.json`` describing the installed version.

Usage:
    from dbsnap.drivers.registry import RegistryManager

    manager = RegistryManager(config.registry_url)
    metadata = await manager.install_driver("postgres")
"""

import hashlib
import logging
import platform
import shutil
import sys
from pathlib import Path

import httpx
from pydantic import BaseModel, Field, ValidationError

from dbsnap.config.models import DEFAULT_REGISTRY_URL
from dbsnap.drivers.plugin import DRIVERS_HOME, driver_executable_name

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 30.0
METADATA_FILE = "metadata.json"
CHECKSUMS_FILE = "checksums.txt"

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
}


class RegistryError(Exception):
    """Raised when the registry cannot be read or a driver cannot be installed."""

    pass


# ============================================================================
# Registry Models
# ============================================================================


class DriverPlatformInfo(BaseModel):
    url: str


class DriverInfo(BaseModel):
    """One driver entry in the registry."""

    name: str
    version: str
    description: str = ""
    platforms: dict[str, DriverPlatformInfo] = Field(default_factory=dict)


class DriverRegistry(BaseModel):
    drivers: dict[str, DriverInfo] = Field(default_factory=dict)


class DriverMetadata(BaseModel):
    """Contents of an installed driver's ``metadata.json``."""

    name: str
    version: str
    description: str = ""
    path: str = ""


def current_platform() -> str:
    """Registry platform key for this machine, e.g. ``linux-amd64``."""
    if sys.platform.startswith("win"):
        system = "windows"
    else:
        system = platform.system().lower()
    machine = platform.machine().lower()
    return f"{system}-{_ARCH_ALIASES.get(machine, machine)}"


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


# ============================================================================
# Registry Manager
# ============================================================================


class RegistryManager:
    """Installs drivers from a registry into the user drivers directory.

    Args:
        registry_url: URL of the registry JSON document.
        drivers_dir: Install root (default: ``~/.dbsnap/drivers``).
        client: Optional ``httpx.AsyncClient`` to use instead of creating
            one per operation.
    """

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        drivers_dir: Path | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.registry_url = registry_url
        self.drivers_dir = Path(drivers_dir) if drivers_dir is not None else DRIVERS_HOME
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True)

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise RegistryError(f"Request to {url} failed: {e}") from e
        if response.status_code != 200:
            raise RegistryError(f"GET {url} failed with status {response.status_code}")
        return response

    async def fetch_registry(self) -> DriverRegistry:
        """Download and parse the registry document.

        Raises:
            RegistryError: On network failure, non-200 status or bad JSON.
        """
        client = self._http()
        try:
            response = await self._get(client, self.registry_url)
        finally:
            if client is not self._client:
                await client.aclose()

        try:
            return DriverRegistry.model_validate_json(response.content)
        except ValidationError as e:
            raise RegistryError(f"Failed to parse registry: {e}") from e

    async def _fetch_checksum(
        self, client: httpx.AsyncClient, download_url: str
    ) -> str | None:
        """Expected sha256 for *download_url* from the sibling checksums file."""
        base, _, filename = download_url.rpartition("/")
        checksums_url = f"{base}/{CHECKSUMS_FILE}"
        try:
            response = await self._get(client, checksums_url)
        except RegistryError as e:
            logger.warning("Could not verify checksum: %s", e)
            return None

        for line in response.text.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1] == filename:
                return parts[0].removeprefix("sha256:")

        logger.warning("Could not verify checksum: %s not in %s", filename, CHECKSUMS_FILE)
        return None

    async def install_driver(self, name: str, version: str | None = None) -> DriverMetadata:
        """Download and install driver *name* for the current platform.

        Args:
            name: Driver name as listed in the registry.
            version: Version to install instead of the registry's current one.
                Substituted into the download URL.

        Returns:
            ``DriverMetadata`` written to the driver's ``metadata.json``.

        Raises:
            RegistryError: If the driver or platform is unknown, the download
                fails, or the checksum does not match.
        """
        registry = await self.fetch_registry()
        info = registry.drivers.get(name)
        if info is None:
            raise RegistryError(f"Driver '{name}' not found in registry")

        platform_key = current_platform()
        platform_info = info.platforms.get(platform_key)
        if platform_info is None:
            raise RegistryError(
                f"Driver '{name}' not available for platform '{platform_key}'"
            )

        download_url = platform_info.url
        install_version = info.version
        if version:
            download_url = download_url.replace(info.version, version, 1)
            install_version = version

        driver_dir = self.drivers_dir / name
        driver_dir.mkdir(parents=True, exist_ok=True)
        driver_path = driver_dir / driver_executable_name(name)
        staged_path = driver_path.with_name(driver_path.name + ".download")

        logger.info("Downloading %s driver %s for %s", name, install_version, platform_key)
        client = self._http()
        try:
            response = await self._get(client, download_url)
            expected = await self._fetch_checksum(client, download_url)
        finally:
            if client is not self._client:
                await client.aclose()

        staged_path.write_bytes(response.content)

        if expected:
            actual = sha256_file(staged_path)
            if actual != expected:
                staged_path.unlink(missing_ok=True)
                raise RegistryError(
                    f"Checksum mismatch for {name}: expected {expected}, got {actual}"
                )

        if not sys.platform.startswith("win"):
            staged_path.chmod(0o755)
        staged_path.replace(driver_path)

        metadata = DriverMetadata(
            name=info.name,
            version=install_version,
            description=info.description,
            path=str(driver_path),
        )
        (driver_dir / METADATA_FILE).write_text(metadata.model_dump_json(indent=2))
        logger.info("Installed %s driver %s at %s", name, install_version, driver_path)
        return metadata

    def uninstall_driver(self, name: str) -> None:
        """Remove driver *name* and its directory.

        Raises:
            RegistryError: If the driver is not installed.
        """
        driver_dir = self.drivers_dir / name
        if not driver_dir.is_dir():
            raise RegistryError(f"Driver '{name}' is not installed")
        shutil.rmtree(driver_dir)
        logger.info("Uninstalled %s driver", name)

    def list_installed(self) -> list[DriverMetadata]:
        """Installed drivers, sorted by name. Unreadable metadata is skipped."""
        if not self.drivers_dir.is_dir():
            return []

        drivers = []
        for entry in sorted(self.drivers_dir.iterdir()):
            metadata_path = entry / METADATA_FILE
            if not metadata_path.is_file():
                continue
            try:
                drivers.append(DriverMetadata.model_validate_json(metadata_path.read_text()))
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable driver metadata %s: %s", metadata_path, e)
        return drivers

    def is_installed(self, name: str) -> bool:
        return (self.drivers_dir / name / driver_executable_name(name)).is_file()
