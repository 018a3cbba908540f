"""Process-backed driver handles.

Each driver is a separate executable named ``dbsnap-driver-<name>``. Every
call spawns the executable, writes one JSON request to its stdin, waits for
it to exit under a timeout, and decodes one JSON response from its stdout.
Stderr is only surfaced when the call fails.

Search order for the executable (first existing file wins):
1. ``./bin/<exe>``
2. The directory of the running program
3. ``~/.dbsnap/drivers/<name>/<exe>``
4. ``./<exe>``
5. The system ``PATH``

Usage:
    from dbsnap.drivers.plugin import PluginDriver
    from dbsnap.drivers.protocol import ExtractParams

    driver = await PluginDriver.create("sqlite")
    snapshot = await driver.extract_schema(ExtractParams(database="app.db"))
"""

import asyncio
import logging
import os
import shutil
import sys
import time
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from dbsnap.drivers.base import (
    DriverError,
    DriverNotFound,
    DriverProtocolError,
    DriverTimeout,
)
from dbsnap.drivers.protocol import (
    METHOD_EXTRACT_SCHEMA,
    METHOD_GET_FEATURES,
    METHOD_GET_VERSION,
    DriverFeatures,
    DriverRequest,
    DriverResponse,
    ExtractParams,
    VersionInfo,
)
from dbsnap.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0  # 5 minutes per call
DRIVER_PREFIX = "dbsnap-driver-"
DRIVERS_HOME = Path.home() / ".dbsnap" / "drivers"

M = TypeVar("M", bound=BaseModel)


# ============================================================================
# Discovery
# ============================================================================


def driver_executable_name(name: str) -> str:
    """Return the executable file name for driver *name*.

    Example:
        >>> driver_executable_name("postgres")  # doctest: +SKIP
        'dbsnap-driver-postgres'
    """
    exe = f"{DRIVER_PREFIX}{name}"
    if sys.platform == "win32":
        exe += ".exe"
    return exe


def _program_dir() -> Path:
    """Directory of the running program, falling back to the interpreter's."""
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0]).resolve().parent
    return Path(sys.executable).resolve().parent


def driver_search_paths(name: str, drivers_dir: Path | None = None) -> list[Path]:
    """Candidate locations for driver *name*, in search order (PATH excluded)."""
    exe = driver_executable_name(name)
    cwd = Path.cwd()
    home = drivers_dir if drivers_dir is not None else DRIVERS_HOME
    return [
        cwd / "bin" / exe,
        _program_dir() / exe,
        home / name / exe,
        cwd / exe,
    ]


def find_driver_executable(name: str, drivers_dir: Path | None = None) -> Path:
    """Resolve driver *name* to an executable path.

    Args:
        name: Driver name (e.g. ``"sqlite"``).
        drivers_dir: Override for the user install directory
            (default: ``~/.dbsnap/drivers``).

    Returns:
        Path of the first existing candidate.

    Raises:
        DriverNotFound: If no candidate exists and the executable is not
            on ``PATH``.
    """
    exe = driver_executable_name(name)
    for candidate in driver_search_paths(name, drivers_dir):
        if candidate.is_file():
            logger.debug("Resolved driver %s to %s", name, candidate)
            return candidate

    on_path = shutil.which(exe)
    if on_path:
        logger.debug("Resolved driver %s to %s (PATH)", name, on_path)
        return Path(on_path)

    raise DriverNotFound(name, exe)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* if it is still running and reap it."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


# ============================================================================
# Driver handle
# ============================================================================


class PluginDriver:
    """Driver handle backed by an external executable.

    Use ``await PluginDriver.create(name)`` rather than the constructor: it
    resolves the executable and caches the driver's version and features,
    so a returned handle is always fully initialized.

    A handle runs one call at a time. Run several handles to extract
    several databases concurrently.
    """

    def __init__(self, name: str, path: Path, timeout: float = DEFAULT_TIMEOUT):
        self._name = name
        self.path = Path(path)
        self.timeout = timeout
        self._version = ""
        self._features = DriverFeatures()
        self._lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        name: str,
        path: str | Path | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        drivers_dir: Path | None = None,
    ) -> "PluginDriver":
        """Resolve, probe and return a ready driver handle.

        Args:
            name: Driver name (e.g. ``"sqlite"``).
            path: Explicit executable path; skips discovery when given.
            timeout: Per-call deadline in seconds.
            drivers_dir: Override for the user install directory.

        Returns:
            ``PluginDriver`` with version and features cached.

        Raises:
            DriverFailure: If discovery, ``get_version`` or ``get_features``
                fails. No handle is returned in that case.
        """
        executable = Path(path) if path else find_driver_executable(name, drivers_dir)
        driver = cls(name, executable, timeout=timeout)

        info = await driver.get_version()
        driver._version = info.version
        driver._features = await driver.get_features()

        logger.debug(
            "Loaded driver %s %s from %s", info.name, info.version, executable
        )
        return driver

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def supported_features(self) -> DriverFeatures:
        return self._features

    def __repr__(self) -> str:
        return f"PluginDriver(name={self._name!r}, path={str(self.path)!r})"

    # ------------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------------

    async def execute(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Run one request/response exchange with the driver.

        Args:
            method: Protocol method name.
            params: Method parameters.

        Returns:
            The response ``data`` (undecoded) on success.

        Raises:
            DriverTimeout: If the driver did not exit within ``timeout``.
            DriverProtocolError: If the driver could not be started, exited
                abnormally, or wrote an unparseable response.
            DriverError: If the driver reported ``success: false``.
        """
        request = DriverRequest(method=method, params=params or {})
        payload = request.model_dump_json().encode()

        async with self._lock:
            started = time.monotonic()
            stdout, stderr, returncode = await self._run(method, payload)
            logger.debug(
                "Driver %s %s finished in %.3fs (exit %s)",
                self._name,
                method,
                time.monotonic() - started,
                returncode,
            )

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        try:
            response = DriverResponse.model_validate_json(out)
        except ValidationError:
            if returncode != 0:
                raise DriverProtocolError(
                    f"Driver '{self._name}' failed during '{method}'",
                    stdout=out,
                    stderr=err,
                    returncode=returncode,
                ) from None
            raise DriverProtocolError(
                f"Driver '{self._name}' returned an invalid response to '{method}'",
                stdout=out,
                stderr=err,
                returncode=returncode,
            ) from None

        if not response.success:
            raise DriverError(
                response.error or f"Driver '{self._name}' reported a failure for '{method}'"
            )

        if returncode != 0:
            raise DriverProtocolError(
                f"Driver '{self._name}' reported success but exited abnormally",
                stdout=out,
                stderr=err,
                returncode=returncode,
            )

        return response.data

    async def _run(self, method: str, payload: bytes) -> tuple[bytes, bytes, int]:
        try:
            proc = await asyncio.create_subprocess_exec(
                str(self.path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DriverProtocolError(
                f"Failed to start driver '{self._name}' at {self.path}: {e}"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(payload), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await _kill(proc)
            raise DriverTimeout(method, self.timeout) from None
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        return stdout, stderr, proc.returncode if proc.returncode is not None else -1

    def _decode(self, model: type[M], method: str, data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DriverProtocolError(
                f"Driver '{self._name}' returned malformed data for '{method}': {e}"
            ) from e

    async def get_version(self) -> VersionInfo:
        data = await self.execute(METHOD_GET_VERSION)
        return self._decode(VersionInfo, METHOD_GET_VERSION, data)

    async def get_features(self) -> DriverFeatures:
        data = await self.execute(METHOD_GET_FEATURES)
        return self._decode(DriverFeatures, METHOD_GET_FEATURES, data)

    async def extract_schema(self, params: ExtractParams) -> SchemaSnapshot:
        """Extract a snapshot from the database described by *params*."""
        data = await self.execute(METHOD_EXTRACT_SCHEMA, params.model_dump())
        return self._decode(SchemaSnapshot, METHOD_EXTRACT_SCHEMA, data)


async def load_driver(
    name: str,
    timeout: float = DEFAULT_TIMEOUT,
    drivers_dir: Path | None = None,
) -> PluginDriver:
    """Shortcut for ``PluginDriver.create`` using discovery."""
    return await PluginDriver.create(name, timeout=timeout, drivers_dir=drivers_dir)


def list_local_drivers(drivers_dir: Path | None = None) -> list[str]:
    """Names of drivers found in ``./bin``, the program directory and ``PATH``."""
    dirs = [Path.cwd() / "bin", _program_dir()]
    dirs.extend(Path(p) for p in os.environ.get("PATH", "").split(os.pathsep) if p)
    home = drivers_dir if drivers_dir is not None else DRIVERS_HOME
    if home.is_dir():
        dirs.extend(d for d in home.iterdir() if d.is_dir())

    names: set[str] = set()
    for directory in dirs:
        if not directory.is_dir():
            continue
        for entry in directory.glob(f"{DRIVER_PREFIX}*"):
            if entry.is_file():
                names.add(entry.name.removeprefix(DRIVER_PREFIX).removesuffix(".exe"))
    return sorted(names)
