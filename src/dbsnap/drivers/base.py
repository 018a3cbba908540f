"""Driver protocol definition and driver failure taxonomy.

Defines the ``Driver`` Protocol that every driver handle implements and
the exceptions raised when talking to a driver fails.
All extraction is ``async def``: callers must ``await`` every operation.

Usage:
    from dbsnap.drivers.base import Driver, DriverFailure

    async def capture(driver: Driver, params: ExtractParams) -> SchemaSnapshot:
        try:
            return await driver.extract_schema(params)
        except DriverFailure as e:
            print(f"{driver.name} failed: {e}")
            raise
"""

from typing import Protocol

from dbsnap.drivers.protocol import DriverFeatures, ExtractParams
from dbsnap.schema.models import SchemaSnapshot


class Driver(Protocol):
    """Database driver interface.

    A driver owns all engine-specific connectivity and metadata queries.
    Implementations are resolved by engine name, not subclassed per engine.
    """

    @property
    def name(self) -> str:
        """Engine name the driver reports (e.g. ``"sqlite"``)."""
        ...

    @property
    def version(self) -> str:
        """Driver version string."""
        ...

    @property
    def supported_features(self) -> DriverFeatures:
        """Optional capabilities advertised by the driver."""
        ...

    async def extract_schema(self, params: ExtractParams) -> SchemaSnapshot:
        """Extract a schema snapshot from the database described by *params*.

        Raises:
            DriverFailure: If the driver cannot be run or reports an error.
        """
        ...


# ============================================================================
# Failures
# ============================================================================


class DriverFailure(Exception):
    """Base class for all failures talking to a driver."""

    pass


class DriverNotFound(DriverFailure):
    """Raised when no driver executable exists at any search location."""

    def __init__(self, name: str, executable: str):
        self.name = name
        self.executable = executable
        super().__init__(
            f"Driver '{name}' not found: no executable named '{executable}'.\n"
            f"Install it with: dbsnap driver install {name}"
        )


class DriverProtocolError(DriverFailure):
    """Raised when the driver could not be run or broke the envelope contract.

    Attributes:
        stdout: Raw standard output, if any was captured.
        stderr: Raw standard error, if any was captured.
        returncode: Process exit code, or ``None`` if it never ran.
    """

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int | None = None,
    ):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        details = [message]
        if returncode is not None:
            details.append(f"exit code: {returncode}")
        if stdout:
            details.append(f"stdout: {stdout.strip()}")
        if stderr:
            details.append(f"stderr: {stderr.strip()}")
        super().__init__("\n".join(details))


class DriverTimeout(DriverFailure):
    """Raised when a driver call exceeds its deadline. The process is killed."""

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"Driver call '{method}' timed out after {timeout:g}s")


class DriverError(DriverFailure):
    """Raised when the driver reports ``success: false``.

    The message is the driver's error text, unchanged.
    """

    pass
