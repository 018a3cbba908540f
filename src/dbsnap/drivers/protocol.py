"""Wire types for the driver request/response protocol.

A driver call is one JSON request written to the driver's stdin and one
JSON response read from its stdout:

    request:  {"method": "extract_schema", "params": {...}}
    response: {"success": true, "data": {...}}
              {"success": false, "error": "message"}

Field names of ``DriverFeatures`` are kept as the drivers emit them.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

METHOD_GET_VERSION = "get_version"
METHOD_GET_FEATURES = "get_features"
METHOD_EXTRACT_SCHEMA = "extract_schema"

METHODS = (METHOD_GET_VERSION, METHOD_GET_FEATURES, METHOD_EXTRACT_SCHEMA)


class DriverRequest(BaseModel):
    """Request envelope sent to a driver."""

    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class DriverResponse(BaseModel):
    """Response envelope read back from a driver.

    ``data`` is only meaningful when ``success`` is true, ``error`` only
    when it is false.
    """

    success: bool
    data: Any = None
    error: str = ""

    @model_validator(mode="before")
    @classmethod
    def null_error_as_empty(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("error", "") is None:
            return {**data, "error": ""}
        return data

    @classmethod
    def ok(cls, data: Any) -> "DriverResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "DriverResponse":
        return cls(success=False, error=error)

    def to_wire(self) -> str:
        """Serialize with only the field that matches ``success``."""
        if self.success:
            return self.model_dump_json(include={"success", "data"})
        return self.model_dump_json(include={"success", "error"})


class ExtractParams(BaseModel):
    """Parameters for ``extract_schema``.

    A non-empty ``connection_string`` takes precedence over the discrete
    connection fields.
    """

    model_config = ConfigDict(extra="forbid")

    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    database: str = ""
    connection_string: str = ""
    verify_data: bool = False
    verify_row_counts: bool = False
    workers: int = 1


class VersionInfo(BaseModel):
    """Payload of ``get_version``."""

    name: str
    version: str


class DriverFeatures(BaseModel):
    """Payload of ``get_features``.

    Accepts both the bare flag mapping and the ``{"features": {...}}``
    wrapping.
    """

    SupportsChecksums: bool = False
    SupportsRowCounts: bool = False
    SupportsIndexes: bool = False
    SupportsForeignKeys: bool = False
    SupportsConstraints: bool = False

    @model_validator(mode="before")
    @classmethod
    def unwrap_features(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("features"), dict):
            return data["features"]
        return data
