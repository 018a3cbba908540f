"""Pydantic models for capture configuration."""

from typing import Literal
from urllib.parse import quote, urlencode

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_REGISTRY_URL = (
    "https://raw.githubusercontent.com/ntancardoso/dbc/main/registry/drivers.json"
)


def _userinfo(user: str, password: str) -> str:
    """Percent-encoded ``user[:password]@`` prefix, or "" without a user."""
    if not user:
        return ""
    info = quote(user, safe="")
    if password:
        info += ":" + quote(password, safe="")
    return info + "@"


# ============================================================================
# Configuration Models
# ============================================================================


class CaptureConfig(BaseModel):
    """Settings for capturing and comparing snapshots.

    Built by ``load_config()`` from defaults, ``dbsnap.toml``, environment
    variables and CLI flags, in that order of precedence.
    """

    model_config = ConfigDict(extra="forbid")

    # Connection
    db_type: str = "mysql"
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = ""

    # Capture
    output_dir: str = "./db_snapshots"
    verify_data: bool = False
    verify_row_counts: bool = True
    workers: int = Field(default=10, ge=1)
    timeout: float = Field(default=300.0, gt=0)  # Seconds per driver call

    # Drivers
    auto_install: bool = True
    registry_url: str = DEFAULT_REGISTRY_URL

    # Reports
    format: Literal["text", "json", "html"] = "text"

    def connection_string(self) -> str:
        """Engine-specific connection string for the configured database.

        Example:
            >>> CaptureConfig(db_type="sqlite", database="app.db").connection_string()
            'app.db'
        """
        host = f"{self.host}:{self.port}"
        if self.db_type == "mysql":
            user_info = self.user
            if self.password:
                user_info += ":" + self.password
            return f"{user_info}@tcp({host})/{self.database}"
        if self.db_type == "postgres":
            return (
                f"postgres://{_userinfo(self.user, self.password)}{host}/"
                f"{quote(self.database, safe='')}?sslmode=disable"
            )
        if self.db_type == "sqlserver":
            return (
                f"sqlserver://{_userinfo(self.user, self.password)}{host}"
                f"?{urlencode({'database': self.database})}"
            )
        if self.db_type == "sqlite":
            return self.database
        if self.db_type == "oracle":
            return (
                f"oracle://{_userinfo(self.user, self.password)}{host}/"
                f"{quote(self.database, safe='')}"
            )
        return ""
