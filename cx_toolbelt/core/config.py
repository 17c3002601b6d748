"""
Configuration Settings.

This module defines the toolbelt configuration using Pydantic's BaseSettings.
All values are loaded from environment variables (and an optional .env file)
without explicit dotenv loading.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROFILES_FILENAME = "cxprofiles.json"
DOT_YAML_FILENAME = ".cx.yml"


class Settings(BaseSettings):
    """
    Toolbelt settings model.

    All properties are bound from environment variables. Flags given on the
    command line take precedence over these values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Local state
    # =====================================================================
    cx_home: Path = Field(
        default=Path.home() / ".cloud66",
        description="Directory holding profiles, auth tokens and logs",
        alias="CX_HOME",
    )

    # =====================================================================
    # Authentication and targeting
    # =====================================================================
    token: Optional[str] = Field(
        default=None,
        description="Base64 encoded token file, used when running headless",
        alias="CLOUD66_TOKEN",
    )
    stack: Optional[str] = Field(
        default=None,
        description="Exact stack name used when no --stack flag or .cx.yml is present",
        alias="CXSTACK",
    )

    # =====================================================================
    # Logging and HTTP
    # =====================================================================
    debug: bool = Field(default=False, description="Run in debug mode", alias="CXDEBUG")
    log_level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="CX_LOG_LEVEL",
    )
    log_format: str = Field(default="simple", description="simple, detailed or json", alias="CX_LOG_FORMAT")
    log_to_file: bool = Field(
        default=False,
        description="Also write DEBUG logs to <cx_home>/logs/cx.log",
        alias="CX_LOG_TO_FILE",
    )
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds", alias="CX_HTTP_TIMEOUT")

    @field_validator("cx_home", mode="before")
    @classmethod
    def _expand_home(cls, v):
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    # =====================================================================
    # Computed Properties
    # =====================================================================

    @property
    def profiles_path(self) -> Path:
        """Location of the profiles file."""
        return self.cx_home / PROFILES_FILENAME

    @property
    def log_dir(self) -> Path:
        return self.cx_home / "logs"

    def ensure_home(self) -> Path:
        """Create the cx home directory (mode 0700) when it is missing."""
        self.cx_home.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.cx_home
