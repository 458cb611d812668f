"""Configuration management for deskbox."""

import re
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_RESOLUTION_PATTERN = re.compile(r"^(\d+)x(\d+)$")


class Settings(BaseSettings):
    """Application settings."""

    # API Settings
    api_allowed_origins: str | list[str] = Field(default=["*"], alias="API_ALLOWED_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        alias="LOG_FORMAT",
    )

    # Sandbox (isolated environment) Settings
    sandbox_image: str = Field(default="deskbox-sandbox:latest", alias="SANDBOX_IMAGE")
    sandbox_api_port_base: int = Field(default=8080, alias="SANDBOX_API_PORT_BASE")
    sandbox_vnc_port_base: int = Field(default=6080, alias="SANDBOX_VNC_PORT_BASE")
    sandbox_cdp_port_base: int = Field(default=9222, alias="SANDBOX_CDP_PORT_BASE")
    sandbox_port_spread: int = Field(
        default=100, alias="SANDBOX_PORT_SPREAD", ge=1
    )  # Random offset is drawn from [0, spread)
    sandbox_stop_timeout: int = Field(default=5, alias="SANDBOX_STOP_TIMEOUT")

    # Desktop Settings
    desktop_display: str = Field(default=":0", alias="DESKTOP_DISPLAY")
    desktop_resolution: str = Field(default="1024x768", alias="DESKTOP_RESOLUTION")
    desktop_dpi: int = Field(default=96, alias="DESKTOP_DPI")

    # Readiness polling defaults (seconds)
    readiness_timeout: float = Field(default=10.0, alias="READINESS_TIMEOUT")
    readiness_interval: float = Field(default=0.5, alias="READINESS_INTERVAL")

    # Stream (VNC + noVNC) Settings
    vnc_server_port: int = Field(default=5900, alias="VNC_SERVER_PORT")
    novnc_path: str = Field(default="/opt/noVNC", alias="NOVNC_PATH")
    stream_public_host: str = Field(default="localhost", alias="STREAM_PUBLIC_HOST")
    stream_url_scheme: str = Field(default="http", alias="STREAM_URL_SCHEME")

    # Typing defaults
    type_chunk_size: int = Field(default=25, alias="TYPE_CHUNK_SIZE", ge=1)
    type_delay_ms: int = Field(default=75, alias="TYPE_DELAY_MS", ge=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("desktop_resolution", mode="before")
    @classmethod
    def normalize_desktop_resolution(cls, value: str) -> str:
        """Validate resolution strings of the form WIDTHxHEIGHT."""
        normalized = str(value).strip().lower()
        if not _RESOLUTION_PATTERN.match(normalized):
            raise ValueError("DESKTOP_RESOLUTION must look like 1024x768")
        return normalized

    @property
    def resolution(self) -> tuple[int, int]:
        """Get the desktop resolution as (width, height)."""
        match = _RESOLUTION_PATTERN.match(self.desktop_resolution)
        return int(match.group(1)), int(match.group(2))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
