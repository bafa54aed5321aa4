"""Server configuration via pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Relay settings loaded from environment variables.

    All variables are prefixed with ``MUSIC_CONTROL_`` (e.g. ``MUSIC_CONTROL_PORT``).
    """

    # Listener
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    ws_path: str = "/ws"
    trust_forwarded_headers: bool = False

    # WebSocket transport
    admission_timeout_seconds: float = Field(default=30.0, gt=0)
    ping_interval_seconds: Optional[float] = 30.0
    ping_timeout_seconds: Optional[float] = 30.0
    max_message_size: Optional[int] = None  # None = unbounded
    send_timeout_seconds: Optional[float] = 10.0

    # Sessions
    session_ttl_days: float = Field(default=365, gt=0)
    sweep_interval_hours: float = Field(default=24, gt=0)

    # Rate limiting (connection attempts per client address; 0 disables)
    connect_rate_limit_per_minute: int = Field(default=100, ge=0)

    # Health / metrics endpoint (disabled when unset)
    metrics_port: Optional[int] = Field(default=None, ge=1, le=65535)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="MUSIC_CONTROL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("ws_path")
    @classmethod
    def validate_ws_path(cls, v: str) -> str:
        v = v.strip()
        return v if v.startswith("/") else f"/{v}"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_days * 24 * 60 * 60

    @property
    def sweep_interval_seconds(self) -> float:
        return self.sweep_interval_hours * 60 * 60


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance."""
    return Settings()
