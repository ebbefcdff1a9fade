"""
Application Settings
====================

Settings for the chat stream server and client, read from the environment
(prefix ``COMMUNITY_CHAT_``) and an optional ``.env`` file.
"""

from typing import Optional, List, Union
from urllib.parse import urlparse
import json
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "testing", "production")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Chat service settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="COMMUNITY_CHAT_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    # Service
    app_name: str = Field(default="Community Chat API", description="Service name shown in docs")
    app_version: str = Field(default="1.0.0", description="Service version")
    environment: str = Field(default="development", description="One of development, testing, production")
    debug: bool = Field(default=True, description="Expose docs and error details")

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")
    allowed_hosts: List[str] = Field(default=["*"], description="CORS allowed origins")

    # Duplicate suppression
    dedup_window_seconds: float = Field(
        default=10.0, gt=0, description="Window during which an identical query is rejected"
    )
    dedup_sweep_interval_seconds: Optional[float] = Field(
        default=None, gt=0, description="Interval between sweeps of expired entries, defaults to the window"
    )
    dedup_max_entries: int = Field(default=10000, ge=1, description="Maximum number of remembered queries")

    # Stream pacing
    stream_start_delay: float = Field(default=0.2, ge=0, description="Pause after the start event in seconds")
    stream_token_delay: float = Field(default=0.05, ge=0, description="Pause between text tokens in seconds")

    # Client
    chat_endpoint: str = Field(
        default="http://localhost:8080/api/v1/chat/stream", description="Stream endpoint used by ChatSession"
    )
    client_timeout: float = Field(default=60.0, gt=0, description="Client network timeout in seconds")
    client_loop_window_seconds: float = Field(
        default=10.0, gt=0, description="Window used to detect reconnect loops"
    )
    client_max_connection_attempts: int = Field(
        default=5, ge=1, description="Connection attempts allowed per loop window"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[Path] = Field(default=None, description="Rotating log file, console only when unset")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {', '.join(ENVIRONMENTS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Union[str, List[str]]) -> List[str]:
        """Accept a JSON list or a comma-separated string."""
        if not isinstance(v, str):
            return v
        v = v.strip()
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                v = v.strip("[]")
        return [host.strip().strip('"') for host in v.split(",") if host.strip()]

    @field_validator("chat_endpoint")
    @classmethod
    def validate_chat_endpoint(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("chat_endpoint must be an absolute http(s) URL")
        return v

    @model_validator(mode="after")
    def default_sweep_interval(self) -> "Settings":
        if self.dedup_sweep_interval_seconds is None:
            self.dedup_sweep_interval_seconds = self.dedup_window_seconds
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# Global settings instance - will be initialized when needed
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
