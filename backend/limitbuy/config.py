"""Pydantic Settings configuration models.

Config hierarchy (lowest to highest priority):
1. Pydantic defaults (in code below)
2. .env file (loaded by Pydantic Settings)
3. Environment variables (e.g., LIMITBUY_EXECUTION__STAGE_TIMEOUT_SECONDS=20)

Budget and refresh interval are NOT here: they are user settings,
persisted with the orders and changed through the settings command.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
VALID_LOG_FORMATS = frozenset({"console", "json"})


class DriverConfig(BaseModel):
    """Trading venue connection configuration."""

    base_url: str = "http://127.0.0.1:8080"
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v}")
        return v.rstrip("/")


class ExecutionConfig(BaseModel):
    """Purchase flow timing."""

    settle_delay_seconds: float = Field(default=5.0, ge=0, le=60)
    stage_timeout_seconds: float = Field(default=10.0, gt=0, le=300)


class MonitorConfig(BaseModel):
    """Monitoring loop defaults."""

    default_refresh_interval_minutes: int = Field(default=5, ge=1, le=1440)
    activity_log_max_entries: int = Field(default=200, ge=10, le=10_000)


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Env var examples:
        LIMITBUY_LOG_LEVEL=DEBUG
        LIMITBUY_DRIVER__BASE_URL=https://venue.example
        LIMITBUY_EXECUTION__SETTLE_DELAY_SECONDS=3
    """

    model_config = SettingsConfigDict(
        env_prefix="LIMITBUY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: str = "console"
    driver: DriverConfig = DriverConfig()
    execution: ExecutionConfig = ExecutionConfig()
    monitor: MonitorConfig = MonitorConfig()
    db_path: str = "data/limitbuy.db"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, got {v}"
            )
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in VALID_LOG_FORMATS:
            raise ValueError(
                f"log_format must be one of {sorted(VALID_LOG_FORMATS)}, got {v}"
            )
        return v

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("db_path must not be empty")
        return v
