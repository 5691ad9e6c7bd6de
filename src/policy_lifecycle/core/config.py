# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings."""

from datetime import timedelta

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POLICY_LIFECYCLE_",
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,
        validate_default=True,
        extra="forbid",
    )

    # Storage
    database_url: str = Field(
        default="memory://",
        description="Document store URL (memory:// or a PostgreSQL DSN)",
        min_length=1,
    )
    database_pool_min: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Minimum database pool size",
    )
    database_pool_max: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum database pool size",
    )
    database_pool_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Connection acquisition timeout in seconds",
    )
    database_command_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Query execution timeout in seconds",
    )

    # Transactions
    transaction_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Time budget for a single conversion or retirement transaction",
    )

    # Lifecycle rules
    retention_window_minutes: int = Field(
        default=60,
        ge=0,
        le=7 * 24 * 60,
        description="Minimum age of the last service before a provisional policy is retired",
    )
    service_quota: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Service count at which any policy is retired",
    )
    refresh_batch_size: int = Field(
        default=500,
        ge=1,
        le=10_000,
        description="Policies fetched per page during the state refresh pass",
    )

    # Scheduler
    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        description="Celery broker URL",
        min_length=1,
    )
    celery_result_backend: str | None = Field(
        default=None,
        description="Celery result backend URL (defaults to the broker)",
    )
    cleanup_hour_utc: int = Field(
        default=3,
        ge=0,
        le=23,
        description="Hour of day (UTC) for the daily cleanup run",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Root log level",
    )

    @field_validator("database_pool_max")
    @classmethod
    def validate_pool_sizes(cls: type["Settings"], v: int, info: ValidationInfo) -> int:
        """Ensure pool max is greater than pool min."""
        if "database_pool_min" in info.data:
            min_size = info.data["database_pool_min"]
            if v < min_size:
                raise ValueError(
                    f"database_pool_max ({v}) must be >= database_pool_min ({min_size})"
                )
        return v

    @property
    @beartype
    def retention_window(self) -> timedelta:
        """Retention window as a timedelta."""
        return timedelta(minutes=self.retention_window_minutes)

    @property
    @beartype
    def uses_memory_store(self) -> bool:
        """Check if the in-process store is configured."""
        return self.database_url.startswith("memory://")


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
