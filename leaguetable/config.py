"""Automation configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator
from pydantic_settings import BaseSettings

from leaguetable.errors import ConfigurationError


class AutomationSettings(BaseSettings):
    """Table automation settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./leaguetable.db"
    DATABASE_ECHO: bool = False

    # Lifecycle hooks (manual enqueues are never affected)
    TRIGGER_ENABLED: bool = True

    # ═══════════════════════════════════════════════════════════════
    # Queue
    # ═══════════════════════════════════════════════════════════════
    QUEUE_CONCURRENCY: int = 3
    QUEUE_MAX_RETRIES: int = 3
    QUEUE_JOB_TIMEOUT_SECONDS: float = 30.0
    QUEUE_BACKOFF_BASE_SECONDS: float = 1.0  # Exponential backoff base
    QUEUE_BACKOFF_MAX_SECONDS: float = 30.0
    QUEUE_BACKOFF_JITTER: bool = True  # Up to +10% of the computed delay
    QUEUE_POLL_INTERVAL_SECONDS: float = 0.5  # Worker wake-up when only delayed retries are pending
    QUEUE_MAX_COMPLETED_JOBS: int = 100  # Kept in memory for status/history
    QUEUE_MAX_FAILED_JOBS: int = 50
    QUEUE_CLEANUP_INTERVAL_SECONDS: float = 60.0
    QUEUE_COALESCE_PENDING: bool = False  # Reuse a pending job for the same table instead of adding one

    # Health thresholds
    HEALTH_MAX_PENDING_JOBS: int = 50
    HEALTH_MAX_FAILED_JOBS: int = 10
    HEALTH_ERROR_RATE_UNHEALTHY: float = 50.0  # Percent of finished jobs
    HEALTH_STUCK_SECONDS: float = 300.0

    # Calculation
    CALC_SLOW_WARNING_SECONDS: float = 15.0

    # ═══════════════════════════════════════════════════════════════
    # Snapshots
    # ═══════════════════════════════════════════════════════════════
    SNAPSHOT_DIR: str = "./snapshots"
    SNAPSHOT_MAX_PER_TABLE: int = 10
    SNAPSHOT_MAX_AGE_DAYS: int = 30
    SNAPSHOT_COMPRESSION: bool = True
    SNAPSHOT_CHECKSUM: bool = True
    SNAPSHOT_BACKUP_BEFORE_RESTORE: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator(
        "QUEUE_CONCURRENCY",
        "SNAPSHOT_MAX_PER_TABLE",
    )
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator(
        "QUEUE_MAX_RETRIES",
        "QUEUE_MAX_COMPLETED_JOBS",
        "QUEUE_MAX_FAILED_JOBS",
        "HEALTH_MAX_PENDING_JOBS",
        "HEALTH_MAX_FAILED_JOBS",
        "SNAPSHOT_MAX_AGE_DAYS",
    )
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator(
        "QUEUE_JOB_TIMEOUT_SECONDS",
        "QUEUE_POLL_INTERVAL_SECONDS",
        "QUEUE_CLEANUP_INTERVAL_SECONDS",
        "HEALTH_STUCK_SECONDS",
    )
    @classmethod
    def _positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value

    @field_validator("QUEUE_BACKOFF_BASE_SECONDS", "QUEUE_BACKOFF_MAX_SECONDS")
    @classmethod
    def _non_negative_seconds(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("HEALTH_ERROR_RATE_UNHEALTHY")
    @classmethod
    def _percentage(cls, value: float) -> float:
        if not 0 <= value <= 100:
            raise ValueError("must be a percentage between 0 and 100")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    class Config:
        env_prefix = "LEAGUETABLE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


def load_settings(**overrides: Any) -> AutomationSettings:
    """
    Build settings from environment plus explicit overrides.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    try:
        settings = AutomationSettings(**overrides)
    except PydanticValidationError as e:
        violations = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "code": "INVALID_SETTING",
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid automation settings: {len(violations)} problem(s)",
            violations=violations,
        ) from e

    if settings.QUEUE_BACKOFF_MAX_SECONDS < settings.QUEUE_BACKOFF_BASE_SECONDS:
        raise ConfigurationError(
            "QUEUE_BACKOFF_MAX_SECONDS must be >= QUEUE_BACKOFF_BASE_SECONDS",
            violations=[{
                "field": "QUEUE_BACKOFF_MAX_SECONDS",
                "code": "INVALID_SETTING",
                "message": "smaller than QUEUE_BACKOFF_BASE_SECONDS",
            }],
        )
    return settings


@lru_cache
def get_settings() -> AutomationSettings:
    """Get cached settings instance."""
    return load_settings()
