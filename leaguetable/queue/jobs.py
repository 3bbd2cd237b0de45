"""Calculation job record and its enums."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


class Priority(int, Enum):
    """Queue priority; higher runs first."""

    LOW = 1
    NORMAL = 2
    HIGH = 3

    @classmethod
    def parse(cls, value) -> "Priority":
        """Accept a Priority, its int value or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown priority {value!r}") from None
        return cls(value)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Trigger reasons used by the lifecycle glue and admin tooling
TRIGGER_MATCH_CREATED = "MATCH_CREATED"
TRIGGER_MATCH_UPDATED = "MATCH_UPDATED"
TRIGGER_MATCH_DELETED = "MATCH_DELETED"
TRIGGER_MANUAL = "MANUAL"


@dataclass
class JobError:
    """One failed attempt, kept in the job's error history."""

    message: str
    kind: str
    retry_count: int
    retryable: bool
    is_timeout: bool
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "kind": self.kind,
            "retry_count": self.retry_count,
            "retryable": self.retryable,
            "is_timeout": self.is_timeout,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CalculationJob:
    """
    Scheduled recomputation of one league season's table.

    State machine: pending -> processing -> completed | failed. A retryable
    failure puts the job back to pending with next_retry_at set.
    """

    league_id: int
    season_id: int
    priority: Priority = Priority.NORMAL
    trigger: str = TRIGGER_MANUAL
    description: Optional[str] = None
    max_retries: int = 3
    id: str = field(default_factory=generate_job_id)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=_utc_now)
    sequence: int = 0  # FIFO tiebreak within a priority tier
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    timeout_count: int = 0
    next_retry_at: Optional[datetime] = None
    error: Optional[str] = None
    error_history: list[JobError] = field(default_factory=list)
    entries_updated: int = 0

    @property
    def key(self) -> tuple[int, int]:
        return (self.league_id, self.season_id)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    def is_ready(self, now: datetime) -> bool:
        return self.status == JobStatus.PENDING and (
            self.next_retry_at is None or self.next_retry_at <= now
        )

    def to_dict(self, include_errors: bool = False) -> dict:
        payload = {
            "id": self.id,
            "league_id": self.league_id,
            "season_id": self.season_id,
            "priority": self.priority.name,
            "trigger": self.trigger,
            "description": self.description,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "timeout_count": self.timeout_count,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "error": self.error,
            "entries_updated": self.entries_updated,
        }
        if include_errors:
            payload["error_history"] = [err.to_dict() for err in self.error_history]
        return payload
