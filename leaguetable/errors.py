"""
Error taxonomy for table automation.

Every error raised by the automation core derives from AutomationError and
carries a stable `kind` plus a `retryable` flag. The queue uses
classify_error() to decide between backoff-retry and dead-letter.
"""

import asyncio
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class AutomationError(Exception):
    """Base class for all table automation errors."""

    kind = "automation_error"
    retryable = False

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AutomationError):
    """Rejected input. Never produces a queued job."""

    kind = "validation_error"

    def __init__(self, message: str, violations: Optional[list[dict]] = None):
        self.violations = violations or []
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["violations"] = self.violations
        return payload


class NotFoundError(AutomationError):
    """Unknown league, season, snapshot or job id."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} '{entity_id}' not found",
            details={"entity": entity, "id": entity_id},
        )


class ConcurrencyTimeoutError(AutomationError):
    """A job exceeded its wall-clock budget."""

    kind = "timeout"
    retryable = True

    def __init__(self, job_id: str, timeout_seconds: float):
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Job {job_id} timed out after {timeout_seconds}s",
            details={"job_id": job_id, "timeout_seconds": timeout_seconds},
        )


class TransientComputationError(AutomationError):
    """Repository read/write failure during a calculation."""

    kind = "transient"
    retryable = True


class ConfigurationError(AutomationError):
    """Invalid settings."""

    kind = "configuration_error"

    def __init__(self, message: str, violations: Optional[list[dict]] = None):
        self.violations = violations or []
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["violations"] = self.violations
        return payload


class TableIntegrityError(AutomationError):
    """A computed table violates played/goal-difference invariants."""

    kind = "integrity_error"


class SnapshotCorruptedError(AutomationError):
    """Snapshot file is unreadable or fails checksum validation."""

    kind = "snapshot_corrupted"


class SnapshotStorageError(AutomationError):
    """Snapshot directory could not be read or written."""

    kind = "snapshot_storage_error"


# Driver/network level failures worth a retry
_RETRYABLE_TYPES = (
    asyncio.TimeoutError,
    ConnectionError,
    OperationalError,
    InterfaceError,
)


def classify_error(exc: BaseException) -> AutomationError:
    """
    Wrap an arbitrary exception into the automation taxonomy.

    AutomationError instances are returned unchanged. Driver, connection and
    timeout failures become TransientComputationError; anything else becomes a
    non-retryable AutomationError with the original message preserved.
    """
    if isinstance(exc, AutomationError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, _RETRYABLE_TYPES):
        return TransientComputationError(message, details={"type": exc.__class__.__name__})
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientComputationError(message, details={"type": exc.__class__.__name__})
    error = AutomationError(message, details={"type": exc.__class__.__name__})
    error.kind = "unexpected_error"
    return error
