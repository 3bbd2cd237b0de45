"""Priority queue and worker pool for table calculation jobs."""

from leaguetable.queue.jobs import (
    TRIGGER_MANUAL,
    TRIGGER_MATCH_CREATED,
    TRIGGER_MATCH_DELETED,
    TRIGGER_MATCH_UPDATED,
    CalculationJob,
    JobError,
    JobStatus,
    Priority,
)
from leaguetable.queue.manager import (
    QueueHealth,
    QueueManager,
    QueueStatus,
    compute_backoff_delay,
)

__all__ = [
    "TRIGGER_MANUAL",
    "TRIGGER_MATCH_CREATED",
    "TRIGGER_MATCH_DELETED",
    "TRIGGER_MATCH_UPDATED",
    "CalculationJob",
    "JobError",
    "JobStatus",
    "Priority",
    "QueueHealth",
    "QueueManager",
    "QueueStatus",
    "compute_backoff_delay",
]
