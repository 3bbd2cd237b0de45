"""
Prometheus metrics for table automation.

Labels are restricted to low-cardinality values only:
- priority:  "LOW", "NORMAL", "HIGH"
- outcome:   "completed", "retry", "dead_letter", "cancelled"
- kind:      error kind from leaguetable.errors (max ~10)
- trigger:   "MATCH_CREATED", "MATCH_UPDATED", "MATCH_DELETED", "MANUAL"
- operation: "create", "restore", "delete"

League/season/job/snapshot ids are NEVER labels; use logs for those.
All record_* helpers are best-effort and never raise.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# =============================================================================
# QUEUE METRICS
# =============================================================================

table_jobs_enqueued_total = Counter(
    "table_jobs_enqueued_total",
    "Calculation jobs enqueued",
    ["priority", "trigger"],
)

table_jobs_finished_total = Counter(
    "table_jobs_finished_total",
    "Calculation job attempts by outcome",
    ["outcome"],
)

table_job_errors_total = Counter(
    "table_job_errors_total",
    "Failed calculation attempts by error kind",
    ["kind"],
)

table_job_duration_seconds = Histogram(
    "table_job_duration_seconds",
    "Wall-clock duration of calculation attempts",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

table_queue_jobs = Gauge(
    "table_queue_jobs",
    "Jobs currently in the queue by status",
    ["status"],
)

table_queue_paused = Gauge(
    "table_queue_paused",
    "1 if the queue is paused",
)

# =============================================================================
# LIFECYCLE / SNAPSHOT METRICS
# =============================================================================

table_hook_events_total = Counter(
    "table_hook_events_total",
    "Match lifecycle events by decision",
    ["event_type", "decision"],
)

table_snapshot_operations_total = Counter(
    "table_snapshot_operations_total",
    "Snapshot operations by result",
    ["operation", "result"],
)


def record_job_enqueued(priority: str, trigger: str) -> None:
    try:
        table_jobs_enqueued_total.labels(priority=priority, trigger=trigger).inc()
    except Exception as e:
        logger.warning(f"Failed to record enqueue metric: {e}")


def record_job_attempt(outcome: str, duration_seconds: float, error_kind: str = "") -> None:
    """Record one finished attempt (success, retry scheduled or dead-lettered)."""
    try:
        table_jobs_finished_total.labels(outcome=outcome).inc()
        table_job_duration_seconds.observe(duration_seconds)
        if error_kind:
            table_job_errors_total.labels(kind=error_kind).inc()
    except Exception as e:
        logger.warning(f"Failed to record job attempt metric: {e}")


def set_queue_gauges(pending: int, processing: int, dead_letter: int, paused: bool) -> None:
    try:
        table_queue_jobs.labels(status="pending").set(pending)
        table_queue_jobs.labels(status="processing").set(processing)
        table_queue_jobs.labels(status="dead_letter").set(dead_letter)
        table_queue_paused.set(1 if paused else 0)
    except Exception as e:
        logger.warning(f"Failed to set queue gauges: {e}")


def record_hook_event(event_type: str, decision: str) -> None:
    try:
        table_hook_events_total.labels(event_type=event_type, decision=decision).inc()
    except Exception as e:
        logger.warning(f"Failed to record hook metric: {e}")


def record_snapshot_operation(operation: str, result: str) -> None:
    try:
        table_snapshot_operations_total.labels(operation=operation, result=result).inc()
    except Exception as e:
        logger.warning(f"Failed to record snapshot metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """Exposition text and content type for a /metrics endpoint."""
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
