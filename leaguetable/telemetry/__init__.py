"""Prometheus metrics for table automation."""

from leaguetable.telemetry.metrics import (
    get_metrics_text,
    record_hook_event,
    record_job_attempt,
    record_job_enqueued,
    record_snapshot_operation,
    set_queue_gauges,
)

__all__ = [
    "get_metrics_text",
    "record_hook_event",
    "record_job_attempt",
    "record_job_enqueued",
    "record_snapshot_operation",
    "set_queue_gauges",
]
