"""
Health aggregation for table automation.

Combines queue, database and snapshot-storage checks into one verdict
(healthy / degraded / unhealthy). The worst component wins. Never raises.
"""

import logging
import time
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from leaguetable.database import get_pool_status

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

_SEVERITY = {HEALTHY: 0, DEGRADED: 1, UNHEALTHY: 2}


class ComponentCheck(BaseModel):
    name: str
    status: str
    message: str = ""
    details: dict = Field(default_factory=dict)


class HealthReport(BaseModel):
    status: str
    component_checks: list[ComponentCheck]
    checked_at: datetime


def worst_status(statuses) -> str:
    return max(statuses, key=lambda s: _SEVERITY.get(s, 2), default=HEALTHY)


def check_queue(queue) -> ComponentCheck:
    try:
        health = queue.health()
    except Exception as e:
        logger.error(f"[HEALTH] Queue health check failed: {e}", exc_info=True)
        return ComponentCheck(name="queue", status=UNHEALTHY, message=f"check failed: {e}")
    return ComponentCheck(
        name="queue",
        status=health.status,
        message="; ".join(health.issues) or "ok",
        details={
            "pending_jobs": health.queue.pending_jobs if health.queue else 0,
            "processing_jobs": health.queue.processing_jobs if health.queue else 0,
            "failed_jobs": health.queue.failed_jobs if health.queue else 0,
            "paused": health.queue.paused if health.queue else False,
            "error_rate": health.metrics.get("error_rate", 0.0),
        },
    )


async def check_database(repository, db_engine=None) -> ComponentCheck:
    start = time.monotonic()
    try:
        await repository.ping()
    except Exception as e:
        logger.error(f"[HEALTH] Database ping failed: {e}")
        return ComponentCheck(name="database", status=UNHEALTHY, message=f"ping failed: {e}")
    details = {"latency_ms": round((time.monotonic() - start) * 1000, 1)}
    if db_engine is not None:
        details["pool"] = get_pool_status(db_engine)
    return ComponentCheck(name="database", status=HEALTHY, message="ok", details=details)


def check_snapshot_storage(snapshots) -> ComponentCheck:
    try:
        writable = snapshots.storage_available()
    except Exception as e:
        logger.error(f"[HEALTH] Snapshot storage check failed: {e}")
        writable = False
    directory = str(snapshots.storage.directory)
    if not writable:
        return ComponentCheck(
            name="snapshot_storage",
            status=DEGRADED,
            message=f"snapshot directory not writable: {directory}",
            details={"directory": directory},
        )
    return ComponentCheck(name="snapshot_storage", status=HEALTHY, message="ok", details={"directory": directory})


async def check_health(queue, repository=None, snapshots=None, db_engine=None) -> HealthReport:
    """Run every available component check and aggregate them."""
    checks = [check_queue(queue)]
    if repository is not None:
        checks.append(await check_database(repository, db_engine))
    if snapshots is not None:
        checks.append(check_snapshot_storage(snapshots))
    return HealthReport(
        status=worst_status(check.status for check in checks),
        component_checks=checks,
        checked_at=datetime.now(timezone.utc),
    )
