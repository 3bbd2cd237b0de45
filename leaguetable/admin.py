"""
Administrative facade over the queue, snapshots and health.

Every call returns an AdminResponse {success, data, error}; errors are
reported as {kind, message, violations} and never raised to the caller.
Manual recalculations default to HIGH priority.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from leaguetable.errors import AutomationError, classify_error
from leaguetable.health import check_health
from leaguetable.queue import TRIGGER_MANUAL, Priority, QueueManager
from leaguetable.snapshots import SnapshotService
from leaguetable.telemetry import get_metrics_text

logger = logging.getLogger(__name__)


class AdminError(BaseModel):
    kind: str
    message: str
    violations: list[dict] = Field(default_factory=list)


class AdminResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[AdminError] = None

    @classmethod
    def ok(cls, data: Any = None) -> "AdminResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: BaseException) -> "AdminResponse":
        error: AutomationError = classify_error(exc)
        if error is not exc:
            logger.error(f"[ADMIN] Unexpected error: {exc}", exc_info=exc)
        return cls(
            success=False,
            error=AdminError(
                kind=error.kind,
                message=error.message,
                violations=getattr(error, "violations", []),
            ),
        )


class AutomationAdmin:
    """Request/response operations for administrative tooling."""

    def __init__(
        self,
        queue: QueueManager,
        snapshots: SnapshotService,
        repository=None,
        engine=None,
        db_engine=None,
    ):
        self.queue = queue
        self.snapshots = snapshots
        self.repository = repository
        self.engine = engine
        self.db_engine = db_engine

    # ── queue ────────────────────────────────────────────────────────────────

    async def enqueue_recalculation(
        self,
        league_id: int,
        season_id: int,
        priority=Priority.HIGH,
        description: Optional[str] = None,
    ) -> AdminResponse:
        try:
            job_id = self.queue.enqueue(
                league_id,
                season_id,
                priority=priority,
                trigger=TRIGGER_MANUAL,
                description=description or "Manual recalculation",
            )
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok({"job_id": job_id})

    async def preview_table(self, league_id: int, season_id: int) -> AdminResponse:
        """Compute a table without writing it."""
        if self.engine is None:
            return AdminResponse.fail(AutomationError("No calculation engine configured"))
        try:
            result = await self.engine.preview(league_id, season_id)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok({
            "entries": result.entries,
            "matches_counted": result.matches_counted,
            "warnings": result.warnings,
        })

    async def queue_status(self) -> AdminResponse:
        return AdminResponse.ok(self.queue.status().to_dict())

    async def queue_metrics(self) -> AdminResponse:
        return AdminResponse.ok(self.queue.metrics())

    async def prometheus_metrics(self) -> AdminResponse:
        """Prometheus exposition text for the host application's /metrics route."""
        text, content_type = get_metrics_text()
        return AdminResponse.ok({"content_type": content_type, "text": text})

    async def pause_queue(self) -> AdminResponse:
        self.queue.pause()
        return AdminResponse.ok({"paused": True})

    async def resume_queue(self) -> AdminResponse:
        self.queue.resume()
        return AdminResponse.ok({"paused": False})

    async def clear_queue(self) -> AdminResponse:
        return AdminResponse.ok({"cancelled": self.queue.clear_queue()})

    async def job_history(self, league_id: int, limit: int = 50) -> AdminResponse:
        return AdminResponse.ok(self.queue.history(league_id, limit))

    async def get_job(self, job_id: str) -> AdminResponse:
        try:
            job = self.queue.get_job(job_id)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok(job.to_dict(include_errors=True))

    async def dead_letter_jobs(self) -> AdminResponse:
        return AdminResponse.ok([job.to_dict(include_errors=True) for job in self.queue.dead_letter_jobs()])

    async def retry_dead_letter_job(self, job_id: str) -> AdminResponse:
        try:
            job_id = self.queue.reprocess_dead_letter_job(job_id)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok({"job_id": job_id})

    # ── snapshots ────────────────────────────────────────────────────────────

    async def create_snapshot(
        self,
        league_id: int,
        season_id: int,
        description: Optional[str] = None,
    ) -> AdminResponse:
        try:
            snapshot_id = await self.snapshots.create(league_id, season_id, description)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok({"snapshot_id": snapshot_id})

    async def list_snapshots(self, league_id: int, season_id: int) -> AdminResponse:
        try:
            snapshots = await self.snapshots.list(league_id, season_id)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok(snapshots)

    async def restore_snapshot(self, snapshot_id: str) -> AdminResponse:
        try:
            result = await self.snapshots.restore(snapshot_id)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok(result.to_dict())

    async def delete_snapshot(self, snapshot_id: str) -> AdminResponse:
        try:
            await self.snapshots.delete(snapshot_id)
        except Exception as e:
            return AdminResponse.fail(e)
        return AdminResponse.ok({"deleted": snapshot_id})

    # ── health ───────────────────────────────────────────────────────────────

    async def health(self) -> AdminResponse:
        report = await check_health(self.queue, self.repository, self.snapshots, self.db_engine)
        return AdminResponse.ok(report.model_dump(mode="json"))
