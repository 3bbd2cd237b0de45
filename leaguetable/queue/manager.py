"""
Queue Manager for table calculation jobs.

Design:
- enqueue() is synchronous: it only stores a job and wakes the workers, so a
  write path that triggers it never waits for a calculation
- a bounded pool of asyncio worker tasks drains the queue by priority
  (HIGH > NORMAL > LOW), FIFO within a tier
- a per-(league, season) lock keeps at most one job per table processing;
  conflicting jobs stay pending until the lock is released
- every attempt is bounded by QUEUE_JOB_TIMEOUT_SECONDS
- retryable failures go back to pending with exponential backoff
  (next_retry_at); exhausted or non-retryable failures are parked in the
  dead-letter list with the last error preserved verbatim

Usage:
    queue = QueueManager(engine, settings)
    await queue.start()
    job_id = queue.enqueue(league_id, season_id, Priority.HIGH, "MANUAL")
    ...
    await queue.stop()
"""

import asyncio
import itertools
import logging
import random
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from leaguetable.config import AutomationSettings, get_settings
from leaguetable.errors import (
    AutomationError,
    ConcurrencyTimeoutError,
    NotFoundError,
    ValidationError,
    classify_error,
)
from leaguetable.queue.jobs import (
    TRIGGER_MANUAL,
    CalculationJob,
    JobError,
    JobStatus,
    Priority,
)
from leaguetable.telemetry import record_job_attempt, record_job_enqueued, set_queue_gauges

logger = logging.getLogger(__name__)

# Lock holder id used by exclusive() callers outside the worker pool
EXTERNAL_HOLDER = "external"

# Number of finished attempts considered for the recent error rate
RECENT_OUTCOMES_WINDOW = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def compute_backoff_delay(
    retry_count: int,
    base_seconds: float,
    max_seconds: float,
    jitter: bool = True,
) -> float:
    """Exponential backoff: base * 2^retry_count, capped, plus up to 10% jitter."""
    delay = min(base_seconds * (2 ** retry_count), max_seconds)
    if jitter and delay > 0:
        delay += random.uniform(0, 0.1 * delay)
    return delay


@dataclass
class QueueStatus:
    """Point-in-time view of the queue."""

    running: bool
    paused: bool
    total_jobs: int
    pending_jobs: int
    processing_jobs: int
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    average_duration_ms: float
    last_processed_at: Optional[datetime]
    current_jobs: list[dict]
    active_locks: int
    totals: dict

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "paused": self.paused,
            "total_jobs": self.total_jobs,
            "pending_jobs": self.pending_jobs,
            "processing_jobs": self.processing_jobs,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
            "cancelled_jobs": self.cancelled_jobs,
            "average_duration_ms": self.average_duration_ms,
            "last_processed_at": self.last_processed_at.isoformat() if self.last_processed_at else None,
            "current_jobs": self.current_jobs,
            "active_locks": self.active_locks,
            "totals": self.totals,
        }


@dataclass
class QueueHealth:
    """Health verdict: healthy, degraded or unhealthy."""

    status: str
    issues: list[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=_utc_now)
    queue: Optional[QueueStatus] = None
    metrics: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "issues": self.issues,
            "checked_at": self.checked_at.isoformat(),
            "queue": self.queue.to_dict() if self.queue else None,
            "metrics": self.metrics,
        }


class QueueManager:
    """
    Schedules, serializes and executes table calculation jobs.

    The engine only needs an async calculate(league_id, season_id) returning
    an object with an `entries_updated` attribute.
    """

    def __init__(self, engine, settings: Optional[AutomationSettings] = None):
        self.engine = engine
        self.settings = settings or get_settings()

        self._jobs: dict[str, CalculationJob] = {}
        self._dead_letter: dict[str, CalculationJob] = {}
        self._locks: dict[tuple[int, int], str] = {}
        self._reserved: dict[tuple[int, int], int] = {}
        self._sequence = itertools.count(1)

        self._wakeup = asyncio.Event()
        self._lock_released = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._running = False
        self._paused = False

        self._totals = {
            "enqueued": 0,
            "completed": 0,
            "failed": 0,
            "retried": 0,
            "timeouts": 0,
            "cancelled": 0,
        }
        self._total_duration_ms = 0
        self._recent_outcomes: deque = deque(maxlen=RECENT_OUTCOMES_WINDOW)
        self._last_processed_at: Optional[datetime] = None
        self._last_activity_at: datetime = _utc_now()
        self._last_cleanup = time.monotonic()

    # ── lifecycle ────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def start(self) -> None:
        """Start the worker pool."""
        if self._running:
            return
        self._running = True
        self._last_activity_at = _utc_now()
        self._workers = [
            asyncio.create_task(self._worker_loop(n), name=f"table-queue-worker-{n}")
            for n in range(self.settings.QUEUE_CONCURRENCY)
        ]
        self._wakeup.set()
        logger.info(f"[QUEUE] Started {len(self._workers)} workers")

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """
        Stop the workers. In-flight jobs get drain_timeout seconds to finish;
        jobs still running after that are cancelled and put back to pending.
        """
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        if self._workers:
            done, still_running = await asyncio.wait(self._workers, timeout=drain_timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning(f"[QUEUE] {len(still_running)} workers did not finish in {drain_timeout}s, cancelled")
        self._workers = []
        self._publish_gauges()
        logger.info(f"[QUEUE] Stopped (pending={self._count(JobStatus.PENDING)})")

    def pause(self) -> None:
        """Stop new jobs from entering processing; in-flight jobs finish."""
        self._paused = True
        self._publish_gauges()
        logger.info("[QUEUE] Paused")

    def resume(self) -> None:
        self._paused = False
        self._last_activity_at = _utc_now()
        self._publish_gauges()
        self._wakeup.set()
        logger.info("[QUEUE] Resumed")

    # ── enqueue ──────────────────────────────────────────────────────────────

    def enqueue(
        self,
        league_id: int,
        season_id: int,
        priority=Priority.NORMAL,
        trigger: str = TRIGGER_MANUAL,
        description: Optional[str] = None,
    ) -> str:
        """
        Store a calculation job and wake the workers.

        Returns:
            Job id. With QUEUE_COALESCE_PENDING, the id of an already pending
            job for the same table (its priority raised if needed).

        Raises:
            ValidationError: Invalid ids or priority.
        """
        violations = []
        for name, value in (("league_id", league_id), ("season_id", season_id)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                violations.append({
                    "field": name,
                    "code": "INVALID_ID",
                    "message": f"{name} must be a positive integer",
                })
        try:
            priority = Priority.parse(priority)
        except (ValueError, TypeError):
            violations.append({
                "field": "priority",
                "code": "INVALID_PRIORITY",
                "message": f"priority must be one of {[p.name for p in Priority]}",
            })
        if violations:
            raise ValidationError("Invalid calculation job request", violations=violations)

        if self.settings.QUEUE_COALESCE_PENDING:
            existing = self._find_pending(league_id, season_id)
            if existing is not None:
                if priority > existing.priority:
                    existing.priority = priority
                logger.info(
                    f"[QUEUE] Coalesced enqueue for league={league_id} season={season_id} "
                    f"into {existing.id}"
                )
                return existing.id

        job = CalculationJob(
            league_id=league_id,
            season_id=season_id,
            priority=priority,
            trigger=trigger,
            description=description,
            max_retries=self.settings.QUEUE_MAX_RETRIES,
            sequence=next(self._sequence),
        )
        self._jobs[job.id] = job
        self._totals["enqueued"] += 1
        record_job_enqueued(priority.name, trigger)
        self._publish_gauges()
        self._wakeup.set()

        logger.info(
            f"[QUEUE] Enqueued {job.id} league={league_id} season={season_id} "
            f"priority={priority.name} trigger={trigger}"
        )
        return job.id

    def _find_pending(self, league_id: int, season_id: int) -> Optional[CalculationJob]:
        for job in self._jobs.values():
            if job.status == JobStatus.PENDING and job.key == (league_id, season_id):
                return job
        return None

    # ── worker pool ──────────────────────────────────────────────────────────

    async def _worker_loop(self, worker_id: int) -> None:
        while self._running:
            self._wakeup.clear()
            job = self._claim_next_job()
            if job is None:
                await self._wait_for_work()
                continue
            await self._run_job(job, worker_id)

    def _claim_next_job(self) -> Optional[CalculationJob]:
        """
        Pick the next runnable job and take its table lock.

        Runs without awaiting, so selection and claim are atomic with respect
        to the other workers.
        """
        if self._paused or not self._running:
            return None
        now = _utc_now()
        candidates = [
            job for job in self._jobs.values()
            if job.is_ready(now) and job.key not in self._locks and job.key not in self._reserved
        ]
        if not candidates:
            return None
        job = min(candidates, key=lambda j: (-j.priority, j.sequence))
        self._locks[job.key] = job.id
        job.status = JobStatus.PROCESSING
        job.started_at = now
        job.completed_at = None
        job.next_retry_at = None
        self._last_activity_at = now
        self._publish_gauges()
        return job

    def _next_wake_delay(self) -> float:
        """
        Seconds until the earliest future retry, capped by the poll interval.

        Retries already due are not counted: they are only unclaimable while
        paused or while their table is locked, and resume() and lock release
        both set the wakeup event.
        """
        delay = self.settings.QUEUE_POLL_INTERVAL_SECONDS
        if self._paused:
            return delay
        now = _utc_now()
        for job in self._jobs.values():
            if job.status == JobStatus.PENDING and job.next_retry_at is not None and job.next_retry_at > now:
                delay = min(delay, (job.next_retry_at - now).total_seconds())
        return delay

    async def _wait_for_work(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_wake_delay())
        except asyncio.TimeoutError:
            pass

    async def _run_job(self, job: CalculationJob, worker_id: int) -> None:
        timeout = self.settings.QUEUE_JOB_TIMEOUT_SECONDS
        started = time.monotonic()
        logger.info(
            f"[QUEUE] worker={worker_id} processing {job.id} league={job.league_id} "
            f"season={job.season_id} attempt={job.retry_count + 1}"
        )
        try:
            result = await asyncio.wait_for(
                self.engine.calculate(job.league_id, job.season_id),
                timeout=timeout,
            )
        except asyncio.CancelledError:
            # Worker shutdown: the job was not executed to completion, run it again later
            job.status = JobStatus.PENDING
            job.started_at = None
            logger.warning(f"[QUEUE] {job.id} interrupted by shutdown, back to pending")
            raise
        except asyncio.TimeoutError:
            self._handle_failure(job, ConcurrencyTimeoutError(job.id, timeout), time.monotonic() - started)
        except Exception as e:
            self._handle_failure(job, classify_error(e), time.monotonic() - started)
        else:
            self._handle_success(job, result, time.monotonic() - started)
        finally:
            self._release_lock(job)
            self._maybe_cleanup()
            self._publish_gauges()
            self._wakeup.set()

    def _handle_success(self, job: CalculationJob, result, elapsed: float) -> None:
        now = _utc_now()
        job.status = JobStatus.COMPLETED
        job.completed_at = now
        job.error = None
        job.entries_updated = getattr(result, "entries_updated", 0) or 0

        self._totals["completed"] += 1
        self._total_duration_ms += job.duration_ms or 0
        self._recent_outcomes.append(True)
        self._last_processed_at = now
        self._last_activity_at = now
        record_job_attempt("completed", elapsed)

        logger.info(
            f"[QUEUE] Completed {job.id} league={job.league_id} season={job.season_id} "
            f"in {job.duration_ms}ms (retries={job.retry_count})"
        )

    def _handle_failure(self, job: CalculationJob, error: AutomationError, elapsed: float) -> None:
        now = _utc_now()
        is_timeout = isinstance(error, ConcurrencyTimeoutError)
        job.error = error.message
        job.error_history.append(JobError(
            message=error.message,
            kind=error.kind,
            retry_count=job.retry_count,
            retryable=error.retryable,
            is_timeout=is_timeout,
        ))
        if is_timeout:
            job.timeout_count += 1
            self._totals["timeouts"] += 1
        self._last_activity_at = now

        if error.retryable and job.retry_count < job.max_retries:
            delay = compute_backoff_delay(
                job.retry_count,
                self.settings.QUEUE_BACKOFF_BASE_SECONDS,
                self.settings.QUEUE_BACKOFF_MAX_SECONDS,
                jitter=self.settings.QUEUE_BACKOFF_JITTER,
            )
            job.retry_count += 1
            job.status = JobStatus.PENDING
            job.started_at = None
            job.next_retry_at = now + timedelta(seconds=delay)
            self._totals["retried"] += 1
            record_job_attempt("retry", elapsed, error.kind)
            logger.warning(
                f"[QUEUE] {job.id} failed ({error.kind}): {error.message}. "
                f"Retry {job.retry_count}/{job.max_retries} in {delay:.2f}s"
            )
            return

        job.status = JobStatus.FAILED
        job.completed_at = now
        self._totals["failed"] += 1
        self._recent_outcomes.append(False)
        self._last_processed_at = now
        self._move_to_dead_letter(job)
        record_job_attempt("dead_letter", elapsed, error.kind)
        logger.error(
            f"[QUEUE] {job.id} league={job.league_id} season={job.season_id} moved to dead-letter "
            f"after {job.retry_count} retries ({error.kind}): {error.message}"
        )

    def _release_lock(self, job: CalculationJob) -> None:
        if self._locks.get(job.key) == job.id:
            del self._locks[job.key]
            self._lock_released.set()

    def _move_to_dead_letter(self, job: CalculationJob) -> None:
        self._jobs.pop(job.id, None)
        self._dead_letter[job.id] = job
        overflow = len(self._dead_letter) - self.settings.QUEUE_MAX_FAILED_JOBS
        if overflow > 0:
            for old_id in list(self._dead_letter)[:overflow]:
                evicted = self._dead_letter.pop(old_id)
                logger.warning(
                    f"[QUEUE] Dead-letter full, evicted {evicted.id} "
                    f"(league={evicted.league_id} season={evicted.season_id}, error={evicted.error})"
                )

    def _maybe_cleanup(self) -> None:
        if time.monotonic() - self._last_cleanup < self.settings.QUEUE_CLEANUP_INTERVAL_SECONDS:
            return
        self.cleanup_finished_jobs()

    def cleanup_finished_jobs(self) -> int:
        """Drop the oldest completed/cancelled jobs beyond QUEUE_MAX_COMPLETED_JOBS."""
        self._last_cleanup = time.monotonic()
        finished = sorted(
            (job for job in self._jobs.values() if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED)),
            key=lambda j: j.completed_at or j.created_at,
            reverse=True,
        )
        removed = 0
        for job in finished[self.settings.QUEUE_MAX_COMPLETED_JOBS:]:
            del self._jobs[job.id]
            removed += 1
        if removed:
            logger.debug(f"[QUEUE] Cleaned up {removed} finished jobs")
        return removed

    # ── exclusive access for other table writers ─────────────────────────────

    @asynccontextmanager
    async def exclusive(self, league_id: int, season_id: int, timeout: Optional[float] = None):
        """
        Hold the table lock of (league_id, season_id) outside the worker pool.

        Used by snapshot restore so it never interleaves with a recomputation
        of the same table. While a caller waits, the key is reserved: workers
        finish the job holding it but claim no new job for that table.

        Raises:
            ConcurrencyTimeoutError: Lock not obtained within timeout seconds.
        """
        key = (league_id, season_id)
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        self._reserved[key] = self._reserved.get(key, 0) + 1
        try:
            while key in self._locks:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    raise ConcurrencyTimeoutError(f"lock:{league_id}-{season_id}", timeout)
                self._lock_released.clear()
                try:
                    await asyncio.wait_for(self._lock_released.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass
            self._locks[key] = EXTERNAL_HOLDER
        finally:
            self._reserved[key] -= 1
            if not self._reserved[key]:
                del self._reserved[key]
            if key not in self._locks:
                self._wakeup.set()

        try:
            yield
        finally:
            if self._locks.get(key) == EXTERNAL_HOLDER:
                del self._locks[key]
            self._lock_released.set()
            self._wakeup.set()

    def is_locked(self, league_id: int, season_id: int) -> bool:
        return (league_id, season_id) in self._locks

    # ── queries ──────────────────────────────────────────────────────────────

    def _count(self, status: JobStatus) -> int:
        return sum(1 for job in self._jobs.values() if job.status == status)

    def get_job(self, job_id: str) -> CalculationJob:
        job = self._jobs.get(job_id) or self._dead_letter.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def status(self) -> QueueStatus:
        completed = self._totals["completed"]
        return QueueStatus(
            running=self._running,
            paused=self._paused,
            total_jobs=len(self._jobs) + len(self._dead_letter),
            pending_jobs=self._count(JobStatus.PENDING),
            processing_jobs=self._count(JobStatus.PROCESSING),
            completed_jobs=self._count(JobStatus.COMPLETED),
            failed_jobs=len(self._dead_letter),
            cancelled_jobs=self._count(JobStatus.CANCELLED),
            average_duration_ms=round(self._total_duration_ms / completed, 1) if completed else 0.0,
            last_processed_at=self._last_processed_at,
            current_jobs=[
                job.to_dict() for job in self._jobs.values() if job.status == JobStatus.PROCESSING
            ],
            active_locks=len(self._locks),
            totals=dict(self._totals),
        )

    def metrics(self) -> dict:
        """Throughput and rate telemetry (rates in percent)."""
        totals = self._totals
        finished = totals["completed"] + totals["failed"]
        attempts = finished + totals["retried"]
        recent = len(self._recent_outcomes)
        recent_failures = sum(1 for ok in self._recent_outcomes if not ok)
        return {
            "total_processed": finished,
            "success_rate": round(totals["completed"] / finished * 100, 1) if finished else 0.0,
            "error_rate": round(recent_failures / recent * 100, 1) if recent else 0.0,
            "retry_rate": round(totals["retried"] / attempts * 100, 1) if attempts else 0.0,
            "timeout_rate": round(totals["timeouts"] / attempts * 100, 1) if attempts else 0.0,
            "average_duration_ms": round(self._total_duration_ms / totals["completed"], 1)
            if totals["completed"] else 0.0,
            "dead_letter_count": len(self._dead_letter),
        }

    def history(self, league_id: int, limit: int = 50) -> list[dict]:
        """Finished jobs of a league (dead-lettered included), newest first."""
        finished = [
            job for job in itertools.chain(self._jobs.values(), self._dead_letter.values())
            if job.league_id == league_id and job.status in (JobStatus.COMPLETED, JobStatus.FAILED)
        ]
        finished.sort(key=lambda j: j.completed_at or j.started_at or j.created_at, reverse=True)
        return [job.to_dict() for job in finished[:max(0, limit)]]

    def health(self) -> QueueHealth:
        """Aggregate queue state into healthy / degraded / unhealthy; never raises."""
        settings = self.settings
        status = self.status()
        metrics = self.metrics()
        issues: list[str] = []
        degraded = False
        unhealthy = False

        if not self._running and status.pending_jobs:
            degraded = True
            issues.append(f"Queue not running with {status.pending_jobs} pending jobs")
        if self._paused:
            degraded = True
            issues.append("Queue is paused")
        if status.pending_jobs > settings.HEALTH_MAX_PENDING_JOBS:
            degraded = True
            issues.append(f"High pending job count: {status.pending_jobs}")
        if status.failed_jobs > settings.HEALTH_MAX_FAILED_JOBS:
            degraded = True
            issues.append(f"High failed job count: {status.failed_jobs}")
        if metrics["error_rate"] > settings.HEALTH_ERROR_RATE_UNHEALTHY:
            unhealthy = True
            issues.append(f"High error rate: {metrics['error_rate']:.1f}%")

        now = _utc_now()
        ready = [job for job in self._jobs.values() if job.is_ready(now)]
        idle_seconds = (now - self._last_activity_at).total_seconds()
        if ready and self._running and not self._paused and idle_seconds > settings.HEALTH_STUCK_SECONDS:
            unhealthy = True
            issues.append(f"Queue appears stuck: no job started or finished in {idle_seconds:.0f}s")

        verdict = "unhealthy" if unhealthy else "degraded" if degraded else "healthy"
        return QueueHealth(status=verdict, issues=issues, checked_at=now, queue=status, metrics=metrics)

    # ── dead-letter and maintenance ──────────────────────────────────────────

    def dead_letter_jobs(self) -> list[CalculationJob]:
        return list(self._dead_letter.values())

    def reprocess_dead_letter_job(self, job_id: str) -> str:
        """Move a dead-lettered job back to the queue with fresh retry counters."""
        job = self._dead_letter.pop(job_id, None)
        if job is None:
            raise NotFoundError("dead-letter job", job_id)
        job.status = JobStatus.PENDING
        job.retry_count = 0
        job.timeout_count = 0
        job.error = None
        job.error_history = []
        job.next_retry_at = None
        job.started_at = None
        job.completed_at = None
        job.sequence = next(self._sequence)
        self._jobs[job.id] = job
        self._publish_gauges()
        self._wakeup.set()
        logger.info(f"[QUEUE] Reprocessing dead-letter job {job.id}")
        return job.id

    def clear_dead_letter(self) -> int:
        count = len(self._dead_letter)
        self._dead_letter.clear()
        self._publish_gauges()
        return count

    def clear_queue(self) -> int:
        """Cancel every pending job; processing jobs are left alone."""
        now = _utc_now()
        cancelled = 0
        for job in self._jobs.values():
            if job.status == JobStatus.PENDING:
                job.status = JobStatus.CANCELLED
                job.completed_at = now
                cancelled += 1
        self._totals["cancelled"] += cancelled
        self._publish_gauges()
        if cancelled:
            logger.info(f"[QUEUE] Cancelled {cancelled} pending jobs")
        return cancelled

    async def wait_idle(self, timeout: Optional[float] = None, poll_interval: float = 0.01) -> bool:
        """
        Wait until no job is pending or processing.

        Returns:
            True if the queue went idle, False on timeout.
        """
        waited = 0.0
        while self._count(JobStatus.PENDING) or self._count(JobStatus.PROCESSING):
            if timeout is not None and waited >= timeout:
                return False
            await asyncio.sleep(poll_interval)
            waited += poll_interval
        return True

    def _publish_gauges(self) -> None:
        set_queue_gauges(
            pending=self._count(JobStatus.PENDING),
            processing=self._count(JobStatus.PROCESSING),
            dead_letter=len(self._dead_letter),
            paused=self._paused,
        )
