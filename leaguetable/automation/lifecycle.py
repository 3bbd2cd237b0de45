"""
Lifecycle Trigger: glue between the platform's match hooks and the queue.

On each event: validate -> Trigger Condition -> enqueue. Ordinary changes
enqueue with NORMAL priority, deletions with HIGH. Hooks never raise: the
match write that fired them already succeeded, so a scheduling failure is
logged and reported in the HookResult instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from leaguetable.automation.trigger import EventType, MatchEvent, TriggerCondition
from leaguetable.queue import (
    TRIGGER_MATCH_CREATED,
    TRIGGER_MATCH_DELETED,
    TRIGGER_MATCH_UPDATED,
    Priority,
)
from leaguetable.telemetry import record_hook_event
from leaguetable.validation import validate_match

logger = logging.getLogger(__name__)

_TRIGGER_REASONS = {
    EventType.AFTER_CREATE: TRIGGER_MATCH_CREATED,
    EventType.AFTER_UPDATE: TRIGGER_MATCH_UPDATED,
    EventType.AFTER_DELETE: TRIGGER_MATCH_DELETED,
}


@dataclass
class HookResult:
    """What a hook invocation did."""

    triggered: bool
    job_ids: list[str] = field(default_factory=list)
    reason: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "triggered": self.triggered,
            "job_ids": self.job_ids,
            "reason": self.reason,
            "error": self.error,
        }


class MatchLifecycle:
    """Single implementation of the afterCreate/afterUpdate/afterDelete hooks."""

    def __init__(self, queue, enabled: bool = True, condition: Optional[TriggerCondition] = None):
        self.queue = queue
        self.enabled = enabled
        self.condition = condition or TriggerCondition()

    def after_create(self, record: Mapping[str, Any]) -> HookResult:
        return self.handle(MatchEvent(EventType.AFTER_CREATE, record))

    def after_update(self, record: Mapping[str, Any], previous: Optional[Mapping[str, Any]] = None) -> HookResult:
        return self.handle(MatchEvent(EventType.AFTER_UPDATE, record, previous))

    def after_delete(self, record: Mapping[str, Any]) -> HookResult:
        return self.handle(MatchEvent(EventType.AFTER_DELETE, record))

    def handle(self, event: MatchEvent) -> HookResult:
        result = self._decide_and_enqueue(event)
        decision = "error" if result.error else "triggered" if result.triggered else "skipped"
        record_hook_event(event.event_type.value, decision)
        return result

    def _decide_and_enqueue(self, event: MatchEvent) -> HookResult:
        match_id = event.record.get("id")
        if not self.enabled:
            return HookResult(triggered=False, reason="automation disabled")

        # The write already happened; status transitions are checked before it
        # (ensure_valid_match), here only the stored record itself.
        validation = validate_match(event.record)
        if not validation.is_valid:
            codes = ", ".join(sorted(validation.error_codes))
            logger.warning(f"[LIFECYCLE] {event.event_type.value} match={match_id} rejected: {codes}")
            return HookResult(triggered=False, reason=f"validation failed: {codes}")

        if not self.condition.should_trigger(event):
            logger.debug(f"[LIFECYCLE] {event.event_type.value} match={match_id}: no table-relevant change")
            return HookResult(triggered=False, reason="no relevant change")

        priority = Priority.HIGH if event.event_type == EventType.AFTER_DELETE else Priority.NORMAL
        trigger = _TRIGGER_REASONS[event.event_type]
        job_ids = []
        try:
            for league_id, season_id in self.condition.affected_tables(event):
                job_ids.append(self.queue.enqueue(
                    league_id,
                    season_id,
                    priority=priority,
                    trigger=trigger,
                    description=f"{event.event_type.value} match {match_id}",
                ))
        except Exception as e:
            logger.error(
                f"[LIFECYCLE] Failed to enqueue recalculation for match={match_id}: {e}",
                exc_info=True,
            )
            return HookResult(triggered=bool(job_ids), job_ids=job_ids, reason="enqueue failed", error=str(e))

        logger.info(
            f"[LIFECYCLE] {event.event_type.value} match={match_id} -> "
            f"{len(job_ids)} job(s) priority={priority.name}"
        )
        return HookResult(triggered=True, job_ids=job_ids, reason="table-relevant change")
