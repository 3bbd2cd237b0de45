"""Match lifecycle automation: change detection and hook glue."""

from leaguetable.automation.hooks import MatchHooks, install_match_hooks
from leaguetable.automation.lifecycle import HookResult, MatchLifecycle
from leaguetable.automation.trigger import (
    RELEVANT_FIELDS,
    EventType,
    MatchEvent,
    TriggerCondition,
    get_changed_fields,
    is_completed_with_scores,
)

__all__ = [
    "RELEVANT_FIELDS",
    "EventType",
    "HookResult",
    "MatchEvent",
    "MatchHooks",
    "MatchLifecycle",
    "TriggerCondition",
    "get_changed_fields",
    "install_match_hooks",
    "is_completed_with_scores",
]
