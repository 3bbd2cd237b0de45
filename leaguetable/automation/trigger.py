"""
Trigger condition: decides whether a match change requires a table recompute.

Pure logic over the record(s) carried by a lifecycle event. Validation
failures always suppress triggering.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from leaguetable.models import MatchStatus
from leaguetable.validation import validate_match

# Fields whose change can move the table
RELEVANT_FIELDS = (
    "status",
    "home_goals",
    "away_goals",
    "home_side_id",
    "away_side_id",
    "league_id",
    "season_id",
)


class EventType(str, Enum):
    AFTER_CREATE = "afterCreate"
    AFTER_UPDATE = "afterUpdate"
    AFTER_DELETE = "afterDelete"


@dataclass(frozen=True)
class MatchEvent:
    """A platform hook invocation for one match."""

    event_type: EventType
    record: Mapping[str, Any]
    previous: Optional[Mapping[str, Any]] = None


def _value(record: Optional[Mapping[str, Any]], key: str) -> Any:
    if record is None:
        return None
    value = record.get(key)
    return value.value if isinstance(value, Enum) else value


def is_completed_with_scores(record: Optional[Mapping[str, Any]]) -> bool:
    return (
        _value(record, "status") == MatchStatus.COMPLETED.value
        and _value(record, "home_goals") is not None
        and _value(record, "away_goals") is not None
    )


def get_changed_fields(previous: Mapping[str, Any], record: Mapping[str, Any]) -> set[str]:
    """Relevant fields whose value differs between the two records."""
    return {
        name for name in RELEVANT_FIELDS
        if _value(previous, name) != _value(record, name)
    }


class TriggerCondition:
    """Change-detection rules for lifecycle events."""

    def should_trigger(self, event: MatchEvent) -> bool:
        record = event.record

        if not validate_match(record).is_valid:
            return False

        if event.event_type != EventType.AFTER_UPDATE or event.previous is None:
            return is_completed_with_scores(record)

        if not get_changed_fields(event.previous, record):
            return False

        was_completed = _value(event.previous, "status") == MatchStatus.COMPLETED.value
        return is_completed_with_scores(record) or was_completed

    def affected_tables(self, event: MatchEvent) -> list[tuple[int, int]]:
        """
        (league_id, season_id) keys whose table must be recomputed.

        A completed match moved to another league or season changes both
        tables, so the previous key is included when it differs.
        """
        keys = [(_value(event.record, "league_id"), _value(event.record, "season_id"))]
        if event.event_type == EventType.AFTER_UPDATE and event.previous is not None:
            previous_key = (_value(event.previous, "league_id"), _value(event.previous, "season_id"))
            if (
                previous_key not in keys
                and None not in previous_key
                and is_completed_with_scores(event.previous)
            ):
                keys.append(previous_key)
        return keys
