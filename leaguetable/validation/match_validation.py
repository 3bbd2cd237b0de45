"""
Validation and sanitization for match records.

validate_match() rejects bad input with field-level issues; sanitize_match()
coerces the same input into range instead. Both accept a plain dict record
(see models.match_to_record) or any object exposing the same attributes.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from leaguetable.errors import ValidationError
from leaguetable.models import MatchStatus

MIN_MATCHDAY = 1
MAX_MATCHDAY = 34
HIGH_SCORE_THRESHOLD = 10
UNUSUAL_DIFFERENCE_THRESHOLD = 5

REQUIRED_FIELDS = ("league_id", "season_id", "home_side_id", "away_side_id", "date")
GOAL_FIELDS = ("home_goals", "away_goals")

VALID_STATUSES = frozenset(status.value for status in MatchStatus)

# Allowed outgoing transitions; same-state is always allowed on top of these
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    MatchStatus.SCHEDULED.value: frozenset({
        MatchStatus.COMPLETED.value,
        MatchStatus.CANCELLED.value,
        MatchStatus.POSTPONED.value,
    }),
    MatchStatus.POSTPONED.value: frozenset({
        MatchStatus.SCHEDULED.value,
        MatchStatus.COMPLETED.value,
        MatchStatus.CANCELLED.value,
    }),
    MatchStatus.CANCELLED.value: frozenset({
        MatchStatus.SCHEDULED.value,
        MatchStatus.POSTPONED.value,
    }),
    MatchStatus.COMPLETED.value: frozenset(),
}


class ValidationErrorCode(str, Enum):
    TEAM_AGAINST_ITSELF = "TEAM_AGAINST_ITSELF"
    NEGATIVE_SCORE = "NEGATIVE_SCORE"
    INVALID_SPIELTAG_RANGE = "INVALID_SPIELTAG_RANGE"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    SCORES_REQUIRED_FOR_COMPLETED = "SCORES_REQUIRED_FOR_COMPLETED"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"


class ValidationWarningCode(str, Enum):
    HIGH_SCORE_VALUE = "HIGH_SCORE_VALUE"
    UNUSUAL_SCORE_DIFFERENCE = "UNUSUAL_SCORE_DIFFERENCE"


@dataclass
class ValidationIssue:
    """One field-level error or warning."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "code": self.code, "message": self.message}


@dataclass
class ValidationResult:
    """Outcome of validating a match record."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> set[str]:
        return {issue.code for issue in self.errors}

    @property
    def warning_codes(self) -> set[str]:
        return {issue.code for issue in self.warnings}

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


def _get(match: Any, key: str) -> Any:
    if isinstance(match, Mapping):
        return match.get(key)
    return getattr(match, key, None)


def _is_integer(value: Any) -> bool:
    """True for ints and integral floats; bools and strings are not goal counts."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value) and value.is_integer()
    return False


def _status_value(status: Any) -> Any:
    return status.value if isinstance(status, MatchStatus) else status


def validate_scores(home_goals: Any, away_goals: Any) -> ValidationResult:
    """Check goal values that are present; warn on implausible results."""
    result = ValidationResult()
    labels = {"home_goals": "Home goals", "away_goals": "Away goals"}

    for name, value in (("home_goals", home_goals), ("away_goals", away_goals)):
        if value is None:
            continue
        if not _is_integer(value):
            result.errors.append(ValidationIssue(
                name, ValidationErrorCode.NEGATIVE_SCORE.value, f"{labels[name]} must be a whole number",
            ))
        elif value < 0:
            result.errors.append(ValidationIssue(
                name, ValidationErrorCode.NEGATIVE_SCORE.value, f"{labels[name]} cannot be negative",
            ))
        elif value > HIGH_SCORE_THRESHOLD:
            result.warnings.append(ValidationIssue(
                name, ValidationWarningCode.HIGH_SCORE_VALUE.value, f"Unusually high value for {name}",
            ))

    if result.is_valid and home_goals is not None and away_goals is not None:
        if abs(home_goals - away_goals) > UNUSUAL_DIFFERENCE_THRESHOLD:
            result.warnings.append(ValidationIssue(
                "scores",
                ValidationWarningCode.UNUSUAL_SCORE_DIFFERENCE.value,
                "Unusually large goal difference",
            ))
    return result


def validate_matchday(matchday: Any) -> ValidationResult:
    result = ValidationResult()
    if not _is_integer(matchday):
        result.errors.append(ValidationIssue(
            "matchday", ValidationErrorCode.INVALID_SPIELTAG_RANGE.value, "Matchday must be a whole number",
        ))
    elif not MIN_MATCHDAY <= matchday <= MAX_MATCHDAY:
        result.errors.append(ValidationIssue(
            "matchday",
            ValidationErrorCode.INVALID_SPIELTAG_RANGE.value,
            f"Matchday must be between {MIN_MATCHDAY} and {MAX_MATCHDAY}",
        ))
    return result


def validate_match(match: Any) -> ValidationResult:
    """
    Validate one match record.

    Args:
        match: Dict record or Match-like object.

    Returns:
        ValidationResult; is_valid is False whenever any error was found.
    """
    result = ValidationResult()

    for name in REQUIRED_FIELDS:
        if _get(match, name) is None:
            result.errors.append(ValidationIssue(
                name, ValidationErrorCode.MISSING_REQUIRED_FIELD.value, f"{name} is required",
            ))

    home_side, away_side = _get(match, "home_side_id"), _get(match, "away_side_id")
    if home_side is not None and home_side == away_side:
        result.errors.append(ValidationIssue(
            "sides", ValidationErrorCode.TEAM_AGAINST_ITSELF.value, "A side cannot play against itself",
        ))

    home_goals, away_goals = _get(match, "home_goals"), _get(match, "away_goals")
    result = result.merge(validate_scores(home_goals, away_goals))
    result = result.merge(validate_matchday(_get(match, "matchday")))

    status = _status_value(_get(match, "status"))
    if status is None:
        result.errors.append(ValidationIssue(
            "status", ValidationErrorCode.MISSING_REQUIRED_FIELD.value, "status is required",
        ))
    elif status not in VALID_STATUSES:
        result.errors.append(ValidationIssue(
            "status", ValidationErrorCode.INVALID_STATUS.value, f"Unknown status {status!r}",
        ))
    elif status == MatchStatus.COMPLETED.value:
        for name, value in (("home_goals", home_goals), ("away_goals", away_goals)):
            if value is None:
                result.errors.append(ValidationIssue(
                    name,
                    ValidationErrorCode.SCORES_REQUIRED_FOR_COMPLETED.value,
                    f"{name} is required for completed matches",
                ))

    return result


def is_transition_allowed(old_status: Any, new_status: Any) -> bool:
    old_status, new_status = _status_value(old_status), _status_value(new_status)
    if old_status == new_status:
        return True
    return new_status in STATUS_TRANSITIONS.get(old_status, frozenset())


def validate_status_transition(old_status: Any, new_status: Any) -> ValidationResult:
    """Completed is terminal; same-state updates are always allowed."""
    result = ValidationResult()
    if not is_transition_allowed(old_status, new_status):
        result.errors.append(ValidationIssue(
            "status",
            ValidationErrorCode.INVALID_STATUS_TRANSITION.value,
            f"Status change from {_status_value(old_status)!r} to {_status_value(new_status)!r} is not allowed",
        ))
    return result


def validate_match_update(previous: Any, match: Any) -> ValidationResult:
    """Validate the new record and the status transition from the previous one."""
    result = validate_match(match)
    if previous is not None:
        result = result.merge(
            validate_status_transition(_get(previous, "status"), _get(match, "status"))
        )
    return result


def ensure_valid_match(match: Any, previous: Optional[Any] = None) -> ValidationResult:
    """
    Raise ValidationError unless the record (and transition) is valid.

    Returns the result so callers can still surface warnings.
    """
    result = validate_match_update(previous, match)
    if not result.is_valid:
        raise ValidationError(
            f"Match {_get(match, 'id')} failed validation: "
            + ", ".join(sorted(result.error_codes)),
            violations=[issue.to_dict() for issue in result.errors],
        )
    return result


def _coerce_non_negative_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(0, math.floor(number))


def sanitize_match(partial: Mapping[str, Any]) -> dict:
    """
    Return a cleaned copy of a (partial) match record.

    Clamps instead of rejecting: goals become non-negative whole numbers,
    matchday is forced into range, unknown status falls back to scheduled and
    strings are trimmed. Keys missing from the input stay missing.
    """
    sanitized = dict(partial)

    for name, value in sanitized.items():
        if isinstance(value, str):
            sanitized[name] = value.strip()

    for name in GOAL_FIELDS:
        if name in sanitized and sanitized[name] is not None:
            sanitized[name] = _coerce_non_negative_int(sanitized[name], default=0)

    if "matchday" in sanitized:
        matchday = _coerce_non_negative_int(sanitized["matchday"], default=MIN_MATCHDAY)
        sanitized["matchday"] = min(MAX_MATCHDAY, max(MIN_MATCHDAY, matchday))

    if "status" in sanitized:
        status = _status_value(sanitized["status"])
        if isinstance(status, str):
            status = status.strip().lower()
        sanitized["status"] = status if status in VALID_STATUSES else MatchStatus.SCHEDULED.value

    return sanitized
