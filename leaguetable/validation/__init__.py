"""
Match record validation and sanitization.

Usage:
    from leaguetable.validation import validate_match, sanitize_match

    result = validate_match(record)
    if not result.is_valid:
        ...
"""

from leaguetable.validation.match_validation import (
    MAX_MATCHDAY,
    MIN_MATCHDAY,
    STATUS_TRANSITIONS,
    ValidationErrorCode,
    ValidationIssue,
    ValidationResult,
    ValidationWarningCode,
    ensure_valid_match,
    is_transition_allowed,
    sanitize_match,
    validate_match,
    validate_match_update,
    validate_matchday,
    validate_scores,
    validate_status_transition,
)

__all__ = [
    "MAX_MATCHDAY",
    "MIN_MATCHDAY",
    "STATUS_TRANSITIONS",
    "ValidationErrorCode",
    "ValidationIssue",
    "ValidationResult",
    "ValidationWarningCode",
    "ensure_valid_match",
    "is_transition_allowed",
    "sanitize_match",
    "validate_match",
    "validate_match_update",
    "validate_matchday",
    "validate_scores",
    "validate_status_transition",
]
