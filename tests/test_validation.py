"""Tests for match validation and sanitization.

Verifies:
1. Valid completed matches pass without errors
2. Error codes for sides, goals, matchday, required fields, status
3. Warnings for high scores and large differences
4. Status transition state machine
5. sanitize_match coerces instead of rejecting
"""

from datetime import datetime, timezone

import pytest

from leaguetable.errors import ValidationError
from leaguetable.validation import (
    ensure_valid_match,
    is_transition_allowed,
    sanitize_match,
    validate_match,
    validate_match_update,
    validate_scores,
)


def make_record(**overrides):
    record = {
        "id": 1,
        "date": datetime(2025, 9, 6, 15, 0, tzinfo=timezone.utc),
        "league_id": 1,
        "season_id": 1,
        "home_side_id": 10,
        "away_side_id": 11,
        "home_goals": 2,
        "away_goals": 1,
        "matchday": 5,
        "status": "completed",
    }
    record.update(overrides)
    return record


class TestValidateMatch:
    """Test validate_match() errors and warnings."""

    @pytest.mark.parametrize("home,away", [(0, 0), (2, 1), (0, 4), (10, 10)])
    def test_valid_completed_match(self, home, away):
        """Completed matches with whole, non-negative goals are valid."""
        result = validate_match(make_record(home_goals=home, away_goals=away))
        assert result.is_valid
        assert result.errors == []

    def test_scheduled_match_without_scores_is_valid(self):
        result = validate_match(make_record(status="scheduled", home_goals=None, away_goals=None))
        assert result.is_valid

    @pytest.mark.parametrize("side_id", [1, 10, 999])
    def test_team_against_itself(self, side_id):
        """Identical home and away side always reports TEAM_AGAINST_ITSELF."""
        result = validate_match(make_record(home_side_id=side_id, away_side_id=side_id))
        assert not result.is_valid
        assert "TEAM_AGAINST_ITSELF" in result.error_codes

    @pytest.mark.parametrize("value", [-1, -5, 1.5, "3", True])
    def test_negative_or_fractional_goals_rejected(self, value):
        """Negative, fractional and non-numeric goals are errors, not warnings."""
        result = validate_match(make_record(home_goals=value))
        assert not result.is_valid
        assert "NEGATIVE_SCORE" in result.error_codes

    def test_integral_float_goals_accepted(self):
        assert validate_match(make_record(home_goals=2.0)).is_valid

    @pytest.mark.parametrize("matchday", [0, 35, -1, 2.5])
    def test_matchday_out_of_range(self, matchday):
        result = validate_match(make_record(matchday=matchday))
        assert "INVALID_SPIELTAG_RANGE" in result.error_codes

    @pytest.mark.parametrize("matchday", [1, 17, 34])
    def test_matchday_bounds_inclusive(self, matchday):
        assert validate_match(make_record(matchday=matchday)).is_valid

    @pytest.mark.parametrize("field", ["league_id", "season_id", "home_side_id", "away_side_id", "date"])
    def test_missing_required_field(self, field):
        result = validate_match(make_record(**{field: None}))
        assert "MISSING_REQUIRED_FIELD" in result.error_codes
        assert any(issue.field == field for issue in result.errors)

    def test_completed_requires_both_scores(self):
        result = validate_match(make_record(away_goals=None))
        assert result.error_codes == {"SCORES_REQUIRED_FOR_COMPLETED"}

    def test_unknown_status(self):
        result = validate_match(make_record(status="abandoned"))
        assert "INVALID_STATUS" in result.error_codes

    def test_high_score_warning(self):
        """Goal values above 10 warn but do not invalidate."""
        result = validate_match(make_record(home_goals=11, away_goals=9))
        assert result.is_valid
        assert "HIGH_SCORE_VALUE" in result.warning_codes

    def test_unusual_difference_warning(self):
        result = validate_match(make_record(home_goals=7, away_goals=1))
        assert result.is_valid
        assert "UNUSUAL_SCORE_DIFFERENCE" in result.warning_codes

    def test_difference_of_five_is_not_unusual(self):
        result = validate_scores(6, 1)
        assert "UNUSUAL_SCORE_DIFFERENCE" not in result.warning_codes

    def test_accepts_objects(self):
        """Match-like objects are validated through their attributes."""

        class Record:
            pass

        obj = Record()
        for key, value in make_record().items():
            setattr(obj, key, value)
        assert validate_match(obj).is_valid

    def test_to_dict(self):
        payload = validate_match(make_record(home_goals=-1)).to_dict()
        assert payload["is_valid"] is False
        assert payload["errors"][0]["code"] == "NEGATIVE_SCORE"


class TestStatusTransitions:
    """Test the match status state machine."""

    @pytest.mark.parametrize("status", ["scheduled", "completed", "cancelled", "postponed"])
    def test_same_state_allowed(self, status):
        assert is_transition_allowed(status, status)

    def test_scheduled_to_completed_allowed(self):
        assert is_transition_allowed("scheduled", "completed")

    @pytest.mark.parametrize("target", ["scheduled", "cancelled", "postponed"])
    def test_completed_is_terminal(self, target):
        assert not is_transition_allowed("completed", target)

    def test_postponed_transitions(self):
        assert is_transition_allowed("postponed", "scheduled")
        assert is_transition_allowed("postponed", "completed")
        assert is_transition_allowed("postponed", "cancelled")

    def test_cancelled_transitions(self):
        assert is_transition_allowed("cancelled", "scheduled")
        assert is_transition_allowed("cancelled", "postponed")
        assert not is_transition_allowed("cancelled", "completed")

    def test_update_rejects_completed_to_scheduled(self):
        previous = make_record()
        current = make_record(status="scheduled", home_goals=None, away_goals=None)
        result = validate_match_update(previous, current)
        assert "INVALID_STATUS_TRANSITION" in result.error_codes

    def test_ensure_valid_match_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid_match(make_record(home_side_id=10, away_side_id=10))
        assert exc_info.value.violations[0]["code"] == "TEAM_AGAINST_ITSELF"

    def test_ensure_valid_match_returns_warnings(self):
        result = ensure_valid_match(make_record(home_goals=12, away_goals=0))
        assert "HIGH_SCORE_VALUE" in result.warning_codes


class TestSanitizeMatch:
    """Test sanitize_match() coercion."""

    @pytest.mark.parametrize("value,expected", [(-3, 0), (2.7, 2), ("4", 4), ("x", 0), (0, 0)])
    def test_goals_coerced(self, value, expected):
        """Invalid goals are coerced, never rejected."""
        assert sanitize_match({"home_goals": value})["home_goals"] == expected

    def test_none_goals_kept(self):
        assert sanitize_match({"home_goals": None})["home_goals"] is None

    @pytest.mark.parametrize("value,expected", [(0, 1), (40, 34), (12, 12), ("7", 7), ("bad", 1)])
    def test_matchday_clamped(self, value, expected):
        assert sanitize_match({"matchday": value})["matchday"] == expected

    def test_unknown_status_defaults_to_scheduled(self):
        assert sanitize_match({"status": "abandoned"})["status"] == "scheduled"

    def test_status_normalized(self):
        assert sanitize_match({"status": "  Completed "})["status"] == "completed"

    def test_strings_trimmed(self):
        assert sanitize_match({"notes": "  late kick-off  "})["notes"] == "late kick-off"

    def test_missing_keys_stay_missing(self):
        assert sanitize_match({"notes": "x"}) == {"notes": "x"}

    def test_sanitized_record_validates(self):
        """Sanitizing a record with bad numbers yields a valid one."""
        record = make_record(home_goals=-2, away_goals=1.9, matchday=99)
        assert validate_match(sanitize_match(record)).is_valid
