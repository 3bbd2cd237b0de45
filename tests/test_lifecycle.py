"""Tests for the match lifecycle glue."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from leaguetable.automation import MatchLifecycle
from leaguetable.queue import Priority


def make_record(**overrides):
    record = {
        "id": 42,
        "date": datetime(2025, 9, 6, 15, 0, tzinfo=timezone.utc),
        "league_id": 1,
        "season_id": 2,
        "home_side_id": 10,
        "away_side_id": 11,
        "home_goals": 2,
        "away_goals": 1,
        "matchday": 5,
        "status": "completed",
        "notes": None,
    }
    record.update(overrides)
    return record


@pytest.fixture
def queue():
    mock = MagicMock()
    mock.enqueue.side_effect = lambda *args, **kwargs: f"job_{mock.enqueue.call_count}"
    return mock


class TestMatchLifecycle:
    """Test validate -> trigger condition -> enqueue."""

    def test_create_completed_enqueues_normal(self, queue):
        result = MatchLifecycle(queue).after_create(make_record())
        assert result.triggered
        assert result.job_ids == ["job_1"]
        args, kwargs = queue.enqueue.call_args
        assert args == (1, 2)
        assert kwargs["priority"] == Priority.NORMAL
        assert kwargs["trigger"] == "MATCH_CREATED"

    def test_create_scheduled_skipped(self, queue):
        result = MatchLifecycle(queue).after_create(
            make_record(status="scheduled", home_goals=None, away_goals=None))
        assert not result.triggered
        assert result.reason == "no relevant change"
        queue.enqueue.assert_not_called()

    def test_delete_enqueues_high(self, queue):
        result = MatchLifecycle(queue).after_delete(make_record())
        assert result.triggered
        assert queue.enqueue.call_args.kwargs["priority"] == Priority.HIGH
        assert queue.enqueue.call_args.kwargs["trigger"] == "MATCH_DELETED"

    def test_score_update_enqueues(self, queue):
        result = MatchLifecycle(queue).after_update(make_record(home_goals=3), make_record())
        assert result.triggered
        assert queue.enqueue.call_args.kwargs["trigger"] == "MATCH_UPDATED"

    def test_irrelevant_update_skipped(self, queue):
        result = MatchLifecycle(queue).after_update(make_record(notes="crowd 500"), make_record())
        assert not result.triggered
        queue.enqueue.assert_not_called()

    @pytest.mark.parametrize("status", ["scheduled", "cancelled", "postponed"])
    def test_uncompleted_match_enqueues(self, queue, status):
        """A stored result that stops counting must be removed from the table."""
        result = MatchLifecycle(queue).after_update(
            make_record(status=status, home_goals=None, away_goals=None),
            make_record(),
        )
        assert result.triggered
        assert queue.enqueue.call_args.args == (1, 2)
        assert queue.enqueue.call_args.kwargs["trigger"] == "MATCH_UPDATED"

    def test_invalid_record_skipped(self, queue):
        result = MatchLifecycle(queue).after_create(make_record(away_side_id=10))
        assert not result.triggered
        assert "TEAM_AGAINST_ITSELF" in result.reason

    def test_moved_match_enqueues_both_tables(self, queue):
        result = MatchLifecycle(queue).after_update(make_record(league_id=5), make_record())
        assert result.job_ids == ["job_1", "job_2"]
        keys = [call.args for call in queue.enqueue.call_args_list]
        assert keys == [(5, 2), (1, 2)]

    def test_disabled_never_enqueues(self, queue):
        lifecycle = MatchLifecycle(queue, enabled=False)
        result = lifecycle.after_create(make_record())
        assert not result.triggered
        assert result.reason == "automation disabled"
        queue.enqueue.assert_not_called()

    def test_enqueue_failure_is_swallowed(self, queue):
        """A scheduling failure is reported, never raised into the write path."""
        queue.enqueue.side_effect = RuntimeError("queue exploded")
        result = MatchLifecycle(queue).after_create(make_record())
        assert not result.triggered
        assert result.error == "queue exploded"
        assert result.to_dict()["reason"] == "enqueue failed"
