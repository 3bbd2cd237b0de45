"""Shared fixtures: isolated settings, in-memory SQLite and the Bezirksliga seed."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from leaguetable.config import load_settings
from leaguetable.database import close_db, create_engine, create_session_factory, init_db
from leaguetable.models import League, LeagueMembership, Match, MatchStatus, Season, Side
from leaguetable.repository import TableRepository

KICKOFF = datetime(2025, 9, 6, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_settings(tmp_path):
    """Settings factory with fast queue timings and a per-test snapshot dir."""

    def _make(**overrides):
        values = {
            "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
            "SNAPSHOT_DIR": str(tmp_path / "snapshots"),
            "QUEUE_CONCURRENCY": 1,
            "QUEUE_JOB_TIMEOUT_SECONDS": 5.0,
            "QUEUE_BACKOFF_BASE_SECONDS": 0.01,
            "QUEUE_BACKOFF_MAX_SECONDS": 0.05,
            "QUEUE_BACKOFF_JITTER": False,
            "QUEUE_POLL_INTERVAL_SECONDS": 0.01,
            "TRIGGER_ENABLED": True,
        }
        values.update(overrides)
        return load_settings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
async def db_engine(settings):
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def repository(session_factory):
    return TableRepository(session_factory)


def completed_match(league_id, season_id, home_id, away_id, home_goals, away_goals, matchday=1):
    return Match(
        date=KICKOFF,
        league_id=league_id,
        season_id=season_id,
        home_side_id=home_id,
        away_side_id=away_id,
        home_goals=home_goals,
        away_goals=away_goals,
        matchday=matchday,
        status=MatchStatus.COMPLETED.value,
    )


@pytest.fixture
async def bezirksliga(session_factory):
    """
    League "Bezirksliga" with sides A, B, C and three completed matches:
    A 2-1 B, B 0-3 C, A 1-1 C.
    """
    async with session_factory() as session:
        league = League(name="Bezirksliga")
        season = Season(name="2025/26", year=2025)
        sides = {name: Side(name=name) for name in ("A", "B", "C")}
        session.add_all([league, season, *sides.values()])
        await session.flush()

        for side in sides.values():
            session.add(LeagueMembership(league_id=league.id, season_id=season.id, side_id=side.id))

        matches = {
            "A-B": completed_match(league.id, season.id, sides["A"].id, sides["B"].id, 2, 1, matchday=1),
            "B-C": completed_match(league.id, season.id, sides["B"].id, sides["C"].id, 0, 3, matchday=2),
            "A-C": completed_match(league.id, season.id, sides["A"].id, sides["C"].id, 1, 1, matchday=3),
        }
        session.add_all(matches.values())
        await session.commit()

        return SimpleNamespace(
            league_id=league.id,
            season_id=season.id,
            sides={name: side.id for name, side in sides.items()},
            matches={key: match.id for key, match in matches.items()},
        )


class FakeEngine:
    """
    Stand-in for TableCalculationEngine that records concurrency.

    failures maps (league_id, season_id) to a number of leading attempts that
    raise error_factory() before succeeding.
    """

    def __init__(self, delay: float = 0.0, failures=None, error_factory=None):
        self.delay = delay
        self.failures = dict(failures or {})
        self.error_factory = error_factory or (lambda: ConnectionError("database unavailable"))
        self.calls = []
        self.running = 0
        self.max_running = 0
        self.running_per_key = {}
        self.max_running_per_key = 0

    async def calculate(self, league_id, season_id):
        key = (league_id, season_id)
        self.calls.append(key)
        self.running += 1
        self.running_per_key[key] = self.running_per_key.get(key, 0) + 1
        self.max_running = max(self.max_running, self.running)
        self.max_running_per_key = max(self.max_running_per_key, self.running_per_key[key])
        try:
            await asyncio.sleep(self.delay)
            if self.failures.get(key, 0) > 0:
                self.failures[key] -= 1
                raise self.error_factory()
            return SimpleNamespace(entries_updated=3)
        finally:
            self.running -= 1
            self.running_per_key[key] -= 1


@pytest.fixture
def make_fake_engine():
    return FakeEngine


@pytest.fixture
def make_match():
    return completed_match
