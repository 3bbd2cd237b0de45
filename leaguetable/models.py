"""Database models using SQLModel."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchStatus(str, Enum):
    """Lifecycle status of a match."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


class League(SQLModel, table=True):
    """A competition grouping sides for one season."""

    __tablename__ = "leagues"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255, description="League name, e.g. 'Bezirksliga'")


class Season(SQLModel, table=True):
    """Time-boxed period in which a league's matches occur."""

    __tablename__ = "seasons"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, description="e.g. '2025/26'")
    year: Optional[int] = Field(default=None, description="Start year")
    active: bool = Field(default=True)


class Side(SQLModel, table=True):
    """A competing entity (club or roster)."""

    __tablename__ = "sides"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255, index=True)
    short_name: Optional[str] = Field(default=None, max_length=50)
    logo_url: Optional[str] = Field(default=None, max_length=500)
    active: bool = Field(default=True)


class LeagueMembership(SQLModel, table=True):
    """Registration of a side in a league season (table row even without matches)."""

    __tablename__ = "league_memberships"
    __table_args__ = (
        UniqueConstraint("league_id", "season_id", "side_id", name="uq_league_season_side"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    league_id: int = Field(foreign_key="leagues.id", index=True)
    season_id: int = Field(foreign_key="seasons.id", index=True)
    side_id: int = Field(foreign_key="sides.id", index=True)


class Match(SQLModel, table=True):
    """A fixture between two sides."""

    __tablename__ = "matches"

    id: Optional[int] = Field(default=None, primary_key=True)
    date: Optional[datetime] = Field(
        default=None, index=True, sa_type=DateTime(timezone=True), description="Kick-off date and time"
    )
    league_id: Optional[int] = Field(default=None, foreign_key="leagues.id", index=True)
    season_id: Optional[int] = Field(default=None, foreign_key="seasons.id", index=True)

    home_side_id: Optional[int] = Field(default=None, foreign_key="sides.id", index=True)
    away_side_id: Optional[int] = Field(default=None, foreign_key="sides.id", index=True)

    home_goals: Optional[int] = Field(default=None, description="NULL until played")
    away_goals: Optional[int] = Field(default=None, description="NULL until played")

    matchday: int = Field(default=1, description="1..34")
    status: str = Field(max_length=20, default=MatchStatus.SCHEDULED.value)
    notes: Optional[str] = Field(default=None)


class TableEntry(SQLModel, table=True):
    """One side's aggregated standing row for a league season."""

    __tablename__ = "table_entries"
    __table_args__ = (
        UniqueConstraint("league_id", "season_id", "side_id", name="uq_table_league_season_side"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    league_id: int = Field(foreign_key="leagues.id", index=True)
    season_id: int = Field(foreign_key="seasons.id", index=True)
    side_id: int = Field(foreign_key="sides.id")
    side_name: str = Field(max_length=255)
    side_logo: Optional[str] = Field(default=None, max_length=500)

    played: int = Field(default=0)
    wins: int = Field(default=0)
    draws: int = Field(default=0)
    losses: int = Field(default=0)
    goals_for: int = Field(default=0)
    goals_against: int = Field(default=0)
    goal_difference: int = Field(default=0)
    points: int = Field(default=0)
    rank: int = Field(default=0)

    last_updated: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    calculation_source: str = Field(
        default="automatic", max_length=100, description="'automatic' or 'snapshot_restore:<id>'"
    )


# Fields copied verbatim into snapshots and restored from them
TABLE_ENTRY_FIELDS = (
    "side_id",
    "side_name",
    "side_logo",
    "played",
    "wins",
    "draws",
    "losses",
    "goals_for",
    "goals_against",
    "goal_difference",
    "points",
    "rank",
)


def match_to_record(match: Match) -> dict:
    """Plain dict view of a match, the shape validation and triggers work on."""
    return {
        "id": match.id,
        "date": match.date,
        "league_id": match.league_id,
        "season_id": match.season_id,
        "home_side_id": match.home_side_id,
        "away_side_id": match.away_side_id,
        "home_goals": match.home_goals,
        "away_goals": match.away_goals,
        "matchday": match.matchday,
        "status": match.status,
        "notes": match.notes,
    }


def entry_to_dict(entry: TableEntry) -> dict:
    """Serializable view of a table row (no surrogate id, no timestamps)."""
    return {field: getattr(entry, field) for field in TABLE_ENTRY_FIELDS}
