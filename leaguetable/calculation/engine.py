"""
Table Calculation Engine.

Recomputes the full standings of one (league, season) from stored matches and
atomically replaces the table rows. Always recomputes from scratch; running
it twice without a match change yields identical rows.

Ranking:
1. points (desc), 3 per win, 1 per draw
2. goal difference (desc)
3. goals for (desc)
4. side name (asc, case-insensitive), then side id
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from leaguetable.errors import NotFoundError, TableIntegrityError
from leaguetable.models import Match, MatchStatus, Side
from leaguetable.repository import TableRepository

logger = logging.getLogger(__name__)

POINTS_PER_WIN = 3
POINTS_PER_DRAW = 1


@dataclass
class SideTotals:
    """Running totals for one side while folding matches."""

    side_id: int
    side_name: str
    side_logo: Optional[str] = None
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0

    @property
    def played(self) -> int:
        return self.wins + self.draws + self.losses

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    @property
    def points(self) -> int:
        return POINTS_PER_WIN * self.wins + POINTS_PER_DRAW * self.draws

    def record(self, scored: int, conceded: int) -> None:
        self.goals_for += scored
        self.goals_against += conceded
        if scored > conceded:
            self.wins += 1
        elif scored == conceded:
            self.draws += 1
        else:
            self.losses += 1

    def to_row(self, rank: int) -> dict:
        return {
            "side_id": self.side_id,
            "side_name": self.side_name,
            "side_logo": self.side_logo,
            "played": self.played,
            "wins": self.wins,
            "draws": self.draws,
            "losses": self.losses,
            "goals_for": self.goals_for,
            "goals_against": self.goals_against,
            "goal_difference": self.goal_difference,
            "points": self.points,
            "rank": rank,
        }


@dataclass
class CalculationResult:
    """Outcome of one calculate() run."""

    league_id: int
    season_id: int
    entries: list[dict]
    matches_counted: int
    duration_ms: int = 0
    persisted: bool = True
    warnings: list[str] = field(default_factory=list)

    @property
    def entries_updated(self) -> int:
        return len(self.entries)


def counts_for_table(match: Match) -> bool:
    """Only completed matches with both scores contribute."""
    return (
        match.status == MatchStatus.COMPLETED.value
        and match.home_goals is not None
        and match.away_goals is not None
    )


def fold_matches(sides: Iterable[Side], matches: Iterable[Match]) -> tuple[dict[int, SideTotals], int]:
    """
    Aggregate per-side totals.

    Returns:
        Tuple (totals keyed by side id, number of matches counted)
    """
    totals: dict[int, SideTotals] = {
        side.id: SideTotals(side_id=side.id, side_name=side.name, side_logo=side.logo_url)
        for side in sides
    }
    counted = 0
    for match in matches:
        if not counts_for_table(match):
            continue
        for side_id in (match.home_side_id, match.away_side_id):
            if side_id not in totals:
                # Side row vanished between reads; keep the table consistent anyway
                totals[side_id] = SideTotals(side_id=side_id, side_name=f"Side {side_id}")
        totals[match.home_side_id].record(match.home_goals, match.away_goals)
        totals[match.away_side_id].record(match.away_goals, match.home_goals)
        counted += 1
    return totals, counted


def ranking_key(totals: SideTotals) -> tuple:
    return (
        -totals.points,
        -totals.goal_difference,
        -totals.goals_for,
        totals.side_name.casefold(),
        totals.side_id,
    )


def rank_table(totals: Iterable[SideTotals]) -> list[dict]:
    """Sort by the ranking rules and assign ranks 1..N."""
    ordered = sorted(totals, key=ranking_key)
    return [entry.to_row(rank) for rank, entry in enumerate(ordered, start=1)]


def check_table_integrity(rows: list[dict], matches_counted: int) -> None:
    """
    Raise TableIntegrityError if the table contradicts its inputs.

    Every counted match adds one appearance for each side, so the sum of
    played must equal twice the number of counted matches.
    """
    problems = []
    for row in rows:
        if row["played"] != row["wins"] + row["draws"] + row["losses"]:
            problems.append(f"side {row['side_id']}: played != W+D+L")
        if row["goal_difference"] != row["goals_for"] - row["goals_against"]:
            problems.append(f"side {row['side_id']}: goal_difference != GF-GA")
    total_played = sum(row["played"] for row in rows)
    if total_played != 2 * matches_counted:
        problems.append(f"sum(played)={total_played} but {matches_counted} matches counted")
    if problems:
        raise TableIntegrityError(
            "Calculated table failed integrity checks",
            details={"problems": problems},
        )


class TableCalculationEngine:
    """Recomputes and persists league tables."""

    def __init__(self, repository: TableRepository, slow_warning_seconds: float = 15.0):
        self.repository = repository
        self.slow_warning_seconds = slow_warning_seconds

    async def _compute(self, league_id: int, season_id: int) -> CalculationResult:
        if await self.repository.get_league(league_id) is None:
            raise NotFoundError("league", league_id)
        if await self.repository.get_season(season_id) is None:
            raise NotFoundError("season", season_id)

        matches = await self.repository.list_matches(
            league_id, season_id, statuses=[MatchStatus.COMPLETED.value]
        )
        sides = await self.repository.list_sides(league_id, season_id)

        totals, counted = fold_matches(sides, matches)
        rows = rank_table(totals.values())
        check_table_integrity(rows, counted)

        result = CalculationResult(
            league_id=league_id,
            season_id=season_id,
            entries=rows,
            matches_counted=counted,
        )
        skipped = len(matches) - counted
        if skipped:
            result.warnings.append(f"{skipped} completed matches without scores were ignored")
        return result

    async def preview(self, league_id: int, season_id: int) -> CalculationResult:
        """Compute the table without writing it."""
        result = await self._compute(league_id, season_id)
        result.persisted = False
        return result

    async def calculate(self, league_id: int, season_id: int) -> CalculationResult:
        """
        Recompute and replace the table for a league season.

        Raises:
            NotFoundError: Unknown league or season.
            TransientComputationError: Repository read/write failure.
            TableIntegrityError: Computed rows violate table invariants.
        """
        start = time.monotonic()
        result = await self._compute(league_id, season_id)
        await self.repository.replace_table_entries(league_id, season_id, result.entries)

        duration = time.monotonic() - start
        result.duration_ms = int(duration * 1000)

        for warning in result.warnings:
            logger.warning(f"[CALC] league={league_id} season={season_id}: {warning}")
        if duration > self.slow_warning_seconds:
            logger.warning(
                f"[CALC] Table calculation for league={league_id} season={season_id} "
                f"took {duration:.1f}s (threshold {self.slow_warning_seconds}s)"
            )
        logger.info(
            f"[CALC] league={league_id} season={season_id}: "
            f"{result.entries_updated} entries from {result.matches_counted} matches "
            f"in {result.duration_ms}ms"
        )
        return result
