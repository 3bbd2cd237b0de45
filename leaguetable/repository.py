"""
Repository over the collaborating platform's tables.

All reads and writes the automation core performs go through this class:
matches filtered by league/season/status, table entries by league/season,
league/season lookups and the atomic replace of a table. SQLAlchemy failures
are re-raised as TransientComputationError so the queue can retry them.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError

from leaguetable.errors import TransientComputationError
from leaguetable.models import (
    TABLE_ENTRY_FIELDS,
    League,
    LeagueMembership,
    Match,
    Season,
    Side,
    TableEntry,
)

logger = logging.getLogger(__name__)


class TableRepository:
    """Async repository bound to a session factory."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get_league(self, league_id: int) -> Optional[League]:
        try:
            async with self.session_factory() as session:
                return await session.get(League, league_id)
        except SQLAlchemyError as e:
            raise TransientComputationError(f"Failed to load league {league_id}: {e}") from e

    async def get_season(self, season_id: int) -> Optional[Season]:
        try:
            async with self.session_factory() as session:
                return await session.get(Season, season_id)
        except SQLAlchemyError as e:
            raise TransientComputationError(f"Failed to load season {season_id}: {e}") from e

    async def list_matches(
        self,
        league_id: int,
        season_id: int,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[Match]:
        """Matches of a league season, optionally restricted to some statuses."""
        query = (
            select(Match)
            .where(Match.league_id == league_id)
            .where(Match.season_id == season_id)
            .order_by(Match.id)
        )
        if statuses is not None:
            query = query.where(Match.status.in_(list(statuses)))
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise TransientComputationError(
                f"Failed to load matches for league {league_id}, season {season_id}: {e}"
            ) from e

    async def list_sides(self, league_id: int, season_id: int) -> list[Side]:
        """
        Sides that belong in the table: registered members plus every side
        appearing in any match of the league season.
        """
        member_ids = (
            select(LeagueMembership.side_id)
            .where(LeagueMembership.league_id == league_id)
            .where(LeagueMembership.season_id == season_id)
        )
        home_ids = (
            select(Match.home_side_id)
            .where(Match.league_id == league_id)
            .where(Match.season_id == season_id)
        )
        away_ids = (
            select(Match.away_side_id)
            .where(Match.league_id == league_id)
            .where(Match.season_id == season_id)
        )
        try:
            async with self.session_factory() as session:
                side_ids = set()
                for query in (member_ids, home_ids, away_ids):
                    result = await session.execute(query)
                    side_ids.update(value for value in result.scalars().all() if value is not None)
                if not side_ids:
                    return []
                result = await session.execute(
                    select(Side).where(Side.id.in_(sorted(side_ids))).order_by(Side.id)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise TransientComputationError(
                f"Failed to load sides for league {league_id}, season {season_id}: {e}"
            ) from e

    async def list_table_entries(self, league_id: int, season_id: int) -> list[TableEntry]:
        query = (
            select(TableEntry)
            .where(TableEntry.league_id == league_id)
            .where(TableEntry.season_id == season_id)
            .order_by(TableEntry.rank, TableEntry.side_id)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise TransientComputationError(
                f"Failed to load table for league {league_id}, season {season_id}: {e}"
            ) from e

    async def replace_table_entries(
        self,
        league_id: int,
        season_id: int,
        rows: list[dict],
        source: str = "automatic",
    ) -> int:
        """
        Atomically replace every table row of a league season.

        Delete and insert share one transaction, so readers never observe a
        partially written table.

        Returns:
            Number of rows written.
        """
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(TableEntry)
                        .where(TableEntry.league_id == league_id)
                        .where(TableEntry.season_id == season_id)
                    )
                    for row in rows:
                        session.add(TableEntry(
                            league_id=league_id,
                            season_id=season_id,
                            last_updated=now,
                            calculation_source=source,
                            **{field: row[field] for field in TABLE_ENTRY_FIELDS},
                        ))
        except SQLAlchemyError as e:
            raise TransientComputationError(
                f"Failed to write table for league {league_id}, season {season_id}: {e}"
            ) from e

        logger.debug(f"[REPO] Replaced {len(rows)} rows for league={league_id} season={season_id}")
        return len(rows)

    async def ping(self) -> None:
        """Cheap round trip for health checks."""
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
