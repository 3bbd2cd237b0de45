"""
Snapshot Service.

Point-in-time copies of a league season's table rows:
- create() serializes the current rows without touching them, then keeps only
  the newest SNAPSHOT_MAX_PER_TABLE snapshots of that table
- restore() verifies the checksum, optionally takes a pre-restore backup and
  replaces the rows in one transaction, holding the queue's table lock so it
  never interleaves with a recomputation of the same table
- delete() of an unknown (or already deleted) id raises NotFoundError
"""

import asyncio
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from leaguetable.config import AutomationSettings, get_settings
from leaguetable.errors import (
    AutomationError,
    NotFoundError,
    SnapshotCorruptedError,
    SnapshotStorageError,
)
from leaguetable.models import TABLE_ENTRY_FIELDS, entry_to_dict
from leaguetable.repository import TableRepository
from leaguetable.snapshots.storage import (
    SnapshotStorage,
    build_snapshot_id,
    compute_entries_checksum,
)
from leaguetable.telemetry import record_snapshot_operation

logger = logging.getLogger(__name__)

_INT_FIELDS = tuple(name for name in TABLE_ENTRY_FIELDS if name not in ("side_name", "side_logo"))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Snapshot:
    id: str
    league_id: int
    season_id: int
    created_at: datetime
    entries: list[dict]
    description: Optional[str] = None
    checksum: str = ""
    size: int = 0

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    def metadata(self) -> dict:
        return {
            "id": self.id,
            "league_id": self.league_id,
            "season_id": self.season_id,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
            "checksum": self.checksum,
            "size": self.size,
            "entry_count": self.entry_count,
        }

    def to_document(self) -> dict:
        document = self.metadata()
        document.pop("size")
        document["entries"] = self.entries
        return document

    def to_dict(self) -> dict:
        payload = self.metadata()
        payload["entries"] = self.entries
        return payload

    @classmethod
    def from_document(cls, document: dict) -> "Snapshot":
        """
        Build a Snapshot from a stored document, checking its structure.

        Raises:
            SnapshotCorruptedError: Missing fields or malformed entries.
        """
        snapshot_id = document.get("id", "<unknown>")
        try:
            snapshot = cls(
                id=document["id"],
                league_id=int(document["league_id"]),
                season_id=int(document["season_id"]),
                created_at=datetime.fromisoformat(document["created_at"]),
                entries=list(document["entries"]),
                description=document.get("description"),
                checksum=document.get("checksum") or "",
                size=int(document.get("size") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotCorruptedError(
                f"Invalid snapshot data structure: {snapshot_id}",
                details={"snapshot_id": snapshot_id, "problem": str(e)},
            ) from e

        for entry in snapshot.entries:
            if (
                not isinstance(entry, dict)
                or any(name not in entry for name in TABLE_ENTRY_FIELDS)
                or not isinstance(entry["side_name"], str)
                or any(isinstance(entry[name], bool) or not isinstance(entry[name], int) for name in _INT_FIELDS)
            ):
                raise SnapshotCorruptedError(
                    f"Invalid table entry in snapshot: {snapshot_id}",
                    details={"snapshot_id": snapshot_id},
                )
        return snapshot


@dataclass
class RestoreResult:
    snapshot_id: str
    league_id: int
    season_id: int
    entries_restored: int
    backup_snapshot_id: Optional[str] = None
    restored_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict:
        return {
            "snapshot_id": self.snapshot_id,
            "league_id": self.league_id,
            "season_id": self.season_id,
            "entries_restored": self.entries_restored,
            "backup_snapshot_id": self.backup_snapshot_id,
            "restored_at": self.restored_at.isoformat(),
        }


class SnapshotService:
    """Create, list, restore and delete table snapshots."""

    def __init__(
        self,
        repository: TableRepository,
        settings: Optional[AutomationSettings] = None,
        queue=None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.queue = queue
        self.storage = SnapshotStorage(
            self.settings.SNAPSHOT_DIR,
            compression=self.settings.SNAPSHOT_COMPRESSION,
        )

    async def _run(self, func, *args):
        """Run blocking file IO off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except AutomationError:
            raise
        except OSError as e:
            raise SnapshotStorageError(f"Snapshot storage failure: {e}") from e

    def _table_lock(self, league_id: int, season_id: int):
        if self.queue is None:
            return nullcontext()
        return self.queue.exclusive(league_id, season_id)

    async def create(self, league_id: int, season_id: int, description: Optional[str] = None) -> str:
        """
        Snapshot the current table rows of a league season.

        Returns:
            Snapshot id.

        Raises:
            NotFoundError: Unknown league or season.
        """
        try:
            if await self.repository.get_league(league_id) is None:
                raise NotFoundError("league", league_id)
            if await self.repository.get_season(season_id) is None:
                raise NotFoundError("season", season_id)

            rows = await self.repository.list_table_entries(league_id, season_id)
            entries = [entry_to_dict(row) for row in rows]
            created_at = _utc_now()
            snapshot = Snapshot(
                id=build_snapshot_id(league_id, season_id, created_at),
                league_id=league_id,
                season_id=season_id,
                created_at=created_at,
                entries=entries,
                description=description,
                checksum=compute_entries_checksum(entries) if self.settings.SNAPSHOT_CHECKSUM else "",
            )
            snapshot.size = await self._run(self.storage.write, snapshot.to_document())
        except AutomationError:
            record_snapshot_operation("create", "failure")
            raise

        record_snapshot_operation("create", "success")
        logger.info(
            f"[SNAPSHOT] Created {snapshot.id} ({snapshot.entry_count} entries, {snapshot.size} bytes)"
        )
        await self._enforce_retention(league_id, season_id)
        return snapshot.id

    async def get(self, snapshot_id: str) -> Snapshot:
        """
        Raises:
            NotFoundError: Unknown snapshot id.
            SnapshotCorruptedError: Unreadable or malformed snapshot.
        """
        document = await self._run(self.storage.read, snapshot_id)
        return Snapshot.from_document(document)

    async def list(self, league_id: int, season_id: int) -> list[dict]:
        """Metadata of a table's snapshots, newest first. Unreadable files are skipped."""
        ids = await self._run(self.storage.list_ids, league_id, season_id)
        snapshots = []
        for snapshot_id in ids:
            try:
                snapshot = await self.get(snapshot_id)
            except SnapshotCorruptedError as e:
                logger.warning(f"[SNAPSHOT] Skipping unreadable snapshot {snapshot_id}: {e.message}")
                continue
            except NotFoundError:
                # Deleted between listing and reading
                continue
            snapshots.append(snapshot)
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        return [snapshot.metadata() for snapshot in snapshots]

    def _verify_checksum(self, snapshot: Snapshot) -> None:
        if not self.settings.SNAPSHOT_CHECKSUM or not snapshot.checksum:
            return
        actual = compute_entries_checksum(snapshot.entries)
        if actual != snapshot.checksum:
            raise SnapshotCorruptedError(
                f"Snapshot checksum validation failed: {snapshot.id}",
                details={"snapshot_id": snapshot.id, "expected": snapshot.checksum, "actual": actual},
            )

    async def restore(self, snapshot_id: str) -> RestoreResult:
        """
        Replace a table's rows with a snapshot's contents.

        Raises:
            NotFoundError: Unknown snapshot id.
            SnapshotCorruptedError: Checksum mismatch or malformed snapshot.
            TransientComputationError: Table write failed; rows unchanged.
        """
        try:
            snapshot = await self.get(snapshot_id)
            self._verify_checksum(snapshot)

            async with self._table_lock(snapshot.league_id, snapshot.season_id):
                backup_id = None
                if self.settings.SNAPSHOT_BACKUP_BEFORE_RESTORE:
                    backup_id = await self.create(
                        snapshot.league_id,
                        snapshot.season_id,
                        description=f"Pre-restore backup before {snapshot.id}",
                    )
                restored = await self.repository.replace_table_entries(
                    snapshot.league_id,
                    snapshot.season_id,
                    snapshot.entries,
                    source=f"snapshot_restore:{snapshot.id}",
                )
        except AutomationError as e:
            record_snapshot_operation("restore", "failure")
            logger.error(f"[SNAPSHOT] Restore of {snapshot_id} failed ({e.kind}): {e.message}")
            raise

        record_snapshot_operation("restore", "success")
        logger.info(
            f"[SNAPSHOT] Restored {snapshot.id} into league={snapshot.league_id} "
            f"season={snapshot.season_id} ({restored} entries, backup={backup_id})"
        )
        return RestoreResult(
            snapshot_id=snapshot.id,
            league_id=snapshot.league_id,
            season_id=snapshot.season_id,
            entries_restored=restored,
            backup_snapshot_id=backup_id,
        )

    async def delete(self, snapshot_id: str) -> None:
        """
        Raises:
            NotFoundError: Unknown or already deleted snapshot id.
        """
        try:
            await self._run(self.storage.delete, snapshot_id)
        except AutomationError:
            record_snapshot_operation("delete", "failure")
            raise
        record_snapshot_operation("delete", "success")
        logger.info(f"[SNAPSHOT] Deleted {snapshot_id}")

    async def delete_older_than(self, days: Optional[int] = None) -> int:
        """
        Delete every snapshot created more than `days` days ago
        (default SNAPSHOT_MAX_AGE_DAYS).

        Returns:
            Number of snapshots deleted.
        """
        max_age = self.settings.SNAPSHOT_MAX_AGE_DAYS if days is None else days
        cutoff = _utc_now() - timedelta(days=max_age)
        deleted = 0
        for snapshot_id in await self._run(self.storage.list_ids):
            try:
                snapshot = await self.get(snapshot_id)
            except SnapshotCorruptedError as e:
                logger.warning(f"[SNAPSHOT] Skipping unreadable snapshot {snapshot_id}: {e.message}")
                continue
            except NotFoundError:
                continue
            if snapshot.created_at < cutoff:
                await self.delete(snapshot_id)
                deleted += 1
        if deleted:
            logger.info(f"[SNAPSHOT] Retention sweep removed {deleted} snapshots older than {max_age} days")
        return deleted

    async def _enforce_retention(self, league_id: int, season_id: int) -> None:
        ids = await self._run(self.storage.list_ids, league_id, season_id)
        for snapshot_id in ids[self.settings.SNAPSHOT_MAX_PER_TABLE:]:
            try:
                await self.delete(snapshot_id)
            except NotFoundError:
                continue
            logger.debug(f"[SNAPSHOT] Retention removed {snapshot_id}")

    def storage_available(self) -> bool:
        return self.storage.is_writable()
