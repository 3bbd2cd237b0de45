"""Tests for the snapshot service and file storage.

Verifies:
1. create -> restore round trip leaves rows unchanged
2. restore reverts a bad recomputation and writes a pre-restore backup
3. NotFoundError for unknown ids and double delete
4. Checksum mismatch and unreadable files raise SnapshotCorruptedError
5. Retention per table and by age
"""

from datetime import datetime, timedelta, timezone

import pytest

from leaguetable.calculation import TableCalculationEngine
from leaguetable.errors import NotFoundError, SnapshotCorruptedError
from leaguetable.models import entry_to_dict
from leaguetable.queue import QueueManager
from leaguetable.snapshots import SnapshotService, compute_entries_checksum


async def current_rows(repository, fixture):
    rows = await repository.list_table_entries(fixture.league_id, fixture.season_id)
    return [entry_to_dict(row) for row in rows]


@pytest.fixture
async def calculated(repository, bezirksliga):
    """Bezirksliga with its table computed."""
    await TableCalculationEngine(repository).calculate(bezirksliga.league_id, bezirksliga.season_id)
    return bezirksliga


class TestCreateAndRead:
    @pytest.mark.asyncio
    async def test_create_list_get(self, repository, settings, calculated):
        service = SnapshotService(repository, settings)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id, "before matchday 4")

        listed = await service.list(calculated.league_id, calculated.season_id)
        assert [meta["id"] for meta in listed] == [snapshot_id]
        assert listed[0]["entry_count"] == 3
        assert listed[0]["description"] == "before matchday 4"
        assert listed[0]["size"] > 0
        assert "entries" not in listed[0]

        snapshot = await service.get(snapshot_id)
        assert snapshot.entries == await current_rows(repository, calculated)
        assert snapshot.checksum == compute_entries_checksum(snapshot.entries)

    @pytest.mark.asyncio
    async def test_create_does_not_mutate_rows(self, repository, settings, calculated):
        before = await current_rows(repository, calculated)
        await SnapshotService(repository, settings).create(calculated.league_id, calculated.season_id)
        assert await current_rows(repository, calculated) == before

    @pytest.mark.asyncio
    async def test_uncompressed_storage(self, repository, make_settings, calculated, tmp_path):
        settings = make_settings(SNAPSHOT_COMPRESSION=False, SNAPSHOT_DIR=str(tmp_path / "plain"))
        snapshot_id = await SnapshotService(repository, settings).create(
            calculated.league_id, calculated.season_id)
        assert (tmp_path / "plain" / f"{snapshot_id}.json").exists()

    @pytest.mark.asyncio
    async def test_create_unknown_league(self, repository, settings, calculated):
        with pytest.raises(NotFoundError):
            await SnapshotService(repository, settings).create(999, calculated.season_id)

    @pytest.mark.asyncio
    async def test_list_empty(self, repository, settings, calculated):
        assert await SnapshotService(repository, settings).list(calculated.league_id, calculated.season_id) == []


class TestRestore:
    @pytest.mark.asyncio
    async def test_round_trip(self, repository, settings, calculated):
        """create immediately followed by restore leaves the rows unchanged."""
        service = SnapshotService(repository, settings)
        before = await current_rows(repository, calculated)

        snapshot_id = await service.create(calculated.league_id, calculated.season_id)
        result = await service.restore(snapshot_id)

        assert result.entries_restored == 3
        assert await current_rows(repository, calculated) == before
        rows = await repository.list_table_entries(calculated.league_id, calculated.season_id)
        assert all(row.calculation_source == f"snapshot_restore:{snapshot_id}" for row in rows)

    @pytest.mark.asyncio
    async def test_restore_reverts_bad_table(self, repository, settings, calculated):
        service = SnapshotService(repository, settings)
        before = await current_rows(repository, calculated)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)

        broken = [dict(row, points=99) for row in before]
        await repository.replace_table_entries(calculated.league_id, calculated.season_id, broken)

        await service.restore(snapshot_id)
        assert await current_rows(repository, calculated) == before

    @pytest.mark.asyncio
    async def test_backup_before_restore(self, repository, settings, calculated):
        service = SnapshotService(repository, settings)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)

        result = await service.restore(snapshot_id)
        assert result.backup_snapshot_id is not None
        assert result.backup_snapshot_id != snapshot_id
        backup = await service.get(result.backup_snapshot_id)
        assert snapshot_id in backup.description

    @pytest.mark.asyncio
    async def test_no_backup_when_disabled(self, repository, make_settings, calculated):
        service = SnapshotService(repository, make_settings(SNAPSHOT_BACKUP_BEFORE_RESTORE=False))
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)
        result = await service.restore(snapshot_id)
        assert result.backup_snapshot_id is None
        assert len(await service.list(calculated.league_id, calculated.season_id)) == 1

    @pytest.mark.asyncio
    async def test_restore_holds_table_lock(self, repository, settings, calculated, make_fake_engine, monkeypatch):
        queue = QueueManager(make_fake_engine(), settings)
        service = SnapshotService(repository, settings, queue=queue)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)

        seen = []
        original = repository.replace_table_entries

        async def recording(league_id, season_id, rows, source="automatic"):
            seen.append(queue.is_locked(league_id, season_id))
            return await original(league_id, season_id, rows, source=source)

        monkeypatch.setattr(repository, "replace_table_entries", recording)
        await service.restore(snapshot_id)

        assert seen == [True]
        assert not queue.is_locked(calculated.league_id, calculated.season_id)

    @pytest.mark.asyncio
    async def test_restore_unknown(self, repository, settings, calculated):
        with pytest.raises(NotFoundError):
            await SnapshotService(repository, settings).restore("snapshot_1_1_20250101T000000000000_abcdef")

    @pytest.mark.asyncio
    async def test_checksum_mismatch(self, repository, settings, calculated):
        service = SnapshotService(repository, settings)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)

        document = service.storage.read(snapshot_id)
        document["entries"][0]["points"] += 1
        service.storage.write(document)

        before = await current_rows(repository, calculated)
        with pytest.raises(SnapshotCorruptedError):
            await service.restore(snapshot_id)
        assert await current_rows(repository, calculated) == before

    @pytest.mark.asyncio
    async def test_unreadable_file(self, repository, settings, calculated, tmp_path):
        service = SnapshotService(repository, settings)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)
        (tmp_path / "snapshots" / f"{snapshot_id}.json.gz").write_bytes(b"not gzip at all")

        with pytest.raises(SnapshotCorruptedError):
            await service.get(snapshot_id)
        assert await service.list(calculated.league_id, calculated.season_id) == []

    @pytest.mark.asyncio
    async def test_malformed_entries(self, repository, settings, calculated):
        service = SnapshotService(repository, settings)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)

        document = service.storage.read(snapshot_id)
        del document["entries"][0]["points"]
        service.storage.write(document)

        with pytest.raises(SnapshotCorruptedError):
            await service.get(snapshot_id)


class TestDeleteAndRetention:
    @pytest.mark.asyncio
    async def test_delete_twice(self, repository, settings, calculated):
        """The second delete of the same id is detectable."""
        service = SnapshotService(repository, settings)
        snapshot_id = await service.create(calculated.league_id, calculated.season_id)

        await service.delete(snapshot_id)
        with pytest.raises(NotFoundError):
            await service.delete(snapshot_id)
        with pytest.raises(NotFoundError):
            await service.get(snapshot_id)

    @pytest.mark.asyncio
    async def test_delete_garbage_id(self, repository, settings, calculated):
        with pytest.raises(NotFoundError):
            await SnapshotService(repository, settings).delete("../../etc/passwd")

    @pytest.mark.asyncio
    async def test_max_per_table(self, repository, make_settings, calculated):
        service = SnapshotService(repository, make_settings(SNAPSHOT_MAX_PER_TABLE=2))
        ids = [await service.create(calculated.league_id, calculated.season_id) for _ in range(3)]

        listed = [meta["id"] for meta in await service.list(calculated.league_id, calculated.season_id)]
        assert listed == [ids[2], ids[1]]

    @pytest.mark.asyncio
    async def test_delete_older_than(self, repository, settings, calculated):
        service = SnapshotService(repository, settings)
        old_id = await service.create(calculated.league_id, calculated.season_id)
        fresh_id = await service.create(calculated.league_id, calculated.season_id)

        document = service.storage.read(old_id)
        document["created_at"] = (datetime.now(timezone.utc) - timedelta(days=45)).isoformat()
        service.storage.write(document)

        assert await service.delete_older_than(30) == 1
        listed = [meta["id"] for meta in await service.list(calculated.league_id, calculated.season_id)]
        assert listed == [fresh_id]

    @pytest.mark.asyncio
    async def test_storage_available(self, repository, settings):
        assert SnapshotService(repository, settings).storage_available()
