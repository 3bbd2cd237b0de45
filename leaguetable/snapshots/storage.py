"""
File storage for table snapshots.

One JSON document per snapshot under a single directory, optionally gzip
compressed. File names carry league, season and creation stamp so listing a
table never needs to open unrelated files:

    snapshot_<league>_<season>_<YYYYmmddTHHMMSSffffff>_<suffix>.json[.gz]

All methods here are blocking; the service runs them in an executor.
"""

import gzip
import hashlib
import json
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from leaguetable.errors import NotFoundError, SnapshotCorruptedError

PLAIN_SUFFIX = ".json"
GZIP_SUFFIX = ".json.gz"


def canonicalize_json(data) -> str:
    """Canonical JSON for consistent hashing."""
    return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def compute_entries_checksum(entries: list[dict]) -> str:
    """SHA256 of the canonicalized table rows."""
    return hashlib.sha256(canonicalize_json(entries).encode("utf-8")).hexdigest()


def build_snapshot_id(league_id: int, season_id: int, created_at: datetime) -> str:
    stamp = created_at.strftime("%Y%m%dT%H%M%S%f")
    return f"snapshot_{league_id}_{season_id}_{stamp}_{uuid.uuid4().hex[:6]}"


def parse_snapshot_id(snapshot_id: str) -> Optional[tuple[int, int, str]]:
    """
    Split a snapshot id into (league_id, season_id, stamp).

    Returns None for names that are not snapshot ids.
    """
    parts = snapshot_id.split("_")
    if len(parts) != 5 or parts[0] != "snapshot":
        return None
    try:
        return int(parts[1]), int(parts[2]), parts[3]
    except ValueError:
        return None


class SnapshotStorage:
    """Reads and writes snapshot documents in one directory."""

    def __init__(self, directory: str, compression: bool = True):
        self.directory = Path(directory)
        self.compression = compression

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, snapshot_id: str) -> Optional[Path]:
        if parse_snapshot_id(snapshot_id) is None:
            return None
        for suffix in (GZIP_SUFFIX, PLAIN_SUFFIX):
            path = self.directory / f"{snapshot_id}{suffix}"
            if path.exists():
                return path
        return None

    def write(self, document: dict) -> int:
        """
        Persist a snapshot document.

        Returns:
            Size in bytes on disk.
        """
        self.ensure_directory()
        payload = json.dumps(document, indent=2, default=str).encode("utf-8")
        suffix = PLAIN_SUFFIX
        if self.compression:
            payload = gzip.compress(payload)
            suffix = GZIP_SUFFIX

        path = self.directory / f"{document['id']}{suffix}"
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(payload)
        os.replace(tmp_path, path)
        return len(payload)

    def read(self, snapshot_id: str) -> dict:
        """
        Load a snapshot document.

        Raises:
            NotFoundError: No file for this id.
            SnapshotCorruptedError: File is not valid (gzipped) JSON.
        """
        path = self._path_for(snapshot_id)
        if path is None:
            raise NotFoundError("snapshot", snapshot_id)
        raw = path.read_bytes()
        size = len(raw)
        try:
            if path.name.endswith(GZIP_SUFFIX):
                raw = gzip.decompress(raw)
            document = json.loads(raw.decode("utf-8"))
        except (OSError, EOFError, UnicodeDecodeError, ValueError) as e:
            raise SnapshotCorruptedError(
                f"Snapshot {snapshot_id} is unreadable: {e}",
                details={"snapshot_id": snapshot_id},
            ) from e
        if not isinstance(document, dict):
            raise SnapshotCorruptedError(
                f"Snapshot {snapshot_id} has an invalid structure",
                details={"snapshot_id": snapshot_id},
            )
        document["size"] = size
        return document

    def delete(self, snapshot_id: str) -> None:
        path = self._path_for(snapshot_id)
        if path is None:
            raise NotFoundError("snapshot", snapshot_id)
        path.unlink()

    def list_ids(self, league_id: Optional[int] = None, season_id: Optional[int] = None) -> list[str]:
        """Snapshot ids in the directory, newest first (by stamp in the name)."""
        if not self.directory.is_dir():
            return []
        found = []
        for path in self.directory.iterdir():
            name = path.name
            if name.endswith(GZIP_SUFFIX):
                snapshot_id = name[: -len(GZIP_SUFFIX)]
            elif name.endswith(PLAIN_SUFFIX):
                snapshot_id = name[: -len(PLAIN_SUFFIX)]
            else:
                continue
            parsed = parse_snapshot_id(snapshot_id)
            if parsed is None:
                continue
            league, season, stamp = parsed
            if league_id is not None and league != league_id:
                continue
            if season_id is not None and season != season_id:
                continue
            found.append((stamp, snapshot_id))
        found.sort(reverse=True)
        return [snapshot_id for _, snapshot_id in found]

    def is_writable(self) -> bool:
        """True if the directory exists (or can be created) and accepts writes."""
        try:
            self.ensure_directory()
        except OSError:
            return False
        return os.access(self.directory, os.W_OK)
