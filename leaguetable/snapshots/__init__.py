"""Table snapshots: file storage and the restore service."""

from leaguetable.snapshots.service import RestoreResult, Snapshot, SnapshotService
from leaguetable.snapshots.storage import SnapshotStorage, compute_entries_checksum

__all__ = [
    "RestoreResult",
    "Snapshot",
    "SnapshotService",
    "SnapshotStorage",
    "compute_entries_checksum",
]
