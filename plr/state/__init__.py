"""
On-disk state of tracked playlists

Each tracked playlist owns a directory under ``<plr_dir>/playlists/``:

    current.snapshot            live state (YAML)
    history/<hash>.snapshot     immutable content-addressed snapshots
    staged.patch                staged changes (JSON)
    journal.log                 append-only operation log (JSON lines)
"""

from .snapshot import SnapshotStore, compute_hash, read_snapshot_file
from .staging import StagingArea
from .journal import Journal, JournalEntry, Operation

__all__ = [
    "SnapshotStore",
    "compute_hash",
    "read_snapshot_file",
    "StagingArea",
    "Journal",
    "JournalEntry",
    "Operation",
]
