"""
Content-addressed snapshot storage

Each tracked playlist owns a directory under the playlists root:

    <playlists>/<collection id>/
        current.snapshot            live state, YAML, hand-editable
        history/<hash>.snapshot     immutable historical states

Snapshots are identified by a 12 hex character content hash: the first 48
bits of a SHA-256 digest over a canonical JSON serialization of the
snapshot with its own hash field left out. History files are never deleted
or rewritten; saving a hash that already exists is a no-op.

Prefix lookups go through a per-collection sorted hash index built from a
single directory listing the first time the collection's history is
queried, then kept current by ``save_historical``. A prefix shared by more
than one hash is reported as ambiguous instead of picking one.
"""

import bisect
import hashlib
import json
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from ..exceptions import (
    AmbiguousHashError,
    CorruptStateError,
    HashNotFoundError,
    NotInitializedError,
    StorageError,
)
from ..provider.models import Snapshot
from ..utils.helpers import atomic_write_text
from ..utils.logger import get_logger


HASH_LENGTH = 12
SNAPSHOT_SUFFIX = ".snapshot"
CURRENT_FILE = "current" + SNAPSHOT_SUFFIX
HISTORY_DIR = "history"

_HEX_PATTERN = re.compile(r'^[0-9a-f]+$')


def canonical_bytes(snapshot: Snapshot) -> bytes:
    """Canonical serialization hashed by ``compute_hash`` (hash field excluded)"""
    payload = snapshot.to_dict(include_hash=False)
    return json.dumps(
        payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False
    ).encode('utf-8')


def compute_hash(snapshot: Snapshot) -> str:
    """
    Compute the content hash of a snapshot

    Deterministic across runs and independent of the snapshot's current
    ``content_hash`` value.

    Args:
        snapshot: Snapshot to fingerprint

    Returns:
        12 lowercase hex characters
    """
    return hashlib.sha256(canonical_bytes(snapshot)).hexdigest()[:HASH_LENGTH]


def hashed(snapshot: Snapshot) -> Snapshot:
    """Return ``snapshot`` carrying its freshly computed hash"""
    return snapshot.with_hash(compute_hash(snapshot))


def dump_snapshot(snapshot: Snapshot) -> str:
    """Render a snapshot as a YAML document"""
    return yaml.safe_dump(
        snapshot.to_dict(include_hash=True),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def read_snapshot_file(path: Union[str, Path]) -> Snapshot:
    """
    Parse a snapshot file and recompute its hash

    The hash written in the file is informational only; the returned
    snapshot always carries the hash of its actual content.

    Args:
        path: YAML snapshot file

    Returns:
        Snapshot with a freshly computed ``content_hash``

    Raises:
        CorruptStateError: If the file is not a valid snapshot document
        StorageError: If the file cannot be read
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}", details={'path': str(path)}) from e
    except yaml.YAMLError as e:
        raise CorruptStateError(f"Snapshot file {path} is not valid YAML: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise CorruptStateError(f"Snapshot file {path} does not contain a mapping", path=str(path))

    try:
        snapshot = Snapshot.from_dict(data)
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise CorruptStateError(f"Snapshot file {path} is malformed: {e!r}", path=str(path)) from e

    return hashed(snapshot)


class SnapshotStore:
    """
    Durable storage of current and historical snapshots per collection

    Attributes:
        root: Directory containing one sub-directory per tracked collection
    """

    def __init__(self, root: Union[str, Path]):
        """
        Initialize the store

        Args:
            root: Playlists directory (``<plr_dir>/playlists``)
        """
        self.root = Path(root)
        self.logger = get_logger(__name__)
        self._hash_index: Dict[str, List[str]] = {}

    def collection_dir(self, collection_id: str) -> Path:
        return self.root / collection_id

    def current_path(self, collection_id: str) -> Path:
        return self.collection_dir(collection_id) / CURRENT_FILE

    def history_dir(self, collection_id: str) -> Path:
        return self.collection_dir(collection_id) / HISTORY_DIR

    def historical_path(self, collection_id: str, content_hash: str) -> Path:
        return self.history_dir(collection_id) / f"{content_hash}{SNAPSHOT_SUFFIX}"

    def is_initialized(self, collection_id: str) -> bool:
        """Whether the collection has a current snapshot"""
        return self.current_path(collection_id).exists()

    def tracked_collections(self) -> List[str]:
        """Ids of every collection with a current snapshot, sorted"""
        if not self.root.exists():
            return []
        return sorted(
            entry.name for entry in self.root.iterdir()
            if entry.is_dir() and (entry / CURRENT_FILE).exists()
        )

    def save_current(self, collection_id: str, snapshot: Snapshot) -> Snapshot:
        """
        Replace the current snapshot atomically

        Args:
            collection_id: Collection to update
            snapshot: New current state (its hash is recomputed)

        Returns:
            The stored snapshot, carrying its content hash

        Raises:
            StorageError: If the file cannot be written
        """
        snapshot = hashed(snapshot)
        path = self.current_path(collection_id)
        try:
            atomic_write_text(path, dump_snapshot(snapshot))
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", details={'path': str(path)}) from e
        self.logger.debug(f"Current snapshot of {collection_id} set to {snapshot.content_hash}")
        return snapshot

    def load_current(self, collection_id: str) -> Snapshot:
        """
        Load the current snapshot

        Raises:
            NotInitializedError: If the collection is not tracked
            CorruptStateError: If current.snapshot cannot be parsed
        """
        path = self.current_path(collection_id)
        try:
            snapshot = read_snapshot_file(path)
        except FileNotFoundError:
            raise NotInitializedError(
                f"Playlist {collection_id} is not tracked, run 'plr init' first",
                details={'collection_id': collection_id}
            )
        return snapshot

    def save_historical(self, collection_id: str, content_hash: str, snapshot: Snapshot) -> bool:
        """
        Store a snapshot in history under its hash

        Idempotent: if ``history/<hash>.snapshot`` already exists nothing is
        written, since equal hashes imply equal content.

        Args:
            collection_id: Collection the snapshot belongs to
            content_hash: Hash of ``snapshot`` (must match its content)
            snapshot: Snapshot to persist

        Returns:
            True if a new history file was written, False if it already existed

        Raises:
            ValueError: If ``content_hash`` does not match the snapshot content
            StorageError: If the file cannot be written
        """
        actual = compute_hash(snapshot)
        if actual != content_hash:
            raise ValueError(f"Hash {content_hash} does not match snapshot content ({actual})")

        path = self.historical_path(collection_id, content_hash)
        if path.exists():
            self.logger.debug(f"History already holds {content_hash} for {collection_id}")
            return False

        try:
            atomic_write_text(path, dump_snapshot(snapshot.with_hash(content_hash)))
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", details={'path': str(path)}) from e

        index = self._index(collection_id)
        position = bisect.bisect_left(index, content_hash)
        if position == len(index) or index[position] != content_hash:
            index.insert(position, content_hash)
        return True

    def save(self, collection_id: str, snapshot: Snapshot) -> Snapshot:
        """
        Persist ``snapshot`` as both historical and current state

        History is written first so a current pointer never names a hash
        missing from history.

        Returns:
            The stored snapshot with its content hash
        """
        snapshot = hashed(snapshot)
        self.save_historical(collection_id, snapshot.content_hash, snapshot)
        return self.save_current(collection_id, snapshot)

    def _index(self, collection_id: str) -> List[str]:
        """Sorted hash index of the collection's history, built on first use"""
        index = self._hash_index.get(collection_id)
        if index is None:
            history = self.history_dir(collection_id)
            hashes = []
            if history.exists():
                for entry in history.iterdir():
                    if entry.suffix == SNAPSHOT_SUFFIX and entry.is_file():
                        hashes.append(entry.stem)
            index = sorted(hashes)
            self._hash_index[collection_id] = index
        return index

    def history_hashes(self, collection_id: str) -> List[str]:
        """All stored hashes of a collection, sorted"""
        return list(self._index(collection_id))

    def resolve_hash(self, collection_id: str, hash_or_prefix: str) -> str:
        """
        Expand a hash prefix to the full stored hash

        Args:
            collection_id: Collection whose history is searched
            hash_or_prefix: Full hash or any leading part of it

        Returns:
            The unique full hash

        Raises:
            HashNotFoundError: If nothing matches (or the prefix is not hex)
            AmbiguousHashError: If more than one stored hash matches
        """
        prefix = (hash_or_prefix or '').strip().lower()
        if not prefix or not _HEX_PATTERN.match(prefix):
            raise HashNotFoundError(
                f"'{hash_or_prefix}' is not a valid snapshot hash",
                details={'collection_id': collection_id}
            )

        index = self._index(collection_id)
        start = bisect.bisect_left(index, prefix)
        matches = []
        for candidate in index[start:]:
            if not candidate.startswith(prefix):
                break
            matches.append(candidate)

        if not matches:
            raise HashNotFoundError(
                f"No snapshot matching '{prefix}' in history of {collection_id}",
                details={'collection_id': collection_id, 'prefix': prefix}
            )
        if len(matches) > 1:
            raise AmbiguousHashError(
                f"Hash prefix '{prefix}' is ambiguous: {', '.join(matches)}",
                candidates=matches,
                details={'collection_id': collection_id, 'prefix': prefix}
            )
        return matches[0]

    def load_historical(self, collection_id: str, hash_or_prefix: str) -> Snapshot:
        """
        Load a historical snapshot by full hash or unambiguous prefix

        Raises:
            HashNotFoundError: Unknown hash
            AmbiguousHashError: Prefix matches several hashes
            CorruptStateError: History file cannot be parsed
        """
        content_hash = self.resolve_hash(collection_id, hash_or_prefix)
        path = self.historical_path(collection_id, content_hash)
        try:
            snapshot = read_snapshot_file(path)
        except FileNotFoundError:
            raise HashNotFoundError(
                f"History file for {content_hash} disappeared",
                details={'collection_id': collection_id, 'path': str(path)}
            )
        if snapshot.content_hash != content_hash:
            raise CorruptStateError(
                f"History file {path} content hashes to {snapshot.content_hash}",
                path=str(path)
            )
        return snapshot

    def find_current_or_none(self, collection_id: str) -> Optional[Snapshot]:
        """Current snapshot, or None when the collection is untracked"""
        if not self.is_initialized(collection_id):
            return None
        return self.load_current(collection_id)
