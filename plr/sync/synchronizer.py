"""
Playlist version-control engine

This module composes the snapshot store, the staging area, the journal, the
diff engine and the patch applier into the operations exposed by the CLI.

Architecture Overview:
    - **CollectionState**: Untracked, Clean or Dirty, always derived from disk
    - **CollectionStatus**: State of one collection plus its staged patch and,
      on request, the pending remote difference
    - **OperationResult**: Outcome of one operation with a display summary
    - **PlaylistSynchronizer**: Main orchestrator enforcing the preconditions
      of every operation

Operation Preconditions:
    init                      Untracked
    add / remove / move       Clean or Dirty
    commit                    Dirty
    push / pull / revert      Clean
    apply                     Clean

Every mutating operation that is not short-circuited as a no-op appends
exactly one journal entry, after the snapshot it references has been
written to history and made current.

Concurrency:
    One process per collection at a time. Snapshot, staging and journal
    files are written atomically but are not locked against a second plr
    process working on the same collection.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..config.settings import Settings, get_settings
from ..exceptions import (
    AlreadyInitializedError,
    DirtyStagingConflictError,
    InvalidIndexError,
    ItemNotFoundError,
    NotInitializedError,
    NothingToCommitError,
    PlrError,
    ProviderError,
    ProviderMismatchError,
    StorageError,
)
from ..provider.base import Provider, create_provider
from ..provider.models import (
    DiffPatch,
    ProviderKind,
    Snapshot,
    Track,
    TrackAdded,
    TrackMoved,
    TrackRemoved,
)
from ..state.journal import Journal, JournalEntry, Operation
from ..state.snapshot import SnapshotStore, compute_hash, read_snapshot_file
from ..state.staging import StagingArea
from ..utils.helpers import extract_track_id, parse_playlist_reference
from ..utils.logger import create_operation_logger, get_logger
from .diff import diff
from .patch import apply_patch, apply_tracks, resolve_removals


ProviderFactory = Callable[[ProviderKind], Provider]


class CollectionState(Enum):
    """Lifecycle state of a tracked collection"""
    UNTRACKED = "untracked"
    CLEAN = "clean"
    DIRTY = "dirty"


@dataclass
class CollectionStatus:
    """
    Snapshot of a collection's local state

    Attributes:
        collection_id: Playlist id on the provider
        state: Derived lifecycle state
        snapshot: Current snapshot (None when untracked)
        staged: Staged patch in staging order
        remote_patch: diff(current, remote), only when a remote check was requested
    """
    collection_id: str
    state: CollectionState
    snapshot: Optional[Snapshot] = None
    staged: DiffPatch = field(default_factory=DiffPatch)
    remote_patch: Optional[DiffPatch] = None

    @property
    def content_hash(self) -> Optional[str]:
        return self.snapshot.content_hash if self.snapshot else None

    @property
    def summary(self) -> str:
        if self.state is CollectionState.UNTRACKED:
            return "Not tracked"

        parts = [f"{len(self.snapshot)} tracks at {self.content_hash}"]
        if self.state is CollectionState.DIRTY:
            parts.append(f"staged {self.staged.summary}")
        if self.remote_patch is not None:
            if self.remote_patch.is_empty:
                parts.append("in sync with remote")
            else:
                parts.append(f"remote differs {self.remote_patch.summary}")
        return ", ".join(parts)


@dataclass
class OperationResult:
    """
    Outcome of a synchronizer operation

    Attributes:
        operation: Operation name (init, add, commit, push...)
        collection_id: Playlist the operation ran on
        content_hash: Hash of the current snapshot afterwards
        added: Tracks added
        removed: Tracks removed
        moved: Tracks moved
        changed: False when the operation short-circuited as a no-op
        message: Optional commit message or extra information
    """
    operation: str
    collection_id: str
    content_hash: str
    added: int = 0
    removed: int = 0
    moved: int = 0
    changed: bool = True
    message: Optional[str] = None

    @classmethod
    def from_patch(
        cls,
        operation: str,
        collection_id: str,
        content_hash: str,
        patch: DiffPatch,
        message: Optional[str] = None
    ) -> 'OperationResult':
        added, removed, moved = patch.counts()
        return cls(
            operation=operation,
            collection_id=collection_id,
            content_hash=content_hash,
            added=added,
            removed=removed,
            moved=moved,
            message=message,
        )

    @property
    def summary(self) -> str:
        """
        Human-readable description

        Returns:
            e.g. "push 3fa94c01b2de: 1 added, 1 moved", or "Already up to date"
            for a no-op
        """
        if not self.changed:
            return self.message or "Already up to date"

        parts = []
        if self.added:
            parts.append(f"{self.added} added")
        if self.removed:
            parts.append(f"{self.removed} removed")
        if self.moved:
            parts.append(f"{self.moved} moved")
        counts = ", ".join(parts) if parts else "no track changes"
        return f"{self.operation} {self.content_hash}: {counts}"


class PlaylistSynchronizer:
    """
    Orchestrator for every plr operation on tracked playlists

    All state lives on disk under ``<plr_dir>/playlists/<collection id>/``;
    the synchronizer itself only caches provider instances.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        provider_factory: Optional[ProviderFactory] = None,
        store: Optional[SnapshotStore] = None,
        staging: Optional[StagingArea] = None
    ):
        """
        Initialize the synchronizer

        Args:
            settings: Application settings (global settings when omitted)
            provider_factory: Callable building a Provider for a ProviderKind
            store: Snapshot store (built on the playlists directory when omitted)
            staging: Staging area (built on the playlists directory when omitted)
        """
        self.settings = settings or get_settings()
        self.logger = get_logger(__name__)

        playlists_directory = self.settings.get_playlists_directory()
        self.store = store or SnapshotStore(playlists_directory)
        self.staging = staging or StagingArea(playlists_directory)

        self._provider_factory = provider_factory or (lambda kind: create_provider(kind, self.settings))
        self._providers: Dict[ProviderKind, Provider] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def provider(self, kind: ProviderKind) -> Provider:
        """Provider instance for ``kind``, created once per synchronizer"""
        if kind not in self._providers:
            self._providers[kind] = self._provider_factory(kind)
        return self._providers[kind]

    def journal(self, collection_id: str) -> Journal:
        return Journal(self.store.collection_dir(collection_id))

    def resolve_collection(self, playlist: Optional[str] = None) -> str:
        """
        Collection id from a playlist reference, or the only tracked playlist

        Raises:
            NotInitializedError: If no reference is given and nothing is tracked
            PlrError: If no reference is given and several playlists are tracked
        """
        if playlist:
            return parse_playlist_reference(playlist)[1]

        tracked = self.store.tracked_collections()
        if not tracked:
            raise NotInitializedError("No playlist is tracked yet, run 'plr init' first")
        if len(tracked) > 1:
            raise PlrError(
                f"{len(tracked)} playlists are tracked; choose one with --playlist",
                details={'tracked': tracked}
            )
        return tracked[0]

    def _require_clean(self, collection_id: str, operation: str) -> Snapshot:
        """
        Current snapshot of a collection whose staging area is empty

        Raises:
            NotInitializedError: If the collection is not tracked
            DirtyStagingConflictError: If changes are staged
        """
        current = self.store.load_current(collection_id)
        staged = self.staging.load(collection_id)
        if not staged.is_empty:
            raise DirtyStagingConflictError(
                f"Cannot {operation} with {len(staged)} staged change(s); "
                "commit or reset them first",
                details={'collection_id': collection_id, 'staged': staged.summary}
            )
        return current

    def _working_view(self, collection_id: str) -> Tuple[Snapshot, DiffPatch, List[Track]]:
        """Current snapshot, staged patch and the track list they produce together"""
        current = self.store.load_current(collection_id)
        staged = self.staging.load(collection_id)
        return current, staged, apply_tracks(current.tracks, staged)

    def _record(
        self,
        collection_id: str,
        operation: Operation,
        snapshot: Snapshot,
        patch: DiffPatch,
        message: Optional[str] = None
    ) -> OperationResult:
        """Append the journal entry of a completed operation and build its result"""
        added, removed, moved = patch.counts()
        self.journal(collection_id).append(JournalEntry.create(
            operation,
            snapshot.content_hash,
            added=added,
            removed=removed,
            moved=moved,
            message=message,
        ))
        return OperationResult.from_patch(
            operation.value, collection_id, snapshot.content_hash, patch, message
        )

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def init(self, url_or_id: str, provider: Optional[Union[str, ProviderKind]] = None) -> OperationResult:
        """
        Start tracking a remote playlist

        Args:
            url_or_id: Playlist URL, URI or id
            provider: Provider to use when the reference alone is ambiguous

        Returns:
            OperationResult counting every fetched track as added

        Raises:
            AlreadyInitializedError: If the playlist is already tracked
            ProviderError: If the fetch fails
        """
        detected, collection_id = parse_playlist_reference(url_or_id)
        if provider is not None:
            kind = ProviderKind.parse(provider)
        else:
            kind = detected or self.settings.get_default_provider()

        if self.store.is_initialized(collection_id):
            raise AlreadyInitializedError(
                f"Playlist {collection_id} is already tracked",
                details={'collection_id': collection_id}
            )

        self.logger.info(f"Initializing {collection_id} from {kind.value}")
        remote = self.provider(kind).fetch(collection_id)
        if remote.provider is not kind:
            raise ProviderMismatchError(
                f"{kind.value} returned a {remote.provider.value} playlist for {collection_id}"
            )

        snapshot = self.store.save(collection_id, remote)
        self.staging.clear(collection_id)
        return self._record(
            collection_id, Operation.INIT, snapshot, diff((), snapshot.tracks), message=snapshot.name
        )

    def stage_add(self, collection_id: str, track: Track, index: Optional[int] = None) -> OperationResult:
        """
        Stage the insertion of ``track``

        Args:
            collection_id: Tracked playlist
            track: Track to insert
            index: Position in the working view; appended when omitted

        Raises:
            ProviderMismatchError: If the track comes from another provider
            InvalidIndexError: If ``index`` is outside 0..len(view)
        """
        current, _, view = self._working_view(collection_id)
        if track.provider is not current.provider:
            raise ProviderMismatchError(
                f"Cannot add a {track.provider.value} track to a {current.provider.value} playlist",
                details={'collection_id': collection_id, 'track_id': track.id}
            )

        if index is None:
            index = len(view)
        if not 0 <= index <= len(view):
            raise InvalidIndexError(
                f"Position {index} is out of range (0-{len(view)})",
                details={'collection_id': collection_id, 'index': index}
            )

        staged = self.staging.stage_change(collection_id, TrackAdded(track=track, index=index))
        self.logger.info(f"Staged add of {track.id} at {index} in {collection_id}")
        return OperationResult(
            'add', collection_id, current.content_hash, added=1, message=f"{len(staged)} change(s) staged"
        )

    def stage_remove(self, collection_id: str, track_id: str) -> OperationResult:
        """
        Stage the removal of the first track with ``track_id``

        Raises:
            ItemNotFoundError: If the working view has no such track, or it is
                               only there as a staged addition
        """
        current, staged, view = self._working_view(collection_id)
        track = next((candidate for candidate in view if candidate.id == track_id), None)
        if track is None:
            raise ItemNotFoundError(
                f"Track {track_id} is not in playlist {collection_id}",
                details={'collection_id': collection_id, 'track_id': track_id}
            )

        # Removals resolve against the current snapshot, skipping occurrences
        # already claimed by staged removals
        claimed = set(resolve_removals(current.tracks, staged.removed))
        position = next(
            (position for position, candidate in enumerate(current.tracks)
             if candidate == track and position not in claimed),
            None
        )
        if position is None:
            raise ItemNotFoundError(
                f"Track {track_id} is only staged for addition; run 'plr reset' to drop it",
                details={'collection_id': collection_id, 'track_id': track_id}
            )

        staged = self.staging.stage_change(
            collection_id, TrackRemoved(track=current.tracks[position], index=position)
        )
        self.logger.info(f"Staged removal of {track_id} from {collection_id}")
        return OperationResult(
            'remove', collection_id, current.content_hash, removed=1, message=f"{len(staged)} change(s) staged"
        )

    def stage_move(self, collection_id: str, track_id: str, to_index: int) -> OperationResult:
        """
        Stage the relocation of the first track with ``track_id`` to ``to_index``

        Raises:
            ItemNotFoundError: If the working view has no such track
            InvalidIndexError: If ``to_index`` is out of range or the current position
        """
        current, _, view = self._working_view(collection_id)
        position = next((position for position, track in enumerate(view) if track.id == track_id), None)
        if position is None:
            raise ItemNotFoundError(
                f"Track {track_id} is not in playlist {collection_id}",
                details={'collection_id': collection_id, 'track_id': track_id}
            )
        if not 0 <= to_index < len(view):
            raise InvalidIndexError(
                f"Position {to_index} is out of range (0-{len(view) - 1})",
                details={'collection_id': collection_id, 'index': to_index}
            )
        if to_index == position:
            raise InvalidIndexError(
                f"Track {track_id} is already at position {to_index}",
                details={'collection_id': collection_id, 'index': to_index}
            )

        staged = self.staging.stage_change(
            collection_id, TrackMoved(track=view[position], from_index=position, to_index=to_index)
        )
        self.logger.info(f"Staged move of {track_id} from {position} to {to_index} in {collection_id}")
        return OperationResult(
            'move', collection_id, current.content_hash, moved=1, message=f"{len(staged)} change(s) staged"
        )

    def commit(self, collection_id: str, message: str) -> OperationResult:
        """
        Apply the staged patch to the current snapshot

        Raises:
            NotInitializedError: If the collection is not tracked
            NothingToCommitError: If nothing is staged
            ItemNotFoundError / InvalidIndexError: If the staged patch does
                not apply; current state and staging are left untouched
            StorageError: If a file cannot be written. When staging cannot
                be cleared the previous current snapshot is restored, so the
                commit can simply be retried
        """
        current = self.store.load_current(collection_id)
        staged = self.staging.load(collection_id)
        if staged.is_empty:
            raise NothingToCommitError(
                "Nothing to commit; stage changes with add, remove or move",
                details={'collection_id': collection_id}
            )

        snapshot = self.store.save(collection_id, apply_patch(current, staged))
        try:
            self.staging.clear(collection_id)
        except PlrError:
            # Staging still holds the patch, so current must not include it yet
            self.store.save_current(collection_id, current)
            raise
        result = self._record(collection_id, Operation.COMMIT, snapshot, staged, message=message)
        self.logger.info(f"Committed {collection_id} as {snapshot.content_hash}: {message}")
        return result

    def reset(self, collection_id: str) -> OperationResult:
        """Discard every staged change (not journaled)"""
        current = self.store.load_current(collection_id)
        staged = self.staging.load(collection_id)
        self.staging.clear(collection_id)
        result = OperationResult.from_patch('reset', collection_id, current.content_hash, staged)
        result.changed = not staged.is_empty
        if not result.changed:
            result.message = "Nothing staged"
        return result

    def push(self, collection_id: str, show_progress: bool = True) -> OperationResult:
        """
        Make the remote playlist match the current snapshot

        The remote is fetched once; ``diff(remote, current)`` is replayed
        with one provider call per change. A failure part-way leaves the
        remote partially updated and no journal entry; pushing again
        re-diffs against the live remote and converges.

        Raises:
            DirtyStagingConflictError: If changes are staged
            ProviderError: If write access is missing or a remote call fails
        """
        current = self._require_clean(collection_id, "push")
        provider = self.provider(current.provider)

        if self.settings.sync.verify_write_access and not provider.can_modify(collection_id):
            raise ProviderError(
                f"No write access to playlist {collection_id}; nothing was changed",
                details={'collection_id': collection_id},
                phases_completed=0,
                phase="permission check"
            )

        remote = provider.fetch(collection_id)
        patch = diff(remote.tracks, current.tracks)
        if patch.is_empty:
            self.logger.info(f"Remote {collection_id} already matches {current.content_hash}")
            return OperationResult('push', collection_id, current.content_hash, changed=False)

        operation_logger = create_operation_logger(__name__, f"push {current.name}", show_progress)
        operation_logger.start(f"Pushing {patch.summary} to {current.name}")
        try:
            provider.apply(collection_id, patch, current, baseline=remote, progress=operation_logger.progress)
        except Exception as e:
            operation_logger.error(str(e), e)
            raise
        operation_logger.complete(f"Pushed {current.content_hash} to {current.name}")

        return self._record(collection_id, Operation.PUSH, current, patch)

    def pull(self, collection_id: str) -> OperationResult:
        """
        Replace the current snapshot with the remote state

        The diff is computed for the reported counts only; the remote
        snapshot is stored as is.

        Raises:
            DirtyStagingConflictError: If changes are staged
            ProviderError: If the fetch fails
        """
        current = self._require_clean(collection_id, "pull")
        remote = self.provider(current.provider).fetch(collection_id)

        if compute_hash(remote) == current.content_hash:
            self.logger.info(f"Local {collection_id} already matches remote")
            return OperationResult('pull', collection_id, current.content_hash, changed=False)

        patch = diff(current.tracks, remote.tracks)
        snapshot = self.store.save(collection_id, remote)
        return self._record(collection_id, Operation.PULL, snapshot, patch)

    def revert(self, collection_id: str, content_hash: Optional[str] = None) -> OperationResult:
        """
        Make a historical snapshot current again

        Args:
            collection_id: Tracked playlist
            content_hash: Full hash or prefix; defaults to the state before
                          the most recent journaled operation

        Raises:
            DirtyStagingConflictError: If changes are staged
            NothingToRevertError: If no hash is given and the journal has
                                  fewer than two entries
            HashNotFoundError / AmbiguousHashError: If the hash cannot be resolved
        """
        current = self._require_clean(collection_id, "revert")
        if content_hash is None:
            content_hash = self.journal(collection_id).previous_hash()

        target = self.store.load_historical(collection_id, content_hash)
        patch = diff(current.tracks, target.tracks)
        snapshot = self.store.save(collection_id, target)
        return self._record(
            collection_id, Operation.COMMIT, snapshot, patch, message=f"Revert to {snapshot.content_hash}"
        )

    def apply_file(self, path: Union[str, Path], collection_id: Optional[str] = None) -> OperationResult:
        """
        Replace the current snapshot with a snapshot file

        Args:
            path: YAML snapshot file (e.g. an edited copy of current.snapshot)
            collection_id: Target playlist; defaults to the id inside the file

        Raises:
            StorageError: If the file does not exist
            CorruptStateError: If the file is not a valid snapshot
            ProviderMismatchError: If the file belongs to another provider
            DirtyStagingConflictError: If changes are staged
        """
        try:
            incoming = read_snapshot_file(path)
        except FileNotFoundError as e:
            raise StorageError(f"Snapshot file {path} not found", details={'path': str(path)}) from e

        collection_id = collection_id or incoming.id
        current = self._require_clean(collection_id, "apply")
        if incoming.provider is not current.provider:
            raise ProviderMismatchError(
                f"{path} holds a {incoming.provider.value} playlist, "
                f"{collection_id} is on {current.provider.value}",
                details={'collection_id': collection_id, 'path': str(path)}
            )
        if incoming.id != collection_id:
            self.logger.warning(f"{path} was exported from {incoming.id}, applying to {collection_id}")
            incoming = replace(incoming, id=collection_id)

        patch = diff(current.tracks, incoming.tracks)
        snapshot = self.store.save(collection_id, incoming)
        return self._record(collection_id, Operation.APPLY, snapshot, patch, message=f"Applied from {path}")

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    def status(self, collection_id: str, remote: bool = False) -> CollectionStatus:
        """
        Derive the state of a collection

        Args:
            collection_id: Playlist id
            remote: Also fetch the remote and compare it with the current snapshot
        """
        snapshot = self.store.find_current_or_none(collection_id)
        if snapshot is None:
            return CollectionStatus(collection_id, CollectionState.UNTRACKED)

        staged = self.staging.load(collection_id)
        state = CollectionState.CLEAN if staged.is_empty else CollectionState.DIRTY
        status = CollectionStatus(collection_id, state, snapshot, staged)
        if remote:
            status.remote_patch = diff(snapshot.tracks, self.provider(snapshot.provider).fetch(collection_id).tracks)
        return status

    def log(self, collection_id: str, limit: Optional[int] = None) -> List[JournalEntry]:
        """Journal entries, newest first"""
        self.store.load_current(collection_id)
        entries = list(reversed(self.journal(collection_id).read_all()))
        return entries[:limit] if limit else entries

    def diff_staged(self, collection_id: str) -> DiffPatch:
        """Staged changes in application order"""
        self.store.load_current(collection_id)
        return self.staging.load(collection_id).grouped()

    def diff_remote(self, collection_id: str) -> DiffPatch:
        """Changes a pull would bring in: diff(current, remote)"""
        current = self.store.load_current(collection_id)
        return diff(current.tracks, self.provider(current.provider).fetch(collection_id).tracks)

    def tracked_collections(self) -> List[CollectionStatus]:
        """Status of every tracked playlist"""
        return [self.status(collection_id) for collection_id in self.store.tracked_collections()]

    def find(self, collection_id: str, query: str) -> List[Tuple[int, Track]]:
        """
        Case-insensitive title/artist search in the current snapshot

        Returns:
            (position, track) pairs in playlist order
        """
        current = self.store.load_current(collection_id)
        needle = query.strip().lower()
        return [
            (position, track) for position, track in enumerate(current.tracks)
            if needle in track.name.lower() or any(needle in artist.lower() for artist in track.artists)
        ]

    def search(self, query: str, provider: Optional[Union[str, ProviderKind]] = None,
               limit: Optional[int] = None) -> List[Track]:
        """Search a provider's catalog (default provider when omitted)"""
        kind = ProviderKind.parse(provider) if provider else self.settings.get_default_provider()
        return self.provider(kind).search(query, limit)

    def resolve_track(self, collection_id: str, url_or_id: str) -> Track:
        """Fetch the track a URL or id refers to from the collection's provider"""
        current = self.store.load_current(collection_id)
        return self.provider(current.provider).fetch_track(extract_track_id(url_or_id))

    def playable_url(self, collection_id: str, track_id: str) -> str:
        """
        Player URL of a track in the current snapshot

        Raises:
            ItemNotFoundError: If the track is not in the playlist
        """
        current = self.store.load_current(collection_id)
        position = current.index_of(track_id)
        if position is None:
            raise ItemNotFoundError(
                f"Track {track_id} is not in playlist {collection_id}",
                details={'collection_id': collection_id, 'track_id': track_id}
            )
        return self.provider(current.provider).playable_url(current.tracks[position])


# Global synchronizer instance
_synchronizer_instance: Optional[PlaylistSynchronizer] = None


def get_synchronizer() -> PlaylistSynchronizer:
    """
    Get the global playlist synchronizer instance

    Returns:
        Global PlaylistSynchronizer instance, created on first access
    """
    global _synchronizer_instance
    if not _synchronizer_instance:
        _synchronizer_instance = PlaylistSynchronizer()
    return _synchronizer_instance


def reset_synchronizer() -> None:
    """Drop the global instance so the next access picks up new settings"""
    global _synchronizer_instance
    _synchronizer_instance = None
