"""
Patch application, locally and against a remote provider

Both paths run the same three phases in a fixed order:

1. Removals, resolved by identity against the list the patch was computed
   from, never by a position that earlier deletions may have shifted.
2. Additions, inserted at their recorded index from lowest to highest so an
   insertion never shifts a later one.
3. Moves, applied last as single-element relocations on the fully sized list.

The remote path issues one provider call per change. All indices are
derived from a single baseline fetched before the first call plus the
calls already issued; the remote is never re-fetched between calls.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..exceptions import InvalidIndexError, ItemNotFoundError, ProviderError
from ..provider.models import DiffPatch, Snapshot, Track, TrackMoved, TrackRemoved
from ..state.snapshot import hashed
from ..utils.logger import get_logger
from .diff import plan_moves


logger = get_logger(__name__)

PHASES = ("removals", "additions", "moves")

ProgressCallback = Callable[[str, int, int], None]


def resolve_removals(tracks: Sequence[Track], removals: Sequence[TrackRemoved]) -> List[int]:
    """
    Map every removal to the position it deletes in ``tracks``

    The recorded index is used when the track there has the same identity
    and is not already claimed; otherwise the first unclaimed occurrence of
    the identity is taken.

    Args:
        tracks: List the removals refer to (before any deletion)
        removals: Removal changes in application order

    Returns:
        Claimed position for each removal, aligned with ``removals``

    Raises:
        ItemNotFoundError: If a removal has no remaining occurrence
    """
    occurrences: Dict[object, List[int]] = {}
    for position, track in enumerate(tracks):
        occurrences.setdefault(track.identity, []).append(position)

    claimed = set()
    resolved = []
    for change in removals:
        position = change.index
        if not (0 <= position < len(tracks) and position not in claimed and tracks[position] == change.track):
            position = next(
                (candidate for candidate in occurrences.get(change.track.identity, [])
                 if candidate not in claimed),
                None
            )
        if position is None:
            raise ItemNotFoundError(
                f"Cannot remove '{change.track.name}' ({change.track.id}): not in playlist",
                details={'track_id': change.track.id, 'index': change.index}
            )
        claimed.add(position)
        resolved.append(position)
    return resolved


def _locate_move(working: Sequence[Track], change: TrackMoved) -> int:
    """Position of the track a move refers to in the working list"""
    if 0 <= change.from_index < len(working) and working[change.from_index] == change.track:
        return change.from_index
    for position, track in enumerate(working):
        if track == change.track:
            return position
    raise ItemNotFoundError(
        f"Cannot move '{change.track.name}' ({change.track.id}): not in playlist",
        details={'track_id': change.track.id, 'from': change.from_index}
    )


def apply_tracks(tracks: Sequence[Track], patch: DiffPatch) -> List[Track]:
    """
    Apply a patch to a track list

    Args:
        tracks: Base track order
        patch: Patch in any order; it is grouped before application

    Returns:
        New track list

    Raises:
        ItemNotFoundError: A removal or move names a track that is not present
        InvalidIndexError: An addition index is negative or a move target is out of range
    """
    grouped = patch.grouped()

    claimed = set(resolve_removals(tracks, grouped.removed))
    working = [track for position, track in enumerate(tracks) if position not in claimed]

    for change in sorted(grouped.added, key=lambda added: added.index):
        if change.index < 0:
            raise InvalidIndexError(
                f"Invalid position {change.index} for '{change.track.name}'",
                details={'track_id': change.track.id, 'index': change.index}
            )
        # Past-the-end indices append
        working.insert(min(change.index, len(working)), change.track)

    for change in grouped.moved:
        from_index = _locate_move(working, change)
        if not 0 <= change.to_index < len(working):
            raise InvalidIndexError(
                f"Cannot move '{change.track.name}' to position {change.to_index}: "
                f"playlist has {len(working)} tracks",
                details={'track_id': change.track.id, 'to': change.to_index}
            )
        track = working.pop(from_index)
        working.insert(change.to_index, track)

    return working


def apply_patch(base: Snapshot, patch: DiffPatch) -> Snapshot:
    """
    Apply a patch to a snapshot

    ``apply_patch(base, diff(base, target))`` reproduces ``target``'s tracks.
    Collection id, name, description and provider are taken from ``base``.

    Returns:
        New snapshot carrying its recomputed content hash
    """
    return hashed(base.with_tracks(apply_tracks(base.tracks, patch)))


def insert_before_index(from_index: int, to_index: int) -> int:
    """
    Insert-before position that lands a relocated element exactly at ``to_index``

    Relocate-range primitives take the destination in coordinates where the
    source slot is still occupied, so a forward move targets ``to + 1``.
    """
    return to_index + 1 if from_index < to_index else to_index


@dataclass
class RemoteApplyResult:
    """
    Outcome of a remote patch application

    Attributes:
        removed: Removal calls issued
        added: Addition calls issued
        moved: Move calls issued
        replanned_moves: Whether the move phase was planned from the local
                         model instead of taken from the patch
        tracks: Local model of the remote list after the last call
    """
    removed: int = 0
    added: int = 0
    moved: int = 0
    replanned_moves: bool = False
    tracks: List[Track] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return self.removed + self.added + self.moved


def _moves_fit(model: Sequence[Track], moves: Sequence[TrackMoved]) -> bool:
    """Whether the patch's moves are valid positions for ``model``"""
    working = list(model)
    for change in moves:
        if not (0 <= change.from_index < len(working) and 0 <= change.to_index < len(working)):
            return False
        if working[change.from_index] != change.track:
            return False
        working.insert(change.to_index, working.pop(change.from_index))
    return True


def apply_remote(
    provider,
    collection_id: str,
    patch: DiffPatch,
    desired_state: Snapshot,
    baseline: Snapshot,
    progress: Optional[ProgressCallback] = None
) -> RemoteApplyResult:
    """
    Replay a patch on the remote collection, one provider call per change

    Args:
        provider: Provider exposing remove_track/add_track/move_track
        collection_id: Remote collection id
        patch: Patch computed as ``diff(baseline, desired_state)``
        desired_state: Snapshot the remote should match afterwards
        baseline: Remote snapshot fetched once before the first phase
        progress: Optional callback (message, done, total)

    Returns:
        RemoteApplyResult with call counts and the final local model

    Raises:
        ValueError: If the patch does not turn the baseline into the
                    desired state (checked before any remote call)
        ProviderError: If any call fails. Remaining phases are skipped;
                       ``phases_completed`` says how far the remote got.
    """
    grouped = patch.grouped()
    expected = apply_tracks(baseline.tracks, grouped)
    if [track.identity for track in expected] != [track.identity for track in desired_state.tracks]:
        raise ValueError("Patch does not transform the fetched remote state into the desired state")

    result = RemoteApplyResult()
    model = list(baseline.tracks)
    total = len(grouped)
    phases_completed = 0
    phase = PHASES[0]

    def report(message: str) -> None:
        if progress:
            progress(message, result.calls, total)

    try:
        # Phase 1: removals by identity, positions pinned to the baseline
        positions = resolve_removals(model, grouped.removed)
        for change, position in zip(grouped.removed, positions):
            provider.remove_track(collection_id, model[position], position, baseline)
            result.removed += 1
            report(f"Removed {change.track.display_name}")
        claimed = set(positions)
        model = [track for position, track in enumerate(model) if position not in claimed]
        phases_completed = 1

        # Phase 2: additions in ascending index
        phase = PHASES[1]
        for change in sorted(grouped.added, key=lambda added: added.index):
            remote_track = provider.add_track(collection_id, change.track, change.index)
            if provider.supports_positional_insert:
                model.insert(min(change.index, len(model)), remote_track)
            else:
                model.append(remote_track)
            result.added += 1
            report(f"Added {change.track.display_name}")
        phases_completed = 2

        # Phase 3: relocations against the local model
        phase = PHASES[2]
        moves = list(grouped.moved)
        if not provider.supports_positional_insert or not _moves_fit(model, moves):
            moves = plan_moves(model, desired_state.tracks)
            result.replanned_moves = True
            total = result.calls + len(moves)
            logger.debug(f"Re-planned {len(moves)} moves for {collection_id} from the local model")

        for change in moves:
            insert_before = insert_before_index(change.from_index, change.to_index)
            provider.move_track(collection_id, model, change.from_index, insert_before)
            model.insert(change.to_index, model.pop(change.from_index))
            result.moved += 1
            report(f"Moved {change.track.display_name} to #{change.to_index + 1}")
        phases_completed = 3

    except Exception as e:
        if isinstance(e, ProviderError) and e.phases_completed is not None:
            raise
        raise ProviderError(
            f"Remote {phase} failed for {collection_id}: {e}",
            details={'collection_id': collection_id, 'original_error': str(e)},
            phases_completed=phases_completed,
            phase=phase
        ) from e

    if [track.identity for track in model] != [track.identity for track in desired_state.tracks]:
        logger.warning(f"Remote model of {collection_id} does not match the desired order after push")

    result.tracks = model
    return result
