"""
Diff engine: ordered patches between two snapshots

``diff(base, target)`` returns a DiffPatch that turns ``base`` into
``target`` when applied by the patch applier. It is pure and never touches
disk or network.

Algorithm:

1. **Matching**: every identity in ``base`` maps to a FIFO queue of its
   positions. Walking ``target`` in order, each item takes the first unused
   base occurrence of its identity, so duplicates pair up in their original
   relative order.

2. **Removals and additions**: unmatched base items become
   Removed{index = base position}; unmatched target items become
   Added{index = target position}.

3. **Moves**: the engine replays removal and addition phases to get the
   working list the applier will hold before its move phase. Each entry of
   that list knows its target position. A maximum-weight increasing
   subsequence of those positions stays put (additions weigh more than all
   kept tracks together, so they never move). Every other entry is relocated
   once, in ascending target order, to just after its closest already
   placed predecessor. ``from``/``to`` are positions in the working list at
   the time of the relocation, so a list that differs by one displaced track
   yields a single Moved change.

Matching is linear; the subsequence is computed with a Fenwick tree in
O(n log n), and relocations are tracked in a second Fenwick tree over the
slots of the working list, so the whole diff is O(n log n).
"""

import bisect
from collections import defaultdict, deque
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..provider.models import DiffPatch, Track, TrackAdded, TrackMoved, TrackRemoved


# (track, target position, pinned)
_Entry = Tuple[Track, int, bool]


def match_positions(
    base: Sequence[Track],
    target: Sequence[Track]
) -> Tuple[List[Optional[int]], List[Optional[int]]]:
    """
    Pair base and target occurrences of equal identities

    Args:
        base: Original track order
        target: Desired track order

    Returns:
        Tuple (base_to_target, target_to_base): for every position the
        matched position on the other side, or None when unmatched
    """
    queues: Dict[object, deque] = defaultdict(deque)
    for position, track in enumerate(base):
        queues[track.identity].append(position)

    base_to_target: List[Optional[int]] = [None] * len(base)
    target_to_base: List[Optional[int]] = [None] * len(target)
    for target_position, track in enumerate(target):
        remaining = queues.get(track.identity)
        if remaining:
            base_position = remaining.popleft()
            base_to_target[base_position] = target_position
            target_to_base[target_position] = base_position

    return base_to_target, target_to_base


def _stable_entries(positions: List[int], pinned: List[bool]) -> Set[int]:
    """
    Indices of a maximum-weight increasing subsequence of ``positions``

    Pinned entries weigh more than all unpinned entries combined. Among
    equally heavy chains the one ending earliest wins, and each step prefers
    the earliest predecessor.
    """
    size = len(positions)
    if size == 0:
        return set()

    heavy = size + 1
    tree: List[Optional[Tuple[int, int]]] = [None] * (size + 1)
    best = [0] * size
    previous = [-1] * size

    def query(limit: int) -> Optional[Tuple[int, int]]:
        # Max (weight, -index) over target positions < limit
        result = None
        i = limit
        while i > 0:
            node = tree[i]
            if node is not None and (result is None or node > result):
                result = node
            i -= i & -i
        return result

    def update(position: int, value: Tuple[int, int]) -> None:
        i = position + 1
        while i <= size:
            if tree[i] is None or value > tree[i]:
                tree[i] = value
            i += i & -i

    for index in range(size):
        weight = heavy if pinned[index] else 1
        found = query(positions[index])
        if found is None:
            best[index] = weight
        else:
            best[index] = found[0] + weight
            previous[index] = -found[1]
        update(positions[index], (best[index], -index))

    end = max(range(size), key=lambda index: (best[index], -index))
    stable = set()
    while end != -1:
        stable.add(end)
        end = previous[end]
    return stable


def _relocations(entries: List[_Entry]) -> List[TrackMoved]:
    """
    Moves turning ``entries`` (a working list) into target order

    Pending entries are relocated in ascending target order, each just after
    the settled entry with the closest smaller target. That entry is either
    a stable anchor or the pending entry relocated right before, which sits
    behind the same anchor. So every relocated entry ends up in a gap after
    its anchor (or at the head), appended to the entries placed there
    earlier. Slots for those gaps are laid out up front and a Fenwick tree
    over slot occupancy turns a slot into a list index in O(log n).
    """
    positions = [entry[1] for entry in entries]
    stable = _stable_entries(positions, [entry[2] for entry in entries])

    # Stable entries keep their relative order, which is also target order
    anchors = sorted(stable)
    anchor_targets = [positions[index] for index in anchors]
    anchor_rank = {index: rank for rank, index in enumerate(anchors)}
    pending = sorted((positions[index], index) for index in range(len(entries)) if index not in stable)

    # Gap 0 is the head of the list, gap r + 1 follows anchor r
    gaps = [bisect.bisect_left(anchor_targets, target_position) for target_position, _ in pending]
    gap_sizes = [0] * (len(anchors) + 1)
    for gap in gaps:
        gap_sizes[gap] += 1

    slots = [0] * len(entries)
    next_free = [0] * (len(anchors) + 1)
    slot = gap_sizes[0]
    for index in range(len(entries)):
        slots[index] = slot
        slot += 1
        rank = anchor_rank.get(index)
        if rank is not None:
            next_free[rank + 1] = slot
            slot += gap_sizes[rank + 1]

    total = slot
    tree = [0] * (total + 1)

    def update(position: int, delta: int) -> None:
        i = position + 1
        while i <= total:
            tree[i] += delta
            i += i & -i

    def occupied_before(position: int) -> int:
        count = 0
        i = position
        while i > 0:
            count += tree[i]
            i -= i & -i
        return count

    for index in range(len(entries)):
        update(slots[index], 1)

    moves: List[TrackMoved] = []
    for (_, index), gap in zip(pending, gaps):
        from_index = occupied_before(slots[index])
        update(slots[index], -1)

        destination = next_free[gap]
        next_free[gap] += 1
        to_index = occupied_before(destination)
        update(destination, 1)

        if from_index != to_index:
            moves.append(TrackMoved(track=entries[index][0], from_index=from_index, to_index=to_index))
    return moves


def plan_moves(current: Sequence[Track], target: Sequence[Track]) -> List[TrackMoved]:
    """
    Relocations that reorder ``current`` into ``target``

    Both sequences must hold the same identities with the same
    multiplicities. Used by the remote applier to re-plan the move phase for
    providers that can only append.

    Raises:
        ValueError: If the two sequences are not permutations of each other
    """
    if len(current) != len(target):
        raise ValueError(f"Cannot reorder {len(current)} tracks into {len(target)}")

    current_to_target, _ = match_positions(current, target)
    if any(position is None for position in current_to_target):
        raise ValueError("Current and target track lists hold different tracks")

    entries = [(track, current_to_target[index], False) for index, track in enumerate(current)]
    return _relocations(entries)


def diff(base: Sequence[Track], target: Sequence[Track]) -> DiffPatch:
    """
    Compute the patch transforming ``base`` into ``target``

    Args:
        base: Original ordered tracks (or a Snapshot's ``tracks``)
        target: Desired ordered tracks

    Returns:
        DiffPatch grouped Removed*, Added*, Moved*. Empty when both lists
        hold the same identities in the same order.
    """
    base = list(base)
    target = list(target)
    base_to_target, target_to_base = match_positions(base, target)

    removed = [
        TrackRemoved(track=track, index=position)
        for position, track in enumerate(base)
        if base_to_target[position] is None
    ]
    added = [
        TrackAdded(track=track, index=position)
        for position, track in enumerate(target)
        if target_to_base[position] is None
    ]

    # Working list as the applier holds it before the move phase
    # Additions land exactly at their (ascending) index, kept tracks fill the rest
    kept = iter(
        (track, base_to_target[position], False)
        for position, track in enumerate(base)
        if base_to_target[position] is not None
    )
    additions = iter(added)
    upcoming = next(additions, None)
    working: List[_Entry] = []
    for slot in range(len(target)):
        if upcoming is not None and upcoming.index == slot:
            working.append((upcoming.track, upcoming.index, True))
            upcoming = next(additions, None)
        else:
            working.append(next(kept))

    moved = _relocations(working)
    return DiffPatch(tuple(removed) + tuple(added) + tuple(moved))


def diff_snapshots(base, target) -> DiffPatch:
    """``diff`` over two Snapshot objects"""
    return diff(base.tracks, target.tracks)
