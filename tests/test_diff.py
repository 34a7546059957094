"""Test the diff engine"""

import random
import time

import pytest

from plr.provider.models import ChangeKind, ProviderKind, TrackMoved
from plr.sync.diff import diff, diff_snapshots, match_positions, plan_moves
from plr.sync.patch import apply_tracks
from conftest import build_snapshot, build_track, track_ids


def tracks(ids, provider=ProviderKind.SPOTIFY):
    return [build_track(track_id, provider) for track_id in ids]


class TestMatching:
    """Test identity matching between two lists"""

    def test_duplicates_pair_in_order(self):
        """Test duplicate occurrences match first-come first-served"""
        base_to_target, target_to_base = match_positions(tracks("ABA"), tracks("AAB"))
        assert base_to_target == [0, 2, 1]
        assert target_to_base == [0, 2, 1]

    def test_unmatched_are_none(self):
        base_to_target, target_to_base = match_positions(tracks("AB"), tracks("BC"))
        assert base_to_target == [None, 0]
        assert target_to_base == [1, None]

    def test_provider_is_part_of_identity(self):
        """Test equal ids from different providers never match"""
        base_to_target, _ = match_positions(tracks("A"), tracks("A", ProviderKind.YOUTUBE))
        assert base_to_target == [None]


class TestDiff:
    """Test patches between track lists"""

    def test_empty_lists(self):
        assert diff([], []).is_empty

    def test_identical_lists(self):
        """Test equal order yields an empty patch"""
        assert diff(tracks("ABC"), tracks("ABC")).is_empty

    def test_from_empty(self):
        """Test every target track becomes an addition at its target index"""
        patch = diff([], tracks("AB"))
        assert [(change.kind, change.track.id, change.index) for change in patch] == [
            (ChangeKind.ADDED, "A", 0), (ChangeKind.ADDED, "B", 1)
        ]

    def test_to_empty(self):
        """Test every base track becomes a removal at its base index"""
        patch = diff(tracks("AB"), [])
        assert [(change.kind, change.track.id, change.index) for change in patch] == [
            (ChangeKind.REMOVED, "A", 0), (ChangeKind.REMOVED, "B", 1)
        ]

    def test_single_displaced_track(self):
        """Test swapping neighbours is reported as one move"""
        patch = diff(tracks("ACB"), tracks("ABC"))
        assert list(patch) == [TrackMoved(build_track("B"), 2, 1)]

    def test_rotation_is_one_move(self):
        patch = diff(tracks("ABCD"), tracks("BCDA"))
        assert list(patch) == [TrackMoved(build_track("A"), 0, 3)]

    def test_reversal_needs_minimum_moves(self):
        """Test a reversal of n tracks takes n - 1 moves"""
        patch = diff(tracks("ABCD"), tracks("DCBA"))
        assert patch.counts() == (0, 0, 3)

    def test_groups_in_fixed_order(self):
        """Test output is grouped removals, additions, moves"""
        patch = diff(tracks("ABC"), tracks("CDA"))
        kinds = [change.kind for change in patch]
        assert kinds == sorted(kinds, key=[ChangeKind.REMOVED, ChangeKind.ADDED, ChangeKind.MOVED].index)
        assert patch.counts() == (1, 1, 2)
        assert [change.index for change in patch.removed] == [1]
        assert [change.index for change in patch.added] == [1]

    def test_duplicate_removal_uses_unmatched_occurrence(self):
        """Test the surplus occurrence of a duplicate is the one removed"""
        patch = diff(tracks("AAB"), tracks("AB"))
        assert [(change.kind, change.index) for change in patch] == [(ChangeKind.REMOVED, 1)]

    def test_duplicate_addition(self):
        patch = diff(tracks("AB"), tracks("ABA"))
        assert [(change.kind, change.track.id, change.index) for change in patch] == [
            (ChangeKind.ADDED, "A", 2)
        ]

    def test_metadata_changes_are_ignored(self):
        """Test only identity and order are compared"""
        base = [build_track("A", name="Old")]
        target = [build_track("A", name="New", duration_ms=1)]
        assert diff(base, target).is_empty

    def test_diff_snapshots(self):
        patch = diff_snapshots(build_snapshot("AB"), build_snapshot("BA"))
        assert patch.counts() == (0, 0, 1)

    @pytest.mark.parametrize("base,target", [
        ("", "ABC"),
        ("ABC", ""),
        ("ABC", "CBA"),
        ("ABCDE", "EBDAC"),
        ("ABC", "XBYCZ"),
        ("AABBC", "BACAB"),
        ("ABCDEF", "FAEBDC"),
        ("AAAA", "AA"),
        ("ABAB", "BABA"),
        ("ABCDEFG", "GFXEDYCBA"),
    ])
    def test_apply_reproduces_target(self, base, target):
        """Test applying the patch to the base yields the target order without no-op moves"""
        patch = diff(tracks(base), tracks(target))
        assert track_ids(apply_tracks(tracks(base), patch)) == list(target)
        assert all(change.from_index != change.to_index for change in patch.moved)


class TestPlanMoves:
    """Test move planning over permutations"""

    def test_plans_minimal_moves(self):
        moves = plan_moves(tracks("BCA"), tracks("ABC"))
        assert moves == [TrackMoved(build_track("A"), 2, 0)]

    def test_already_ordered(self):
        assert plan_moves(tracks("ABC"), tracks("ABC")) == []

    def test_rejects_different_lengths(self):
        with pytest.raises(ValueError):
            plan_moves(tracks("AB"), tracks("ABC"))

    def test_rejects_different_tracks(self):
        """Test lists that are not permutations of each other are refused"""
        with pytest.raises(ValueError):
            plan_moves(tracks("AB"), tracks("AC"))


class TestLargePlaylists:
    """Test the diff engine on playlists with thousands of tracks"""

    @staticmethod
    def numbered(count):
        return [build_track(f"t{number}") for number in range(count)]

    def test_shuffle_of_large_playlist_is_fast(self):
        """Test a full shuffle of 20000 tracks diffs in near-linear time"""
        base = self.numbered(20000)
        target = list(base)
        random.Random(7).shuffle(target)

        started = time.perf_counter()
        patch = diff(base, target)
        elapsed = time.perf_counter() - started

        assert elapsed < 5.0
        assert patch.counts()[:2] == (0, 0)
        assert all(change.from_index != change.to_index for change in patch.moved)

    def test_large_edit_round_trip(self):
        """Test removals, additions and a shuffle together still reproduce the target"""
        rng = random.Random(11)
        base = self.numbered(3000)
        target = [track for track in base if rng.random() > 0.1]
        target += [build_track(f"new{number}") for number in range(300)]
        rng.shuffle(target)

        patch = diff(base, target)
        assert track_ids(apply_tracks(base, patch)) == track_ids(target)

    def test_planned_moves_replay_in_order(self):
        """Test relocations from plan_moves reorder a large list one at a time"""
        current = self.numbered(3000)
        target = list(current)
        random.Random(3).shuffle(target)

        working = list(current)
        for move in plan_moves(current, target):
            assert working[move.from_index] == move.track
            working.insert(move.to_index, working.pop(move.from_index))
        assert track_ids(working) == track_ids(target)
