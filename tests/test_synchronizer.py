"""Test the playlist synchronizer operations"""

import pytest

from plr.exceptions import (
    AlreadyInitializedError,
    DirtyStagingConflictError,
    InvalidIndexError,
    ItemNotFoundError,
    NotInitializedError,
    NothingToCommitError,
    NothingToRevertError,
    PlrError,
    ProviderError,
    ProviderMismatchError,
    StorageError,
)
from plr.provider.models import ChangeKind, ProviderKind, TrackRemoved
from plr.state.journal import Operation
from plr.state.snapshot import compute_hash, dump_snapshot
from plr.sync.synchronizer import CollectionState, OperationResult, PlaylistSynchronizer
from conftest import FakeProvider, build_snapshot, build_track, track_ids


def current_ids(synchronizer, collection_id="pl1"):
    return track_ids(synchronizer.store.load_current(collection_id).tracks)


def journal_entries(synchronizer, collection_id="pl1"):
    return synchronizer.journal(collection_id).read_all()


class TestInit:
    """Test starting to track a playlist"""

    def test_init_records_snapshot_and_journal(self, synchronizer, fake_provider):
        """Test init stores the remote state and journals it"""
        fake_provider.set_remote("pl1", "ABC", name="Road Trip")
        result = synchronizer.init("pl1")

        assert current_ids(synchronizer) == list("ABC")
        assert result.operation == "init"
        assert result.added == 3
        assert result.message == "Road Trip"

        entries = journal_entries(synchronizer)
        assert len(entries) == 1
        assert entries[0].operation is Operation.INIT
        assert entries[0].snapshot_hash == result.content_hash
        assert synchronizer.store.historical_path("pl1", result.content_hash).exists()
        assert synchronizer.status("pl1").state is CollectionState.CLEAN

    def test_init_twice(self, tracked):
        """Test a tracked playlist cannot be initialized again"""
        with pytest.raises(AlreadyInitializedError):
            tracked.init("pl1")
        assert len(journal_entries(tracked)) == 1

    def test_init_unknown_playlist(self, synchronizer):
        """Test fetch failures leave nothing behind"""
        with pytest.raises(ProviderError):
            synchronizer.init("missing")
        assert not synchronizer.store.is_initialized("missing")

    def test_init_with_wrong_provider(self, synchronizer, fake_provider):
        fake_provider.set_remote("pl1", "AB")
        with pytest.raises(ProviderMismatchError):
            synchronizer.init("pl1", provider="youtube")
        assert not synchronizer.store.is_initialized("pl1")

    def test_init_from_url(self, synchronizer, fake_provider):
        """Test the playlist id is extracted from a provider URL"""
        playlist_id = "37i9dQZF1DXcBWIGoYBM5M"
        fake_provider.set_remote(playlist_id, "A")
        synchronizer.init(f"https://open.spotify.com/playlist/{playlist_id}?si=x")
        assert synchronizer.store.tracked_collections() == [playlist_id]


class TestStaging:
    """Test add, remove, move and reset"""

    def test_add_and_commit(self, tracked):
        """Test a staged addition is committed with a new hash"""
        first_hash = tracked.store.load_current("pl1").content_hash
        tracked.stage_add("pl1", build_track("D"), 3)
        assert tracked.status("pl1").state is CollectionState.DIRTY

        result = tracked.commit("pl1", "add D")
        assert current_ids(tracked) == list("ABCD")
        assert result.content_hash != first_hash
        assert (result.added, result.removed, result.moved) == (1, 0, 0)

        entries = journal_entries(tracked)
        assert [entry.operation for entry in entries] == [Operation.INIT, Operation.COMMIT]
        assert entries[1].snapshot_hash == result.content_hash
        assert entries[1].counts_str == "+1/-0/~0"
        assert entries[1].message == "add D"
        assert tracked.staging.load("pl1").is_empty

    def test_add_appends_by_default(self, tracked):
        tracked.stage_add("pl1", build_track("D"))
        tracked.stage_add("pl1", build_track("E"))
        tracked.commit("pl1", "append")
        assert current_ids(tracked) == list("ABCDE")

    def test_remove_then_add_same_track(self, synchronizer, fake_provider):
        """Test removal and re-addition of one track ends at the added index"""
        fake_provider.set_remote("pl1", "AXBC")
        synchronizer.init("pl1")
        synchronizer.stage_remove("pl1", "X")
        synchronizer.stage_add("pl1", build_track("X"), 3)
        synchronizer.commit("pl1", "move X by hand")
        assert current_ids(synchronizer) == list("ABCX")

    def test_add_index_bounds(self, tracked):
        """Test positions outside 0..len are rejected"""
        with pytest.raises(InvalidIndexError):
            tracked.stage_add("pl1", build_track("D"), 4)
        with pytest.raises(InvalidIndexError):
            tracked.stage_add("pl1", build_track("D"), -1)
        assert tracked.staging.load("pl1").is_empty

    def test_add_from_other_provider(self, tracked):
        with pytest.raises(ProviderMismatchError):
            tracked.stage_add("pl1", build_track("D", ProviderKind.YOUTUBE))

    def test_remove_unknown_track(self, tracked):
        with pytest.raises(ItemNotFoundError):
            tracked.stage_remove("pl1", "Z")

    def test_remove_staged_addition(self, tracked):
        """Test a track that only exists as a staged addition cannot be removed"""
        tracked.stage_add("pl1", build_track("D"))
        with pytest.raises(ItemNotFoundError) as exc_info:
            tracked.stage_remove("pl1", "D")
        assert "reset" in str(exc_info.value)

    def test_remove_duplicates_one_at_a_time(self, synchronizer, fake_provider):
        """Test each removal claims a different occurrence"""
        fake_provider.set_remote("pl1", "ABA")
        synchronizer.init("pl1")
        synchronizer.stage_remove("pl1", "A")
        synchronizer.stage_remove("pl1", "A")
        assert [change.index for change in synchronizer.diff_staged("pl1")] == [0, 2]
        synchronizer.commit("pl1", "drop A")
        assert current_ids(synchronizer) == ["B"]

    def test_move(self, tracked):
        tracked.stage_move("pl1", "A", 2)
        tracked.commit("pl1", "reorder")
        assert current_ids(tracked) == list("BCA")

    def test_move_to_same_position(self, tracked):
        """Test a move to the track's own position is refused"""
        with pytest.raises(InvalidIndexError):
            tracked.stage_move("pl1", "B", 1)

    def test_move_out_of_range(self, tracked):
        with pytest.raises(InvalidIndexError):
            tracked.stage_move("pl1", "A", 3)

    def test_commit_without_changes(self, tracked):
        with pytest.raises(NothingToCommitError):
            tracked.commit("pl1", "empty")
        assert len(journal_entries(tracked)) == 1

    def test_failed_commit_leaves_state(self, tracked):
        """Test a staged patch that cannot apply changes nothing"""
        before = tracked.store.load_current("pl1").content_hash
        tracked.staging.stage_change("pl1", TrackRemoved(build_track("Z"), 0))
        with pytest.raises(ItemNotFoundError):
            tracked.commit("pl1", "broken")
        assert tracked.store.load_current("pl1").content_hash == before
        assert not tracked.staging.load("pl1").is_empty
        assert len(journal_entries(tracked)) == 1

    def test_commit_survives_staging_write_failure(self, tracked, monkeypatch):
        """Test a commit whose staging cannot be cleared is undone, so retrying applies it once"""
        before = tracked.store.load_current("pl1").content_hash
        tracked.stage_remove("pl1", "A")
        original_clear = tracked.staging.clear

        def failing_clear(collection_id):
            raise StorageError("disk full")

        monkeypatch.setattr(tracked.staging, 'clear', failing_clear)
        with pytest.raises(StorageError):
            tracked.commit("pl1", "drop A")
        assert tracked.store.load_current("pl1").content_hash == before
        assert len(tracked.staging.load("pl1")) == 1
        assert len(journal_entries(tracked)) == 1

        monkeypatch.setattr(tracked.staging, 'clear', original_clear)
        tracked.commit("pl1", "drop A")
        assert current_ids(tracked) == ["B", "C"]
        assert tracked.staging.load("pl1").is_empty
        assert [entry.operation for entry in journal_entries(tracked)] == [Operation.INIT, Operation.COMMIT]

    def test_reset(self, tracked):
        """Test reset discards staged changes without a journal entry"""
        tracked.stage_add("pl1", build_track("D"))
        tracked.stage_remove("pl1", "A")
        result = tracked.reset("pl1")
        assert result.changed
        assert (result.added, result.removed) == (1, 1)
        assert tracked.staging.load("pl1").is_empty
        assert len(journal_entries(tracked)) == 1

        again = tracked.reset("pl1")
        assert not again.changed
        assert again.summary == "Nothing staged"

    def test_diff_staged_is_grouped(self, tracked):
        tracked.stage_move("pl1", "A", 2)
        tracked.stage_add("pl1", build_track("D"))
        tracked.stage_remove("pl1", "B")
        kinds = [change.kind for change in tracked.diff_staged("pl1")]
        assert kinds == [ChangeKind.REMOVED, ChangeKind.ADDED, ChangeKind.MOVED]


class TestPush:
    """Test publishing the current snapshot"""

    def test_push_single_move(self, tracked, fake_provider):
        """Test a displaced remote track is fixed with one call and journaled"""
        fake_provider.set_remote("pl1", "ACB")
        result = tracked.push("pl1", show_progress=False)

        assert fake_provider.calls == [('move', 'B', 2, 1)]
        assert fake_provider.remote_ids("pl1") == list("ABC")
        assert (result.added, result.removed, result.moved) == (0, 0, 1)
        last = journal_entries(tracked)[-1]
        assert last.operation is Operation.PUSH
        assert last.counts_str == "+0/-0/~1"

    def test_push_committed_changes(self, tracked, fake_provider):
        tracked.stage_remove("pl1", "B")
        tracked.stage_add("pl1", build_track("D"), 0)
        tracked.commit("pl1", "edit")
        tracked.push("pl1", show_progress=False)
        assert fake_provider.remote_ids("pl1") == list("DAC")

    def test_push_in_sync_is_noop(self, tracked, fake_provider):
        """Test pushing an identical state issues no calls and no journal entry"""
        result = tracked.push("pl1", show_progress=False)
        assert not result.changed
        assert result.summary == "Already up to date"
        assert fake_provider.calls == []
        assert len(journal_entries(tracked)) == 1

    def test_push_with_staged_changes(self, tracked, fake_provider):
        tracked.stage_add("pl1", build_track("D"))
        with pytest.raises(DirtyStagingConflictError):
            tracked.push("pl1", show_progress=False)
        assert fake_provider.calls == []

    def test_push_without_write_access(self, tracked, fake_provider):
        """Test missing write access fails before any change"""
        fake_provider.writable = False
        fake_provider.set_remote("pl1", "CBA")
        with pytest.raises(ProviderError) as exc_info:
            tracked.push("pl1", show_progress=False)
        assert exc_info.value.phases_completed == 0
        assert fake_provider.calls == []
        assert fake_provider.remote_ids("pl1") == list("CBA")

    def test_push_write_check_disabled(self, tracked, fake_provider):
        tracked.settings.sync.verify_write_access = False
        fake_provider.writable = False
        fake_provider.set_remote("pl1", "CBA")
        tracked.push("pl1", show_progress=False)
        assert fake_provider.remote_ids("pl1") == list("ABC")

    def test_partial_push_then_rerun(self, tracked, fake_provider):
        """Test a failed push is not journaled and a second push converges"""
        tracked.stage_remove("pl1", "B")
        tracked.stage_add("pl1", build_track("D"), 1)
        tracked.stage_move("pl1", "C", 0)
        tracked.commit("pl1", "rework")
        assert current_ids(tracked) == list("CAD")

        fake_provider.fail_at = 2
        with pytest.raises(ProviderError) as exc_info:
            tracked.push("pl1", show_progress=False)
        assert exc_info.value.phases_completed == 1
        assert fake_provider.remote_ids("pl1") == list("AC")
        assert len(journal_entries(tracked)) == 2

        fake_provider.fail_at = None
        tracked.push("pl1", show_progress=False)
        assert fake_provider.remote_ids("pl1") == list("CAD")
        assert journal_entries(tracked)[-1].operation is Operation.PUSH

    def test_push_to_append_only_provider(self, settings):
        """Test additions appended by the remote are moved into place"""
        provider = FakeProvider(ProviderKind.YOUTUBE, append_only=True)
        synchronizer = PlaylistSynchronizer(settings=settings, provider_factory=lambda kind: provider)
        provider.set_remote("mix", "ABC")
        synchronizer.init("mix", provider="youtube")

        synchronizer.stage_add("mix", build_track("D", ProviderKind.YOUTUBE), 0)
        synchronizer.stage_remove("mix", "B")
        synchronizer.commit("mix", "new opener")
        synchronizer.push("mix", show_progress=False)

        assert provider.remote_ids("mix") == list("DAC")
        assert [call[0] for call in provider.calls] == ['remove', 'add', 'move']


class TestPull:
    """Test adopting the remote state"""

    def test_pull_replaces_local(self, synchronizer, fake_provider):
        """Test pull stores the remote snapshot and reports counts"""
        fake_provider.set_remote("pl1", "AB")
        synchronizer.init("pl1")
        fake_provider.set_remote("pl1", "BC")

        result = synchronizer.pull("pl1")
        assert current_ids(synchronizer) == list("BC")
        assert (result.added, result.removed) == (1, 1)
        last = journal_entries(synchronizer)[-1]
        assert last.operation is Operation.PULL
        assert last.snapshot_hash == compute_hash(build_snapshot("BC"))

    def test_pull_in_sync_is_noop(self, tracked):
        result = tracked.pull("pl1")
        assert not result.changed
        assert len(journal_entries(tracked)) == 1

    def test_pull_with_staged_changes(self, tracked, fake_provider):
        tracked.stage_move("pl1", "A", 1)
        fake_provider.set_remote("pl1", "CBA")
        with pytest.raises(DirtyStagingConflictError):
            tracked.pull("pl1")
        assert current_ids(tracked) == list("ABC")

    def test_diff_remote(self, tracked, fake_provider):
        fake_provider.set_remote("pl1", "ABCD")
        assert tracked.diff_remote("pl1").counts() == (1, 0, 0)


class TestRevert:
    """Test returning to historical snapshots"""

    def test_revert_needs_history(self, tracked):
        """Test revert with a single journal entry fails and changes nothing"""
        before = tracked.store.load_current("pl1").content_hash
        with pytest.raises(NothingToRevertError) as exc_info:
            tracked.revert("pl1")
        assert "Nothing to revert to" in str(exc_info.value)
        assert tracked.store.load_current("pl1").content_hash == before
        assert len(journal_entries(tracked)) == 1

    def test_revert_to_previous(self, tracked):
        """Test revert without a hash restores the state before the last operation"""
        initial = tracked.store.load_current("pl1").content_hash
        tracked.stage_add("pl1", build_track("D"))
        tracked.commit("pl1", "add D")

        result = tracked.revert("pl1")
        assert result.content_hash == initial
        assert current_ids(tracked) == list("ABC")
        assert result.removed == 1
        last = journal_entries(tracked)[-1]
        assert last.operation is Operation.COMMIT
        assert last.message == f"Revert to {initial}"

    def test_revert_by_prefix(self, tracked):
        initial = tracked.store.load_current("pl1").content_hash
        tracked.stage_remove("pl1", "A")
        tracked.commit("pl1", "drop A")
        tracked.stage_remove("pl1", "B")
        tracked.commit("pl1", "drop B")

        tracked.revert("pl1", initial[:7])
        assert current_ids(tracked) == list("ABC")
        assert len(journal_entries(tracked)) == 4

    def test_revert_with_staged_changes(self, tracked):
        tracked.stage_add("pl1", build_track("D"))
        with pytest.raises(DirtyStagingConflictError):
            tracked.revert("pl1", tracked.store.load_current("pl1").content_hash)


class TestApplyFile:
    """Test replacing the current snapshot from a file"""

    def test_apply_edited_snapshot(self, tracked, temp_dir):
        """Test an edited snapshot file becomes current and is journaled"""
        path = temp_dir / "edited.snapshot"
        path.write_text(dump_snapshot(build_snapshot("CBAD")), encoding="utf-8")

        result = tracked.apply_file(path)
        assert current_ids(tracked) == list("CBAD")
        assert result.added == 1
        last = journal_entries(tracked)[-1]
        assert last.operation is Operation.APPLY
        assert last.message == f"Applied from {path}"

    def test_apply_to_other_collection(self, tracked, temp_dir):
        """Test the collection id inside the file is replaced"""
        path = temp_dir / "other.snapshot"
        path.write_text(dump_snapshot(build_snapshot("BA", collection_id="elsewhere")), encoding="utf-8")
        tracked.apply_file(path, "pl1")
        current = tracked.store.load_current("pl1")
        assert current.id == "pl1"
        assert track_ids(current.tracks) == list("BA")

    def test_apply_missing_file(self, tracked, temp_dir):
        with pytest.raises(StorageError):
            tracked.apply_file(temp_dir / "nope.snapshot")

    def test_apply_other_provider(self, tracked, temp_dir):
        path = temp_dir / "yt.snapshot"
        path.write_text(dump_snapshot(build_snapshot("AB", provider=ProviderKind.YOUTUBE)), encoding="utf-8")
        with pytest.raises(ProviderMismatchError):
            tracked.apply_file(path)

    def test_apply_with_staged_changes(self, tracked, temp_dir):
        path = temp_dir / "edited.snapshot"
        path.write_text(dump_snapshot(build_snapshot("CBA")), encoding="utf-8")
        tracked.stage_add("pl1", build_track("D"))
        with pytest.raises(DirtyStagingConflictError):
            tracked.apply_file(path)


class TestQueries:
    """Test read-only operations"""

    def test_status_states(self, tracked, fake_provider):
        """Test untracked, clean, dirty and remote comparison"""
        assert tracked.status("other").state is CollectionState.UNTRACKED
        assert tracked.status("other").summary == "Not tracked"

        status = tracked.status("pl1")
        assert status.state is CollectionState.CLEAN
        assert status.summary == f"3 tracks at {status.content_hash}"

        tracked.stage_add("pl1", build_track("D"))
        assert "staged +1 -0 ~0" in tracked.status("pl1").summary

        fake_provider.set_remote("pl1", "AB")
        remote_status = tracked.status("pl1", remote=True)
        assert remote_status.remote_patch.counts() == (0, 1, 0)
        assert "remote differs" in remote_status.summary

    def test_log_newest_first(self, tracked):
        tracked.stage_add("pl1", build_track("D"))
        tracked.commit("pl1", "add D")
        entries = tracked.log("pl1")
        assert [entry.operation for entry in entries] == [Operation.COMMIT, Operation.INIT]
        assert len(tracked.log("pl1", limit=1)) == 1

    def test_log_untracked(self, synchronizer):
        with pytest.raises(NotInitializedError):
            synchronizer.log("pl1")

    def test_tracked_collections(self, tracked, fake_provider):
        fake_provider.set_remote("pl2", "X")
        tracked.init("pl2")
        assert [status.collection_id for status in tracked.tracked_collections()] == ["pl1", "pl2"]

    def test_resolve_collection(self, synchronizer, fake_provider):
        """Test the only tracked playlist is the default target"""
        with pytest.raises(NotInitializedError):
            synchronizer.resolve_collection()

        fake_provider.set_remote("pl1", "A")
        synchronizer.init("pl1")
        assert synchronizer.resolve_collection() == "pl1"
        assert synchronizer.resolve_collection("spotify:playlist:other") == "other"

        fake_provider.set_remote("pl2", "B")
        synchronizer.init("pl2")
        with pytest.raises(PlrError):
            synchronizer.resolve_collection()

    def test_find(self, tracked):
        """Test title and artist matching is case-insensitive"""
        assert [(position, track.id) for position, track in tracked.find("pl1", "song b")] == [(1, "B")]
        assert [position for position, _ in tracked.find("pl1", "ARTIST")] == [0, 1, 2]
        assert tracked.find("pl1", "nothing") == []

    def test_resolve_track_and_search(self, tracked, fake_provider):
        track = build_track("D", name="Dancing Queen")
        fake_provider.catalog["D"] = track
        assert tracked.resolve_track("pl1", "https://open.spotify.com/track/D") == track
        assert tracked.search("dancing") == [track]

    def test_playable_url(self, tracked):
        assert tracked.playable_url("pl1", "B") == "fake://spotify/B"
        with pytest.raises(ItemNotFoundError):
            tracked.playable_url("pl1", "Z")


class TestOperationResult:
    """Test result summaries"""

    def test_summary_lists_nonzero_counts(self):
        result = OperationResult("push", "pl1", "0123456789ab", added=1, moved=1)
        assert result.summary == "push 0123456789ab: 1 added, 1 moved"

    def test_summary_without_changes(self):
        result = OperationResult("apply", "pl1", "0123456789ab")
        assert result.summary == "apply 0123456789ab: no track changes"
