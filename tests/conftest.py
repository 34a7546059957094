"""Test configuration and fixtures"""

import itertools
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest

from plr.config.settings import Settings, reset_settings
from plr.exceptions import ProviderError
from plr.provider.base import Provider
from plr.provider.models import ProviderKind, Snapshot, Track
from plr.sync.synchronizer import PlaylistSynchronizer, reset_synchronizer


ENV_VARS = (
    'PLR_DIR', 'PLR_DEFAULT_PROVIDER', 'PLR_LOG_LEVEL',
    'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'YTMUSIC_AUTH_FILE',
)


def build_track(track_id: str, provider: ProviderKind = ProviderKind.SPOTIFY, **kwargs) -> Track:
    """Track with predictable title and artist derived from its id"""
    return Track(
        id=track_id,
        name=kwargs.pop('name', f"Song {track_id}"),
        artists=kwargs.pop('artists', (f"Artist {track_id}",)),
        duration_ms=kwargs.pop('duration_ms', 180000),
        provider=provider,
        **kwargs
    )


def build_snapshot(ids, collection_id: str = "pl1", provider: ProviderKind = ProviderKind.SPOTIFY,
                   name: str = "Test Playlist") -> Snapshot:
    """Snapshot whose tracks are built from a list (or string) of ids"""
    return Snapshot(
        id=collection_id,
        name=name,
        tracks=tuple(build_track(track_id, provider) for track_id in ids),
        provider=provider,
    )


def track_ids(tracks) -> List[str]:
    return [track.id for track in tracks]


class FakeProvider(Provider):
    """
    In-memory remote used by the synchronizer and applier tests

    Positional mode behaves like Spotify: removals address baseline
    positions, additions honour their index. Append-only mode behaves like
    YouTube Music: every item carries an ``item`` handle in its metadata,
    removals use the handle and additions append.
    """

    def __init__(self, kind: ProviderKind = ProviderKind.SPOTIFY, append_only: bool = False):
        super().__init__(settings=Mock())
        self.kind = kind
        self.supports_positional_insert = not append_only
        self.append_only = append_only
        self.writable = True
        self.fail_at: Optional[int] = None
        self.calls: List[tuple] = []
        self.fetch_count = 0
        self.catalog: Dict[str, Track] = {}
        self._playlists: Dict[str, dict] = {}
        self._removed: Dict[str, List[int]] = {}
        self._handles = itertools.count(1)

    # Test helpers

    def set_remote(self, collection_id: str, ids, name: str = "Test Playlist") -> None:
        self._playlists[collection_id] = {
            'name': name,
            'items': [(next(self._handles), build_track(track_id, self.kind)) for track_id in ids],
        }

    def remote_ids(self, collection_id: str) -> List[str]:
        return [track.id for _, track in self._playlists[collection_id]['items']]

    def _tick(self, *call) -> None:
        self.calls.append(call)
        if self.fail_at is not None and len(self.calls) == self.fail_at:
            raise RuntimeError(f"remote rejected {call[0]}")

    def _remote_track(self, handle: int, track: Track) -> Track:
        if not self.append_only:
            return track
        return Track(
            id=track.id, name=track.name, artists=track.artists, duration_ms=track.duration_ms,
            provider=track.provider, metadata={'item': handle},
        )

    # Provider interface

    def fetch(self, collection_id: str) -> Snapshot:
        if collection_id not in self._playlists:
            raise ProviderError(f"Playlist {collection_id} not found")
        self.fetch_count += 1
        self._removed[collection_id] = []
        playlist = self._playlists[collection_id]
        return Snapshot(
            id=collection_id,
            name=playlist['name'],
            tracks=tuple(self._remote_track(handle, track) for handle, track in playlist['items']),
            provider=self.kind,
        )

    def can_modify(self, collection_id: str) -> bool:
        return self.writable

    def fetch_track(self, track_id: str) -> Track:
        if track_id not in self.catalog:
            raise ProviderError(f"Track {track_id} not found")
        return self.catalog[track_id]

    def search(self, query: str, limit: Optional[int] = None) -> List[Track]:
        results = [track for track in self.catalog.values() if query.lower() in track.name.lower()]
        return results[:limit] if limit else results

    def playable_url(self, track: Track) -> str:
        return f"fake://{self.kind.value}/{track.id}"

    def remove_track(self, collection_id, track, position, baseline) -> None:
        self._tick('remove', track.id, position)
        items = self._playlists[collection_id]['items']
        if 'item' in track.metadata:
            index = next(i for i, (handle, _) in enumerate(items) if handle == track.metadata['item'])
        else:
            removed = self._removed[collection_id]
            index = position - sum(1 for earlier in removed if earlier < position)
            removed.append(position)
        items.pop(index)

    def add_track(self, collection_id, track, index) -> Track:
        self._tick('add', track.id, index)
        items = self._playlists[collection_id]['items']
        handle = next(self._handles)
        if self.append_only:
            items.append((handle, track))
        else:
            items.insert(min(index, len(items)), (handle, track))
        return self._remote_track(handle, track)

    def move_track(self, collection_id, tracks, range_start, insert_before) -> None:
        self._tick('move', tracks[range_start].id, range_start, insert_before)
        items = self._playlists[collection_id]['items']
        item = items.pop(range_start)
        destination = insert_before - 1 if insert_before > range_start else insert_before
        items.insert(destination, item)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def plr_dir(temp_dir, monkeypatch):
    """Isolated .plr directory wired through PLR_DIR"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    path = temp_dir / ".plr"
    monkeypatch.setenv('HOME', str(temp_dir))
    monkeypatch.setenv('PLR_DIR', str(path))
    monkeypatch.chdir(temp_dir)
    reset_settings()
    reset_synchronizer()
    yield path
    reset_settings()
    reset_synchronizer()


@pytest.fixture
def settings(plr_dir):
    """Settings pointing at the temporary .plr directory"""
    return Settings()


@pytest.fixture
def playlists_dir(settings):
    return settings.get_playlists_directory()


@pytest.fixture
def make_track():
    """Factory for tracks: make_track('a') or make_track('a', ProviderKind.YOUTUBE)"""
    return build_track


@pytest.fixture
def make_snapshot():
    """Factory for snapshots: make_snapshot('ABC') has tracks A, B and C"""
    return build_snapshot


@pytest.fixture
def fake_provider():
    """Positional (Spotify-like) in-memory provider"""
    return FakeProvider()


@pytest.fixture
def synchronizer(settings, fake_provider):
    """Synchronizer using the fake provider for every provider kind"""
    return PlaylistSynchronizer(settings=settings, provider_factory=lambda kind: fake_provider)


@pytest.fixture
def tracked(synchronizer, fake_provider):
    """Synchronizer with playlist pl1 = [A, B, C] initialized"""
    fake_provider.set_remote("pl1", "ABC")
    synchronizer.init("pl1")
    return synchronizer


@pytest.fixture
def sample_spotify_track():
    """Spotify Web API track object"""
    return {
        'id': '4uLU6hMCjMI75M1A2tKUQC',
        'name': 'Test Song',
        'artists': [{'id': 'artist_123', 'name': 'Test Artist'}, {'id': 'artist_456', 'name': 'Guest'}],
        'duration_ms': 210000,
        'type': 'track',
        'is_local': False,
    }


@pytest.fixture
def sample_ytmusic_item():
    """ytmusicapi playlist item"""
    return {
        'videoId': 'dQw4w9WgXcQ',
        'title': 'Test Video Song',
        'artists': [{'name': 'Test Artist', 'id': 'UC123'}],
        'duration_seconds': 212,
        'setVideoId': 'SETVID001',
    }
