"""
YouTube Music provider

Uses ytmusicapi with the auth file configured in ``ytmusic.auth_file``
(browser headers or OAuth JSON produced by the ``ytmusicapi`` setup
commands). Without an auth file the client runs unauthenticated, which is
enough to fetch public playlists and search but not to modify anything.

Every playlist item has a ``setVideoId`` that identifies that occurrence in
the playlist; it is kept in ``Track.metadata['set_video_id']`` and used for
removals and moves. YouTube Music can only append new items, so
``supports_positional_insert`` is False and the remote applier re-plans the
move phase from its local model of the playlist.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from ytmusicapi import YTMusic
from ytmusicapi.exceptions import YTMusicError

from ..config.settings import Settings
from ..exceptions import ProviderError
from ..utils.logger import get_logger
from .base import Provider
from .models import ProviderKind, Snapshot, Track

SET_VIDEO_ID = 'set_video_id'


def track_from_ytmusic_data(data: Dict[str, Any]) -> Track:
    """
    Convert a YouTube Music playlist item or search result to a Track

    Args:
        data: Dictionary with videoId, title, artists, duration_seconds and,
              for playlist items, setVideoId

    Returns:
        Track tagged with ProviderKind.YOUTUBE
    """
    metadata = {}
    if data.get('setVideoId'):
        metadata[SET_VIDEO_ID] = data['setVideoId']
    return Track(
        id=data['videoId'],
        name=data.get('title') or '',
        artists=tuple(artist.get('name', '') for artist in data.get('artists') or []),
        duration_ms=int(data.get('duration_seconds') or 0) * 1000,
        provider=ProviderKind.YOUTUBE,
        metadata=metadata,
    )


def _succeeded(response: Any) -> bool:
    status = response.get('status') if isinstance(response, dict) else response
    return 'SUCCEEDED' in str(status)


class YTMusicProvider(Provider):
    """YouTube Music provider backed by ytmusicapi"""

    kind = ProviderKind.YOUTUBE
    supports_positional_insert = False

    def __init__(self, settings: Optional[Settings] = None, client: Optional[YTMusic] = None):
        """
        Args:
            settings: Application settings (global settings when omitted)
            client: Pre-built YTMusic client, mainly for tests
        """
        super().__init__(settings)
        self.logger = get_logger(__name__)
        self._ytmusic = client
        self.last_request_time = 0.0
        self.min_request_interval = 0.5

    @property
    def ytmusic(self) -> YTMusic:
        """YTMusic client, authenticated when an auth file exists"""
        if self._ytmusic is None:
            auth_path = self.settings.get_ytmusic_auth_path()
            try:
                if auth_path.exists():
                    self._ytmusic = YTMusic(str(auth_path))
                else:
                    self.logger.debug(f"No YouTube Music auth file at {auth_path}, using public access")
                    self._ytmusic = YTMusic()
            except Exception as e:
                raise ProviderError(
                    f"YouTube Music initialization failed: {e}",
                    details={'auth_file': str(auth_path)}
                ) from e
        return self._ytmusic

    def _rate_limit(self) -> None:
        elapsed = time.time() - self.last_request_time
        if elapsed < self.min_request_interval:
            time.sleep(self.min_request_interval - elapsed)
        self.last_request_time = time.time()

    def _call(self, method: Callable[[YTMusic], Any], description: str) -> Any:
        """
        Rate-limited ytmusicapi call

        Raises:
            ProviderError: If ytmusicapi raises
        """
        self._rate_limit()
        try:
            return method(self.ytmusic)
        except ProviderError:
            raise
        except YTMusicError as e:
            raise ProviderError(f"YouTube Music {description} failed: {e}") from e
        except Exception as e:
            raise ProviderError(
                f"YouTube Music {description} failed: {e}",
                details={'original_error': repr(e)}
            ) from e

    def _handle(self, track: Track) -> str:
        set_video_id = track.metadata.get(SET_VIDEO_ID)
        if not set_video_id:
            raise ProviderError(
                f"'{track.name}' ({track.id}) has no playlist item id; pull the playlist first",
                details={'track_id': track.id}
            )
        return set_video_id

    def fetch(self, collection_id: str) -> Snapshot:
        playlist = self._call(
            lambda client: client.get_playlist(collection_id, limit=None),
            f"fetch of playlist {collection_id}"
        )

        tracks = []
        skipped = 0
        for item in playlist.get('tracks') or []:
            if not item.get('videoId'):
                skipped += 1
                continue
            tracks.append(track_from_ytmusic_data(item))
        if skipped:
            self.logger.warning(f"Skipped {skipped} unavailable item(s) in {collection_id}")

        self.logger.debug(f"Fetched {len(tracks)} tracks from YouTube Music playlist {collection_id}")
        return Snapshot(
            id=collection_id,
            name=playlist.get('title') or '',
            description=playlist.get('description') or None,
            tracks=tuple(tracks),
            provider=ProviderKind.YOUTUBE,
        )

    def can_modify(self, collection_id: str) -> bool:
        playlist = self._call(
            lambda client: client.get_playlist(collection_id, limit=1),
            f"permission check of {collection_id}"
        )
        return bool(playlist.get('owned', False))

    def fetch_track(self, track_id: str) -> Track:
        song = self._call(lambda client: client.get_song(track_id), f"lookup of track {track_id}")
        details = (song or {}).get('videoDetails') or {}
        if not details.get('videoId'):
            raise ProviderError(f"YouTube Music track {track_id} not found", details={'track_id': track_id})
        return Track(
            id=details['videoId'],
            name=details.get('title') or '',
            artists=(details['author'],) if details.get('author') else (),
            duration_ms=int(details.get('lengthSeconds') or 0) * 1000,
            provider=ProviderKind.YOUTUBE,
        )

    def search(self, query: str, limit: Optional[int] = None) -> List[Track]:
        limit = limit or int(self.settings.ytmusic.search_limit)
        results = self._call(
            lambda client: client.search(query=query, filter='songs', limit=limit),
            f"search for '{query}'"
        )
        return [track_from_ytmusic_data(item) for item in results or [] if item.get('videoId')][:limit]

    def playable_url(self, track: Track) -> str:
        return f"https://music.youtube.com/watch?v={track.id}"

    def remove_track(self, collection_id: str, track: Track, position: int, baseline: Snapshot) -> None:
        video = {'videoId': track.id, 'setVideoId': self._handle(track)}
        response = self._call(
            lambda client: client.remove_playlist_items(collection_id, [video]),
            f"removal of {track.id}"
        )
        if not _succeeded(response):
            raise ProviderError(f"YouTube Music refused removal of {track.id}: {response}")

    def add_track(self, collection_id: str, track: Track, index: int) -> Track:
        """Append ``track``; ``index`` is ignored (see supports_positional_insert)"""
        response = self._call(
            lambda client: client.add_playlist_items(collection_id, [track.id], duplicates=True),
            f"insertion of {track.id}"
        )
        if not _succeeded(response):
            raise ProviderError(f"YouTube Music refused insertion of {track.id}: {response}")

        results = (response.get('playlistEditResults') or []) if isinstance(response, dict) else []
        set_video_id = next((result.get('setVideoId') for result in results if result.get('setVideoId')), None)
        metadata = dict(track.metadata)
        if set_video_id:
            metadata[SET_VIDEO_ID] = set_video_id
        return Track(
            id=track.id,
            name=track.name,
            artists=track.artists,
            duration_ms=track.duration_ms,
            provider=track.provider,
            metadata=metadata,
        )

    def move_track(self, collection_id: str, tracks: List[Track], range_start: int, insert_before: int) -> None:
        moved = self._handle(tracks[range_start])
        if insert_before < len(tracks):
            move_item = (moved, self._handle(tracks[insert_before]))
        else:
            move_item = moved
        response = self._call(
            lambda client: client.edit_playlist(collection_id, moveItem=move_item),
            f"reorder of {tracks[range_start].id}"
        )
        if not _succeeded(response):
            raise ProviderError(f"YouTube Music refused reorder of {tracks[range_start].id}: {response}")
