"""
Spotify provider

Fetches and mutates Spotify playlists through spotipy. Requests are paced
with a minimum interval, HTTP 429 responses are retried after the
Retry-After delay, and an HTTP 401 invalidates the cached token once so the
next attempt refreshes it.

Playlist positions on Spotify count every item, including local files and
unavailable entries that have no track id. Those items cannot be
represented as Tracks, so when a fetched playlist contains any, positional
mutations are refused rather than applied at shifted positions.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import spotipy
from spotipy.exceptions import SpotifyException

from ..config.auth import SpotifyTokenRefresher, TokenCache
from ..config.settings import Settings
from ..exceptions import ProviderError
from ..utils.logger import get_logger
from .base import Provider
from .models import ProviderKind, Snapshot, Track

logging.getLogger('spotipy.client').setLevel(logging.ERROR)

PLAYLIST_FIELDS = "id,name,description,snapshot_id,collaborative,owner(id)"
ITEM_FIELDS = "items(track(id,name,artists(name),duration_ms,type,is_local)),next"


def track_from_spotify_data(data: Dict[str, Any]) -> Track:
    """
    Convert a Spotify track object to a Track

    Args:
        data: Track object from the Web API (not the playlist item wrapper)

    Returns:
        Track tagged with ProviderKind.SPOTIFY
    """
    return Track(
        id=data['id'],
        name=data.get('name') or '',
        artists=tuple(artist.get('name', '') for artist in data.get('artists') or []),
        duration_ms=int(data.get('duration_ms') or 0),
        provider=ProviderKind.SPOTIFY,
    )


def track_uri(track: Track) -> str:
    return f"spotify:track:{track.id}"


class SpotifyProvider(Provider):
    """
    Spotify Web API provider

    Attributes:
        token_cache: Access token owned by this provider instance
        min_request_interval: Minimum seconds between two API requests
    """

    kind = ProviderKind.SPOTIFY
    supports_positional_insert = True

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[spotipy.Spotify] = None,
        token_cache: Optional[TokenCache] = None
    ):
        """
        Initialize the provider

        The spotipy client is created lazily on first request unless one is
        injected.

        Args:
            settings: Application settings (global settings when omitted)
            client: Pre-built spotipy client, mainly for tests
            token_cache: Token cache to use instead of the credentials file
        """
        super().__init__(settings)
        self.logger = get_logger(__name__)
        self._client = client
        self._client_token: Optional[str] = None
        self.token_cache = token_cache or TokenCache(
            self.settings.get_credentials_directory() / "spotify.json",
            SpotifyTokenRefresher(
                self.settings.spotify.client_id,
                self.settings.spotify.client_secret,
                self.settings.spotify.token_url,
                timeout=self.settings.network.request_timeout,
            ),
        )

        self.last_request_time = 0.0
        self.min_request_interval = float(self.settings.spotify.min_request_interval)

        # Per-playlist state captured at fetch time
        self._baseline_revisions: Dict[str, str] = {}
        self._unaddressable: Dict[str, int] = {}

    @property
    def client(self) -> spotipy.Spotify:
        """
        Authenticated spotipy client

        Rebuilt whenever the cached access token changes.
        """
        if self._client is not None and self._client_token is None:
            # Injected client
            return self._client

        token = self.token_cache.get_access_token()
        if self._client is None or token != self._client_token:
            self._client = spotipy.Spotify(
                auth=token,
                requests_timeout=self.settings.network.request_timeout,
                retries=0,
            )
            self._client_token = token
        return self._client

    def _rate_limit(self) -> None:
        """Sleep so consecutive requests are at least min_request_interval apart"""
        elapsed = time.time() - self.last_request_time
        if elapsed < self.min_request_interval:
            time.sleep(self.min_request_interval - elapsed)
        self.last_request_time = time.time()

    def _make_request(self, method: Callable[[spotipy.Spotify], Any], description: str) -> Any:
        """
        Rate-limited API request with 401/429 handling

        Args:
            method: Callable receiving the spotipy client
            description: Short label for logs and errors

        Returns:
            API response

        Raises:
            ProviderError: For any API error that cannot be recovered
        """
        attempts = 0
        refreshed = False
        max_retries = int(self.settings.network.max_retries)

        while True:
            self._rate_limit()
            try:
                return method(self.client)
            except SpotifyException as e:
                if e.http_status == 401 and not refreshed:
                    self.logger.debug(f"Spotify token rejected during {description}, refreshing")
                    self.token_cache.invalidate()
                    refreshed = True
                    continue
                if e.http_status == 429 and attempts < max_retries:
                    attempts += 1
                    headers = e.headers or {}
                    retry_after = int(headers.get('Retry-After', 1))
                    self.logger.warning(f"Rate limited by Spotify, waiting {retry_after} seconds...")
                    time.sleep(retry_after)
                    continue
                raise ProviderError(
                    f"Spotify {description} failed: {e.msg if hasattr(e, 'msg') else e}",
                    details={'http_status': e.http_status, 'original_error': str(e)}
                ) from e

    def _require_addressable(self, playlist_id: str) -> None:
        count = self._unaddressable.get(playlist_id, 0)
        if count:
            raise ProviderError(
                f"Playlist {playlist_id} contains {count} local or unavailable item(s); "
                "positional edits would land in the wrong place",
                details={'collection_id': playlist_id, 'unaddressable': count}
            )

    def fetch(self, collection_id: str) -> Snapshot:
        """
        Fetch playlist metadata and every track, following pagination

        Returns:
            Snapshot without content hash
        """
        info = self._make_request(
            lambda client: client.playlist(collection_id, fields=PLAYLIST_FIELDS),
            f"fetch of playlist {collection_id}"
        )

        tracks: List[Track] = []
        skipped = 0
        offset = 0
        page_size = int(self.settings.spotify.page_size)
        while True:
            page = self._make_request(
                lambda client: client.playlist_items(
                    collection_id,
                    fields=ITEM_FIELDS,
                    limit=page_size,
                    offset=offset,
                    additional_types=('track',),
                ),
                f"track listing of {collection_id}"
            )
            for item in page.get('items') or []:
                data = item.get('track') if item else None
                if not data or not data.get('id') or data.get('is_local') or data.get('type', 'track') != 'track':
                    skipped += 1
                    continue
                tracks.append(track_from_spotify_data(data))

            if not page.get('next'):
                break
            offset += page_size

        if skipped:
            self.logger.warning(f"Skipped {skipped} local or unavailable item(s) in {collection_id}")
        self._unaddressable[collection_id] = skipped
        if info.get('snapshot_id'):
            self._baseline_revisions[collection_id] = info['snapshot_id']

        self.logger.debug(f"Fetched {len(tracks)} tracks from Spotify playlist {collection_id}")
        return Snapshot(
            id=info.get('id') or collection_id,
            name=info.get('name') or '',
            description=info.get('description') or None,
            tracks=tuple(tracks),
            provider=ProviderKind.SPOTIFY,
        )

    def can_modify(self, collection_id: str) -> bool:
        """True when the current user owns the playlist or it is collaborative"""
        info = self._make_request(
            lambda client: client.playlist(collection_id, fields="collaborative,owner(id)"),
            f"permission check of {collection_id}"
        )
        if info.get('collaborative'):
            return True
        user = self._make_request(lambda client: client.current_user(), "current user lookup")
        owner = (info.get('owner') or {}).get('id')
        return bool(owner) and owner == (user or {}).get('id')

    def fetch_track(self, track_id: str) -> Track:
        data = self._make_request(lambda client: client.track(track_id), f"lookup of track {track_id}")
        if not data or not data.get('id'):
            raise ProviderError(f"Spotify track {track_id} not found", details={'track_id': track_id})
        return track_from_spotify_data(data)

    def search(self, query: str, limit: Optional[int] = None) -> List[Track]:
        limit = limit or int(self.settings.spotify.search_limit)
        results = self._make_request(
            lambda client: client.search(q=query, type='track', limit=limit),
            f"search for '{query}'"
        )
        items = ((results or {}).get('tracks') or {}).get('items') or []
        return [track_from_spotify_data(item) for item in items if item and item.get('id')]

    def playable_url(self, track: Track) -> str:
        return f"https://open.spotify.com/track/{track.id}"

    def remove_track(self, collection_id: str, track: Track, position: int, baseline: Snapshot) -> None:
        """
        Remove one occurrence of ``track``

        A track present once in the baseline is removed by URI. Duplicated
        tracks are removed by occurrence position, resolved by Spotify against
        the baseline snapshot_id so earlier removals do not shift it.

        Raises:
            ProviderError: If the track is duplicated and the baseline carried
                           no snapshot_id to pin the position to
        """
        self._require_addressable(collection_id)
        uri = track_uri(track)
        occurrences = sum(1 for candidate in baseline.tracks if candidate == track)
        revision = self._baseline_revisions.get(collection_id)

        if occurrences > 1 and not revision:
            raise ProviderError(
                f"{track.id} occurs {occurrences} times in {collection_id} and no baseline revision "
                "is known; removing one copy would remove them all",
                details={'collection_id': collection_id, 'track_id': track.id}
            )

        if occurrences > 1:
            self._make_request(
                lambda client: client.playlist_remove_specific_occurrences_of_items(
                    collection_id, [{'uri': uri, 'positions': [position]}], snapshot_id=revision
                ),
                f"removal of {track.id}"
            )
        else:
            self._make_request(
                lambda client: client.playlist_remove_all_occurrences_of_items(collection_id, [uri]),
                f"removal of {track.id}"
            )

    def add_track(self, collection_id: str, track: Track, index: int) -> Track:
        self._require_addressable(collection_id)
        self._make_request(
            lambda client: client.playlist_add_items(collection_id, [track_uri(track)], position=index),
            f"insertion of {track.id}"
        )
        return track

    def move_track(self, collection_id: str, tracks: List[Track], range_start: int, insert_before: int) -> None:
        self._require_addressable(collection_id)
        self._make_request(
            lambda client: client.playlist_reorder_items(
                collection_id, range_start=range_start, insert_before=insert_before, range_length=1
            ),
            f"reorder of position {range_start}"
        )
