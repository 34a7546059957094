"""
Provider capability interface and factory

plr supports a fixed, closed set of remote services. Each one implements the
Provider interface below; ``create_provider`` dispatches on the ProviderKind
tag through a fixed mapping.

The interface has two layers:
- Collection-level operations used by the orchestrator: ``fetch``,
  ``apply``, ``can_modify``, plus ``fetch_track``, ``search`` and
  ``playable_url`` for the CLI.
- Single-change mutation primitives used by the remote patch applier:
  ``remove_track``, ``add_track``, ``move_track``. ``apply`` is implemented
  once here in terms of those primitives.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from ..config.settings import Settings, get_settings
from ..sync.patch import RemoteApplyResult, ProgressCallback, apply_remote
from .models import DiffPatch, ProviderKind, Snapshot, Track


class Provider(ABC):
    """
    Remote playlist service

    Attributes:
        kind: ProviderKind tag of the implementation
        supports_positional_insert: Whether ``add_track`` honours its index.
            When False the track is appended and the applier re-plans the
            move phase to put it in place.
    """

    kind: ProviderKind
    supports_positional_insert: bool = True

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @abstractmethod
    def fetch(self, collection_id: str) -> Snapshot:
        """Fetch the full remote state of a collection (hash not computed)"""

    @abstractmethod
    def can_modify(self, collection_id: str) -> bool:
        """Whether the authenticated user may modify the collection"""

    @abstractmethod
    def fetch_track(self, track_id: str) -> Track:
        """Fetch a single track by provider-native id"""

    @abstractmethod
    def search(self, query: str, limit: Optional[int] = None) -> List[Track]:
        """Search the provider's catalog"""

    @abstractmethod
    def playable_url(self, track: Track) -> str:
        """URL or URI that opens the track in a player"""

    @abstractmethod
    def remove_track(self, collection_id: str, track: Track, position: int, baseline: Snapshot) -> None:
        """
        Remove one occurrence of ``track``

        Args:
            collection_id: Remote collection
            track: Baseline instance of the track (carries provider handles)
            position: Its position in ``baseline``
            baseline: Snapshot fetched before the first call
        """

    @abstractmethod
    def add_track(self, collection_id: str, track: Track, index: int) -> Track:
        """
        Insert ``track`` at ``index`` (or append, see supports_positional_insert)

        Returns:
            The remote instance of the new item, with provider handles
        """

    @abstractmethod
    def move_track(self, collection_id: str, tracks: List[Track], range_start: int, insert_before: int) -> None:
        """
        Relocate the item at ``range_start`` in front of ``insert_before``

        Args:
            collection_id: Remote collection
            tracks: Current model of the remote list, before the move
            range_start: Position of the item to move
            insert_before: Position to insert before, counted with the item
                           still in place; ``len(tracks)`` moves it to the end
        """

    def apply(
        self,
        collection_id: str,
        patch: DiffPatch,
        desired_state: Snapshot,
        baseline: Optional[Snapshot] = None,
        progress: Optional[ProgressCallback] = None
    ) -> RemoteApplyResult:
        """
        Make the remote collection match ``desired_state`` by replaying ``patch``

        Args:
            collection_id: Remote collection
            patch: ``diff(baseline, desired_state)``
            desired_state: Target snapshot
            baseline: Remote snapshot the patch was computed from; fetched
                      once here when omitted
            progress: Optional (message, done, total) callback

        Returns:
            RemoteApplyResult with per-phase call counts
        """
        if baseline is None:
            baseline = self.fetch(collection_id)
        return apply_remote(self, collection_id, patch, desired_state, baseline, progress)


def provider_classes() -> Dict[ProviderKind, Type[Provider]]:
    """The closed ProviderKind -> implementation mapping"""
    from .spotify import SpotifyProvider
    from .ytmusic import YTMusicProvider

    return {
        ProviderKind.SPOTIFY: SpotifyProvider,
        ProviderKind.YOUTUBE: YTMusicProvider,
    }


def create_provider(kind: ProviderKind, settings: Optional[Settings] = None) -> Provider:
    """
    Instantiate the provider for ``kind``

    Raises:
        ValueError: If ``kind`` has no implementation
    """
    provider_class = provider_classes().get(kind)
    if provider_class is None:
        raise ValueError(f"Unsupported provider: {kind}")
    return provider_class(settings)
