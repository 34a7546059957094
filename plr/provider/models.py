"""
Data models for tracked playlists, their tracks and the changes between them

This module defines the value types shared by every layer of plr: the
provider-neutral track and snapshot representation produced by the remote
providers, and the patch vocabulary produced by the diff engine and consumed
by the patch applier and the staging area.

Architecture Overview:

1. **Provider Layer**: ProviderKind enumerates the closed set of supported
   remote services.

2. **Content Layer**: Track and Snapshot are immutable values. A track's
   identity is the pair (provider, provider-native id); equality and hashing
   use only that pair so title or duration edits never change identity.
   Duplicate identities inside one snapshot are legal and kept positionally.

3. **Change Layer**: TrackAdded, TrackRemoved and TrackMoved form a tagged
   variant (the ``kind`` attribute is the tag). DiffPatch is an ordered
   sequence of them, grouped removals, then additions, then moves.

All models convert to and from plain dictionaries so they can be written as
YAML (snapshots) or JSON (staged patches) without custom encoders.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


class ProviderKind(Enum):
    """
    Remote services a playlist can be tracked on

    The value is the lowercase name used on disk and on the command line.
    """
    SPOTIFY = "spotify"
    YOUTUBE = "youtube"

    @classmethod
    def parse(cls, value: Union[str, 'ProviderKind']) -> 'ProviderKind':
        """
        Convert a user or file supplied provider name to a ProviderKind

        Args:
            value: Provider name (case-insensitive) or an existing ProviderKind.
                   "yt" and "ytmusic" are accepted as aliases for youtube.

        Returns:
            Matching ProviderKind

        Raises:
            ValueError: If the name does not match a supported provider
        """
        if isinstance(value, ProviderKind):
            return value
        normalized = str(value).strip().lower()
        aliases = {'yt': 'youtube', 'ytmusic': 'youtube', 'youtube_music': 'youtube'}
        normalized = aliases.get(normalized, normalized)
        for kind in cls:
            if kind.value == normalized:
                return kind
        raise ValueError(f"Unknown provider: {value}")


class ChangeKind(Enum):
    """Tag of a TrackChange variant"""
    ADDED = "added"
    REMOVED = "removed"
    MOVED = "moved"


@dataclass(frozen=True)
class TrackIdentity:
    """Identity of a track: provider kind plus provider-native id"""
    provider: ProviderKind
    id: str

    def __str__(self) -> str:
        return f"{self.provider.value}:{self.id}"


@dataclass(frozen=True, eq=False)
class Track:
    """
    A single track as seen by a provider

    Immutable once constructed. Equality and hashing are defined over
    ``identity`` only; use ``to_dict()`` when every field must match.

    Attributes:
        id: Provider-native track id (Spotify track id, YouTube video id)
        name: Track title
        artists: Artist names in credit order
        duration_ms: Duration in milliseconds
        provider: Provider the id belongs to
        metadata: Opaque provider-specific data (e.g. YouTube setVideoId)
    """
    id: str
    name: str
    artists: Tuple[str, ...] = ()
    duration_ms: int = 0
    provider: ProviderKind = ProviderKind.SPOTIFY
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Accept lists and dicts from callers while keeping the stored values immutable
        if not isinstance(self.artists, tuple):
            object.__setattr__(self, 'artists', tuple(self.artists))
        object.__setattr__(self, 'metadata', MappingProxyType(dict(self.metadata)))

    @property
    def identity(self) -> TrackIdentity:
        """Identity pair used for matching, equality and hashing"""
        return TrackIdentity(self.provider, self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Track):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    @property
    def primary_artist(self) -> str:
        """First credited artist, or "Unknown Artist" when none"""
        return self.artists[0] if self.artists else "Unknown Artist"

    @property
    def all_artists(self) -> str:
        """All artists joined for display"""
        return ", ".join(self.artists) if self.artists else "Unknown Artist"

    @property
    def duration_str(self) -> str:
        """Duration formatted as M:SS"""
        total_seconds = max(self.duration_ms, 0) // 1000
        minutes = total_seconds // 60
        seconds = total_seconds % 60
        return f"{minutes}:{seconds:02d}"

    @property
    def display_name(self) -> str:
        """"Artist - Title" label used by the CLI"""
        return f"{self.all_artists} - {self.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary"""
        return {
            'id': self.id,
            'name': self.name,
            'artists': list(self.artists),
            'duration_ms': self.duration_ms,
            'provider': self.provider.value,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Track':
        """
        Create a Track from its dictionary form

        Args:
            data: Dictionary produced by ``to_dict`` (or an equivalent file)

        Returns:
            Track instance

        Raises:
            KeyError: If ``id`` or ``provider`` is missing
            ValueError: If the provider name is unknown
        """
        return cls(
            id=str(data['id']),
            name=data.get('name', ''),
            artists=tuple(data.get('artists') or ()),
            duration_ms=int(data.get('duration_ms') or 0),
            provider=ProviderKind.parse(data['provider']),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass(frozen=True)
class Snapshot:
    """
    Recorded state of a tracked playlist at one point in time

    Attributes:
        id: Collection (playlist) id on the provider
        name: Display name
        description: Optional description
        tracks: Ordered tracks; duplicates by identity are kept positionally
        provider: Provider the collection lives on
        content_hash: 12 hex character fingerprint of every other field,
                      empty until computed by the snapshot store
    """
    id: str
    name: str
    tracks: Tuple[Track, ...] = ()
    provider: ProviderKind = ProviderKind.SPOTIFY
    description: Optional[str] = None
    content_hash: str = ""

    def __post_init__(self):
        if not isinstance(self.tracks, tuple):
            object.__setattr__(self, 'tracks', tuple(self.tracks))

    def __len__(self) -> int:
        return len(self.tracks)

    @property
    def total_duration_ms(self) -> int:
        """Sum of all track durations"""
        return sum(track.duration_ms for track in self.tracks)

    def with_tracks(self, tracks: List[Track]) -> 'Snapshot':
        """Return a copy holding ``tracks`` and no hash"""
        return replace(self, tracks=tuple(tracks), content_hash="")

    def with_hash(self, content_hash: str) -> 'Snapshot':
        """Return a copy carrying ``content_hash``"""
        return replace(self, content_hash=content_hash)

    def index_of(self, track_id: str) -> Optional[int]:
        """Position of the first track with ``track_id``, or None"""
        for position, track in enumerate(self.tracks):
            if track.id == track_id:
                return position
        return None

    def to_dict(self, include_hash: bool = True) -> Dict[str, Any]:
        """
        Serialize to a plain dictionary

        Args:
            include_hash: Whether to include ``content_hash``. The hash is
                          computed over the dictionary without it.

        Returns:
            Dictionary with tracks in order
        """
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'provider': self.provider.value,
            'tracks': [track.to_dict() for track in self.tracks],
        }
        if include_hash:
            data['content_hash'] = self.content_hash
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        """
        Create a Snapshot from its dictionary form

        Raises:
            KeyError: If a required key is missing
            ValueError: If a provider name is unknown
            TypeError: If ``tracks`` is not a list of mappings
        """
        return cls(
            id=str(data['id']),
            name=data.get('name') or '',
            description=data.get('description'),
            provider=ProviderKind.parse(data['provider']),
            tracks=tuple(Track.from_dict(item) for item in (data.get('tracks') or [])),
            content_hash=data.get('content_hash') or '',
        )


@dataclass(frozen=True)
class TrackAdded:
    """Track inserted at ``index`` of the resulting list"""
    track: Track
    index: int

    kind = ChangeKind.ADDED

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind.value, 'track': self.track.to_dict(), 'index': self.index}


@dataclass(frozen=True)
class TrackRemoved:
    """Track removed from position ``index`` of the base list"""
    track: Track
    index: int

    kind = ChangeKind.REMOVED

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind.value, 'track': self.track.to_dict(), 'index': self.index}


@dataclass(frozen=True)
class TrackMoved:
    """
    Single-element relocation inside the working list

    ``from_index`` and ``to_index`` are positions in the list as it stands
    when the move is applied: after every removal and addition of the same
    patch and after the preceding moves.
    """
    track: Track
    from_index: int
    to_index: int

    kind = ChangeKind.MOVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.kind.value,
            'track': self.track.to_dict(),
            'from': self.from_index,
            'to': self.to_index,
        }


TrackChange = Union[TrackAdded, TrackRemoved, TrackMoved]

# Fixed application order of change groups
GROUP_ORDER = (ChangeKind.REMOVED, ChangeKind.ADDED, ChangeKind.MOVED)


def change_from_dict(data: Dict[str, Any]) -> TrackChange:
    """
    Create a TrackChange from its dictionary form

    Args:
        data: Dictionary with a ``type`` tag of added, removed or moved

    Returns:
        The matching change variant

    Raises:
        ValueError: If the tag is unknown
        KeyError: If a required key is missing
    """
    kind = ChangeKind(data['type'])
    track = Track.from_dict(data['track'])
    if kind is ChangeKind.ADDED:
        return TrackAdded(track=track, index=int(data['index']))
    if kind is ChangeKind.REMOVED:
        return TrackRemoved(track=track, index=int(data['index']))
    return TrackMoved(track=track, from_index=int(data['from']), to_index=int(data['to']))


@dataclass(frozen=True)
class DiffPatch:
    """
    Ordered sequence of track changes

    Patches produced by the diff engine are already grouped (removals,
    additions, moves). Staged patches keep the order the user staged
    changes in; ``grouped()`` restores the application order.
    """
    changes: Tuple[TrackChange, ...] = ()

    def __post_init__(self):
        if not isinstance(self.changes, tuple):
            object.__setattr__(self, 'changes', tuple(self.changes))

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self):
        return iter(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def added(self) -> List[TrackAdded]:
        return [change for change in self.changes if change.kind is ChangeKind.ADDED]

    @property
    def removed(self) -> List[TrackRemoved]:
        return [change for change in self.changes if change.kind is ChangeKind.REMOVED]

    @property
    def moved(self) -> List[TrackMoved]:
        return [change for change in self.changes if change.kind is ChangeKind.MOVED]

    def counts(self) -> Tuple[int, int, int]:
        """Return (added, removed, moved) counts"""
        return len(self.added), len(self.removed), len(self.moved)

    def grouped(self) -> 'DiffPatch':
        """Return the changes re-ordered removals, additions, moves (stable within a group)"""
        ordered = []
        for kind in GROUP_ORDER:
            ordered.extend(change for change in self.changes if change.kind is kind)
        return DiffPatch(tuple(ordered))

    def append(self, change: TrackChange) -> 'DiffPatch':
        """Return a new patch with ``change`` appended"""
        return DiffPatch(self.changes + (change,))

    @property
    def summary(self) -> str:
        """Short "+a -r ~m" description"""
        added, removed, moved = self.counts()
        return f"+{added} -{removed} ~{moved}"

    def to_dict(self) -> Dict[str, Any]:
        return {'changes': [change.to_dict() for change in self.changes]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffPatch':
        return cls(tuple(change_from_dict(item) for item in (data.get('changes') or [])))
