"""
Remote playlist providers and the shared data models

Provider implementations live in ``plr.provider.spotify`` and
``plr.provider.ytmusic`` and are created through
``plr.provider.base.create_provider``; only the models are exported here so
importing the package does not pull in the API clients.
"""

from .models import (
    ProviderKind,
    TrackIdentity,
    Track,
    Snapshot,
    TrackAdded,
    TrackRemoved,
    TrackMoved,
    TrackChange,
    DiffPatch,
)

__all__ = [
    "ProviderKind",
    "TrackIdentity",
    "Track",
    "Snapshot",
    "TrackAdded",
    "TrackRemoved",
    "TrackMoved",
    "TrackChange",
    "DiffPatch",
]
