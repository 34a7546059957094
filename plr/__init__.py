"""
plr: Git-like version control for your playlists

plr keeps a local, versioned copy of a Spotify or YouTube Music playlist.
Changes are staged and committed like in git, every committed state is kept
as a content-addressed snapshot, and the local state can be pushed to or
pulled from the remote playlist at any time.

Package layout:
- ``plr.provider``: data models and the Spotify / YouTube Music providers
- ``plr.state``: snapshot store, staging area and operation journal
- ``plr.sync``: diff engine, patch applier and the synchronizer
- ``plr.config``: settings and provider token storage
- ``plr.utils``: logging and small helpers
- ``plr.main``: the ``plr`` command line interface
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
