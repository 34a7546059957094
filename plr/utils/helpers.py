"""
Helper utilities for plr

Small functions shared across the package: atomic file replacement for the
on-disk state, timestamps, duration formatting and playlist URL parsing.
"""

import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import parse_qs, urlparse

from ..provider.models import ProviderKind


SPOTIFY_ID_PATTERN = re.compile(r'^[a-zA-Z0-9]{22}$')
YOUTUBE_PLAYLIST_PATTERN = re.compile(r'^(PL|OL|VL|RD|LM|UU|FL)[a-zA-Z0-9_-]+$')


def atomic_write_text(path: Union[str, Path], content: str, mode: Optional[int] = None) -> None:
    """
    Replace a file's content atomically

    Writes to a temporary file in the same directory, flushes and fsyncs it,
    then renames it over the destination. A crash at any point leaves either
    the old or the new content, never a partial file.

    Args:
        path: Destination file
        content: Full text content to write (UTF-8)
        mode: Optional permission bits applied before the rename (e.g. 0o600)

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def append_line_durable(path: Union[str, Path], line: str) -> None:
    """
    Append one line to a file and make it durable before returning

    Args:
        path: File to append to (created if missing)
        line: Line content without trailing newline

    Raises:
        OSError: If the write or fsync fails
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'a', encoding='utf-8') as f:
        f.write(line + '\n')
        f.flush()
        os.fsync(f.fileno())


def get_current_timestamp() -> str:
    """Get current UTC timestamp in ISO format"""
    return datetime.now(timezone.utc).isoformat()


def format_timestamp(timestamp: Union[str, datetime]) -> str:
    """
    Format timestamp for display in local time

    Args:
        timestamp: ISO timestamp string or datetime object

    Returns:
        "YYYY-MM-DD HH:MM:SS", or the input unchanged if it cannot be parsed
    """
    if isinstance(timestamp, str):
        try:
            dt = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
        except ValueError:
            return timestamp
    else:
        dt = timestamp

    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime('%Y-%m-%d %H:%M:%S')


def format_duration(seconds: Union[int, float]) -> str:
    """
    Format duration in seconds to human-readable string

    Args:
        seconds: Duration in seconds

    Returns:
        "M:SS" or "H:MM:SS"
    """
    if seconds < 0:
        return "0:00"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    else:
        return f"{minutes}:{secs:02d}"


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate ``text`` to ``max_length`` characters including ``suffix``"""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def parse_playlist_reference(url_or_id: str) -> Tuple[Optional[ProviderKind], str]:
    """
    Split a playlist URL, URI or bare id into (provider, playlist id)

    Supported Formats:
    - Spotify web URL: https://open.spotify.com/playlist/ID?si=...
    - Spotify URI: spotify:playlist:ID
    - Spotify id: 22 alphanumeric characters
    - YouTube / YouTube Music URL with a ``list=`` query parameter
    - YouTube playlist id (PL..., OL..., VL... and similar prefixes)

    Args:
        url_or_id: Playlist reference as typed by the user

    Returns:
        Tuple of detected provider (None when the bare id is ambiguous)
        and the extracted playlist id

    Raises:
        ValueError: If the reference is empty or a URL has no playlist id
    """
    reference = (url_or_id or '').strip()
    if not reference:
        raise ValueError("Empty playlist reference")

    if reference.startswith('spotify:'):
        parts = reference.split(':')
        if len(parts) >= 3 and parts[1] == 'playlist':
            return ProviderKind.SPOTIFY, parts[2]
        raise ValueError(f"Invalid Spotify playlist URI: {url_or_id}")

    if '://' in reference:
        parsed = urlparse(reference)
        host = parsed.netloc.lower()
        if 'spotify.com' in host:
            if 'playlist/' in parsed.path:
                return ProviderKind.SPOTIFY, parsed.path.split('playlist/')[-1].strip('/')
            raise ValueError(f"Invalid Spotify playlist URL: {url_or_id}")
        if 'youtube.com' in host or 'youtu.be' in host:
            playlist_ids = parse_qs(parsed.query).get('list')
            if playlist_ids:
                return ProviderKind.YOUTUBE, playlist_ids[0]
            raise ValueError(f"YouTube URL has no playlist id: {url_or_id}")
        raise ValueError(f"Unsupported playlist URL: {url_or_id}")

    if SPOTIFY_ID_PATTERN.match(reference):
        return ProviderKind.SPOTIFY, reference
    if YOUTUBE_PLAYLIST_PATTERN.match(reference):
        return ProviderKind.YOUTUBE, reference
    return None, reference


def extract_playlist_id(url_or_id: str) -> str:
    """Extract the playlist id from a URL, URI or bare id"""
    return parse_playlist_reference(url_or_id)[1]


def detect_provider(url_or_id: str, default: Optional[ProviderKind] = None) -> ProviderKind:
    """
    Infer which provider a playlist reference belongs to

    Args:
        url_or_id: Playlist URL, URI or id
        default: Provider used when the reference alone is ambiguous

    Returns:
        Detected ProviderKind

    Raises:
        ValueError: If nothing can be inferred and no default is given
    """
    kind, _ = parse_playlist_reference(url_or_id)
    if kind is not None:
        return kind
    if default is not None:
        return default
    raise ValueError(
        f"Cannot tell which provider '{url_or_id}' belongs to; pass --provider "
        "or set sync.default_provider"
    )


def extract_track_id(url_or_id: str) -> str:
    """
    Extract a track id from a track URL, URI or bare id

    Supported Formats:
    - https://open.spotify.com/track/ID and spotify:track:ID
    - https://music.youtube.com/watch?v=ID, youtube.com/watch?v=ID, youtu.be/ID
    - Anything else is returned stripped, as a bare id

    Raises:
        ValueError: If the reference is empty or a URL has no track id
    """
    reference = (url_or_id or '').strip()
    if not reference:
        raise ValueError("Empty track reference")

    if reference.startswith('spotify:'):
        parts = reference.split(':')
        if len(parts) >= 3 and parts[1] == 'track':
            return parts[2]
        raise ValueError(f"Invalid Spotify track URI: {url_or_id}")

    if '://' in reference:
        parsed = urlparse(reference)
        host = parsed.netloc.lower()
        if 'spotify.com' in host and 'track/' in parsed.path:
            return parsed.path.split('track/')[-1].strip('/')
        if 'youtu.be' in host and parsed.path.strip('/'):
            return parsed.path.strip('/')
        if 'youtube.com' in host:
            video_ids = parse_qs(parsed.query).get('v')
            if video_ids:
                return video_ids[0]
        raise ValueError(f"Unsupported track URL: {url_or_id}")

    return reference
