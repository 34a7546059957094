"""Logging setup and small shared helpers"""

from .logger import (
    setup_logging,
    configure_from_settings,
    get_logger,
    OperationLogger,
    create_operation_logger,
)
from .helpers import (
    atomic_write_text,
    get_current_timestamp,
    format_timestamp,
    format_duration,
    truncate_string,
    extract_playlist_id,
    extract_track_id,
    detect_provider,
)

__all__ = [
    "setup_logging",
    "configure_from_settings",
    "get_logger",
    "OperationLogger",
    "create_operation_logger",
    "atomic_write_text",
    "get_current_timestamp",
    "format_timestamp",
    "format_duration",
    "truncate_string",
    "extract_playlist_id",
    "extract_track_id",
    "detect_provider",
]
