"""
Exception classes for plr

This module defines every typed failure raised by the version-control core.
Each exception carries a human-readable message plus an optional details
dictionary so the CLI can show a short explanation while the log file keeps
the full context.

Exception Hierarchy:
    PlrError (base)
        NotInitializedError - collection is not tracked yet
        AlreadyInitializedError - collection is already tracked
        DirtyStagingConflictError - operation needs an empty staging area
        ItemNotFoundError - track not present where it was expected
        InvalidIndexError - position out of bounds or a no-op move
        ProviderError - remote service call failed
        AmbiguousHashError - hash prefix matches several snapshots
        HashNotFoundError - no snapshot matches the hash or prefix
        CorruptStateError - a persisted file could not be parsed
        ProviderMismatchError - snapshot belongs to another provider
        NothingToCommitError - commit with empty staging
        NothingToRevertError - journal too short to revert
        StorageError - filesystem failure
        ConfigError - configuration file issues
        AuthError - missing or unusable credentials
"""

from typing import Any, Dict, List, Optional


class PlrError(Exception):
    """
    Base exception for all plr errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch every plr failure with a single
    except clause.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (collection id,
                 file path, hash, original error).
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description shown to the user.
            details: Optional dictionary containing additional context about the error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class NotInitializedError(PlrError):
    """
    Raised when an operation targets a collection that has never been initialized.

    Example:
        raise NotInitializedError(
            "Playlist 37i9dQZF1DXcBWIGoYBM5M is not tracked, run 'plr init' first",
            details={'collection_id': '37i9dQZF1DXcBWIGoYBM5M'}
        )
    """
    pass


class AlreadyInitializedError(PlrError):
    """Raised when init is attempted on a collection that already has a current snapshot."""
    pass


class DirtyStagingConflictError(PlrError):
    """
    Raised when push, pull, revert or apply runs while changes are staged.

    These operations replace or publish the current snapshot wholesale, so
    pending user intent would be silently lost or ignored. The user has to
    commit or reset first.
    """
    pass


class ItemNotFoundError(PlrError):
    """Raised when a track id (or a patch change) does not match any track."""
    pass


class InvalidIndexError(PlrError):
    """
    Raised for a position that is out of bounds, or a move whose target
    equals the track's current position.
    """
    pass


class ProviderError(PlrError):
    """
    Raised when a remote service call fails.

    When raised from the remote patch application, ``phases_completed``
    tells how many of the three phases (removals, additions, moves)
    finished before the failure. The remote playlist may be partially
    reconciled; running push again re-diffs against the live remote state
    and converges.

    Attributes:
        phases_completed: Number of fully completed phases (0-3), or None
                          when the failure happened outside patch application.
        phase: Name of the phase that failed, if any.
    """

    RECOVERY_HINT = "re-run push to converge"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        phases_completed: Optional[int] = None,
        phase: Optional[str] = None
    ) -> None:
        super().__init__(message, details)
        self.phases_completed = phases_completed
        self.phase = phase

    @property
    def recovery(self) -> Optional[str]:
        """Recovery instruction for partially applied pushes"""
        if self.phases_completed is None:
            return None
        return self.RECOVERY_HINT

    def __str__(self) -> str:
        if self.phases_completed is None:
            return self.message
        return (
            f"{self.message} ({self.phases_completed}/3 phases completed; "
            f"{self.RECOVERY_HINT})"
        )


class AmbiguousHashError(PlrError):
    """
    Raised when a hash prefix matches more than one stored snapshot.

    Attributes:
        candidates: Every full hash sharing the supplied prefix, sorted.
    """

    def __init__(self, message: str, candidates: List[str], details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.candidates = candidates


class HashNotFoundError(PlrError):
    """Raised when no historical snapshot matches a hash or prefix."""
    pass


class CorruptStateError(PlrError):
    """
    Raised when a persisted file (snapshot, staged patch, journal) fails to parse.

    The file is left untouched so the user can inspect or repair it; it is
    never silently discarded or overwritten.

    Attributes:
        path: Path of the offending file, as a string.
    """

    def __init__(self, message: str, path: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.path = path


class ProviderMismatchError(PlrError):
    """Raised when a snapshot or track belongs to a different provider than the collection."""
    pass


class NothingToCommitError(PlrError):
    """Raised when commit is requested with an empty staging area."""
    pass


class NothingToRevertError(PlrError):
    """Raised when revert without a hash finds fewer than two journal entries."""
    pass


class StorageError(PlrError):
    """Raised when reading or writing plr state on disk fails at the OS level."""
    pass


class ConfigError(PlrError):
    """
    Raised when there's an issue with the configuration file.

    Common causes:
        - config.yaml has invalid YAML syntax
        - Unknown default provider name
    """
    pass


class AuthError(PlrError):
    """Raised when provider credentials are missing, unreadable or cannot be refreshed."""
    pass
