"""
Staging area for not-yet-committed changes

The staged patch of a collection lives in ``staged.patch`` as JSON. Changes
are appended in the order the user staged them, without validation against
each other; commit replays them in the fixed group order (removals,
additions, moves). Every write replaces the whole file atomically.
"""

import json
from pathlib import Path
from typing import Union

from ..exceptions import CorruptStateError, StorageError
from ..provider.models import DiffPatch, TrackChange
from ..utils.helpers import atomic_write_text
from ..utils.logger import get_logger


STAGED_FILE = "staged.patch"


class StagingArea:
    """Durable accumulation of staged TrackChanges per collection"""

    def __init__(self, root: Union[str, Path]):
        """
        Args:
            root: Playlists directory (``<plr_dir>/playlists``)
        """
        self.root = Path(root)
        self.logger = get_logger(__name__)

    def path(self, collection_id: str) -> Path:
        return self.root / collection_id / STAGED_FILE

    def load(self, collection_id: str) -> DiffPatch:
        """
        Load the staged patch

        Returns:
            The persisted patch, or an empty patch if none was persisted

        Raises:
            CorruptStateError: If staged.patch exists but cannot be parsed
        """
        path = self.path(collection_id)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return DiffPatch()
        except json.JSONDecodeError as e:
            raise CorruptStateError(f"Staged patch {path} is not valid JSON: {e}", path=str(path)) from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}", details={'path': str(path)}) from e

        try:
            return DiffPatch.from_dict(data)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise CorruptStateError(f"Staged patch {path} is malformed: {e!r}", path=str(path)) from e

    def _write(self, collection_id: str, patch: DiffPatch) -> None:
        path = self.path(collection_id)
        try:
            atomic_write_text(path, json.dumps(patch.to_dict(), indent=2, ensure_ascii=False))
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", details={'path': str(path)}) from e

    def stage_change(self, collection_id: str, change: TrackChange) -> DiffPatch:
        """
        Append one change to the staged patch

        Args:
            collection_id: Collection to stage for
            change: Change to append

        Returns:
            The full staged patch after the append
        """
        patch = self.load(collection_id).append(change)
        self._write(collection_id, patch)
        self.logger.debug(f"Staged {change.kind.value} {change.track.id} for {collection_id}")
        return patch

    def clear(self, collection_id: str) -> None:
        """Atomically replace the staged patch with an empty one"""
        self._write(collection_id, DiffPatch())
        self.logger.debug(f"Cleared staging for {collection_id}")

    def has_changes(self, collection_id: str) -> bool:
        return not self.load(collection_id).is_empty
