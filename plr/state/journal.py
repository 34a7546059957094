"""
Append-only operation journal

One ``journal.log`` per collection, one JSON record per line, oldest first.
Records are never rewritten; each append is flushed and fsynced before it
returns, so a crash after a successful append cannot lose the record.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import CorruptStateError, NothingToRevertError, StorageError
from ..utils.helpers import append_line_durable, get_current_timestamp
from ..utils.logger import get_logger


JOURNAL_FILE = "journal.log"


class Operation(Enum):
    """Kind of mutating operation recorded in the journal"""
    INIT = "init"
    PULL = "pull"
    PUSH = "push"
    APPLY = "apply"
    COMMIT = "commit"


@dataclass(frozen=True)
class JournalEntry:
    """
    One completed operation

    Attributes:
        timestamp: ISO timestamp of completion
        operation: Operation kind
        snapshot_hash: Content hash of the resulting current snapshot
        added: Number of tracks added
        removed: Number of tracks removed
        moved: Number of tracks moved
        message: Optional free-text message (commit message, revert target)
    """
    timestamp: str
    operation: Operation
    snapshot_hash: str
    added: int = 0
    removed: int = 0
    moved: int = 0
    message: Optional[str] = None

    @classmethod
    def create(
        cls,
        operation: Operation,
        snapshot_hash: str,
        added: int = 0,
        removed: int = 0,
        moved: int = 0,
        message: Optional[str] = None
    ) -> 'JournalEntry':
        """Build an entry stamped with the current time"""
        return cls(
            timestamp=get_current_timestamp(),
            operation=operation,
            snapshot_hash=snapshot_hash,
            added=added,
            removed=removed,
            moved=moved,
            message=message,
        )

    @property
    def counts_str(self) -> str:
        return f"+{self.added}/-{self.removed}/~{self.moved}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'operation': self.operation.value,
            'snapshot_hash': self.snapshot_hash,
            'added': self.added,
            'removed': self.removed,
            'moved': self.moved,
            'message': self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalEntry':
        return cls(
            timestamp=data['timestamp'],
            operation=Operation(data['operation']),
            snapshot_hash=data['snapshot_hash'],
            added=int(data.get('added', 0)),
            removed=int(data.get('removed', 0)),
            moved=int(data.get('moved', 0)),
            message=data.get('message'),
        )


class Journal:
    """Journal of one collection"""

    def __init__(self, collection_dir: Union[str, Path]):
        """
        Args:
            collection_dir: Directory of the tracked collection
        """
        self.path = Path(collection_dir) / JOURNAL_FILE
        self.logger = get_logger(__name__)

    def append(self, entry: JournalEntry) -> None:
        """
        Append one entry durably

        Raises:
            StorageError: If the record cannot be written and synced
        """
        line = json.dumps(entry.to_dict(), ensure_ascii=False, separators=(',', ':'))
        try:
            append_line_durable(self.path, line)
        except OSError as e:
            raise StorageError(f"Failed to append to {self.path}: {e}", details={'path': str(self.path)}) from e
        self.logger.debug(f"Journal: {entry.operation.value} {entry.snapshot_hash} {entry.counts_str}")

    def read_all(self) -> List[JournalEntry]:
        """
        Read every entry, oldest first

        Returns:
            Entries in append order; empty when the journal does not exist

        Raises:
            CorruptStateError: If a line cannot be parsed
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}", details={'path': str(self.path)}) from e

        entries = []
        for line_number, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                entries.append(JournalEntry.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError) as e:
                raise CorruptStateError(
                    f"Journal {self.path} line {line_number} is malformed: {e!r}",
                    path=str(self.path),
                    details={'line': line_number}
                ) from e
        return entries

    def last(self) -> Optional[JournalEntry]:
        entries = self.read_all()
        return entries[-1] if entries else None

    def previous_hash(self) -> str:
        """
        Hash recorded by the second-to-last entry

        This is the state immediately before the most recent mutating
        operation, the default target of revert.

        Raises:
            NothingToRevertError: If fewer than two entries exist
        """
        entries = self.read_all()
        if len(entries) < 2:
            raise NothingToRevertError(
                "Nothing to revert to",
                details={'journal': str(self.path), 'entries': len(entries)}
            )
        return entries[-2].snapshot_hash
