"""
Storage collaborator interfaces.

The memory store and pipeline only talk to these abstractions; file
formats live in the concrete implementations.
"""

from abc import ABC, abstractmethod

from ..schemas.decision import AuditLogRecord
from .snapshot import MemorySnapshot


class StorageError(Exception):
    """Raised when a snapshot or audit record cannot be read or written."""

    pass


class MemoryStorage(ABC):
    """Loads and saves memory store snapshots."""

    @abstractmethod
    def load(self) -> MemorySnapshot:
        """
        Load the persisted snapshot.

        Returns:
            The stored snapshot, or an empty one if nothing was saved yet

        Raises:
            StorageError: If the snapshot exists but cannot be read
        """
        pass

    @abstractmethod
    def save(self, snapshot: MemorySnapshot) -> None:
        """
        Persist a snapshot.

        Raises:
            StorageError: If the write fails
        """
        pass


class AuditSink(ABC):
    """Append-only destination for per-invoice audit records."""

    @abstractmethod
    def append(self, record: AuditLogRecord) -> None:
        """Append one record. Raises StorageError on failure."""
        pass

    @abstractmethod
    def read_all(self) -> list[AuditLogRecord]:
        """Return all records in append order."""
        pass
