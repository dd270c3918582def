"""
Storage collaborators.

Persist memory snapshots (JSON) and per-invoice audit records (JSON Lines).
"""

from .audit_log import JsonlAuditLog
from .base import AuditSink, MemoryStorage, StorageError
from .json_storage import JsonSnapshotStorage
from .snapshot import SCHEMA_VERSION, MemorySnapshot

__all__ = [
    "SCHEMA_VERSION",
    "AuditSink",
    "JsonSnapshotStorage",
    "JsonlAuditLog",
    "MemorySnapshot",
    "MemoryStorage",
    "StorageError",
]
