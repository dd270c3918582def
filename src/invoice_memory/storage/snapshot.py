"""
Memory store snapshot.

The persisted form of a MemoryStore. Snapshots written by older versions
(or hand-edited partial files) are merged with defaults instead of being
rejected.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..schemas.memory import (
    CorrectionMemory,
    DuplicateRecord,
    MemoryStats,
    ResolutionMemory,
    VendorMemory,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "2.0.0"


@dataclass
class MemorySnapshot:
    """All memory records plus statistics, as persisted."""

    schema_version: str = SCHEMA_VERSION
    last_updated: Optional[str] = None
    vendors: dict[str, VendorMemory] = field(default_factory=dict)
    corrections: list[CorrectionMemory] = field(default_factory=list)
    resolutions: list[ResolutionMemory] = field(default_factory=list)
    duplicates: list[DuplicateRecord] = field(default_factory=list)
    stats: MemoryStats = field(default_factory=MemoryStats)

    @property
    def is_empty(self) -> bool:
        return not (self.vendors or self.corrections or self.resolutions or self.duplicates)

    def to_dict(self) -> dict:
        return {
            "schema_version": self.schema_version,
            "last_updated": self.last_updated,
            "vendors": {key: v.to_dict() for key, v in self.vendors.items()},
            "corrections": [c.to_dict() for c in self.corrections],
            "resolutions": [r.to_dict() for r in self.resolutions],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemorySnapshot":
        """
        Deserialize a snapshot.

        Missing sections default to empty. A different schema_version is
        logged and upgraded to the current one.
        """
        version = data.get("schema_version") or data.get("schemaVersion") or "unknown"
        if version != SCHEMA_VERSION:
            logger.warning(
                "Snapshot schema version mismatch: %s -> %s (merging defaults)",
                version,
                SCHEMA_VERSION,
            )

        vendors = {}
        for key, vendor_data in (data.get("vendors") or {}).items():
            vendor = VendorMemory.from_dict(vendor_data)
            vendors[vendor.canonical_id or key] = vendor

        return cls(
            schema_version=SCHEMA_VERSION,
            last_updated=data.get("last_updated"),
            vendors=vendors,
            corrections=[CorrectionMemory.from_dict(c) for c in data.get("corrections") or []],
            resolutions=[ResolutionMemory.from_dict(r) for r in data.get("resolutions") or []],
            duplicates=[DuplicateRecord.from_dict(d) for d in data.get("duplicates") or []],
            stats=MemoryStats.from_dict(data.get("stats") or {}),
        )
