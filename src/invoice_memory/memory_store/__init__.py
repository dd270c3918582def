"""
Memory store module.

Owns all memory records and their confidence lifecycle.
"""

from .store import (
    HUMAN_APPROVED_CORRECTION_CONFIDENCE,
    RESOLUTION_CONFIDENCE,
    MemoryStore,
)

__all__ = [
    "HUMAN_APPROVED_CORRECTION_CONFIDENCE",
    "RESOLUTION_CONFIDENCE",
    "MemoryStore",
]
