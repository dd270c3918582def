"""
Duplicate detection module.

Computes invoice fingerprints and checks them against recorded ones.
"""

from .detector import (
    SIMILARITY_THRESHOLD,
    DuplicateCheckResult,
    check,
    fingerprint,
    similarity,
)

__all__ = [
    "SIMILARITY_THRESHOLD",
    "DuplicateCheckResult",
    "check",
    "fingerprint",
    "similarity",
]
