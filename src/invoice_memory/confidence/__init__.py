"""
Confidence engine module.

Pure functions for the confidence lifecycle of memory records:
initial value, reinforcement, penalization, decay and deactivation.
"""

from .engine import (
    ConfidenceSettings,
    apply_decay,
    clamp,
    contradiction_ratio,
    initial,
    is_trusted,
    penalize,
    reinforce,
    should_deactivate,
    weighted,
)

__all__ = [
    "ConfidenceSettings",
    "apply_decay",
    "clamp",
    "contradiction_ratio",
    "initial",
    "is_trusted",
    "penalize",
    "reinforce",
    "should_deactivate",
    "weighted",
]
