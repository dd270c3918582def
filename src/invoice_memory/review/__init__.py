"""
Human-in-the-loop review module.

Provides:
- Recording review decisions as resolution memories
- Applying reviewer overrides to proposed corrections
- Learning corrections and field mappings from approvals
"""

from .feedback import (
    ReviewDecision,
    apply_human_overrides,
    learn_correction_from_approval,
    learn_field_mapping,
    record_human_decision,
    resolve_duplicate,
)

__all__ = [
    "ReviewDecision",
    "apply_human_overrides",
    "learn_correction_from_approval",
    "learn_field_mapping",
    "record_human_decision",
    "resolve_duplicate",
]
