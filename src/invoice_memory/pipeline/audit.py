"""
Audit trail helpers.

Every phase transition appends a human-readable entry; the final reasoning
string is synthesized from the trail.
"""

from datetime import datetime
from typing import Callable

from ..schemas.decision import AuditStep, AuditTrailEntry
from ..schemas.memory import to_timestamp, utc_now


class AuditTrail:
    """Ordered audit entries for one invoice."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self.clock = clock
        self.entries: list[AuditTrailEntry] = []

    def add(self, step: AuditStep, details: str) -> AuditTrailEntry:
        entry = AuditTrailEntry(step=step, timestamp=to_timestamp(self.clock()), details=details)
        self.entries.append(entry)
        return entry


def build_reasoning(entries: list[AuditTrailEntry], requires_human_review: bool) -> str:
    """
    Summarize an audit trail into one sentence-like string.

    Parts (joined with ". "):
    - "Recall: <last recall entry>"
    - "Applied N memory-based correction(s)" if any apply entry mentions one
    - "Decision: <last decide entry>"
    - the final status
    """
    parts = []

    recall = [e for e in entries if e.step == AuditStep.RECALL]
    if recall:
        parts.append(f"Recall: {recall[-1].details}")

    applied = [
        e for e in entries if e.step == AuditStep.APPLY and "correction" in e.details.lower()
    ]
    if applied:
        parts.append(f"Applied {len(applied)} memory-based correction(s)")

    decide = [e for e in entries if e.step == AuditStep.DECIDE]
    if decide:
        parts.append(f"Decision: {decide[-1].details}")

    if requires_human_review:
        parts.append("Status: Requires human review")
    else:
        parts.append("Status: Auto-processed successfully")

    return ". ".join(parts)
