"""
Decision output schemas.

Contains the objects produced by the pipeline for each invoice:
- ProposedCorrection: a single suggested field change with provenance
- MemoryUpdate: description of a memory mutation performed during Learn
- AuditTrailEntry: one human-readable step of the processing trail
- DecisionOutput: the terminal result of processing one invoice
- AuditLogRecord: the per-invoice record handed to the audit sink
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .invoice import NormalizedInvoice
from .memory import MemoryType


class CorrectionOrigin(str, Enum):
    """Which rule group produced a correction."""

    VENDOR = "vendor"
    CORRECTION = "correction"
    HEURISTIC = "heuristic"


class UpdateOperation(str, Enum):
    """Kinds of memory mutations reported in memory_updates."""

    CREATE = "create"
    UPDATE = "update"
    REINFORCE = "reinforce"
    CONTRADICT = "contradict"
    DECAY = "decay"


class AuditStep(str, Enum):
    """Pipeline phase an audit entry belongs to."""

    RECALL = "recall"
    APPLY = "apply"
    DECIDE = "decide"
    LEARN = "learn"


def _jsonable(value: Any) -> Any:
    """Convert Decimals (possibly nested) into strings for JSON output."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class ProposedCorrection:
    """
    A single proposed field change.

    `field` uses dotted paths for nested targets, e.g. "vendor.name" or
    "line_items[2].product_code".
    """

    field: str
    original_value: Any
    proposed_value: Any
    confidence: float
    reasoning: str
    source: str  # Memory id or rule name that produced the proposal
    auto_applied: bool = False
    origin: CorrectionOrigin = CorrectionOrigin.HEURISTIC

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "original_value": _jsonable(self.original_value),
            "proposed_value": _jsonable(self.proposed_value),
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "source": self.source,
            "auto_applied": self.auto_applied,
            "origin": self.origin.value,
        }


@dataclass
class MemoryUpdate:
    """A memory mutation performed while learning from an invoice."""

    operation: UpdateOperation
    memory_type: MemoryType
    data: dict[str, Any]
    reason: str
    record_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.value,
            "memory_type": self.memory_type.value,
            "record_id": self.record_id,
            "data": _jsonable(self.data),
            "reason": self.reason,
        }


@dataclass
class AuditTrailEntry:
    """One step of the processing trail."""

    step: AuditStep
    timestamp: str
    details: str

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "timestamp": self.timestamp,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditTrailEntry":
        return cls(
            step=AuditStep(data["step"]),
            timestamp=data.get("timestamp", ""),
            details=data.get("details", ""),
        )


@dataclass
class DecisionOutput:
    """Terminal result of processing one invoice."""

    normalized_invoice: NormalizedInvoice
    proposed_corrections: list[ProposedCorrection]
    requires_human_review: bool
    reasoning: str
    confidence_score: float
    memory_updates: list[MemoryUpdate] = field(default_factory=list)
    audit_trail: list[AuditTrailEntry] = field(default_factory=list)

    # Duplicate detection outcome (for callers and the CLI)
    is_duplicate: bool = False

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON output."""
        return {
            "normalized_invoice": self.normalized_invoice.to_dict(),
            "proposed_corrections": [c.to_dict() for c in self.proposed_corrections],
            "requires_human_review": self.requires_human_review,
            "reasoning": self.reasoning,
            "confidence_score": round(self.confidence_score, 4),
            "memory_updates": [u.to_dict() for u in self.memory_updates],
            "audit_trail": [e.to_dict() for e in self.audit_trail],
            "is_duplicate": self.is_duplicate,
        }


@dataclass
class AuditLogRecord:
    """Append-only audit record written once per processed invoice."""

    invoice_id: str
    processed_at: str
    entries: list[AuditTrailEntry]
    requires_human_review: bool
    confidence_score: float

    @property
    def total_steps(self) -> int:
        return len(self.entries)

    @classmethod
    def from_decision(
        cls, invoice_id: str, processed_at: str, decision: DecisionOutput
    ) -> "AuditLogRecord":
        return cls(
            invoice_id=invoice_id,
            processed_at=processed_at,
            entries=list(decision.audit_trail),
            requires_human_review=decision.requires_human_review,
            confidence_score=decision.confidence_score,
        )

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "processed_at": self.processed_at,
            "entries": [e.to_dict() for e in self.entries],
            "summary": {
                "total_steps": self.total_steps,
                "requires_human_review": self.requires_human_review,
                "confidence_score": round(self.confidence_score, 4),
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditLogRecord":
        summary = data.get("summary") or {}
        return cls(
            invoice_id=data["invoice_id"],
            processed_at=data.get("processed_at", ""),
            entries=[AuditTrailEntry.from_dict(e) for e in data.get("entries", [])],
            requires_human_review=bool(summary.get("requires_human_review", False)),
            confidence_score=float(summary.get("confidence_score", 0.0)),
        )
