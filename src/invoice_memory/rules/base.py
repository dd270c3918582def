"""Shared result types for the rule modules."""

from dataclasses import dataclass, field
from typing import Optional

from ..schemas.decision import ProposedCorrection
from ..schemas.invoice import InvoiceInput
from ..schemas.memory import VendorMemory
from .catalog import VendorRuleProfile


@dataclass
class RuleOutcome:
    """Corrections proposed by a rule group plus notes for the audit trail."""

    corrections: list[ProposedCorrection] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def extend(self, other: "RuleOutcome") -> None:
        self.corrections.extend(other.corrections)
        self.notes.extend(other.notes)


@dataclass
class VendorRuleContext:
    """Inputs available to a catalog vendor rule."""

    invoice: InvoiceInput
    vendor_memory: Optional[VendorMemory]
    profile: VendorRuleProfile
    auto_apply_threshold: float

    @property
    def source(self) -> Optional[str]:
        return self.vendor_memory.id if self.vendor_memory else None

    def boosted_confidence(self, boost: float, cap: float, fallback: float) -> float:
        """min(vendor confidence + boost, cap) with vendor memory, else fallback."""
        if self.vendor_memory is None:
            return fallback
        return min(self.vendor_memory.confidence + boost, cap)
