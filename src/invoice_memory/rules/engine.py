"""
Rule matching engine.

Given one invoice and the memories recalled for it, emits an ordered list
of proposed corrections with confidence and provenance:

    vendor rules (rename, field mappings, catalog rules)
    -> correction-memory rules
    -> heuristics (only when no correction memory applies)

Proposals are never deduplicated across groups. Conflicting proposals for
the same field are left for human review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ..confidence import ConfidenceSettings, weighted
from ..schemas.decision import CorrectionOrigin, ProposedCorrection
from ..schemas.invoice import InvoiceInput
from ..schemas.memory import CorrectionMemory, VendorMemory
from .base import RuleOutcome
from .catalog import VendorRuleProfile, default_profiles, match_profile
from .correction_rules import apply_correction_memories
from .heuristics import apply_heuristics
from .vendor_rules import apply_profile_rules, apply_vendor_memory

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

# Aggregate weights
VENDOR_WEIGHT = 0.6
CORRECTION_WEIGHT = 0.4

# Vendor confidence used when no vendor memory exists
UNKNOWN_VENDOR_CONFIDENCE = 0.5


@dataclass
class MatchOutcome:
    """Everything the Apply phase needs from rule matching."""

    corrections: list[ProposedCorrection] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    vendor_confidence: float = UNKNOWN_VENDOR_CONFIDENCE
    correction_confidence: float = UNKNOWN_VENDOR_CONFIDENCE
    profile: Optional[VendorRuleProfile] = None

    @property
    def overall_confidence(self) -> float:
        return (
            self.vendor_confidence * VENDOR_WEIGHT
            + self.correction_confidence * CORRECTION_WEIGHT
        )

    @property
    def pending(self) -> list[ProposedCorrection]:
        return [c for c in self.corrections if not c.auto_applied]


class RuleMatchingEngine:
    """
    Turns recalled memories into proposed corrections.

    The engine is stateless between invoices; all inputs arrive through
    match().
    """

    def __init__(
        self,
        auto_apply_threshold: float = 0.85,
        settings: Optional[ConfidenceSettings] = None,
        profiles: Optional[list[VendorRuleProfile]] = None,
    ) -> None:
        self.auto_apply_threshold = auto_apply_threshold
        self.settings = settings or ConfidenceSettings()
        self.profiles = profiles if profiles is not None else default_profiles()

    @classmethod
    def from_config(cls, config: Config) -> RuleMatchingEngine:
        return cls(
            auto_apply_threshold=config.auto_apply_threshold,
            settings=config.confidence,
            profiles=config.vendor_profiles,
        )

    def match(
        self,
        invoice: InvoiceInput,
        vendor_memory: Optional[VendorMemory],
        correction_memories: list[CorrectionMemory],
    ) -> MatchOutcome:
        """
        Produce proposals for one invoice.

        Args:
            invoice: Invoice being processed
            vendor_memory: Recalled vendor memory (None for unknown vendors)
            correction_memories: Recalled active correction memories

        Returns:
            MatchOutcome with ordered proposals and aggregate confidence
        """
        outcome = MatchOutcome()

        # 1. Vendor rules
        if vendor_memory is not None:
            outcome.vendor_confidence = weighted(
                vendor_memory.confidence,
                vendor_memory.reinforcement_count,
                vendor_memory.contradiction_count,
                self.settings,
            )
            self._merge(
                outcome,
                apply_vendor_memory(
                    invoice, vendor_memory, self.auto_apply_threshold, self.settings
                ),
            )
        else:
            outcome.notes.append(f'No vendor memory found for "{invoice.vendor.name}"')

        profile = match_profile(self.profiles, invoice.vendor.name)
        if profile is not None:
            outcome.profile = profile
            self._merge(
                outcome,
                apply_profile_rules(invoice, vendor_memory, profile, self.auto_apply_threshold),
            )

        # 2. Correction memories
        memory_outcome = apply_correction_memories(
            invoice, correction_memories, self.auto_apply_threshold, self.settings
        )
        self._merge(outcome, memory_outcome)

        # 3. Heuristics
        if not memory_outcome.corrections:
            self._merge(outcome, apply_heuristics(invoice, self.auto_apply_threshold))

        outcome.correction_confidence = self._correction_confidence(
            outcome, {c.id: c for c in correction_memories}
        )

        logger.debug(
            "Invoice %s: %d proposal(s), vendor=%.2f correction=%.2f overall=%.2f",
            invoice.invoice_id,
            len(outcome.corrections),
            outcome.vendor_confidence,
            outcome.correction_confidence,
            outcome.overall_confidence,
        )
        return outcome

    @staticmethod
    def _merge(outcome: MatchOutcome, part: RuleOutcome) -> None:
        outcome.corrections.extend(part.corrections)
        outcome.notes.extend(part.notes)

    def _correction_confidence(
        self,
        outcome: MatchOutcome,
        memories: dict[str, CorrectionMemory],
    ) -> float:
        """Mean weighted confidence of correction-memory proposals (vendor confidence if none)."""
        values = []
        for proposal in outcome.corrections:
            if proposal.origin != CorrectionOrigin.CORRECTION:
                continue
            memory = memories.get(proposal.source)
            if memory is None:
                values.append(proposal.confidence)
                continue
            values.append(
                weighted(
                    memory.confidence,
                    memory.reinforcement_count,
                    memory.contradiction_count,
                    self.settings,
                )
            )
        if not values:
            return outcome.vendor_confidence
        return sum(values) / len(values)
