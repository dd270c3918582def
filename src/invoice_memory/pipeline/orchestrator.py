"""
Invoice processing pipeline.

Drives each invoice through the four phases, strictly in order:

    Recall -> (duplicate gate) -> Apply -> Decide -> Learn -> Done

- Recall: vendor memory by name, vendor-scoped corrections, fingerprint lookup
- Duplicate gate: a fingerprint hit is recorded immediately and may
  suppress learning
- Apply: rule matching, normalized invoice, aggregate confidence
- Decide: duplicate factors, review policy, optional human decision
- Learn: vendor, duplicate and correction memory mutations

The only early exit is the missing-vendor guard, which returns a
zero-confidence, forced-review output before Recall.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..config import Config
from ..duplicates import DuplicateCheckResult, check, fingerprint
from ..memory_store import MemoryStore
from ..rules import MatchOutcome, RuleMatchingEngine
from ..schemas.decision import (
    AuditLogRecord,
    AuditStep,
    CorrectionOrigin,
    DecisionOutput,
    MemoryUpdate,
    ProposedCorrection,
    UpdateOperation,
)
from ..schemas.invoice import InvoiceInput, NormalizedInvoice, NormalizedVendor
from ..schemas.memory import (
    CorrectionMemory,
    DuplicateRecord,
    MemoryType,
    VendorMemory,
    to_timestamp,
)
from ..storage.base import AuditSink
from .audit import AuditTrail, build_reasoning
from .normalize import build_normalized_invoice

logger = logging.getLogger(__name__)

# Starting confidence of a vendor memory created by Learn
NEW_VENDOR_CONFIDENCE_REVIEWED = 0.3
NEW_VENDOR_CONFIDENCE_AUTO = 0.5

# Confidence floor after an explicit human approval
HUMAN_APPROVAL_FLOOR = 0.9

MISSING_VENDOR_REASON = "Missing required vendor information"


@dataclass
class RecallResult:
    """Memories recalled for one invoice."""

    vendor_memory: Optional[VendorMemory]
    correction_memories: list[CorrectionMemory]
    duplicate_record: Optional[DuplicateRecord]
    duplicate_hash: str


@dataclass
class ApplyResult:
    """Normalized invoice and proposals."""

    normalized_invoice: NormalizedInvoice
    match: MatchOutcome

    @property
    def corrections(self) -> list[ProposedCorrection]:
        return self.match.corrections


@dataclass
class DecideResult:
    """Review decision for one invoice."""

    requires_human_review: bool
    confidence_score: float
    reasoning: str
    final_corrections: list[ProposedCorrection] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


class InvoicePipeline:
    """
    Memory-driven invoice decision pipeline.

    The pipeline holds no memory state of its own; everything lives in the
    MemoryStore it was given. The store lock is held for the whole invoice.
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[Config] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or Config()
        self.audit_sink = audit_sink
        self.clock = clock or store.clock
        self.engine = RuleMatchingEngine.from_config(self.config)

    def process_invoice(
        self,
        invoice: InvoiceInput,
        human_approved: Optional[bool] = None,
    ) -> DecisionOutput:
        """
        Process one invoice.

        Args:
            invoice: Extracted invoice
            human_approved: Optional human decision. True force-approves
                (confidence floored at 0.9), False forces review.

        Returns:
            DecisionOutput

        Raises:
            NormalizationError: If invoice number, date or total is missing
            StorageError: If the audit sink fails
        """
        if not invoice.vendor.name or not invoice.vendor.name.strip():
            logger.warning("Invoice %s has no vendor name, forcing review", invoice.invoice_id)
            return self._missing_vendor_output(invoice)

        with self.store.locked():
            audit = AuditTrail(self.clock)

            # Phase 1: Recall
            audit.add(AuditStep.RECALL, f"Starting memory recall for invoice {invoice.invoice_id}")
            recall = self._recall(invoice)
            audit.add(
                AuditStep.RECALL,
                f"Found: {'vendor memory' if recall.vendor_memory else 'no vendor memory'}, "
                f"{len(recall.correction_memories)} corrections, "
                f"{'potential duplicate' if recall.duplicate_record else 'no duplicate'}",
            )

            # Duplicate gate
            duplicate = check(
                invoice, self.store, self.config.duplicates.skip_learning_for_duplicates
            )
            skip_learning = False
            if duplicate.is_duplicate:
                skip_learning = duplicate.skip_learning
                audit.add(
                    AuditStep.DECIDE,
                    f"Duplicate detected: {duplicate.reason}. "
                    f"Similarity: {duplicate.similarity * 100:.0f}%",
                )
                self._record_occurrence(invoice)

            # Phase 2: Apply
            audit.add(AuditStep.APPLY, "Applying memories to normalize invoice")
            applied = self._apply(invoice, recall)
            for note in applied.match.notes:
                audit.add(AuditStep.APPLY, note)
            audit.add(
                AuditStep.APPLY,
                f"Generated {len(applied.corrections)} correction(s), "
                f"confidence: {applied.match.overall_confidence * 100:.0f}%",
            )

            # Phase 3: Decide
            audit.add(AuditStep.DECIDE, "Evaluating confidence and determining action")
            decision = self._decide(audit, recall, applied, duplicate, human_approved)
            if decision.requires_human_review:
                audit.add(AuditStep.DECIDE, f"Escalating to human review: {decision.reasoning}")
            else:
                audit.add(
                    AuditStep.DECIDE,
                    f"Auto-approved with confidence {decision.confidence_score * 100:.0f}%",
                )

            # Phase 4: Learn
            memory_updates: list[MemoryUpdate] = []
            if skip_learning:
                audit.add(AuditStep.LEARN, "Skipping learning - duplicate invoice detected")
            else:
                audit.add(AuditStep.LEARN, "Recording memory updates")
                memory_updates = self._learn(invoice, recall, applied, decision)
                audit.add(AuditStep.LEARN, f"Generated {len(memory_updates)} memory update(s)")

            self.store.update_stats(
                corrections_applied=len(applied.match.corrections)
                - len(applied.match.pending),
                human_review_required=decision.requires_human_review,
                confidence=decision.confidence_score,
            )

            output = DecisionOutput(
                normalized_invoice=applied.normalized_invoice,
                proposed_corrections=decision.final_corrections,
                requires_human_review=decision.requires_human_review,
                reasoning=decision.reasoning,
                confidence_score=decision.confidence_score,
                memory_updates=memory_updates,
                audit_trail=audit.entries,
                is_duplicate=duplicate.is_duplicate,
            )

        logger.info(
            "Invoice %s processed: confidence=%.2f review=%s corrections=%d duplicate=%s",
            invoice.invoice_id,
            output.confidence_score,
            output.requires_human_review,
            len(output.proposed_corrections),
            output.is_duplicate,
        )

        if self.audit_sink is not None:
            self.audit_sink.append(
                AuditLogRecord.from_decision(
                    invoice.invoice_id, to_timestamp(self.clock()), output
                )
            )

        return output

    def process_batch(
        self,
        invoices: list[InvoiceInput],
        human_approved: Optional[bool] = None,
    ) -> list[DecisionOutput]:
        """Process invoices sequentially, in order."""
        return [self.process_invoice(invoice, human_approved) for invoice in invoices]

    # =========================================================================
    # Guard
    # =========================================================================

    def _missing_vendor_output(self, invoice: InvoiceInput) -> DecisionOutput:
        normalized = NormalizedInvoice(
            invoice_id=invoice.invoice_id,
            vendor=NormalizedVendor(
                normalized_name="UNKNOWN",
                canonical_id="unknown",
                original_name="UNKNOWN",
            ),
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            invoice_number=invoice.invoice_number,
            total_amount=invoice.total_amount,
            currency=invoice.currency,
            line_items=[],
            po_number=invoice.po_number,
            processing_timestamp=to_timestamp(self.clock()),
        )
        return DecisionOutput(
            normalized_invoice=normalized,
            proposed_corrections=[],
            requires_human_review=True,
            reasoning=MISSING_VENDOR_REASON,
            confidence_score=0.0,
            memory_updates=[],
            audit_trail=[],
        )

    # =========================================================================
    # Phases
    # =========================================================================

    def _recall(self, invoice: InvoiceInput) -> RecallResult:
        vendor_memory = self.store.find_vendor_by_name(invoice.vendor.name)
        corrections = self.store.find_corrections(
            vendor_memory.canonical_id if vendor_memory else None
        )
        duplicate_hash = fingerprint(invoice)
        logger.debug(
            "Recall for %s: vendor=%s corrections=%d fingerprint=%s",
            invoice.invoice_id,
            vendor_memory.id if vendor_memory else None,
            len(corrections),
            duplicate_hash,
        )
        return RecallResult(
            vendor_memory=vendor_memory,
            correction_memories=corrections,
            duplicate_record=self.store.find_duplicate(duplicate_hash),
            duplicate_hash=duplicate_hash,
        )

    def _record_occurrence(self, invoice: InvoiceInput) -> tuple[bool, DuplicateRecord]:
        return self.store.record_duplicate(
            vendor_id=invoice.vendor.id,
            vendor_name=invoice.vendor.name,
            invoice_number=invoice.invoice_number or "",
            invoice_date=invoice.invoice_date or "",
            amount=invoice.total_amount,
            invoice_id=invoice.invoice_id,
        )

    def _apply(self, invoice: InvoiceInput, recall: RecallResult) -> ApplyResult:
        match = self.engine.match(invoice, recall.vendor_memory, recall.correction_memories)
        normalized = build_normalized_invoice(
            invoice,
            match.corrections,
            recall.vendor_memory,
            to_timestamp(self.clock()),
        )
        return ApplyResult(normalized_invoice=normalized, match=match)

    def _decide(
        self,
        audit: AuditTrail,
        recall: RecallResult,
        applied: ApplyResult,
        duplicate: DuplicateCheckResult,
        human_approved: Optional[bool],
    ) -> DecideResult:
        dup_settings = self.config.duplicates
        reasons: list[str] = []
        requires_review = False
        confidence = applied.match.overall_confidence

        if recall.duplicate_record is not None:
            requires_review = True
            if recall.duplicate_record.confirmed_duplicate:
                reasons.append("Confirmed duplicate detected")
                confidence *= dup_settings.confirmed_factor
            else:
                reasons.append("Potential duplicate detected")
                confidence *= dup_settings.potential_factor

        pending = applied.match.pending
        if pending:
            reasons.append(f"{len(pending)} correction(s) require review")
            requires_review = True

        if confidence < self.config.human_review_threshold:
            reasons.append(f"Confidence {confidence * 100:.0f}% below threshold")
            requires_review = True

        if human_approved is True:
            requires_review = False
            confidence = max(confidence, HUMAN_APPROVAL_FLOOR)
            reasons.append("Approved by human review")
        elif human_approved is False:
            requires_review = True
            reasons.append("Rejected by human review")

        reasoning = build_reasoning(audit.entries, requires_review)

        if duplicate.is_duplicate:
            confidence *= 1 - dup_settings.confidence_penalty
            requires_review = True
            reasoning = build_reasoning(audit.entries, requires_review)
            reasoning = f"{reasoning}. DUPLICATE: {duplicate.reason}"

        confidence = min(max(confidence, 0.0), 1.0)

        final = (
            list(applied.corrections)
            if requires_review
            else [c for c in applied.corrections if c.auto_applied]
        )
        logger.debug("Decide: %s", "; ".join(reasons) or "no review triggers")
        return DecideResult(
            requires_human_review=requires_review,
            confidence_score=confidence,
            reasoning=reasoning,
            final_corrections=final,
            reasons=reasons,
        )

    def _learn(
        self,
        invoice: InvoiceInput,
        recall: RecallResult,
        applied: ApplyResult,
        decision: DecideResult,
    ) -> list[MemoryUpdate]:
        updates: list[MemoryUpdate] = []
        observed_name = invoice.vendor.name

        start = (
            NEW_VENDOR_CONFIDENCE_REVIEWED
            if decision.requires_human_review
            else NEW_VENDOR_CONFIDENCE_AUTO
        )

        vendor = recall.vendor_memory
        inactive: Optional[VendorMemory] = None
        if vendor is None:
            existing = self.store.get_vendor(applied.normalized_invoice.vendor.canonical_id)
            if existing is not None and existing.is_active:
                vendor = existing
            else:
                inactive = existing

        if vendor is not None:
            self.store.reinforce_memory(vendor.id)
            updates.append(
                MemoryUpdate(
                    operation=UpdateOperation.REINFORCE,
                    memory_type=MemoryType.VENDOR,
                    record_id=vendor.id,
                    data={"confidence": round(vendor.confidence, 4)},
                    reason="Vendor seen in invoice processing",
                )
            )
            if self.store.add_name_variation(vendor.canonical_id, observed_name):
                updates.append(
                    MemoryUpdate(
                        operation=UpdateOperation.UPDATE,
                        memory_type=MemoryType.VENDOR,
                        record_id=vendor.id,
                        data={"name_variations": list(vendor.name_variations)},
                        reason="New name variation discovered",
                    )
                )
        elif inactive is not None:
            self.store.reactivate_vendor(inactive.canonical_id, confidence=start)
            self.store.add_name_variation(inactive.canonical_id, observed_name)
            updates.append(
                MemoryUpdate(
                    operation=UpdateOperation.UPDATE,
                    memory_type=MemoryType.VENDOR,
                    record_id=inactive.id,
                    data={
                        "confidence": inactive.confidence,
                        "is_active": inactive.is_active,
                        "name_variations": list(inactive.name_variations),
                    },
                    reason="Inactive vendor reactivated",
                )
            )
        else:
            created = self.store.create_vendor(
                canonical_id=applied.normalized_invoice.vendor.canonical_id,
                canonical_name=observed_name,
                confidence=start,
                name_variations=[observed_name],
                tax_id=invoice.vendor.tax_id,
            )
            updates.append(
                MemoryUpdate(
                    operation=UpdateOperation.CREATE,
                    memory_type=MemoryType.VENDOR,
                    record_id=created.id,
                    data={
                        "canonical_id": created.canonical_id,
                        "canonical_name": created.canonical_name,
                        "name_variations": list(created.name_variations),
                        "confidence": created.confidence,
                    },
                    reason="New vendor encountered",
                )
            )

        if recall.duplicate_record is None:
            _, record = self._record_occurrence(invoice)
            updates.append(
                MemoryUpdate(
                    operation=UpdateOperation.CREATE,
                    memory_type=MemoryType.DUPLICATE,
                    record_id=record.id,
                    data={
                        "duplicate_hash": record.duplicate_hash,
                        "original_invoice_id": record.original_invoice_id,
                        "vendor_id": record.vendor_id,
                        "invoice_number": record.invoice_number,
                        "amount": record.amount,
                    },
                    reason="Record invoice hash for duplicate detection",
                )
            )

        for correction in applied.corrections:
            if not correction.auto_applied or correction.origin != CorrectionOrigin.CORRECTION:
                continue
            if self.store.reinforce_memory(correction.source) is None:
                continue
            updates.append(
                MemoryUpdate(
                    operation=UpdateOperation.REINFORCE,
                    memory_type=MemoryType.CORRECTION,
                    record_id=correction.source,
                    data={},
                    reason=f"Correction auto-applied: {correction.field}",
                )
            )

        return updates
