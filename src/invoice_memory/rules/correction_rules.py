"""
Correction rules.

Decides which recalled correction memories apply to an invoice and turns
them into proposals. A memory whose applicability predicate does not hold
is excluded, not scored at zero.
"""

import logging
from decimal import Decimal
from typing import Optional

from ..confidence import ConfidenceSettings, is_trusted
from ..schemas.dedupe import normalize_key
from ..schemas.decision import CorrectionOrigin, ProposedCorrection
from ..schemas.invoice import InvoiceInput
from ..schemas.memory import CorrectionMemory, CorrectionPattern, PatternType
from .base import RuleOutcome
from .patterns import has_vat_evidence

logger = logging.getLogger(__name__)

ROUND_AMOUNT_FLOOR = Decimal("100")
SMALL_AMOUNT_CEILING = Decimal("1")


def is_suspicious_amount(amount: Optional[Decimal]) -> bool:
    """Round totals above 100 and totals below 1 are worth a second look."""
    if amount is None:
        return False
    if amount == amount.to_integral_value() and amount > ROUND_AMOUNT_FLOOR:
        return True
    return amount < SMALL_AMOUNT_CEILING


def _references_vendor(signature: str, invoice: InvoiceInput) -> bool:
    signature = signature.lower()
    candidates = [
        (invoice.vendor.id or "").lower(),
        invoice.vendor.name.strip().lower(),
        normalize_key(invoice.vendor.id or invoice.vendor.name),
    ]
    return any(c and c in signature for c in candidates)


def is_applicable(pattern: CorrectionPattern, invoice: InvoiceInput) -> bool:
    """
    Applicability predicate per pattern type.

    - quantity_mismatch: at least one line item carries a quantity
    - tax_recomputation: raw text shows VAT-inclusive pricing
    - field_correction: the signature references the invoice's vendor
    - amount_adjustment: the total looks suspicious
    - other: never
    """
    if pattern.type == PatternType.QUANTITY_MISMATCH:
        return any(item.quantity is not None for item in invoice.line_items)
    if pattern.type == PatternType.TAX_RECOMPUTATION:
        return has_vat_evidence(invoice.raw_text)
    if pattern.type == PatternType.FIELD_CORRECTION:
        return _references_vendor(pattern.signature, invoice)
    if pattern.type == PatternType.AMOUNT_ADJUSTMENT:
        return is_suspicious_amount(invoice.total_amount)
    return False


def propose(
    correction: CorrectionMemory,
    auto_apply_threshold: float,
    settings: Optional[ConfidenceSettings] = None,
) -> ProposedCorrection:
    """
    Build a proposal from a correction memory.

    Only human-approved memories that pass the trust gates auto-apply.
    """
    trusted = is_trusted(
        correction.confidence,
        correction.reinforcement_count,
        correction.contradiction_count,
        auto_apply_threshold,
        settings,
    )
    return ProposedCorrection(
        field=correction.pattern.type.value,
        original_value=correction.pattern.condition,
        proposed_value=correction.suggested_action,
        confidence=correction.confidence,
        reasoning=(
            f"Memory: {correction.pattern.signature} "
            f"({correction.reinforcement_count} reinforcements)"
        ),
        source=correction.id,
        auto_applied=trusted and correction.human_approved,
        origin=CorrectionOrigin.CORRECTION,
    )


def apply_correction_memories(
    invoice: InvoiceInput,
    corrections: list[CorrectionMemory],
    auto_apply_threshold: float,
    settings: Optional[ConfidenceSettings] = None,
) -> RuleOutcome:
    """Propose every applicable correction memory."""
    outcome = RuleOutcome()
    applicable = [c for c in corrections if c.is_active and is_applicable(c.pattern, invoice)]

    if not applicable:
        outcome.notes.append("No applicable correction patterns found from memory")
        return outcome

    outcome.notes.append(
        f"Found {len(applicable)} applicable correction pattern(s) from memory"
    )
    for correction in applicable:
        proposal = propose(correction, auto_apply_threshold, settings)
        outcome.corrections.append(proposal)
        if proposal.auto_applied:
            outcome.notes.append(f"Auto-applied: {correction.suggested_action}")
        else:
            outcome.notes.append(
                f"Pending review: {correction.suggested_action} "
                f"({correction.confidence * 100:.0f}% confidence)"
            )

    logger.debug(
        "Invoice %s: %d of %d correction memories applicable",
        invoice.invoice_id,
        len(applicable),
        len(corrections),
    )
    return outcome


def pattern_signature(
    pattern_type: PatternType,
    vendor: str,
    currency: Optional[str] = None,
    amount: Optional[Decimal] = None,
) -> str:
    """
    Stable signature identifying a correction pattern.

    Examples:
        >>> pattern_signature(PatternType.QUANTITY_MISMATCH, "supplier-gmbh")
        'qty_mismatch:supplier-gmbh'
        >>> pattern_signature(PatternType.TAX_RECOMPUTATION, "parts-ag", currency="EUR")
        'tax_recompute:EUR'
    """
    if pattern_type == PatternType.QUANTITY_MISMATCH:
        return f"qty_mismatch:{vendor}"
    if pattern_type == PatternType.TAX_RECOMPUTATION:
        return f"tax_recompute:{currency or 'UNKNOWN'}"
    if pattern_type == PatternType.AMOUNT_ADJUSTMENT:
        rounded = int(amount.to_integral_value()) if amount is not None else 0
        return f"amount_adj:{vendor}:{rounded}"
    if pattern_type == PatternType.FIELD_CORRECTION:
        return f"field_corr:{vendor}"
    return f"{pattern_type.value}:{vendor}"


def pattern_type_for_field(field_name: str) -> PatternType:
    """Infer the correction pattern type from a corrected field name."""
    name = field_name.lower()
    if "tax" in name or "vat" in name:
        return PatternType.TAX_RECOMPUTATION
    if "quantity" in name:
        return PatternType.QUANTITY_MISMATCH
    if "amount" in name or "total" in name:
        return PatternType.AMOUNT_ADJUSTMENT
    return PatternType.FIELD_CORRECTION
