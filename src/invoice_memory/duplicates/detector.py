"""
Duplicate detection for incoming invoices.

Flags invoices that were already seen so they are neither processed twice
nor used to reinforce memories. Detection is read-only; recording an
occurrence is a separate, explicit MemoryStore operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from ..schemas.dedupe import compute_fingerprint
from ..schemas.invoice import InvoiceInput
from ..schemas.memory import DuplicateRecord

if TYPE_CHECKING:
    from ..memory_store import MemoryStore

logger = logging.getLogger(__name__)

# Similarity above which a fingerprint hit counts as the same invoice
SIMILARITY_THRESHOLD = 0.8

# Amount tolerances (relative to the previously seen amount)
EXACT_AMOUNT_TOLERANCE = Decimal("0.01")
CLOSE_AMOUNT_TOLERANCE = Decimal("0.05")


@dataclass
class DuplicateCheckResult:
    """Outcome of a duplicate check."""

    is_duplicate: bool
    is_confirmed: bool
    similarity: float
    duplicate_hash: str
    skip_learning: bool = False
    original_invoice_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_duplicate": self.is_duplicate,
            "is_confirmed": self.is_confirmed,
            "similarity": self.similarity,
            "duplicate_hash": self.duplicate_hash,
            "skip_learning": self.skip_learning,
            "original_invoice_id": self.original_invoice_id,
            "reason": self.reason,
        }


def fingerprint(invoice: InvoiceInput) -> str:
    """Deterministic duplicate fingerprint over vendor, invoice number and year-month."""
    return compute_fingerprint(
        invoice.vendor.id,
        invoice.vendor.name,
        invoice.invoice_number,
        invoice.invoice_date,
    )


def _amount_difference(existing: Decimal, candidate: Decimal) -> Decimal:
    if existing == 0:
        return Decimal("0") if candidate == 0 else Decimal("Infinity")
    return abs(existing - candidate) / abs(existing)


def similarity(
    existing: DuplicateRecord,
    invoice_number: Optional[str],
    amount: Optional[Decimal],
) -> float:
    """
    Score how closely a candidate matches a previously seen invoice.

    Scoring:
    - 0.5 for an exact (case-insensitive) invoice number match
    - 0.5 if the amount is within 1% of the recorded amount, 0.3 within 5%

    Returns:
        Score in [0, 1]
    """
    score = 0.0

    if (invoice_number or "").strip().lower() == existing.invoice_number.strip().lower():
        score += 0.5

    if amount is not None:
        diff = _amount_difference(existing.amount, amount)
        if diff < EXACT_AMOUNT_TOLERANCE:
            score += 0.5
        elif diff < CLOSE_AMOUNT_TOLERANCE:
            score += 0.3

    return min(score, 1.0)


def check(
    invoice: InvoiceInput,
    index: MemoryStore,
    skip_learning_for_duplicates: bool = True,
) -> DuplicateCheckResult:
    """
    Check an invoice against previously recorded fingerprints.

    A fingerprint hit is reported with similarity 1.0 since the hash
    already encodes the match criteria. Never mutates the index.

    Args:
        invoice: Invoice to check
        index: Store providing find_duplicate(hash)
        skip_learning_for_duplicates: Whether a hit should suppress learning

    Returns:
        DuplicateCheckResult
    """
    duplicate_hash = fingerprint(invoice)
    existing = index.find_duplicate(duplicate_hash)

    if existing is None:
        return DuplicateCheckResult(
            is_duplicate=False,
            is_confirmed=False,
            similarity=0.0,
            duplicate_hash=duplicate_hash,
        )

    logger.info(
        "Invoice %s matches fingerprint %s (first seen as %s)",
        invoice.invoice_id,
        duplicate_hash,
        existing.original_invoice_id,
    )
    return DuplicateCheckResult(
        is_duplicate=True,
        is_confirmed=existing.confirmed_duplicate,
        similarity=1.0,
        duplicate_hash=duplicate_hash,
        skip_learning=skip_learning_for_duplicates,
        original_invoice_id=existing.original_invoice_id,
        reason="Exact hash match found",
    )
