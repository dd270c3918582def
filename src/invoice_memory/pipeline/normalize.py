"""
Normalized invoice construction.

Builds the NormalizedInvoice from the raw input and writes the
auto-applied corrections into it. Pending corrections are not applied.
"""

import logging
import re
from typing import Any, Optional

from ..schemas.dedupe import vendor_key
from ..schemas.decision import CorrectionOrigin, ProposedCorrection
from ..schemas.invoice import (
    InvoiceInput,
    NormalizedInvoice,
    NormalizedLineItem,
    NormalizedVendor,
    to_decimal,
)
from ..schemas.memory import VendorMemory

logger = logging.getLogger(__name__)

LINE_ITEM_FIELD = re.compile(r"^line_items\[(\d+)\]\.(\w+)$")

STRING_FIELDS = (
    "currency",
    "invoice_date",
    "due_date",
    "service_date",
    "po_number",
    "invoice_number",
)
AMOUNT_FIELDS = ("tax_amount", "net_amount")


class NormalizationError(Exception):
    """Raised when an invoice cannot be normalized (required fields missing)."""

    pass


def _require_fields(invoice: InvoiceInput) -> None:
    missing = []
    if not invoice.invoice_number:
        missing.append("invoice_number")
    if not invoice.invoice_date:
        missing.append("invoice_date")
    if invoice.total_amount is None:
        missing.append("total_amount")
    if missing:
        raise NormalizationError(
            f"Invoice {invoice.invoice_id} cannot be normalized, missing: {', '.join(missing)}"
        )


def _set_field(normalized: NormalizedInvoice, name: str, value: Any) -> bool:
    match = LINE_ITEM_FIELD.match(name)
    if match:
        index, attr = int(match.group(1)), match.group(2)
        if index >= len(normalized.line_items) or not hasattr(normalized.line_items[index], attr):
            logger.warning("Ignoring correction for unknown line item field %s", name)
            return False
        setattr(normalized.line_items[index], attr, value)
        return True

    if name in STRING_FIELDS:
        setattr(normalized, name, str(value))
    elif name in AMOUNT_FIELDS:
        setattr(normalized, name, to_decimal(value, name))
    elif name == "payment_terms":
        normalized.payment_terms = dict(value) if isinstance(value, dict) else {"raw": value}
    else:
        normalized.extra_fields[name] = value
    return True


def build_normalized_invoice(
    invoice: InvoiceInput,
    corrections: list[ProposedCorrection],
    vendor_memory: Optional[VendorMemory],
    processing_timestamp: str,
) -> NormalizedInvoice:
    """
    Build the normalized invoice.

    Raises:
        NormalizationError: If invoice number, date or total is missing
    """
    _require_fields(invoice)

    rename = next(
        (
            c
            for c in corrections
            if c.field == "vendor.name" and c.origin == CorrectionOrigin.VENDOR
        ),
        None,
    )
    name_is_canonical = (
        vendor_memory is not None and vendor_memory.canonical_name == invoice.vendor.name
    )
    if vendor_memory is not None and (name_is_canonical or (rename and rename.auto_applied)):
        canonical_id = vendor_memory.canonical_id
        normalized_name = vendor_memory.canonical_name
    else:
        canonical_id = invoice.vendor.id or vendor_key(None, invoice.vendor.name)
        normalized_name = invoice.vendor.name

    normalized = NormalizedInvoice(
        invoice_id=invoice.invoice_id,
        vendor=NormalizedVendor(
            normalized_name=normalized_name,
            canonical_id=canonical_id,
            original_name=invoice.vendor.name,
        ),
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        invoice_number=invoice.invoice_number,
        total_amount=invoice.total_amount,
        currency=invoice.currency,
        line_items=[NormalizedLineItem.from_line_item(item) for item in invoice.line_items],
        po_number=invoice.po_number,
        service_date=invoice.service_date,
        payment_terms=invoice.payment_terms,
        processing_timestamp=processing_timestamp,
    )

    applied: set[str] = set()
    for correction in corrections:
        if not correction.auto_applied or correction.field == "vendor.name":
            continue
        # Correction-memory proposals describe an action, not a field value
        if correction.origin == CorrectionOrigin.CORRECTION:
            continue
        if correction.field in applied:
            continue
        if _set_field(normalized, correction.field, correction.proposed_value):
            applied.add(correction.field)

    return normalized
