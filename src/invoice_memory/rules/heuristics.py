"""
Heuristic corrections.

Used only when no correction memory applies. Each heuristic carries its
own fixed confidence, independent of any memory.
"""

import re
from typing import Optional

from ..schemas.decision import CorrectionOrigin, ProposedCorrection
from ..schemas.invoice import InvoiceInput, normalize_date
from .base import RuleOutcome
from .patterns import currency_mentioned

CURRENCY_CONFIDENCE = 0.6
DATE_FORMAT_CONFIDENCE = 0.8

# (pattern, sku, confidence); first match wins
SKU_PATTERNS: list[tuple[re.Pattern, str, float]] = [
    (re.compile(r"shipping|freight|seefracht|fracht|versand", re.I), "FREIGHT", 0.75),
    (re.compile(r"consulting|beratung", re.I), "CONSULTING", 0.7),
    (re.compile(r"license|lizenz", re.I), "LICENSE", 0.7),
    (re.compile(r"maintenance|wartung", re.I), "MAINTENANCE", 0.7),
    (re.compile(r"training|schulung", re.I), "TRAINING", 0.7),
    (re.compile(r"tax|steuer|mwst", re.I), "TAX", 0.6),
]

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

GERMANY = re.compile(r"germany|deutschland|de$", re.I)
SWITZERLAND = re.compile(r"switzerland|schweiz|ch$", re.I)


def guess_currency(invoice: InvoiceInput) -> Optional[tuple[str, str]]:
    """
    Guess a missing currency.

    Returns:
        (currency, where it was found) or None
    """
    found = currency_mentioned(invoice.raw_text)
    if found:
        return found, "raw text"

    metadata_currency = invoice.metadata_value("currency")
    if metadata_currency is not None:
        return str(metadata_currency), "metadata"

    address = invoice.vendor.address
    if address:
        if GERMANY.search(address):
            return "EUR", "vendor address (Germany)"
        if SWITZERLAND.search(address):
            return "CHF", "vendor address (Switzerland)"
    return None


def suggest_sku(description: str) -> Optional[tuple[str, float]]:
    for pattern, sku, confidence in SKU_PATTERNS:
        if pattern.search(description):
            return sku, confidence
    return None


def apply_heuristics(invoice: InvoiceInput, auto_apply_threshold: float) -> RuleOutcome:
    """Currency extraction, product code suggestions and date normalization."""
    outcome = RuleOutcome()

    if not invoice.currency or invoice.currency.upper() == "UNKNOWN":
        guess = guess_currency(invoice)
        if guess:
            currency, where = guess
            outcome.corrections.append(
                ProposedCorrection(
                    field="currency",
                    original_value=invoice.currency or "UNKNOWN",
                    proposed_value=currency,
                    confidence=CURRENCY_CONFIDENCE,
                    reasoning=f'Heuristic: Extracted currency "{currency}" from {where}',
                    source="heuristic:currency",
                    auto_applied=CURRENCY_CONFIDENCE >= auto_apply_threshold,
                    origin=CorrectionOrigin.HEURISTIC,
                )
            )
            outcome.notes.append(f'Heuristic: Found currency "{currency}" in {where}')

    for i, item in enumerate(invoice.line_items):
        if item.product_code:
            continue
        suggestion = suggest_sku(item.description)
        if suggestion is None:
            continue
        sku, confidence = suggestion
        outcome.corrections.append(
            ProposedCorrection(
                field=f"line_items[{i}].product_code",
                original_value=None,
                proposed_value=sku,
                confidence=confidence,
                reasoning=f'Heuristic: "{item.description}" matches pattern for {sku}',
                source="heuristic:sku",
                auto_applied=confidence >= auto_apply_threshold,
                origin=CorrectionOrigin.HEURISTIC,
            )
        )

    if invoice.invoice_date and not ISO_DATE.match(invoice.invoice_date):
        normalized = normalize_date(invoice.invoice_date)
        if normalized:
            outcome.corrections.append(
                ProposedCorrection(
                    field="invoice_date",
                    original_value=invoice.invoice_date,
                    proposed_value=normalized,
                    confidence=DATE_FORMAT_CONFIDENCE,
                    reasoning="Heuristic: Normalized date to ISO 8601 format",
                    source="heuristic:date_format",
                    auto_applied=DATE_FORMAT_CONFIDENCE >= auto_apply_threshold,
                    origin=CorrectionOrigin.HEURISTIC,
                )
            )

    return outcome
