"""
Fixed text patterns shared by the rule modules.

All matching is case-insensitive regular expressions; there is no
language understanding beyond these patterns.
"""

import re
from decimal import Decimal
from typing import Optional

# (pattern, marker, VAT rate in percent)
VAT_INCLUSIVE_MARKERS: list[tuple[re.Pattern, str, Decimal]] = [
    (re.compile(r"mwst\.?\s*inkl", re.I), "MwSt. inkl.", Decimal("19")),
    (re.compile(r"prices?\s+incl\.?\s*vat", re.I), "Prices incl. VAT", Decimal("19")),
    (re.compile(r"inkl\.?\s*mwst", re.I), "inkl. MwSt.", Decimal("19")),
    (re.compile(r"including\s+vat", re.I), "including VAT", Decimal("20")),
    (re.compile(r"inklusive\s+mehrwertsteuer", re.I), "inklusive Mehrwertsteuer", Decimal("19")),
    (re.compile(r"brutto", re.I), "Brutto", Decimal("19")),
]

# Markers that count as textual evidence for a tax recomputation pattern
VAT_EVIDENCE_PATTERNS = [
    re.compile(r"mwst\.?\s*inkl", re.I),
    re.compile(r"inkl\.?\s*mwst", re.I),
    re.compile(r"prices?\s+incl\.?\s*vat", re.I),
    re.compile(r"brutto", re.I),
    re.compile(r"inklusive\s+mehrwertsteuer", re.I),
]

# Currency next to an amount, e.g. "1.234,00 EUR" or "$ 99.00"
AMOUNT_CURRENCY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"(\d+[.,]\d{2})\s*EUR", re.I), "EUR"),
    (re.compile(r"EUR\s*(\d+[.,]\d{2})", re.I), "EUR"),
    (re.compile(r"€\s*(\d+[.,]\d{2})"), "EUR"),
    (re.compile(r"(\d+[.,]\d{2})\s*€"), "EUR"),
    (re.compile(r"(\d+[.,]\d{2})\s*USD", re.I), "USD"),
    (re.compile(r"USD\s*(\d+[.,]\d{2})", re.I), "USD"),
    (re.compile(r"\$\s*(\d+[.,]\d{2})"), "USD"),
    (re.compile(r"(\d+[.,]\d{2})\s*CHF", re.I), "CHF"),
    (re.compile(r"CHF\s*(\d+[.,]\d{2})", re.I), "CHF"),
    (re.compile(r"(\d+[.,]\d{2})\s*GBP", re.I), "GBP"),
    (re.compile(r"£\s*(\d+[.,]\d{2})"), "GBP"),
]

# Bare currency mentions anywhere in text
CURRENCY_MENTION_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"EUR|€", re.I), "EUR"),
    (re.compile(r"USD|\$", re.I), "USD"),
    (re.compile(r"GBP|£", re.I), "GBP"),
    (re.compile(r"CHF", re.I), "CHF"),
]

SHIPPING_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"seefracht",
        r"shipping",
        r"freight",
        r"fracht",
        r"versand",
        r"lieferung",
        r"transport",
        r"luftfracht",
        r"express\s*delivery",
    )
]

SKONTO_PATTERNS = [
    re.compile(
        r"(\d+(?:[.,]\d+)?)\s*%\s*skonto\s*(?:within|innerhalb|bei\s+zahlung\s+binnen)\s*"
        r"(\d+)\s*(?:days?|tage?n?)",
        re.I,
    ),
    re.compile(
        r"skonto\s*(\d+(?:[.,]\d+)?)\s*%\s*(?:within|innerhalb|bei\s+zahlung\s+binnen)\s*"
        r"(\d+)\s*(?:days?|tage?n?)",
        re.I,
    ),
    re.compile(
        r"(\d+(?:[.,]\d+)?)\s*%\s*(?:discount|rabatt)\s*(?:within|innerhalb)\s*"
        r"(\d+)\s*(?:days?|tage?n?)",
        re.I,
    ),
]

NET_DAYS_PATTERN = re.compile(
    r"(?:net|netto)\s*(?:within|innerhalb)?\s*(\d+)\s*(?:days?|tage?n?)", re.I
)


def find_vat_marker(*texts: Optional[str]) -> Optional[tuple[str, Decimal]]:
    """Return (marker, rate) of the first VAT-inclusive marker found in any text."""
    for pattern, marker, rate in VAT_INCLUSIVE_MARKERS:
        for text in texts:
            if text and pattern.search(text):
                return marker, rate
    return None


def has_vat_evidence(text: Optional[str]) -> bool:
    """True if text suggests VAT-inclusive pricing."""
    if not text:
        return False
    return any(p.search(text) for p in VAT_EVIDENCE_PATTERNS)


def currency_next_to_amount(text: Optional[str]) -> Optional[str]:
    """Currency code printed next to an amount in text."""
    if not text:
        return None
    for pattern, currency in AMOUNT_CURRENCY_PATTERNS:
        if pattern.search(text):
            return currency
    return None


def currency_mentioned(text: Optional[str]) -> Optional[str]:
    """First currency code or symbol mentioned anywhere in text."""
    if not text:
        return None
    for pattern, currency in CURRENCY_MENTION_PATTERNS:
        if pattern.search(text):
            return currency
    return None


def is_shipping_description(description: str) -> bool:
    return any(p.search(description) for p in SHIPPING_PATTERNS)
