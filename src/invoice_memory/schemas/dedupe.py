"""
Duplicate fingerprint generation (CRITICAL).

This module defines THE deterministic invoice fingerprint.
This is the ONLY way to compute duplicate hashes in the system.

Fingerprint:
    hash = SHA256(canonical JSON of {vendor_key, invoice_number_key, date_key})[:16]

    - vendor_key: vendor id if present, else vendor name; lower-cased,
      alphanumeric characters only
    - invoice_number_key: invoice number, lower-cased, alphanumeric only
    - date_key: invoice date truncated to year-month (YYYY-MM)

Invoices from the same vendor with the same number inside one calendar
month collide on purpose. The fingerprint is a coarse first filter, not a
uniqueness guarantee.

The fingerprint must be:
- Stable: Same inputs always produce same output
- Reproducible: Can be regenerated from stored invoice data
"""

import hashlib
import json
import re
from typing import Any, Optional

from .invoice import normalize_date

# ============================================================================
# SSOT Constants for Fingerprint Generation
# ============================================================================

# Length of the hash prefix to use
HASH_PREFIX_LENGTH = 16

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_key(value: Optional[str]) -> str:
    """Lower-case and keep alphanumeric characters only."""
    if not value:
        return ""
    return _NON_ALNUM.sub("", str(value).lower())


def vendor_key(vendor_id: Optional[str], vendor_name: Optional[str]) -> str:
    """
    Normalized vendor identifier used for fingerprints.

    The vendor id takes precedence over the name when present.
    """
    return normalize_key(vendor_id or vendor_name)


def year_month(date: Optional[str]) -> str:
    """
    Truncate an invoice date to YYYY-MM.

    ISO dates (YYYY-MM-DD...) and day-first dates (DD.MM.YYYY, DD/MM/YYYY)
    are supported. Anything else is returned stripped as-is so the
    fingerprint stays deterministic.
    """
    if not date:
        return ""
    value = str(date).strip()
    if len(value) >= 7 and value[4] == "-":
        return value[:7]
    iso = normalize_date(value)
    if iso:
        return iso[:7]
    return value


def generate_hash(data: dict[str, Any]) -> str:
    """
    Compute a short deterministic hash over a dictionary.

    Keys are sorted before encoding so insertion order never matters.

    Args:
        data: JSON-serializable dictionary

    Returns:
        16-character lowercase hex SHA256 prefix
    """
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_PREFIX_LENGTH]


def compute_fingerprint(
    vendor_id: Optional[str],
    vendor_name: Optional[str],
    invoice_number: Optional[str],
    invoice_date: Optional[str],
) -> str:
    """
    Compute the duplicate fingerprint for an invoice.

    Args:
        vendor_id: Vendor identifier (preferred)
        vendor_name: Vendor name (fallback when no id)
        invoice_number: Invoice number as printed
        invoice_date: Invoice date (YYYY-MM-DD, DD.MM.YYYY or DD/MM/YYYY)

    Returns:
        16-character fingerprint

    Examples:
        >>> compute_fingerprint(None, "Supplier GmbH", "INV-001", "2024-01-15") == \\
        ...     compute_fingerprint(None, "supplier gmbh", "inv001", "2024-01-28")
        True
    """
    return generate_hash(
        {
            "vendor_key": vendor_key(vendor_id, vendor_name),
            "invoice_number": normalize_key(invoice_number),
            "date_key": year_month(invoice_date),
        }
    )
