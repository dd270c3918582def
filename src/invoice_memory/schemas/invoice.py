"""
Invoice input and normalized invoice schemas (SSOT).

InvoiceInput is the contract for extracted invoices entering the pipeline.
NormalizedInvoice is what the pipeline emits after applying corrections.
Money is always Decimal; dates are ISO strings (YYYY-MM-DD) when known.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

NORMALIZATION_VERSION = "2.0.0"

DAY_FIRST_DATE = re.compile(r"^(\d{1,2})[./](\d{1,2})[./](\d{4})$")

# Fields that exist as first-class attributes on the invoice.
# Anything else is looked up in (or written to) the free-form metadata.
FIRST_CLASS_FIELDS = (
    "invoice_date",
    "due_date",
    "invoice_number",
    "currency",
    "po_number",
    "service_date",
)


class InvoiceValidationError(ValueError):
    """Raised when an invoice payload cannot be parsed."""

    pass


def to_snake_case(name: str) -> str:
    """Convert camelCase field names ("serviceDate") to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _pick(data: dict, *keys: str, default: Any = None) -> Any:
    """Return the first present key (accepts snake_case and camelCase payloads)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def to_decimal(value: Any, field_name: str = "amount") -> Optional[Decimal]:
    """
    Parse an amount into Decimal.

    Accepts Decimal, int, float and strings with either dot or comma
    as decimal separator. Returns None for None/empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        if isinstance(value, str):
            return Decimal(value.strip().replace(",", "."))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvoiceValidationError(f"{field_name} is not a valid amount: {value!r}") from e


def normalize_date(value: Optional[str]) -> Optional[str]:
    """
    Convert a day-first date (DD.MM.YYYY or DD/MM/YYYY) to YYYY-MM-DD.

    Returns None for anything unrecognized or not a real calendar date.
    """
    if not value:
        return None
    match = DAY_FIRST_DATE.match(str(value).strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _plain_dict(data: Optional[dict]) -> Optional[dict]:
    """Copy a dict with Decimal values rendered as strings."""
    if data is None:
        return None
    return {k: str(v) if isinstance(v, Decimal) else v for k, v in data.items()}


@dataclass
class VendorInfo:
    """Vendor/supplier information as extracted."""

    name: str = ""
    id: Optional[str] = None
    tax_id: Optional[str] = None
    address: Optional[str] = None


@dataclass
class LineItem:
    """Individual line item from an invoice."""

    description: str
    amount: Decimal = Decimal("0")
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    category: Optional[str] = None
    product_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "amount": _decimal_str(self.amount),
            "quantity": _decimal_str(self.quantity),
            "unit_price": _decimal_str(self.unit_price),
            "category": self.category,
            "product_code": self.product_code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            description=str(data.get("description", "")),
            amount=to_decimal(data.get("amount"), "line item amount") or Decimal("0"),
            quantity=to_decimal(data.get("quantity"), "quantity"),
            unit_price=to_decimal(_pick(data, "unit_price", "unitPrice"), "unit price"),
            category=data.get("category"),
            product_code=_pick(data, "product_code", "productCode", "sku"),
        )


@dataclass
class InvoiceInput:
    """
    Raw extracted invoice data received from upstream extraction.

    Only invoice_id is strictly required to build the object. A missing
    vendor name is handled by the pipeline guard; missing invoice number,
    date or total surface as a NormalizationError during Apply.
    """

    invoice_id: str
    vendor: VendorInfo = field(default_factory=VendorInfo)
    invoice_date: Optional[str] = None
    invoice_number: Optional[str] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    line_items: list[LineItem] = field(default_factory=list)

    due_date: Optional[str] = None
    po_number: Optional[str] = None
    service_date: Optional[str] = None
    payment_terms: Optional[dict] = None

    # Free-form, vendor-specific extracted fields (ordered)
    metadata: dict[str, Any] = field(default_factory=dict)

    # Raw OCR/text layer, if the extractor kept it
    raw_text: Optional[str] = None

    # Upstream extraction confidence (0-1)
    extraction_confidence: Optional[float] = None

    def metadata_value(self, key: str) -> Optional[Any]:
        """
        Look up a metadata key.

        Absent keys, None and empty strings are all treated as "not found".
        """
        value = self.metadata.get(key)
        if value is None or value == "":
            return None
        return value

    def get_field(self, name: str) -> Optional[Any]:
        """Current value of a (possibly camelCase) target field, or None if unset."""
        attr = to_snake_case(name)
        if attr in FIRST_CLASS_FIELDS:
            value = getattr(self, attr)
            return None if value in (None, "") else value
        return self.metadata_value(name) if name in self.metadata else self.metadata_value(attr)

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "invoice_id": self.invoice_id,
            "vendor": {
                "name": self.vendor.name,
                "id": self.vendor.id,
                "tax_id": self.vendor.tax_id,
                "address": self.vendor.address,
            },
            "invoice_date": self.invoice_date,
            "due_date": self.due_date,
            "invoice_number": self.invoice_number,
            "total_amount": _decimal_str(self.total_amount),
            "currency": self.currency,
            "line_items": [item.to_dict() for item in self.line_items],
            "po_number": self.po_number,
            "service_date": self.service_date,
            "payment_terms": _plain_dict(self.payment_terms),
            "metadata": dict(self.metadata),
            "raw_text": self.raw_text,
            "extraction_confidence": self.extraction_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InvoiceInput":
        """
        Deserialize from dictionary.

        Both snake_case and camelCase keys are accepted so extractor output
        in either convention can be fed directly.
        """
        invoice_id = _pick(data, "invoice_id", "invoiceId")
        if not invoice_id:
            raise InvoiceValidationError("invoice_id is required")

        vendor_data = data.get("vendor") or {}
        if isinstance(vendor_data, str):
            vendor_data = {"name": vendor_data}
        vendor = VendorInfo(
            name=str(vendor_data.get("name") or ""),
            id=vendor_data.get("id"),
            tax_id=_pick(vendor_data, "tax_id", "taxId"),
            address=vendor_data.get("address"),
        )

        extraction_confidence = _pick(data, "extraction_confidence", "extractionConfidence")

        return cls(
            invoice_id=str(invoice_id),
            vendor=vendor,
            invoice_date=_pick(data, "invoice_date", "invoiceDate"),
            invoice_number=_pick(data, "invoice_number", "invoiceNumber"),
            total_amount=to_decimal(_pick(data, "total_amount", "totalAmount"), "total_amount"),
            currency=data.get("currency"),
            line_items=[
                LineItem.from_dict(item) for item in _pick(data, "line_items", "lineItems", default=[])
            ],
            due_date=_pick(data, "due_date", "dueDate"),
            po_number=_pick(data, "po_number", "poNumber"),
            service_date=_pick(data, "service_date", "serviceDate"),
            payment_terms=_pick(data, "payment_terms", "paymentTerms"),
            metadata=dict(data.get("metadata") or {}),
            raw_text=_pick(data, "raw_text", "rawText"),
            extraction_confidence=(
                float(extraction_confidence) if extraction_confidence is not None else None
            ),
        )


@dataclass
class NormalizedLineItem:
    """Line item after normalization (quantity and unit price always set)."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    category: Optional[str] = None
    product_code: Optional[str] = None

    @classmethod
    def from_line_item(cls, item: LineItem) -> "NormalizedLineItem":
        return cls(
            description=item.description,
            quantity=item.quantity if item.quantity is not None else Decimal("1"),
            unit_price=item.unit_price if item.unit_price is not None else item.amount,
            amount=item.amount,
            category=item.category or None,
            product_code=item.product_code or None,
        )

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "amount": str(self.amount),
            "category": self.category,
            "product_code": self.product_code,
        }


@dataclass
class NormalizedVendor:
    """Vendor identity after normalization."""

    normalized_name: str
    canonical_id: str
    original_name: str


@dataclass
class NormalizedInvoice:
    """Invoice after processing and auto-applied corrections."""

    invoice_id: str
    vendor: NormalizedVendor
    invoice_date: Optional[str]
    due_date: Optional[str]
    invoice_number: Optional[str]
    total_amount: Optional[Decimal]
    currency: Optional[str]
    line_items: list[NormalizedLineItem] = field(default_factory=list)
    po_number: Optional[str] = None

    service_date: Optional[str] = None
    tax_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    payment_terms: Optional[dict] = None

    # Mapped fields that have no first-class attribute
    extra_fields: dict[str, Any] = field(default_factory=dict)

    processing_timestamp: str = ""
    normalization_version: str = NORMALIZATION_VERSION

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON output."""
        return {
            "invoice_id": self.invoice_id,
            "vendor": {
                "normalized_name": self.vendor.normalized_name,
                "canonical_id": self.vendor.canonical_id,
                "original_name": self.vendor.original_name,
            },
            "invoice_date": self.invoice_date,
            "due_date": self.due_date,
            "invoice_number": self.invoice_number,
            "total_amount": _decimal_str(self.total_amount),
            "currency": self.currency,
            "line_items": [item.to_dict() for item in self.line_items],
            "po_number": self.po_number,
            "service_date": self.service_date,
            "tax_amount": _decimal_str(self.tax_amount),
            "net_amount": _decimal_str(self.net_amount),
            "payment_terms": _plain_dict(self.payment_terms),
            "extra_fields": _plain_dict(self.extra_fields),
            "processing_timestamp": self.processing_timestamp,
            "normalization_version": self.normalization_version,
        }
