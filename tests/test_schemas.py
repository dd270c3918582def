"""Tests for schema parsing and serialization."""

from decimal import Decimal

import pytest

from invoice_memory.schemas import (
    CorrectionMemory,
    CorrectionOrigin,
    CorrectionPattern,
    InvoiceInput,
    InvoiceValidationError,
    MemoryType,
    PatternType,
    ProposedCorrection,
    VendorMemory,
    memory_record_from_dict,
)
from invoice_memory.schemas.invoice import to_decimal, to_snake_case


class TestInvoiceInput:
    """Tests for InvoiceInput parsing."""

    def test_camel_case_payload(self, sample_invoice_payload):
        invoice = InvoiceInput.from_dict(sample_invoice_payload)

        assert invoice.invoice_id == "INV-PARTS-001"
        assert invoice.vendor.tax_id == "DE123456789"
        assert invoice.total_amount == Decimal("119.00")
        assert invoice.line_items[0].unit_price == Decimal("0.50")
        assert invoice.raw_text.startswith("Parts AG")

    def test_snake_case_round_trip(self, sample_invoice_payload):
        invoice = InvoiceInput.from_dict(sample_invoice_payload)
        assert InvoiceInput.from_dict(invoice.to_dict()) == invoice

    def test_invoice_id_required(self):
        with pytest.raises(InvoiceValidationError):
            InvoiceInput.from_dict({"vendor": {"name": "Acme"}})

    def test_invalid_amount(self):
        with pytest.raises(InvoiceValidationError):
            InvoiceInput.from_dict({"invoice_id": "1", "total_amount": "lots"})

    def test_to_decimal(self):
        assert to_decimal("1,50") == Decimal("1.50")
        assert to_decimal(2.5) == Decimal("2.5")
        assert to_decimal("") is None

    def test_get_field(self, invoice_factory):
        invoice = invoice_factory(metadata={"deliveryDate": "2024-01-02", "empty": ""})
        assert invoice.get_field("currency") == "EUR"
        assert invoice.get_field("serviceDate") is None
        assert invoice.get_field("deliveryDate") == "2024-01-02"
        assert invoice.get_field("empty") is None

    def test_to_snake_case(self):
        assert to_snake_case("serviceDate") == "service_date"
        assert to_snake_case("currency") == "currency"


class TestMemoryRecords:
    """Tests for memory record serialization."""

    def test_record_dispatch(self):
        vendor = VendorMemory(id="vendor_1", canonical_id="acme", canonical_name="Acme")
        restored = memory_record_from_dict(vendor.to_dict())
        assert isinstance(restored, VendorMemory)
        assert restored.memory_type == MemoryType.VENDOR

    def test_correction_round_trip(self):
        correction = CorrectionMemory(
            id="corr_1",
            confidence=0.7,
            pattern=CorrectionPattern(PatternType.TAX_RECOMPUTATION, "tax_recompute:EUR"),
            suggested_action="Recompute VAT",
            human_approved=True,
        )
        assert memory_record_from_dict(correction.to_dict()) == correction

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            memory_record_from_dict({"type": "ghost"})


class TestProposedCorrection:
    """Tests for correction serialization."""

    def test_decimals_serialized(self):
        correction = ProposedCorrection(
            field="tax_amount",
            original_value=None,
            proposed_value=Decimal("19.00"),
            confidence=0.654321,
            reasoning="VAT",
            source="rule:vat_inclusive",
            origin=CorrectionOrigin.VENDOR,
        )
        data = correction.to_dict()
        assert data["proposed_value"] == "19.00"
        assert data["confidence"] == 0.6543
        assert data["origin"] == "vendor"
