"""Test fixtures and utilities."""

import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from invoice_memory.config import Config, StorageConfig
from invoice_memory.memory_store import MemoryStore
from invoice_memory.pipeline import InvoicePipeline
from invoice_memory.schemas.invoice import InvoiceInput, LineItem, VendorInfo

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_invoice(
    invoice_id: str = "INV-A-001",
    vendor_name: str = "Acme Tools",
    invoice_number: str | None = "A-001",
    invoice_date: str | None = "2024-01-15",
    total_amount: str | None = "100.00",
    currency: str | None = "EUR",
    **kwargs,
) -> InvoiceInput:
    """Build an InvoiceInput with sensible defaults."""
    vendor_id = kwargs.pop("vendor_id", None)
    return InvoiceInput(
        invoice_id=invoice_id,
        vendor=VendorInfo(name=vendor_name, id=vendor_id),
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        total_amount=Decimal(total_amount) if total_amount is not None else None,
        currency=currency,
        **kwargs,
    )


SAMPLE_INVOICE_JSON = {
    "invoiceId": "INV-PARTS-001",
    "vendor": {"name": "Parts AG", "taxId": "DE123456789"},
    "invoiceNumber": "PA-2024-17",
    "invoiceDate": "2024-01-20",
    "totalAmount": "119.00",
    "currency": None,
    "lineItems": [
        {"description": "Bolts M8", "quantity": "100", "unitPrice": "0.50", "amount": "50.00"},
        {"description": "Versand", "amount": "69.00"},
    ],
    "rawText": "Parts AG\nPrices incl. VAT\nTotal 119.00 EUR",
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Default config with storage under tmp_path."""
    return Config(
        storage=StorageConfig(
            memory_path=tmp_path / "memory.json",
            audit_log_path=tmp_path / "audit-log.jsonl",
        )
    )


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def pipeline(store: MemoryStore, config: Config, clock: FakeClock) -> InvoicePipeline:
    return InvoicePipeline(store, config=config, clock=clock)


@pytest.fixture
def trusted_vendor(store: MemoryStore):
    """Acme Tools vendor memory reinforced well above the auto-apply threshold."""
    vendor = store.create_vendor(
        canonical_id="acme-tools",
        canonical_name="Acme Tools",
        name_variations=["Acme Tools", "ACME Tools GmbH"],
    )
    for _ in range(15):
        store.reinforce_memory(vendor.id)
    return vendor


@pytest.fixture
def sample_line_items() -> list[LineItem]:
    return [
        LineItem(description="Seefracht Hamburg", amount=Decimal("250.00")),
        LineItem(
            description="Beratung",
            amount=Decimal("300.00"),
            quantity=Decimal("2"),
            unit_price=Decimal("150.00"),
        ),
    ]


@pytest.fixture
def invoice_factory():
    """make_invoice() with defaults for an Acme Tools invoice."""
    return make_invoice


@pytest.fixture
def sample_invoice_payload() -> dict:
    """camelCase extractor payload for a VAT-inclusive Parts AG invoice."""
    return copy.deepcopy(SAMPLE_INVOICE_JSON)
