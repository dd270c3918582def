"""
Memory record schemas (SSOT).

Four record variants share the MemoryRecord base shape and are tagged by
an explicit `type` discriminator when serialized:

- VendorMemory: canonical vendor identity, name variants, field mappings
- CorrectionMemory: a recurring correction pattern and its suggested action
- ResolutionMemory: history of human decisions for a context
- DuplicateRecord: a fingerprint and the invoices that share it

Records are plain data. All mutation (and all confidence arithmetic) goes
through the MemoryStore.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional


class MemoryType(str, Enum):
    """Discriminator for memory record variants."""

    VENDOR = "vendor"
    CORRECTION = "correction"
    RESOLUTION = "resolution"
    DUPLICATE = "duplicate"


class PatternType(str, Enum):
    """Kinds of correction patterns."""

    QUANTITY_MISMATCH = "quantity_mismatch"
    TAX_RECOMPUTATION = "tax_recomputation"
    FIELD_CORRECTION = "field_correction"
    AMOUNT_ADJUSTMENT = "amount_adjustment"
    OTHER = "other"


class DecisionType(str, Enum):
    """What a human decision was about."""

    APPROVE_CORRECTION = "approve_correction"
    REJECT_CORRECTION = "reject_correction"
    APPROVE_INVOICE = "approve_invoice"
    ESCALATE = "escalate"


class DecisionAction(str, Enum):
    """Action taken by the human reviewer."""

    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"


class DuplicateResolution(str, Enum):
    """Resolution state of a duplicate lineage."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_timestamp(moment: datetime) -> str:
    """Format a datetime as an ISO 8601 UTC timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_id(prefix: str) -> str:
    """Generate a unique record id, e.g. 'corr_5f2a9c0d1e3b4a76'."""
    return f"{prefix}_{secrets.token_hex(8)}"


@dataclass
class MemoryRecord:
    """
    Base shape shared by all memory records.

    Invariants (maintained by the MemoryStore):
    - confidence stays within the configured [min, max] bounds
    - a record below the deactivation threshold has is_active = False
      and is excluded from recall
    """

    memory_type: ClassVar[MemoryType]
    id_prefix: ClassVar[str] = "mem"

    id: str = ""
    created_at: str = ""
    updated_at: str = ""
    confidence: float = 0.0
    reinforcement_count: int = 0
    contradiction_count: int = 0
    is_active: bool = True
    decayed_at: Optional[str] = None  # Last decay maintenance applied

    def _base_dict(self) -> dict:
        return {
            "type": self.memory_type.value,
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "confidence": self.confidence,
            "reinforcement_count": self.reinforcement_count,
            "contradiction_count": self.contradiction_count,
            "is_active": self.is_active,
            "decayed_at": self.decayed_at,
        }

    @staticmethod
    def _base_kwargs(data: dict) -> dict:
        return {
            "id": data.get("id", ""),
            "created_at": data.get("created_at", ""),
            "updated_at": data.get("updated_at", data.get("created_at", "")),
            "confidence": float(data.get("confidence", 0.0)),
            "reinforcement_count": int(data.get("reinforcement_count", 0)),
            "contradiction_count": int(data.get("contradiction_count", 0)),
            "is_active": bool(data.get("is_active", True)),
            "decayed_at": data.get("decayed_at"),
        }

    def to_dict(self) -> dict:
        return self._base_dict()


@dataclass
class FieldMapping:
    """Vendor-specific field translation, e.g. "Leistungsdatum" -> "service_date"."""

    source_field: str
    target_field: str
    confidence: float = 0.3
    occurrence_count: int = 1
    example_values: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "occurrence_count": self.occurrence_count,
            "example_values": list(self.example_values),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FieldMapping":
        return cls(
            source_field=data["source_field"],
            target_field=data["target_field"],
            confidence=float(data.get("confidence", 0.3)),
            occurrence_count=int(data.get("occurrence_count", 1)),
            example_values=list(data.get("example_values", [])),
        )


@dataclass
class VendorBehavior:
    """Observed vendor habits."""

    vat_included: Optional[bool] = None
    default_vat_rate: Optional[Decimal] = None
    default_currency: Optional[str] = None
    payment_terms_days: Optional[int] = None
    invoice_number_pattern: Optional[str] = None
    expected_categories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "vat_included": self.vat_included,
            "default_vat_rate": (
                str(self.default_vat_rate) if self.default_vat_rate is not None else None
            ),
            "default_currency": self.default_currency,
            "payment_terms_days": self.payment_terms_days,
            "invoice_number_pattern": self.invoice_number_pattern,
            "expected_categories": list(self.expected_categories),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VendorBehavior":
        rate = data.get("default_vat_rate")
        return cls(
            vat_included=data.get("vat_included"),
            default_vat_rate=Decimal(str(rate)) if rate is not None else None,
            default_currency=data.get("default_currency"),
            payment_terms_days=data.get("payment_terms_days"),
            invoice_number_pattern=data.get("invoice_number_pattern"),
            expected_categories=list(data.get("expected_categories", [])),
        )


@dataclass
class VendorMemory(MemoryRecord):
    """Canonical vendor identity and vendor-specific normalization knowledge."""

    memory_type: ClassVar[MemoryType] = MemoryType.VENDOR
    id_prefix: ClassVar[str] = "vendor"

    canonical_id: str = ""
    canonical_name: str = ""
    name_variations: list[str] = field(default_factory=list)
    field_mappings: dict[str, FieldMapping] = field(default_factory=dict)
    behaviors: VendorBehavior = field(default_factory=VendorBehavior)
    tax_id: Optional[str] = None

    def knows_name(self, name: str) -> bool:
        """Case-insensitive match against canonical name and all variants."""
        normalized = name.strip().lower()
        if self.canonical_name.strip().lower() == normalized:
            return True
        return any(v.strip().lower() == normalized for v in self.name_variations)

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update(
            {
                "canonical_id": self.canonical_id,
                "canonical_name": self.canonical_name,
                "name_variations": list(self.name_variations),
                "field_mappings": {k: m.to_dict() for k, m in self.field_mappings.items()},
                "behaviors": self.behaviors.to_dict(),
                "tax_id": self.tax_id,
            }
        )
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "VendorMemory":
        return cls(
            **cls._base_kwargs(data),
            canonical_id=data.get("canonical_id", ""),
            canonical_name=data.get("canonical_name", ""),
            name_variations=list(data.get("name_variations", [])),
            field_mappings={
                k: FieldMapping.from_dict(m) for k, m in (data.get("field_mappings") or {}).items()
            },
            behaviors=VendorBehavior.from_dict(data.get("behaviors") or {}),
            tax_id=data.get("tax_id"),
        )


@dataclass
class CorrectionPattern:
    """Pattern descriptor identifying when a correction applies."""

    type: PatternType
    signature: str
    condition: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "signature": self.signature,
            "condition": self.condition,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CorrectionPattern":
        return cls(
            type=PatternType(data.get("type", PatternType.OTHER.value)),
            signature=data.get("signature", ""),
            condition=data.get("condition", ""),
            context=dict(data.get("context") or {}),
        )


@dataclass
class CorrectionMemory(MemoryRecord):
    """A learned correction pattern and the action it suggests."""

    memory_type: ClassVar[MemoryType] = MemoryType.CORRECTION
    id_prefix: ClassVar[str] = "corr"

    pattern: CorrectionPattern = field(
        default_factory=lambda: CorrectionPattern(type=PatternType.OTHER, signature="")
    )
    suggested_action: str = ""
    vendor_id: Optional[str] = None  # None = applies to all vendors
    human_approved: bool = False

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update(
            {
                "pattern": self.pattern.to_dict(),
                "suggested_action": self.suggested_action,
                "vendor_id": self.vendor_id,
                "human_approved": self.human_approved,
            }
        )
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "CorrectionMemory":
        return cls(
            **cls._base_kwargs(data),
            pattern=CorrectionPattern.from_dict(data.get("pattern") or {}),
            suggested_action=data.get("suggested_action", ""),
            vendor_id=data.get("vendor_id"),
            human_approved=bool(data.get("human_approved", False)),
        )


@dataclass
class HumanDecision:
    """A single human review decision."""

    decision_type: DecisionType
    action: DecisionAction
    timestamp: str
    reason: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "decision_type": self.decision_type.value,
            "action": self.action.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HumanDecision":
        return cls(
            decision_type=DecisionType(data["decision_type"]),
            action=DecisionAction(data["action"]),
            timestamp=data.get("timestamp", ""),
            reason=data.get("reason"),
            user_id=data.get("user_id"),
        )


@dataclass
class ResolutionMemory(MemoryRecord):
    """Ordered history of human decisions for one context."""

    memory_type: ClassVar[MemoryType] = MemoryType.RESOLUTION
    id_prefix: ClassVar[str] = "res"

    decisions: list[HumanDecision] = field(default_factory=list)
    related_memory_id: Optional[str] = None
    context_hash: str = ""

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update(
            {
                "decisions": [dec.to_dict() for dec in self.decisions],
                "related_memory_id": self.related_memory_id,
                "context_hash": self.context_hash,
            }
        )
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "ResolutionMemory":
        return cls(
            **cls._base_kwargs(data),
            decisions=[HumanDecision.from_dict(d) for d in data.get("decisions", [])],
            related_memory_id=data.get("related_memory_id"),
            context_hash=data.get("context_hash", ""),
        )


@dataclass
class DuplicateRecord(MemoryRecord):
    """A fingerprint lineage: first-seen invoice plus later look-alikes."""

    memory_type: ClassVar[MemoryType] = MemoryType.DUPLICATE
    id_prefix: ClassVar[str] = "dup"

    duplicate_hash: str = ""
    original_invoice_id: str = ""
    duplicate_invoice_ids: list[str] = field(default_factory=list)
    vendor_id: str = ""
    invoice_number: str = ""
    amount: Decimal = Decimal("0")
    confirmed_duplicate: bool = False
    resolution: DuplicateResolution = DuplicateResolution.PENDING

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update(
            {
                "duplicate_hash": self.duplicate_hash,
                "original_invoice_id": self.original_invoice_id,
                "duplicate_invoice_ids": list(self.duplicate_invoice_ids),
                "vendor_id": self.vendor_id,
                "invoice_number": self.invoice_number,
                "amount": str(self.amount),
                "confirmed_duplicate": self.confirmed_duplicate,
                "resolution": self.resolution.value,
            }
        )
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "DuplicateRecord":
        return cls(
            **cls._base_kwargs(data),
            duplicate_hash=data.get("duplicate_hash", ""),
            original_invoice_id=data.get("original_invoice_id", ""),
            duplicate_invoice_ids=list(data.get("duplicate_invoice_ids", [])),
            vendor_id=data.get("vendor_id", ""),
            invoice_number=data.get("invoice_number", ""),
            amount=Decimal(str(data.get("amount", "0"))),
            confirmed_duplicate=bool(data.get("confirmed_duplicate", False)),
            resolution=DuplicateResolution(data.get("resolution", "pending")),
        )


RECORD_TYPES: dict[MemoryType, type] = {
    MemoryType.VENDOR: VendorMemory,
    MemoryType.CORRECTION: CorrectionMemory,
    MemoryType.RESOLUTION: ResolutionMemory,
    MemoryType.DUPLICATE: DuplicateRecord,
}


def memory_record_from_dict(data: dict) -> MemoryRecord:
    """Deserialize any memory record using its `type` discriminator."""
    try:
        memory_type = MemoryType(data["type"])
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown memory record type: {data.get('type')!r}") from e
    return RECORD_TYPES[memory_type].from_dict(data)


@dataclass
class MemoryStats:
    """Global processing statistics."""

    total_invoices_processed: int = 0
    total_corrections_applied: int = 0
    total_human_reviews_requested: int = 0
    average_confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_invoices_processed": self.total_invoices_processed,
            "total_corrections_applied": self.total_corrections_applied,
            "total_human_reviews_requested": self.total_human_reviews_requested,
            "average_confidence": self.average_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryStats":
        return cls(
            total_invoices_processed=int(data.get("total_invoices_processed", 0)),
            total_corrections_applied=int(data.get("total_corrections_applied", 0)),
            total_human_reviews_requested=int(data.get("total_human_reviews_requested", 0)),
            average_confidence=float(data.get("average_confidence", 0.0)),
        )
