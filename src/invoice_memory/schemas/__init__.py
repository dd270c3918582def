"""
SSOT (Single Source of Truth) schemas for the memory pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .decision import (
    AuditLogRecord,
    AuditStep,
    AuditTrailEntry,
    CorrectionOrigin,
    DecisionOutput,
    MemoryUpdate,
    ProposedCorrection,
    UpdateOperation,
)
from .dedupe import (
    HASH_PREFIX_LENGTH,
    compute_fingerprint,
    generate_hash,
    normalize_key,
    vendor_key,
    year_month,
)
from .invoice import (
    NORMALIZATION_VERSION,
    InvoiceInput,
    InvoiceValidationError,
    LineItem,
    NormalizedInvoice,
    NormalizedLineItem,
    NormalizedVendor,
    VendorInfo,
    normalize_date,
)
from .memory import (
    CorrectionMemory,
    CorrectionPattern,
    DecisionAction,
    DecisionType,
    DuplicateRecord,
    DuplicateResolution,
    FieldMapping,
    HumanDecision,
    MemoryRecord,
    MemoryStats,
    MemoryType,
    PatternType,
    ResolutionMemory,
    VendorBehavior,
    VendorMemory,
    memory_record_from_dict,
)

__all__ = [
    # Dedupe
    "HASH_PREFIX_LENGTH",
    "compute_fingerprint",
    "generate_hash",
    "normalize_key",
    "vendor_key",
    "year_month",
    # Invoice
    "NORMALIZATION_VERSION",
    "InvoiceInput",
    "InvoiceValidationError",
    "LineItem",
    "NormalizedInvoice",
    "NormalizedLineItem",
    "NormalizedVendor",
    "VendorInfo",
    "normalize_date",
    # Memory
    "CorrectionMemory",
    "CorrectionPattern",
    "DecisionAction",
    "DecisionType",
    "DuplicateRecord",
    "DuplicateResolution",
    "FieldMapping",
    "HumanDecision",
    "MemoryRecord",
    "MemoryStats",
    "MemoryType",
    "PatternType",
    "ResolutionMemory",
    "VendorBehavior",
    "VendorMemory",
    "memory_record_from_dict",
    # Decision
    "AuditLogRecord",
    "AuditStep",
    "AuditTrailEntry",
    "CorrectionOrigin",
    "DecisionOutput",
    "MemoryUpdate",
    "ProposedCorrection",
    "UpdateOperation",
]
