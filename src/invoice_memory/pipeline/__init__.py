"""
Pipeline orchestration module.

Runs each invoice through Recall -> Apply -> Decide -> Learn.
"""

from .audit import AuditTrail, build_reasoning
from .normalize import NormalizationError, build_normalized_invoice
from .orchestrator import MISSING_VENDOR_REASON, InvoicePipeline

__all__ = [
    "MISSING_VENDOR_REASON",
    "AuditTrail",
    "InvoicePipeline",
    "NormalizationError",
    "build_normalized_invoice",
    "build_reasoning",
]
