"""
Invoice → Memory Recall → Corrections → Human-in-the-loop → Learning

A deterministic, testable decision layer that normalizes extracted invoices,
proposes field corrections from a confidence-scored memory of past vendor
behavior, and learns from human feedback to reduce repeated manual review.
"""

__version__ = "0.1.0"
