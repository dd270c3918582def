"""
Rule matching module.

Applies recalled vendor and correction memories (plus fallback
heuristics) to an invoice and proposes field corrections.
"""

from .catalog import KNOWN_RULES, VendorRuleProfile, default_profiles, match_profile
from .correction_rules import is_applicable, pattern_signature, pattern_type_for_field
from .engine import UNKNOWN_VENDOR_CONFIDENCE, MatchOutcome, RuleMatchingEngine
from .vendor_rules import VENDOR_RULES, detect_skonto_terms, recompute_vat_from_gross

__all__ = [
    "KNOWN_RULES",
    "UNKNOWN_VENDOR_CONFIDENCE",
    "VENDOR_RULES",
    "MatchOutcome",
    "RuleMatchingEngine",
    "VendorRuleProfile",
    "default_profiles",
    "detect_skonto_terms",
    "is_applicable",
    "match_profile",
    "pattern_signature",
    "pattern_type_for_field",
    "recompute_vat_from_gross",
]
