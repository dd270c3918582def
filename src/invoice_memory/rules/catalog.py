"""
Vendor rule catalog.

Vendor-specific behavior is configuration, not code: a profile names the
vendor, the substrings that identify it, and the generic rules (from
vendor_rules.VENDOR_RULES) to run for it. Supporting a new vendor means
adding a profile to config.yaml.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

# Rule names understood by the vendor rule registry
KNOWN_RULES = (
    "service_date_mapping",
    "vat_inclusive",
    "currency_from_text",
    "skonto_terms",
    "freight_sku",
)


@dataclass
class VendorRuleProfile:
    """A named vendor with the rules that apply to it."""

    name: str
    name_patterns: list[str]
    rules: list[str]
    options: dict[str, Any] = field(default_factory=dict)

    def matches(self, vendor_name: str) -> bool:
        """True if the lower-cased vendor name contains any pattern."""
        normalized = vendor_name.strip().lower()
        return any(p.lower() in normalized for p in self.name_patterns)

    def option(self, rule: str, key: str, default: Any = None) -> Any:
        """Per-rule option, e.g. option("service_date_mapping", "source_field")."""
        return (self.options.get(rule) or {}).get(key, default)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "name_patterns": list(self.name_patterns),
            "rules": list(self.rules),
            "options": dict(self.options),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VendorRuleProfile":
        return cls(
            name=data["name"],
            name_patterns=list(data.get("name_patterns", [])),
            rules=list(data.get("rules", [])),
            options=dict(data.get("options") or {}),
        )


def default_profiles() -> list[VendorRuleProfile]:
    """Built-in catalog used when config.yaml does not define one."""
    return [
        VendorRuleProfile(
            name="Supplier GmbH",
            name_patterns=["supplier gmbh", "supplier", "lieferant gmbh"],
            rules=["service_date_mapping"],
            options={"service_date_mapping": {"source_field": "Leistungsdatum"}},
        ),
        VendorRuleProfile(
            name="Parts AG",
            name_patterns=["parts ag", "parts", "teile ag"],
            rules=["vat_inclusive", "currency_from_text"],
        ),
        VendorRuleProfile(
            name="Freight & Co",
            name_patterns=["freight & co", "freight and co", "freight co", "fracht & co"],
            rules=["skonto_terms", "freight_sku"],
        ),
    ]


def match_profile(
    profiles: list[VendorRuleProfile], vendor_name: str
) -> Optional[VendorRuleProfile]:
    """First profile matching the vendor name, or None."""
    for profile in profiles:
        if profile.matches(vendor_name):
            return profile
    return None
