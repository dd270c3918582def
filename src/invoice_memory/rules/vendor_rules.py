"""
Vendor rules.

Turns a recalled vendor memory into proposals:
- vendor name normalization (rename to the canonical name)
- learned field mappings from vendor-specific metadata keys
- catalog rules selected by the vendor's rule profile
"""

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from ..confidence import ConfidenceSettings, is_trusted
from ..schemas.decision import CorrectionOrigin, ProposedCorrection
from ..schemas.invoice import InvoiceInput, to_snake_case
from ..schemas.memory import VendorMemory
from .base import RuleOutcome, VendorRuleContext
from .catalog import VendorRuleProfile
from .patterns import (
    NET_DAYS_PATTERN,
    SKONTO_PATTERNS,
    currency_next_to_amount,
    find_vat_marker,
    is_shipping_description,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_VAT_RATE = Decimal("19")


def _pct(confidence: float) -> str:
    return f"{confidence * 100:.0f}%"


def apply_vendor_memory(
    invoice: InvoiceInput,
    vendor_memory: VendorMemory,
    auto_apply_threshold: float,
    settings: Optional[ConfidenceSettings] = None,
) -> RuleOutcome:
    """Propose the vendor rename and learned field mappings."""
    outcome = RuleOutcome()
    observed = invoice.vendor.name

    if vendor_memory.canonical_name != observed:
        auto = is_trusted(
            vendor_memory.confidence,
            vendor_memory.reinforcement_count,
            vendor_memory.contradiction_count,
            auto_apply_threshold,
            settings,
            require_reinforcements=False,
        )
        outcome.corrections.append(
            ProposedCorrection(
                field="vendor.name",
                original_value=observed,
                proposed_value=vendor_memory.canonical_name,
                confidence=vendor_memory.confidence,
                reasoning=(
                    f"Vendor name normalized based on "
                    f"{vendor_memory.reinforcement_count} previous occurrences"
                ),
                source=vendor_memory.id,
                auto_applied=auto,
                origin=CorrectionOrigin.VENDOR,
            )
        )
        if auto:
            outcome.notes.append(f'Auto-normalized vendor name to "{vendor_memory.canonical_name}"')
        else:
            outcome.notes.append(
                f'Suggested vendor normalization to "{vendor_memory.canonical_name}" '
                f"(confidence: {_pct(vendor_memory.confidence)})"
            )
    else:
        outcome.notes.append(f'Vendor "{observed}" already normalized')

    outcome.extend(apply_field_mappings(invoice, vendor_memory, auto_apply_threshold))
    return outcome


def apply_field_mappings(
    invoice: InvoiceInput,
    vendor_memory: VendorMemory,
    auto_apply_threshold: float,
) -> RuleOutcome:
    """Propose mapped values for metadata keys the vendor is known to use."""
    outcome = RuleOutcome()

    for source_field, mapping in vendor_memory.field_mappings.items():
        value = invoice.metadata_value(source_field)
        if value is None:
            continue
        target = to_snake_case(mapping.target_field)
        if invoice.get_field(target) is not None:
            continue

        auto = mapping.confidence >= auto_apply_threshold
        outcome.corrections.append(
            ProposedCorrection(
                field=target,
                original_value=None,
                proposed_value=str(value),
                confidence=mapping.confidence,
                reasoning=(
                    f'Field mapping: "{source_field}" -> "{target}" '
                    f"({mapping.occurrence_count} occurrences)"
                ),
                source=vendor_memory.id,
                auto_applied=auto,
                origin=CorrectionOrigin.VENDOR,
            )
        )
        verb = "Applied" if auto else "Suggested"
        outcome.notes.append(f"{verb} field mapping: {source_field} -> {target}")

    return outcome


# =============================================================================
# Catalog rules
# =============================================================================


def _metadata_ci(invoice: InvoiceInput, key: str) -> Optional[object]:
    """Case-insensitive metadata lookup (absent/None/empty = not found)."""
    wanted = key.lower()
    for name in invoice.metadata:
        if name.lower() == wanted:
            value = invoice.metadata_value(name)
            if value is not None:
                return value
    return None


def service_date_mapping(ctx: VendorRuleContext) -> RuleOutcome:
    """Map a vendor-specific service date key (e.g. "Leistungsdatum") to service_date."""
    outcome = RuleOutcome()
    invoice = ctx.invoice
    source_field = ctx.profile.option("service_date_mapping", "source_field", "Leistungsdatum")

    value = _metadata_ci(invoice, source_field)
    if value is None or invoice.service_date:
        return outcome

    confidence = ctx.boosted_confidence(0.1, 0.95, 0.7)
    auto = confidence >= ctx.auto_apply_threshold
    outcome.corrections.append(
        ProposedCorrection(
            field="service_date",
            original_value=None,
            proposed_value=str(value),
            confidence=confidence,
            reasoning=f'{ctx.profile.name}: Mapped "{source_field}" field to service_date',
            source=ctx.source or "rule:service_date_mapping",
            auto_applied=auto,
            origin=CorrectionOrigin.VENDOR,
        )
    )
    if auto:
        outcome.notes.append(f'Auto-applied: {source_field} "{value}" -> service_date')
    else:
        outcome.notes.append(f'Suggested: Map {source_field} "{value}" to service_date')
    return outcome


def recompute_vat_from_gross(gross: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split a VAT-inclusive gross amount.

    Returns:
        (net_amount, tax_amount), each rounded to cents
    """
    net = gross / (1 + rate / 100)
    tax = gross - net
    return net.quantize(CENT, rounding=ROUND_HALF_UP), tax.quantize(CENT, rounding=ROUND_HALF_UP)


def vat_inclusive(ctx: VendorRuleContext) -> RuleOutcome:
    """Recompute tax and net amounts when prices are stated VAT-inclusive."""
    outcome = RuleOutcome()
    invoice = ctx.invoice
    if invoice.total_amount is None:
        return outcome

    vat_info = _metadata_ci(invoice, "vatInfo") or _metadata_ci(invoice, "vat_info")
    found = find_vat_marker(invoice.raw_text, str(vat_info) if vat_info is not None else None)
    if found is None and ctx.vendor_memory and ctx.vendor_memory.behaviors.vat_included:
        rate = ctx.vendor_memory.behaviors.default_vat_rate or DEFAULT_VAT_RATE
        found = ("vendor behavior: VAT included", rate)
    if found is None:
        return outcome

    marker, rate = found
    net, tax = recompute_vat_from_gross(invoice.total_amount, rate)
    confidence = ctx.boosted_confidence(0.15, 0.9, 0.65)
    auto = confidence >= ctx.auto_apply_threshold
    source = ctx.source or "rule:vat_inclusive"

    outcome.corrections.append(
        ProposedCorrection(
            field="tax_amount",
            original_value=None,
            proposed_value=tax,
            confidence=confidence,
            reasoning=f'{ctx.profile.name}: Detected "{marker}" - Recomputed VAT at {rate}%',
            source=source,
            auto_applied=auto,
            origin=CorrectionOrigin.VENDOR,
        )
    )
    outcome.corrections.append(
        ProposedCorrection(
            field="net_amount",
            original_value=invoice.total_amount,
            proposed_value=net,
            confidence=confidence,
            reasoning=f"{ctx.profile.name}: Net amount after VAT extraction ({rate}%)",
            source=source,
            auto_applied=auto,
            origin=CorrectionOrigin.VENDOR,
        )
    )
    outcome.notes.append(
        f'VAT included detected: "{marker}". Gross: {invoice.total_amount:.2f}, '
        f"Net: {net}, VAT: {tax} ({rate}%)"
    )
    return outcome


def currency_from_text(ctx: VendorRuleContext) -> RuleOutcome:
    """Extract a missing currency from the raw invoice text."""
    outcome = RuleOutcome()
    invoice = ctx.invoice
    if invoice.currency and invoice.currency.upper() != "UNKNOWN":
        return outcome

    currency = currency_next_to_amount(invoice.raw_text)
    if currency is None:
        return outcome

    confidence = 0.6
    if ctx.vendor_memory and ctx.vendor_memory.behaviors.default_currency == currency:
        confidence = 0.85
        outcome.notes.append(f'Currency "{currency}" confirmed by vendor memory')

    outcome.corrections.append(
        ProposedCorrection(
            field="currency",
            original_value=invoice.currency or "UNKNOWN",
            proposed_value=currency,
            confidence=confidence,
            reasoning=f'{ctx.profile.name}: Extracted currency "{currency}" from invoice text',
            source=ctx.source or "rule:currency_from_text",
            auto_applied=confidence >= ctx.auto_apply_threshold,
            origin=CorrectionOrigin.VENDOR,
        )
    )
    outcome.notes.append(f'Extracted currency "{currency}" from raw text')
    return outcome


def detect_skonto_terms(invoice: InvoiceInput) -> Optional[dict]:
    """
    Find early-payment discount terms ("2% Skonto innerhalb 14 Tagen").

    Returns:
        {"discount_percent", "discount_days", "net_days"} or None
    """
    search_text = (invoice.raw_text or "") + " " + json.dumps(invoice.metadata, default=str)

    for pattern in SKONTO_PATTERNS:
        match = pattern.search(search_text)
        if match:
            net_match = NET_DAYS_PATTERN.search(search_text)
            return {
                "discount_percent": Decimal(match.group(1).replace(",", ".")),
                "discount_days": int(match.group(2)),
                "net_days": int(net_match.group(1)) if net_match else None,
            }
    return None


def skonto_terms(ctx: VendorRuleContext) -> RuleOutcome:
    """Store detected Skonto terms as structured payment terms."""
    outcome = RuleOutcome()
    terms = detect_skonto_terms(ctx.invoice)
    if terms is None:
        return outcome

    note = f"Detected Skonto terms: {terms['discount_percent']}% within {terms['discount_days']} days"
    if terms["net_days"]:
        note += f", net {terms['net_days']} days"
    outcome.notes.append(note)

    outcome.corrections.append(
        ProposedCorrection(
            field="payment_terms",
            original_value=ctx.invoice.payment_terms or {},
            proposed_value=terms,
            confidence=0.8,
            reasoning=f"{ctx.profile.name}: Extracted Skonto terms from invoice",
            source=ctx.source or "rule:skonto_terms",
            auto_applied=True,
            origin=CorrectionOrigin.VENDOR,
        )
    )
    return outcome


def freight_sku(ctx: VendorRuleContext) -> RuleOutcome:
    """Suggest the FREIGHT product code for shipping line items."""
    outcome = RuleOutcome()

    for i, item in enumerate(ctx.invoice.line_items):
        if item.product_code or not is_shipping_description(item.description):
            continue
        confidence = ctx.boosted_confidence(0.2, 0.95, 0.7)
        outcome.corrections.append(
            ProposedCorrection(
                field=f"line_items[{i}].product_code",
                original_value=None,
                proposed_value="FREIGHT",
                confidence=confidence,
                reasoning=(
                    f'{ctx.profile.name}: Mapped shipping description "{item.description}" '
                    f"to SKU FREIGHT"
                ),
                source=ctx.source or "rule:freight_sku",
                auto_applied=confidence >= ctx.auto_apply_threshold,
                origin=CorrectionOrigin.VENDOR,
            )
        )
        outcome.notes.append(
            f'Suggested SKU "FREIGHT" for line item: "{item.description}" '
            f"(confidence: {_pct(confidence)})"
        )

    return outcome


VENDOR_RULES: dict[str, Callable[[VendorRuleContext], RuleOutcome]] = {
    "service_date_mapping": service_date_mapping,
    "vat_inclusive": vat_inclusive,
    "currency_from_text": currency_from_text,
    "skonto_terms": skonto_terms,
    "freight_sku": freight_sku,
}


def apply_profile_rules(
    invoice: InvoiceInput,
    vendor_memory: Optional[VendorMemory],
    profile: VendorRuleProfile,
    auto_apply_threshold: float,
) -> RuleOutcome:
    """Run every rule named by the profile, in profile order."""
    ctx = VendorRuleContext(
        invoice=invoice,
        vendor_memory=vendor_memory,
        profile=profile,
        auto_apply_threshold=auto_apply_threshold,
    )
    outcome = RuleOutcome()
    for rule_name in profile.rules:
        rule = VENDOR_RULES.get(rule_name)
        if rule is None:
            logger.warning("Unknown vendor rule %r in profile %s", rule_name, profile.name)
            continue
        outcome.extend(rule(ctx))
    return outcome
