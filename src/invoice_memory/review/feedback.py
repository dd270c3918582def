"""
Human feedback loop.

Turns review outcomes into memory: decisions are recorded as resolution
memories and adjust the confidence of the memory they concern; approved
corrections and field mappings become new (or reinforced) memories.
"""

import logging
from dataclasses import replace
from typing import Any, Optional

from ..memory_store import MemoryStore
from ..rules.correction_rules import pattern_type_for_field
from ..schemas.decision import ProposedCorrection
from ..schemas.memory import (
    CorrectionMemory,
    CorrectionPattern,
    DecisionAction,
    DecisionType,
    DuplicateRecord,
    FieldMapping,
    HumanDecision,
    ResolutionMemory,
    to_timestamp,
)

logger = logging.getLogger(__name__)

# A reviewer's decision: approved, rejected or modified
ReviewDecision = DecisionAction


def record_human_decision(
    store: MemoryStore,
    memory_id: str,
    decision: ReviewDecision | str,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Optional[ResolutionMemory]:
    """
    Record a reviewer's decision about a memory.

    Approval reinforces the memory. Rejection penalizes it (through the
    resolution record). A modification is recorded without changing the
    memory's confidence.

    Returns:
        The resolution memory, or None if memory_id is unknown
    """
    decision = ReviewDecision(decision)

    with store.locked():
        if store.find_memory_by_id(memory_id) is None:
            logger.warning("Ignoring %s decision for unknown memory %s", decision.value, memory_id)
            return None

        human_decision = HumanDecision(
            decision_type=(
                DecisionType.APPROVE_CORRECTION
                if decision == ReviewDecision.APPROVED
                else DecisionType.REJECT_CORRECTION
            ),
            action=decision,
            timestamp=to_timestamp(store.clock()),
            reason=reason,
            user_id=user_id,
        )
        resolution = store.record_resolution(human_decision, related_memory_id=memory_id)

        if decision == ReviewDecision.APPROVED:
            store.reinforce_memory(memory_id)

    logger.info("Recorded %s decision for memory %s", decision.value, memory_id)
    return resolution


def apply_human_overrides(
    corrections: list[ProposedCorrection],
    overrides: dict[str, dict[str, Any]],
) -> list[ProposedCorrection]:
    """
    Apply reviewer overrides to proposed corrections.

    Args:
        corrections: Proposals as emitted by the pipeline
        overrides: field -> {"approved": bool, "new_value": optional value}

    Returns:
        New list; overridden proposals carry the reviewer's verdict
    """
    result = []
    for correction in corrections:
        override = overrides.get(correction.field)
        if override is None:
            result.append(correction)
            continue
        new_value = override.get("new_value")
        result.append(
            replace(
                correction,
                auto_applied=bool(override.get("approved", False)),
                proposed_value=new_value if new_value not in (None, "") else correction.proposed_value,
                reasoning=f"{correction.reasoning} [Human override applied]",
            )
        )
    return result


def learn_correction_from_approval(
    store: MemoryStore,
    correction: ProposedCorrection,
    vendor_id: Optional[str] = None,
) -> CorrectionMemory:
    """
    Remember a human-approved correction as a correction memory.

    The pattern type is inferred from the corrected field name. Approving
    the same field for the same vendor again reinforces the memory.
    """
    pattern = CorrectionPattern(
        type=pattern_type_for_field(correction.field),
        signature=f"{correction.field}:{vendor_id or 'global'}",
        condition=str(correction.original_value if correction.original_value is not None else ""),
    )
    memory = store.record_correction(
        pattern=pattern,
        suggested_action=str(correction.proposed_value),
        vendor_id=vendor_id,
        human_approved=True,
    )
    logger.info("Learned correction %s from approval (%s)", memory.id, pattern.signature)
    return memory


def learn_field_mapping(
    store: MemoryStore,
    vendor_id: str,
    source_field: str,
    target_field: str,
    example: Optional[str] = None,
) -> Optional[FieldMapping]:
    """Teach a vendor field mapping, e.g. "Leistungsdatum" -> "service_date"."""
    mapping = store.add_field_mapping(vendor_id, source_field, target_field, example)
    if mapping is None:
        logger.warning("Cannot add field mapping, unknown vendor %s", vendor_id)
    return mapping


def resolve_duplicate(
    store: MemoryStore, record_id: str, confirmed: bool
) -> Optional[DuplicateRecord]:
    """Confirm or reject a duplicate lineage after human review."""
    record = store.resolve_duplicate(record_id, confirmed)
    if record is None:
        logger.warning("Cannot resolve unknown duplicate record %s", record_id)
    else:
        logger.info(
            "Duplicate record %s %s", record_id, "confirmed" if confirmed else "rejected"
        )
    return record
