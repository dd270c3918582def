"""Tests for the human feedback loop."""

import pytest

from invoice_memory.review import (
    ReviewDecision,
    apply_human_overrides,
    learn_correction_from_approval,
    learn_field_mapping,
    record_human_decision,
    resolve_duplicate,
)
from invoice_memory.schemas.decision import CorrectionOrigin, ProposedCorrection
from invoice_memory.schemas.memory import (
    CorrectionPattern,
    DecisionType,
    DuplicateResolution,
    PatternType,
)


@pytest.fixture
def proposals():
    return [
        ProposedCorrection(
            field="currency",
            original_value="UNKNOWN",
            proposed_value="EUR",
            confidence=0.6,
            reasoning="Heuristic: Extracted currency",
            source="heuristic:currency",
        ),
        ProposedCorrection(
            field="service_date",
            original_value=None,
            proposed_value="2024-01-10",
            confidence=0.7,
            reasoning="Supplier GmbH: Mapped field",
            source="rule:service_date_mapping",
            origin=CorrectionOrigin.VENDOR,
        ),
    ]


class TestRecordHumanDecision:
    """Tests for recording review decisions."""

    @pytest.fixture
    def correction(self, store):
        return store.record_correction(
            CorrectionPattern(PatternType.FIELD_CORRECTION, "currency:acme"),
            "EUR",
            human_approved=True,
        )

    def test_approval_reinforces(self, store, correction):
        resolution = record_human_decision(
            store, correction.id, ReviewDecision.APPROVED, reason="Looks right", user_id="u1"
        )

        assert correction.reinforcement_count == 2
        assert correction.confidence > 0.7
        decision = resolution.decisions[0]
        assert decision.decision_type == DecisionType.APPROVE_CORRECTION
        assert decision.reason == "Looks right"
        assert decision.user_id == "u1"
        assert resolution.related_memory_id == correction.id

    def test_rejection_penalizes(self, store, correction):
        resolution = record_human_decision(store, correction.id, "rejected")

        assert correction.confidence == pytest.approx(0.5)
        assert resolution.decisions[0].decision_type == DecisionType.REJECT_CORRECTION

    def test_modification_keeps_confidence(self, store, correction):
        record_human_decision(store, correction.id, ReviewDecision.MODIFIED)
        assert correction.confidence == pytest.approx(0.7)
        assert correction.contradiction_count == 0

    def test_unknown_memory(self, store):
        assert record_human_decision(store, "corr_missing", "approved") is None
        assert store.resolutions == []

    def test_invalid_decision(self, store, correction):
        with pytest.raises(ValueError):
            record_human_decision(store, correction.id, "maybe")


class TestOverrides:
    """Tests for applying reviewer overrides."""

    def test_override_applied(self, proposals):
        result = apply_human_overrides(
            proposals, {"currency": {"approved": True, "new_value": "CHF"}}
        )

        assert result[0].auto_applied
        assert result[0].proposed_value == "CHF"
        assert result[0].reasoning.endswith("[Human override applied]")
        assert result[1] is proposals[1]
        assert proposals[0].proposed_value == "EUR"

    def test_override_rejects(self, proposals):
        result = apply_human_overrides(proposals, {"service_date": {"approved": False}})
        assert not result[1].auto_applied
        assert result[1].proposed_value == "2024-01-10"


class TestLearning:
    """Tests for learning new memories from approvals."""

    def test_learn_correction(self, store, proposals):
        memory = learn_correction_from_approval(store, proposals[0], vendor_id="acmetools")

        assert memory.pattern.type == PatternType.FIELD_CORRECTION
        assert memory.pattern.signature == "currency:acmetools"
        assert memory.pattern.condition == "UNKNOWN"
        assert memory.suggested_action == "EUR"
        assert memory.human_approved
        assert memory.confidence == pytest.approx(0.7)

    def test_learn_correction_twice_reinforces(self, store, proposals):
        first = learn_correction_from_approval(store, proposals[0])
        second = learn_correction_from_approval(store, proposals[0])

        assert first is second
        assert first.pattern.signature == "currency:global"
        assert first.reinforcement_count == 2

    def test_learned_correction_applies_to_vendor(
        self, pipeline, store, proposals, invoice_factory
    ):
        store.create_vendor("acmetools", "Acme Tools")
        learn_correction_from_approval(store, proposals[0], vendor_id="acmetools")

        output = pipeline.process_invoice(invoice_factory())

        assert any(c.origin == CorrectionOrigin.CORRECTION for c in output.proposed_corrections)

    def test_learn_field_mapping(self, store):
        store.create_vendor("supplier-gmbh", "Supplier GmbH")
        mapping = learn_field_mapping(
            store, "supplier-gmbh", "Leistungsdatum", "serviceDate", "2024-01-10"
        )
        assert mapping.target_field == "serviceDate"
        assert learn_field_mapping(store, "unknown", "a", "b") is None

    def test_resolve_duplicate(self, store):
        _, record = store.record_duplicate(None, "Acme", "1", "2024-01-01", None, "INV-1")

        resolved = resolve_duplicate(store, record.id, confirmed=False)

        assert resolved.resolution == DuplicateResolution.REJECTED
        assert resolve_duplicate(store, "dup_missing", True) is None
