"""Tests for the invoice pipeline (Recall -> Apply -> Decide -> Learn)."""

import json
import threading
import time
from unittest.mock import Mock

import pytest

from invoice_memory.pipeline import MISSING_VENDOR_REASON, InvoicePipeline, NormalizationError
from invoice_memory.review import ReviewDecision, record_human_decision
from invoice_memory.schemas.decision import AuditStep, CorrectionOrigin, UpdateOperation
from invoice_memory.schemas.invoice import InvoiceInput
from invoice_memory.schemas.memory import CorrectionPattern, MemoryType, PatternType
from invoice_memory.storage import AuditSink, JsonlAuditLog, StorageError


def correction_proposals(output):
    return [c for c in output.proposed_corrections if c.origin == CorrectionOrigin.CORRECTION]


class TestFirstInvoice:
    """An unknown vendor is learned but not trusted."""

    def test_unknown_vendor_requires_review(self, pipeline, store, invoice_factory):
        output = pipeline.process_invoice(invoice_factory())

        assert output.requires_human_review
        assert output.confidence_score == pytest.approx(0.5)
        assert not output.is_duplicate
        assert output.normalized_invoice.vendor.canonical_id == "acmetools"
        assert output.normalized_invoice.vendor.normalized_name == "Acme Tools"

        vendor = store.get_vendor("acmetools")
        assert vendor.confidence == pytest.approx(0.3)
        assert vendor.name_variations == ["Acme Tools"]
        assert len(store.duplicates) == 1

        operations = [(u.operation, u.memory_type) for u in output.memory_updates]
        assert operations == [
            (UpdateOperation.CREATE, MemoryType.VENDOR),
            (UpdateOperation.CREATE, MemoryType.DUPLICATE),
        ]

    def test_second_invoice_reinforces_vendor(self, pipeline, store, invoice_factory):
        pipeline.process_invoice(invoice_factory())
        output = pipeline.process_invoice(
            invoice_factory(
                invoice_id="INV-A-002", invoice_number="A-002", invoice_date="2024-02-10"
            )
        )

        assert output.requires_human_review
        assert output.confidence_score == pytest.approx(0.3)
        vendor = store.get_vendor("acmetools")
        assert vendor.reinforcement_count == 2
        assert output.memory_updates[0].operation == UpdateOperation.REINFORCE
        assert store.stats.total_invoices_processed == 2

    def test_audit_trail_order(self, pipeline, invoice_factory):
        output = pipeline.process_invoice(invoice_factory())

        steps = [e.step for e in output.audit_trail]
        assert steps[0] == AuditStep.RECALL
        assert steps[-1] == AuditStep.LEARN
        assert steps.index(AuditStep.APPLY) < steps.index(AuditStep.DECIDE)
        assert output.reasoning.startswith("Recall: ")
        assert output.reasoning.endswith("Status: Requires human review")


class TestTrustedVendor:
    """A well-reinforced vendor is normalized automatically."""

    def test_name_variant_auto_normalized(self, pipeline, trusted_vendor, invoice_factory):
        confidence_before = trusted_vendor.confidence

        output = pipeline.process_invoice(invoice_factory(vendor_name="ACME Tools GmbH"))

        assert not output.requires_human_review
        assert output.confidence_score == pytest.approx(confidence_before)
        vendor = output.normalized_invoice.vendor
        assert vendor.normalized_name == "Acme Tools"
        assert vendor.canonical_id == "acme-tools"
        assert vendor.original_name == "ACME Tools GmbH"
        assert [c.field for c in output.proposed_corrections] == ["vendor.name"]
        assert output.reasoning.endswith("Status: Auto-processed successfully")
        assert trusted_vendor.confidence > confidence_before

    def test_new_name_variation_learned(self, pipeline, store, invoice_factory):
        """An unknown variant that resolves to the same canonical id is added."""
        vendor = store.create_vendor("acmetools", "Acme Tools")
        pipeline.process_invoice(invoice_factory(vendor_name="ACME-Tools"))

        assert "ACME-Tools" in vendor.name_variations
        assert len(store.vendors) == 1

    def test_learned_field_mapping_applied(self, pipeline, store, trusted_vendor, invoice_factory):
        for _ in range(15):
            store.add_field_mapping("acme-tools", "Lieferdatum", "deliveryDate")

        output = pipeline.process_invoice(
            invoice_factory(metadata={"Lieferdatum": "2024-01-12"})
        )

        assert output.normalized_invoice.extra_fields == {"delivery_date": "2024-01-12"}
        assert not output.requires_human_review


class TestVendorRules:
    """Catalog rules for known vendors."""

    def test_service_date_suggested_for_unknown_supplier(self, pipeline, invoice_factory):
        output = pipeline.process_invoice(
            invoice_factory(vendor_name="Supplier GmbH", metadata={"Leistungsdatum": "2024-01-10"})
        )

        assert output.requires_human_review
        assert output.normalized_invoice.service_date is None
        proposal = next(c for c in output.proposed_corrections if c.field == "service_date")
        assert not proposal.auto_applied

    def test_service_date_applied_for_trusted_supplier(self, pipeline, store, invoice_factory):
        vendor = store.create_vendor("supplier-gmbh", "Supplier GmbH")
        for _ in range(15):
            store.reinforce_memory(vendor.id)

        output = pipeline.process_invoice(
            invoice_factory(vendor_name="Supplier GmbH", metadata={"Leistungsdatum": "2024-01-10"})
        )

        assert not output.requires_human_review
        assert output.normalized_invoice.service_date == "2024-01-10"

    def test_skonto_terms_written_to_payment_terms(
        self, pipeline, invoice_factory, sample_line_items
    ):
        output = pipeline.process_invoice(
            invoice_factory(
                vendor_name="Freight & Co",
                raw_text="2% Skonto innerhalb 14 Tagen, netto 30 Tage",
                line_items=sample_line_items,
            )
        )

        terms = output.normalized_invoice.payment_terms
        assert terms["discount_days"] == 14
        assert terms["net_days"] == 30
        # Pending SKU suggestions are not written
        assert output.normalized_invoice.line_items[0].product_code is None
        json.dumps(output.to_dict())

    def test_camel_case_payload(self, pipeline, sample_invoice_payload):
        output = pipeline.process_invoice(InvoiceInput.from_dict(sample_invoice_payload))

        assert output.requires_human_review
        fields = {c.field for c in output.proposed_corrections}
        assert {"tax_amount", "net_amount", "currency"} <= fields
        json.dumps(output.to_dict())


class TestCorrectionMemories:
    """Correction memories are proposed, reinforced and penalized."""

    @pytest.fixture
    def correction(self, store):
        return store.record_correction(
            CorrectionPattern(PatternType.FIELD_CORRECTION, "field_corr:acmetools"),
            "Set currency to EUR",
            human_approved=True,
        )

    def test_untrusted_correction_pending(self, pipeline, correction, invoice_factory):
        output = pipeline.process_invoice(invoice_factory())

        proposals = correction_proposals(output)
        assert len(proposals) == 1
        assert proposals[0].source == correction.id
        assert not proposals[0].auto_applied
        assert output.requires_human_review

    def test_rejections_deactivate_correction(
        self, pipeline, store, correction, invoice_factory
    ):
        pipeline.process_invoice(invoice_factory())

        record_human_decision(store, correction.id, ReviewDecision.REJECTED)
        record_human_decision(store, correction.id, ReviewDecision.REJECTED)
        assert correction.is_active
        record_human_decision(store, correction.id, "rejected")

        assert not correction.is_active
        assert correction.contradiction_count == 3
        assert store.find_corrections() == []

        output = pipeline.process_invoice(
            invoice_factory(
                invoice_id="INV-A-002", invoice_number="A-002", invoice_date="2024-02-10"
            )
        )
        assert correction_proposals(output) == []

    def test_trusted_correction_auto_applied_and_reinforced(
        self, pipeline, store, correction, invoice_factory
    ):
        for _ in range(8):
            store.reinforce_memory(correction.id)
        count_before = correction.reinforcement_count

        output = pipeline.process_invoice(invoice_factory())

        proposal = correction_proposals(output)[0]
        assert proposal.auto_applied
        assert correction.reinforcement_count == count_before + 1
        assert any(
            u.operation == UpdateOperation.REINFORCE and u.record_id == correction.id
            for u in output.memory_updates
        )
        # Correction memories describe actions; the invoice itself is unchanged
        assert output.normalized_invoice.extra_fields == {}


class TestDuplicates:
    """Duplicate invoices are flagged and never learned from."""

    def test_duplicate_flagged(self, pipeline, store, invoice_factory):
        pipeline.process_invoice(invoice_factory(invoice_id="INV-1"))
        output = pipeline.process_invoice(
            invoice_factory(invoice_id="INV-2", invoice_date="2024-01-20")
        )

        assert output.is_duplicate
        assert output.requires_human_review
        assert output.confidence_score == pytest.approx(0.3 * 0.7 * 0.5)
        assert output.reasoning.endswith("DUPLICATE: Exact hash match found")
        assert output.memory_updates == []
        assert any("Skipping learning" in e.details for e in output.audit_trail)

        assert store.duplicates[0].duplicate_invoice_ids == ["INV-2"]
        assert store.get_vendor("acmetools").reinforcement_count == 1
        assert store.stats.total_invoices_processed == 2

    def test_confirmed_duplicate_factor(self, pipeline, store, invoice_factory):
        pipeline.process_invoice(invoice_factory(invoice_id="INV-1"))
        store.resolve_duplicate(store.duplicates[0].id, confirmed=True)

        output = pipeline.process_invoice(invoice_factory(invoice_id="INV-2"))

        assert output.confidence_score == pytest.approx(0.3 * 0.3 * 0.5)

    def test_learning_when_not_skipped(self, store, config, clock, invoice_factory):
        config.duplicates.skip_learning_for_duplicates = False
        pipeline = InvoicePipeline(store, config=config, clock=clock)
        pipeline.process_invoice(invoice_factory(invoice_id="INV-1"))

        output = pipeline.process_invoice(invoice_factory(invoice_id="INV-2"))

        assert output.is_duplicate
        assert store.get_vendor("acmetools").reinforcement_count == 2
        assert len(store.duplicates) == 1


class TestHumanDecision:
    """Explicit human decisions passed to process_invoice."""

    def test_human_approval(self, pipeline, store, invoice_factory):
        output = pipeline.process_invoice(invoice_factory(), human_approved=True)

        assert not output.requires_human_review
        assert output.confidence_score == pytest.approx(0.9)
        assert store.get_vendor("acmetools").confidence == pytest.approx(0.5)

    def test_human_rejection_forces_review(self, pipeline, trusted_vendor, invoice_factory):
        output = pipeline.process_invoice(invoice_factory(), human_approved=False)
        assert output.requires_human_review

    def test_rejected_vendor_reactivated_in_place(self, pipeline, store, invoice_factory):
        """A deactivated vendor seen again keeps its record, id and history."""
        pipeline.process_invoice(invoice_factory())
        vendor = store.get_vendor("acmetools")
        record_human_decision(store, vendor.id, ReviewDecision.REJECTED)
        assert not vendor.is_active
        resolution = store.resolutions[0]

        output = pipeline.process_invoice(
            invoice_factory(
                invoice_id="INV-A-002", invoice_number="A-002", invoice_date="2024-02-10"
            )
        )

        assert store.get_vendor("acmetools") is vendor
        assert vendor.is_active
        assert vendor.confidence == pytest.approx(0.3)
        assert vendor.contradiction_count == 1
        assert store.find_memory_by_id(resolution.related_memory_id) is vendor
        vendor_ids = [r.id for r in store.all_records() if r.memory_type == MemoryType.VENDOR]
        assert vendor_ids == [vendor.id]

        update = output.memory_updates[0]
        assert update.operation == UpdateOperation.UPDATE
        assert update.memory_type == MemoryType.VENDOR
        assert update.record_id == vendor.id
        assert update.reason == "Inactive vendor reactivated"


class TestGuards:
    """Invalid input handling."""

    def test_missing_vendor(self, pipeline, store, invoice_factory):
        output = pipeline.process_invoice(invoice_factory(vendor_name="  "))

        assert output.requires_human_review
        assert output.confidence_score == 0.0
        assert output.reasoning == MISSING_VENDOR_REASON
        assert output.normalized_invoice.vendor.normalized_name == "UNKNOWN"
        assert output.memory_updates == []
        assert store.vendors == {}
        assert store.stats.total_invoices_processed == 0

    def test_missing_required_fields(self, pipeline, store, invoice_factory):
        with pytest.raises(NormalizationError):
            pipeline.process_invoice(invoice_factory(invoice_number=None))
        assert store.vendors == {}


class TestAuditSink:
    """Audit records are appended per processed invoice."""

    def test_audit_log_written(self, store, config, clock, invoice_factory):
        sink = JsonlAuditLog(config.storage.audit_log_path)
        pipeline = InvoicePipeline(store, config=config, audit_sink=sink, clock=clock)

        pipeline.process_batch(
            [
                invoice_factory(invoice_id="INV-1"),
                invoice_factory(invoice_id="INV-2", invoice_number="A-002"),
            ]
        )

        records = sink.read_all()
        assert [r.invoice_id for r in records] == ["INV-1", "INV-2"]
        assert records[0].requires_human_review
        assert records[0].total_steps == len(records[0].entries) > 0

    def test_sink_called_once_per_invoice(self, store, config, clock, invoice_factory):
        sink = Mock(spec=AuditSink)
        pipeline = InvoicePipeline(store, config=config, audit_sink=sink, clock=clock)

        output = pipeline.process_invoice(invoice_factory())

        sink.append.assert_called_once()
        record = sink.append.call_args.args[0]
        assert record.invoice_id == "INV-A-001"
        assert record.confidence_score == output.confidence_score

    def test_sink_failure_propagates(self, store, config, clock, invoice_factory):
        sink = Mock(spec=AuditSink)
        sink.append.side_effect = StorageError("disk full")
        pipeline = InvoicePipeline(store, config=config, audit_sink=sink, clock=clock)

        with pytest.raises(StorageError):
            pipeline.process_invoice(invoice_factory())

    def test_missing_vendor_not_audited(self, store, config, clock, invoice_factory):
        sink = Mock(spec=AuditSink)
        pipeline = InvoicePipeline(store, config=config, audit_sink=sink, clock=clock)

        pipeline.process_invoice(invoice_factory(vendor_name=""))

        sink.append.assert_not_called()


class TestConcurrency:
    """Invoices processed from several threads share one store safely."""

    def test_parallel_invoices_same_vendor(self, pipeline, store, invoice_factory, monkeypatch):
        """Concurrent invoices for one vendor create it once and reinforce it per invoice."""
        recall = store.find_vendor_by_name

        def slow_recall(name):
            vendor = recall(name)
            time.sleep(0.01)
            return vendor

        monkeypatch.setattr(store, "find_vendor_by_name", slow_recall)

        invoices = [
            invoice_factory(invoice_id=f"INV-A-{n:03d}", invoice_number=f"A-{n:03d}")
            for n in range(8)
        ]
        start = threading.Barrier(len(invoices))
        outputs = []

        def worker(invoice):
            start.wait(timeout=5)
            outputs.append(pipeline.process_invoice(invoice))

        threads = [threading.Thread(target=worker, args=(inv,)) for inv in invoices]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(outputs) == len(invoices)
        assert len(store.vendors) == 1
        assert store.get_vendor("acmetools").reinforcement_count == len(invoices)
        creates = [
            u
            for output in outputs
            for u in output.memory_updates
            if u.operation == UpdateOperation.CREATE and u.memory_type == MemoryType.VENDOR
        ]
        assert len(creates) == 1
        assert len(store.duplicates) == len(invoices)
        assert store.stats.total_invoices_processed == len(invoices)
