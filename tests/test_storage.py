"""Tests for storage collaborators."""

import json

import pytest

from invoice_memory.schemas.decision import AuditLogRecord, AuditStep, AuditTrailEntry
from invoice_memory.schemas.memory import MemoryStats, VendorMemory
from invoice_memory.storage import (
    SCHEMA_VERSION,
    JsonlAuditLog,
    JsonSnapshotStorage,
    MemorySnapshot,
    StorageError,
)


def acme_vendor() -> VendorMemory:
    return VendorMemory(id="vendor_1", canonical_id="acme", canonical_name="Acme")


class TestJsonSnapshotStorage:
    """Tests for the JSON snapshot file."""

    def test_missing_file_loads_empty(self, tmp_path):
        snapshot = JsonSnapshotStorage(tmp_path / "missing.json").load()
        assert snapshot.is_empty
        assert snapshot.schema_version == SCHEMA_VERSION

    def test_save_creates_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "memory.json"
        storage = JsonSnapshotStorage(path)
        snapshot = MemorySnapshot(
            vendors={"acme": acme_vendor()},
            stats=MemoryStats(total_invoices_processed=3),
        )

        storage.save(snapshot)

        data = json.loads(path.read_text())
        assert data["schema_version"] == SCHEMA_VERSION
        assert data["vendors"]["acme"]["type"] == "vendor"
        assert data["stats"]["total_invoices_processed"] == 3
        assert list(path.parent.iterdir()) == [path]

    def test_round_trip(self, tmp_path):
        storage = JsonSnapshotStorage(tmp_path / "memory.json")
        storage.save(
            MemorySnapshot(
                vendors={"acme": acme_vendor()}
            )
        )
        loaded = storage.load()
        assert loaded.vendors["acme"].canonical_name == "Acme"

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "memory.json"
        path.write_text("{not json")
        with pytest.raises(StorageError):
            JsonSnapshotStorage(path).load()

    def test_non_object_raises(self, tmp_path):
        path = tmp_path / "memory.json"
        path.write_text("[]")
        with pytest.raises(StorageError):
            JsonSnapshotStorage(path).load()

    def test_old_schema_version_upgraded(self, tmp_path, caplog):
        path = tmp_path / "memory.json"
        path.write_text(json.dumps({"schema_version": "1.0.0", "vendors": {}}))

        snapshot = JsonSnapshotStorage(path).load()

        assert snapshot.schema_version == SCHEMA_VERSION
        assert snapshot.corrections == []
        assert "schema version mismatch" in caplog.text


class TestJsonlAuditLog:
    """Tests for the JSON Lines audit log."""

    def record(self, invoice_id: str) -> AuditLogRecord:
        return AuditLogRecord(
            invoice_id=invoice_id,
            processed_at="2024-03-01T12:00:00+00:00",
            entries=[
                AuditTrailEntry(AuditStep.RECALL, "2024-03-01T12:00:00+00:00", "Recall"),
                AuditTrailEntry(AuditStep.DECIDE, "2024-03-01T12:00:00+00:00", "Decide"),
            ],
            requires_human_review=True,
            confidence_score=0.42,
        )

    def test_append_and_read(self, tmp_path):
        log = JsonlAuditLog(tmp_path / "logs" / "audit.jsonl")
        log.append(self.record("INV-1"))
        log.append(self.record("INV-2"))

        records = log.read_all()

        assert [r.invoice_id for r in records] == ["INV-1", "INV-2"]
        assert records[0].entries[1].step == AuditStep.DECIDE
        assert records[0].confidence_score == pytest.approx(0.42)

    def test_one_line_per_record(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        log = JsonlAuditLog(path)
        log.append(self.record("INV-1"))

        lines = path.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["summary"]["total_steps"] == 2

    def test_missing_log_reads_empty(self, tmp_path):
        assert JsonlAuditLog(tmp_path / "none.jsonl").read_all() == []

    def test_corrupt_line_raises(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        path.write_text("{broken\n")
        with pytest.raises(StorageError):
            JsonlAuditLog(path).read_all()
