"""Tests for CLI commands."""

import json

import pytest

from invoice_memory.runner.main import create_cli, main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "storage:\n"
        f"  memory_path: {tmp_path / 'memory.json'}\n"
        f"  audit_log_path: {tmp_path / 'audit-log.jsonl'}\n"
    )
    return path


@pytest.fixture
def invoice_file(tmp_path):
    path = tmp_path / "invoice.json"
    path.write_text(
        json.dumps(
            {
                "invoiceId": "INV-A-001",
                "vendor": {"name": "Acme Tools"},
                "invoiceNumber": "A-001",
                "invoiceDate": "2024-01-15",
                "totalAmount": "100.00",
                "currency": "EUR",
            }
        )
    )
    return path


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()
        for command in (["process", "x.json"], ["decay"], ["status"], ["init-config"]):
            assert parser.parse_args(command).command == command[0]

    def test_process_approval_flags(self):
        parser = create_cli()
        assert parser.parse_args(["process", "x.json"]).human_approved is None
        assert parser.parse_args(["process", "x.json", "--approve"]).human_approved is True
        assert parser.parse_args(["process", "x.json", "--reject"]).human_approved is False

    def test_approve_and_reject_exclusive(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(["process", "x.json", "--approve", "--reject"])

    def test_feedback_choices(self):
        args = create_cli().parse_args(["feedback", "corr_1", "rejected", "--reason", "wrong"])
        assert args.decision == "rejected"
        assert args.reason == "wrong"
        with pytest.raises(SystemExit):
            create_cli().parse_args(["feedback", "corr_1", "maybe"])

    def test_no_command(self):
        assert main([]) == 1


class TestProcessCommand:
    """Tests for the process command."""

    def test_process_single_invoice(self, tmp_path, config_file, invoice_file, capsys):
        assert main(["-c", str(config_file), "process", str(invoice_file)]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["requires_human_review"] is True
        assert output["normalized_invoice"]["invoice_id"] == "INV-A-001"

        memory = json.loads((tmp_path / "memory.json").read_text())
        assert "acmetools" in memory["vendors"]
        assert (tmp_path / "audit-log.jsonl").exists()

    def test_process_batch(self, tmp_path, config_file, capsys):
        path = tmp_path / "batch.json"
        path.write_text(
            json.dumps(
                [
                    {"invoice_id": "INV-1", "vendor": "Acme Tools", "invoice_number": "1",
                     "invoice_date": "2024-01-01", "total_amount": "10"},
                    {"invoice_id": "INV-2", "vendor": "Acme Tools", "invoice_number": "2",
                     "invoice_date": "2024-01-02", "total_amount": "20"},
                ]
            )
        )

        assert main(["-c", str(config_file), "process", str(path)]) == 0

        output = json.loads(capsys.readouterr().out)
        assert [o["normalized_invoice"]["invoice_id"] for o in output] == ["INV-1", "INV-2"]

    def test_process_no_save(self, tmp_path, config_file, invoice_file):
        assert main(["-c", str(config_file), "process", str(invoice_file), "--no-save"]) == 0
        assert not (tmp_path / "memory.json").exists()

    def test_process_approve(self, config_file, invoice_file, capsys):
        assert main(["-c", str(config_file), "process", str(invoice_file), "--approve"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["requires_human_review"] is False

    def test_invalid_invoice_file(self, tmp_path, config_file):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"vendor": "No id"}))
        assert main(["-c", str(config_file), "process", str(path)]) == 1

    def test_missing_required_fields(self, tmp_path, config_file):
        path = tmp_path / "incomplete.json"
        path.write_text(json.dumps({"invoice_id": "INV-1", "vendor": "Acme Tools"}))
        assert main(["-c", str(config_file), "process", str(path)]) == 1


class TestOtherCommands:
    """Tests for status, decay, feedback and init-config."""

    def test_status(self, config_file, invoice_file, capsys):
        main(["-c", str(config_file), "process", str(invoice_file)])
        capsys.readouterr()

        assert main(["-c", str(config_file), "status"]) == 0

        out = capsys.readouterr().out
        assert "Invoices processed:     1" in out
        assert "Vendors:                1 active / 1 total" in out

    def test_decay(self, config_file, capsys):
        assert main(["-c", str(config_file), "decay"]) == 0
        assert "Decayed 0 memory record(s)" in capsys.readouterr().out

    def test_feedback(self, tmp_path, config_file, invoice_file, capsys):
        main(["-c", str(config_file), "process", str(invoice_file)])
        memory = json.loads((tmp_path / "memory.json").read_text())
        vendor_id = memory["vendors"]["acmetools"]["id"]

        assert main(["-c", str(config_file), "feedback", vendor_id, "approved"]) == 0

        memory = json.loads((tmp_path / "memory.json").read_text())
        assert memory["vendors"]["acmetools"]["reinforcement_count"] == 2
        assert len(memory["resolutions"]) == 1

    def test_feedback_unknown_memory(self, config_file):
        assert main(["-c", str(config_file), "feedback", "corr_missing", "rejected"]) == 1

    def test_init_config(self, tmp_path):
        path = tmp_path / "new" / "config.yaml"
        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("auto_apply_threshold: 2.0\n")
        assert main(["-c", str(path), "status"]) == 1
