"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..memory_store import MemoryStore
from ..pipeline import InvoicePipeline, NormalizationError
from ..review import ReviewDecision, record_human_decision
from ..schemas.invoice import InvoiceInput, InvoiceValidationError
from ..storage import JsonlAuditLog, JsonSnapshotStorage, StorageError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="invoice-memory",
        description="Memory-driven invoice normalization and review routing",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # process command
    process_parser = subparsers.add_parser(
        "process", help="Process invoices from a JSON file (one invoice or a list)"
    )
    process_parser.add_argument("file", type=Path, help="Invoice JSON file")
    approval = process_parser.add_mutually_exclusive_group()
    approval.add_argument(
        "--approve",
        dest="human_approved",
        action="store_const",
        const=True,
        help="Treat the invoices as human-approved",
    )
    approval.add_argument(
        "--reject",
        dest="human_approved",
        action="store_const",
        const=False,
        help="Force human review for the invoices",
    )
    process_parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not persist memory updates",
    )

    # decay command
    subparsers.add_parser("decay", help="Apply time-based confidence decay to all memories")

    # status command
    subparsers.add_parser("status", help="Show memory status and statistics")

    # feedback command
    feedback_parser = subparsers.add_parser(
        "feedback", help="Record a human decision about a memory"
    )
    feedback_parser.add_argument("memory_id", help="Memory record id")
    feedback_parser.add_argument(
        "decision",
        choices=[d.value for d in ReviewDecision],
        help="Reviewer decision",
    )
    feedback_parser.add_argument("--reason", type=str, help="Free-text reason")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def load_valid_config(config_path: Path) -> Config:
    """
    Load and validate configuration.

    Raises:
        ConfigValidationError: If the configuration is inconsistent
    """
    config = load_config(config_path)
    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))
    return config


def open_store(config: Config) -> MemoryStore:
    """Create a memory store backed by the configured snapshot file."""
    store = MemoryStore(
        settings=config.confidence,
        similarity_threshold=config.duplicates.similarity_threshold,
    )
    store.init(JsonSnapshotStorage(config.storage.memory_path))
    return store


def load_invoices(path: Path) -> list[InvoiceInput]:
    """Read one invoice or a list of invoices from a JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise InvoiceValidationError(f"{path} must contain an invoice object or a list")
    return [InvoiceInput.from_dict(item) for item in data]


def cmd_process(config: Config, file: Path, human_approved: bool | None, no_save: bool) -> int:
    """Process invoices and print the decisions as JSON."""
    try:
        invoices = load_invoices(file)
    except (OSError, json.JSONDecodeError, InvoiceValidationError) as e:
        print(f"❌ Failed to read invoices: {e}", file=sys.stderr)
        return 1

    store = open_store(config)
    pipeline = InvoicePipeline(
        store,
        config=config,
        audit_sink=JsonlAuditLog(config.storage.audit_log_path),
    )

    results = []
    failed = 0
    for invoice in invoices:
        try:
            output = pipeline.process_invoice(invoice, human_approved=human_approved)
        except NormalizationError as e:
            logger.error("Invoice %s rejected: %s", invoice.invoice_id, e)
            failed += 1
            continue
        results.append(output.to_dict())

    if not no_save:
        store.flush()

    print(json.dumps(results if len(invoices) > 1 else (results[0] if results else None), indent=2))
    return 1 if failed else 0


def cmd_decay(config: Config) -> int:
    """Apply confidence decay and save."""
    store = open_store(config)
    updates = store.apply_decay_to_all()
    store.flush()
    print(f"Decayed {len(updates)} memory record(s)")
    return 0


def cmd_status(config: Config) -> int:
    """Show memory status."""
    store = open_store(config)
    stats = store.stats

    def count(records) -> str:
        records = list(records)
        active = sum(1 for r in records if r.is_active)
        return f"{active} active / {len(records)} total"

    print("\n📊 Memory Status")
    print("=" * 40)
    print(f"  Vendors:                {count(store.vendors.values())}")
    print(f"  Corrections:            {count(store.corrections)}")
    print(f"  Resolutions:            {count(store.resolutions)}")
    print(f"  Duplicate records:      {count(store.duplicates)}")
    print(f"  Invoices processed:     {stats.total_invoices_processed}")
    print(f"  Corrections applied:    {stats.total_corrections_applied}")
    print(f"  Reviews requested:      {stats.total_human_reviews_requested}")
    print(f"  Average confidence:     {stats.average_confidence:.2f}")
    print()

    return 0


def cmd_feedback(config: Config, memory_id: str, decision: str, reason: str | None) -> int:
    """Record a human decision and save."""
    store = open_store(config)
    resolution = record_human_decision(store, memory_id, decision, reason=reason)
    if resolution is None:
        print(f"❌ Unknown memory id: {memory_id}", file=sys.stderr)
        return 1
    store.flush()
    print(f"Recorded {decision} for {memory_id} (resolution {resolution.id})")
    return 0


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file unless one exists."""
    if config_path.exists():
        print(f"❌ Config file already exists: {config_path}", file=sys.stderr)
        return 1
    create_default_config(config_path)
    print(f"Created {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_valid_config(parsed.config)
    except (OSError, ValueError, TypeError, yaml.YAMLError, ConfigValidationError) as e:
        print(f"❌ Failed to load config: {e}", file=sys.stderr)
        return 1

    # Route to command
    try:
        if parsed.command == "process":
            return cmd_process(config, parsed.file, parsed.human_approved, parsed.no_save)
        elif parsed.command == "decay":
            return cmd_decay(config)
        elif parsed.command == "status":
            return cmd_status(config)
        elif parsed.command == "feedback":
            return cmd_feedback(config, parsed.memory_id, parsed.decision, parsed.reason)
    except StorageError as e:
        print(f"❌ Storage error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
