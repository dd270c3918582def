"""JSON Lines audit log."""

import json
import logging
from pathlib import Path

from ..schemas.decision import AuditLogRecord
from .base import AuditSink, StorageError

logger = logging.getLogger(__name__)


class JsonlAuditLog(AuditSink):
    """One JSON object per processed invoice, appended to a .jsonl file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def append(self, record: AuditLogRecord) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            raise StorageError(f"Failed to append audit record to {self.path}: {e}") from e

        logger.debug("Audit record appended for invoice %s", record.invoice_id)

    def read_all(self) -> list[AuditLogRecord]:
        if not self.path.exists():
            return []

        records = []
        try:
            with open(self.path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(AuditLogRecord.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        raise StorageError(
                            f"Corrupt audit record at {self.path}:{line_no}: {e}"
                        ) from e
        except OSError as e:
            raise StorageError(f"Failed to read audit log {self.path}: {e}") from e
        return records
