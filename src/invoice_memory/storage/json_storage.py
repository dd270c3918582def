"""JSON file storage for memory snapshots."""

import json
import logging
import os
import tempfile
from pathlib import Path

from .base import MemoryStorage, StorageError
from .snapshot import MemorySnapshot

logger = logging.getLogger(__name__)


class JsonSnapshotStorage(MemoryStorage):
    """
    Stores the whole memory snapshot in one JSON file.

    Saves write to a temporary file in the same directory and replace the
    target, so readers never see a partially written snapshot.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> MemorySnapshot:
        if not self.path.exists():
            logger.info("No memory snapshot at %s, starting empty", self.path)
            return MemorySnapshot()

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to load memory snapshot from {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Memory snapshot {self.path} is not a JSON object")

        try:
            snapshot = MemorySnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Invalid memory snapshot {self.path}: {e}") from e

        logger.info("Memory store loaded from %s", self.path)
        return snapshot

    def save(self, snapshot: MemorySnapshot) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageError(f"Failed to save memory snapshot to {self.path}: {e}") from e

        logger.debug("Memory store saved to %s", self.path)
