"""Activity log persistence: a capped JSON array on disk.

Storage layout:
    ~/.hooktrail/subagents.json          current records, oldest first
    ~/.hooktrail/subagents.json.backup   previous contents, copied before each overwrite

Only the Serialized Write Queue calls ``write``; reads happen at startup.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from hooktrail.engine.errors import PersistenceError
from hooktrail.engine.models import ActivityRecord
from hooktrail.shared.services.durable_write import backup_path_for, replace_with_backup

logger = logging.getLogger(__name__)


class ActivityLogStore:
    """Read and write ActivityRecords as a JSON array with a backup sibling."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return backup_path_for(self._path)

    def read(self) -> list[ActivityRecord]:
        """Return the persisted records, or an empty list if the file is absent."""
        return self._read_file(self._path)

    def read_backup(self) -> list[ActivityRecord]:
        return self._read_file(self.backup_path)

    def write(self, records: list[dict[str, Any]]) -> None:
        """Back up the current file, then atomically replace it with *records*."""
        try:
            replace_with_backup(self._path, json.dumps(records, indent=2))
        except OSError as exc:
            raise PersistenceError(self._path, f"write failed: {exc}") from exc
        logger.debug("Wrote %d activity records to %s", len(records), self._path)

    def _read_file(self, path: Path) -> list[ActivityRecord]:
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceError(path, f"read failed: {exc}") from exc

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise PersistenceError(path, f"corrupt JSON: {exc}") from exc
        if not isinstance(data, list):
            raise PersistenceError(path, "expected a JSON array of records")

        records: list[ActivityRecord] = []
        for item in data:
            if not isinstance(item, dict):
                logger.warning("Skipping non-object entry in %s", path)
                continue
            records.append(ActivityRecord.from_dict(item))
        return records
