"""
Dashboard snapshot store.

The latest sync wins: each save replaces the stored payload and stamps it
with lastUpdated and recordCount.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The snapshot could not be read or written."""


class SnapshotStore:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def save(self, payload: dict[str, Any], record_count: int) -> dict[str, Any]:
        document = {
            "data": payload,
            "lastUpdated": datetime.now().isoformat(timespec="seconds"),
            "recordCount": record_count,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False, allow_nan=False), encoding="utf-8")
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Cannot write snapshot {self.path}: {e}") from e
        logger.info("[snapshot_store] saved %d records to %s", record_count, self.path)
        return document

    def load(self) -> Optional[dict[str, Any]]:
        """The stored document, or None when nothing has been saved yet."""
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read snapshot {self.path}: {e}") from e
