"""
Alert Deduplicator

Keeps a bounded, ordered log of alert fingerprints that have already
been notified, persisted as a small JSON document under a fixed key.

- should_notify(fp) is True iff fp is not in the log.
- record_notified(fp) appends fp and keeps only the most recent
  ``limit`` entries (oldest dropped first). After ``limit`` newer
  distinct issues an old issue can notify again.
- Fingerprints share a 50-character content prefix; two issues that
  agree on it count as the same issue.
- should_notify followed by record_notified is not atomic. Callers
  running concurrently must use try_claim(), which checks and records
  under one lock. Every AlertLog on the same file within a process
  shares that lock; concurrent processes sharing one log file are not
  supported.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Optional, Union

from campus_pulse.ingestion.settings import (
    ALERT_FINGERPRINT_CONTENT_CHARS,
    ALERT_LOG_KEY,
    ALERT_LOG_LIMIT,
)

logger = logging.getLogger(__name__)


class AlertLogError(Exception):
    """The persisted alert log could not be read or written."""


# One lock per resolved log path, shared by every AlertLog in the process.
_PATH_LOCKS: dict[str, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Optional[Path]) -> threading.Lock:
    if path is None:
        return threading.Lock()
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


def alert_fingerprint(campus_name: str, issue_type: str, content: str) -> str:
    """campus + type + first 50 chars of the lowercased, whitespace-free content."""
    compact = re.sub(r"\s+", "", str(content).lower())[:ALERT_FINGERPRINT_CONTENT_CHARS]
    return f"{campus_name}-{issue_type}-{compact}"


class AlertLog:
    """
    Persisted list of notified fingerprints.

    With ``path=None`` the log lives in memory only.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        limit: int = ALERT_LOG_LIMIT,
        key: str = ALERT_LOG_KEY,
    ) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self.path = Path(path) if path is not None else None
        self.limit = limit
        self.key = key
        self._memory: list[str] = []
        self._lock = _lock_for(self.path)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _read_document(self) -> dict:
        if self.path is None or not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AlertLogError(f"Cannot read alert log {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise AlertLogError(f"Alert log {self.path} is not a JSON object")
        return document

    def _load(self) -> list[str]:
        if self.path is None:
            return list(self._memory)
        entries = self._read_document().get(self.key, [])
        if not isinstance(entries, list):
            raise AlertLogError(f"Alert log key '{self.key}' is not a list")
        return [str(e) for e in entries]

    def _save(self, entries: list[str]) -> None:
        if self.path is None:
            self._memory = list(entries)
            return
        document = self._read_document()
        document[self.key] = entries
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise AlertLogError(f"Cannot write alert log {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def entries(self) -> list[str]:
        """Logged fingerprints, oldest first."""
        return self._load()

    def should_notify(self, fingerprint: str) -> bool:
        return fingerprint not in self._load()

    def record_notified(self, fingerprint: str) -> None:
        entries = self._load()
        entries.append(fingerprint)
        trimmed = entries[-self.limit:]
        self._save(trimmed)
        logger.info("[alert_log] logged %s (%d entries)", fingerprint, len(trimmed))

    def try_claim(self, fingerprint: str) -> bool:
        """Record ``fingerprint`` and return True, unless it is already logged."""
        with self._lock:
            if not self.should_notify(fingerprint):
                return False
            self.record_notified(fingerprint)
            return True

    def clear(self) -> None:
        """Forget every fingerprint; all issues will notify again."""
        self._save([])
        logger.info("[alert_log] cleared")
