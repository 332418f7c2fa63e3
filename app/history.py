"""
Persistent, capped scrobble history.

- Stores committed ScrobbleRecords on disk (JSON file) so history survives restarts.
- Enforces a max length (HISTORY_LIMIT); the oldest records are dropped first.
- API is minimal: append(), recent(), count().
- path=None keeps everything in memory.
"""

from __future__ import annotations
import json
import logging
import os
import threading
from collections import deque
from typing import Deque

from state import ScrobbleRecord

log = logging.getLogger("history")


class HistoryStore:
    def __init__(self, path: str | None, maxlen: int = 5000):
        self.path = path
        self.maxlen = maxlen
        self._lock = threading.Lock()
        self._records: Deque[ScrobbleRecord] = deque(maxlen=maxlen)
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        if not self.path:
            return
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            if os.path.isfile(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, list):
                    for item in data[-self.maxlen:]:
                        self._records.append(ScrobbleRecord.from_dict(item))
        except (OSError, ValueError, KeyError, TypeError) as e:
            # Corrupt or unreadable file? Start fresh.
            log.warning("Could not read history %s, starting empty: %s", self.path, e)
            self._records.clear()

    def _save(self) -> None:
        if not self.path:
            return
        # Write atomically to avoid corruption
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump([r.to_dict() for r in self._records], f, ensure_ascii=False)
        os.replace(tmp, self.path)

    # -------- public API --------
    def append(self, record: ScrobbleRecord) -> None:
        with self._lock:
            self._records.append(record)
            try:
                self._save()
            except OSError as e:
                log.error("Failed to persist history to %s: %s", self.path, e)

    def recent(self, limit: int = 10) -> list[ScrobbleRecord]:
        """Newest first by timestamp."""
        with self._lock:
            records = sorted(self._records, key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    def count(self) -> int:
        with self._lock:
            return len(self._records)
