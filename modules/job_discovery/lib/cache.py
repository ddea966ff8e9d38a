from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from .models import CacheEntry, JobRecord, LogStatus, ScrapeLogEntry, SourceStatus
from .utils import now_iso

MAX_LOGS = 50

# Outcomes that count towards a source's zero-yield streak.
_STREAK_STATUSES = frozenset({"no_jobs", "parse_failed", "ai_error", "fetch_failed"})


class JobCache:
    """
    In-memory view of the latest extraction per source plus a rolling scrape log.

    One entry per source name, replaced wholesale on every `put`. The log keeps
    the newest `max_logs` entries; older ones fall off the front.
    """

    def __init__(self, max_logs: int = MAX_LOGS):
        if max_logs <= 0:
            raise ValueError("max_logs must be >= 1")
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._logs: deque[ScrapeLogEntry] = deque(maxlen=max_logs)
        self._streaks: dict[str, int] = {}

    @property
    def max_logs(self) -> int:
        return self._logs.maxlen or 0

    # ---- entries ----
    def put(self, source: str, records: Iterable[JobRecord]) -> CacheEntry:
        entry = CacheEntry(source=source, records=tuple(records), timestamp=now_iso())
        with self._lock:
            # Re-insert so iteration order follows the latest write.
            self._entries.pop(source, None)
            self._entries[source] = entry
        return entry

    def get(self, source: str | None = None) -> list[JobRecord]:
        with self._lock:
            if source is not None:
                entry = self._entries.get(source)
                return list(entry.records) if entry else []
            return [r for e in self._entries.values() for r in e.records]

    def stats(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                name: {"count": len(e.records), "last_updated": e.timestamp}
                for name, e in self._entries.items()
            }

    # ---- log ----
    def append_log(
        self,
        sources: Iterable[str],
        jobs_added: int,
        status: LogStatus,
        error: str | None = None,
    ) -> ScrapeLogEntry:
        entry = ScrapeLogEntry(
            timestamp=now_iso(),
            sources=tuple(sources),
            jobs_added=int(jobs_added),
            status=status,
            error=error,
        )
        with self._lock:
            self._logs.append(entry)
        return entry

    def get_logs(self) -> list[ScrapeLogEntry]:
        """Oldest first."""
        with self._lock:
            return list(self._logs)

    # ---- extraction quality ----
    def record_outcome(self, source: str, status: SourceStatus) -> int:
        """Update and return the consecutive zero-yield count for `source`."""
        with self._lock:
            current = self._streaks.get(source, 0)
            if status == "ok":
                current = 0
            elif status in _STREAK_STATUSES:
                current += 1
            self._streaks[source] = current
            return current

    def degraded_sources(self, threshold: int = 3) -> dict[str, int]:
        with self._lock:
            return {name: n for name, n in self._streaks.items() if n >= threshold}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._logs.clear()
            self._streaks.clear()
