"""
LogStore Class - Bounded in-memory log buffer

This module manages the time-ordered log buffer, its level filter and
retention cleanup.
"""

import json
import logging
import threading
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from diagnostics_engine.config import DEFAULT_LOG_LEVELS
from diagnostics_engine.models.data_models import LogEntry, LogLevel
from diagnostics_engine.services.event_bus import EVENT_LOG, EVENT_LOGS_CLEARED, EventBus
from diagnostics_engine.utils.helpers import now_ms

console = logging.getLogger("diagnostics_engine.console")

DAY_MS = 24 * 60 * 60 * 1000

_CONSOLE_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LogStore:
    """
    Bounded FIFO buffer of LogEntry records.
    Responsibilities:
    - Drop entries whose level is not accepted (public path only)
    - Evict the oldest entry once at capacity
    - Purge entries older than the retention window
    - Filter and count entries for panels

    Buffer access is guarded by a lock so worker threads may log; events are
    emitted outside it.
    """

    def __init__(
        self,
        bus: EventBus,
        clock: Callable[[], int] = now_ms,
        accepted_levels: Iterable[LogLevel] = DEFAULT_LOG_LEVELS,
        max_entries: int = 1000,
        mirror_to_console: bool = False,
    ):
        self.bus = bus
        self.clock = clock
        self.accepted_levels = frozenset(accepted_levels)
        self.mirror_to_console = mirror_to_console
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    def configure(
        self,
        accepted_levels: Iterable[LogLevel],
        max_entries: int,
        mirror_to_console: bool = False,
    ) -> None:
        """Apply new settings; shrinking keeps the most recent entries"""
        self.accepted_levels = frozenset(accepted_levels)
        self.mirror_to_console = mirror_to_console
        with self._lock:
            if max_entries != self._entries.maxlen:
                self._entries = deque(self._entries, maxlen=max_entries)

    def log(
        self,
        level: Union[LogLevel, str],
        module: str,
        message: str,
        data: Any = None,
    ) -> str:
        """Record an entry if its level is accepted. Returns the id, or "" when dropped."""
        try:
            level = LogLevel(level)
        except ValueError:
            return ""
        if level not in self.accepted_levels:
            return ""
        return self.log_internal(level, module, message, data)

    def log_internal(
        self,
        level: Union[LogLevel, str],
        module: str,
        message: str,
        data: Any = None,
    ) -> str:
        """Record an entry regardless of the accepted levels"""
        level = LogLevel(level)
        stack = None
        if level is LogLevel.ERROR and isinstance(data, dict) and data.get("stack"):
            stack = str(data["stack"])

        entry = LogEntry(
            id=str(uuid.uuid4()),
            timestamp=self.clock(),
            level=level,
            message=message,
            module=module,
            data=data,
            stack=stack,
        )

        # deque(maxlen) drops the leftmost entry on overflow
        with self._lock:
            self._entries.append(entry)
        self.bus.emit(EVENT_LOG, entry)

        if self.mirror_to_console:
            console.log(_CONSOLE_LEVELS[level], "[%s] %s", module, message, extra={"diagnostics_data": data})

        return entry.id

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.bus.emit(EVENT_LOGS_CLEARED, None)

    def purge_older_than(self, days: float) -> int:
        """Drop entries older than `days`. Returns how many were removed."""
        cutoff = self.clock() - days * DAY_MS
        with self._lock:
            kept = [e for e in self._entries if e.timestamp >= cutoff]
            removed = len(self._entries) - len(kept)
            if removed:
                self._entries = deque(kept, maxlen=self._entries.maxlen)
        return removed

    def entries(self) -> List[LogEntry]:
        """Copy of the buffer in arrival order"""
        with self._lock:
            return list(self._entries)

    def recent(self, n: int) -> List[LogEntry]:
        if n <= 0:
            return []
        return self.entries()[-n:]

    def filter(
        self,
        level: Optional[Union[LogLevel, str]] = None,
        search: Optional[str] = None,
        since: Optional[int] = None,
    ) -> List[LogEntry]:
        """
        Filter entries by level, free-text search and minimum timestamp.
        Search is case-insensitive over message, module and the JSON form of data.
        """
        wanted = LogLevel(level) if level is not None else None
        term = search.lower() if search else None

        out: List[LogEntry] = []
        for e in self.entries():
            if wanted is not None and e.level is not wanted:
                continue
            if since is not None and e.timestamp < since:
                continue
            if term and not _matches(e, term):
                continue
            out.append(e)
        return out

    def count_by_level(self) -> Dict[str, int]:
        counts = {lv.value: 0 for lv in LogLevel}
        for e in self.entries():
            counts[e.level.value] += 1
        return counts

    def __len__(self) -> int:
        return len(self._entries)


def _matches(entry: LogEntry, term: str) -> bool:
    if term in entry.message.lower() or term in entry.module.lower():
        return True
    if entry.data is None:
        return False
    try:
        rendered = json.dumps(entry.data, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        rendered = str(entry.data)
    return term in rendered.lower()
