"""Process-wide internal event log.

Every noteworthy event (endpoint down, backup stored, warning suppressed, ...)
becomes an entry here. Entries are mirrored to Python logging, kept in
memory for the log tail shown to operators and attached to warnings, and
appended to a JSON Lines file so the history survives restarts.
"""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from src.errors import PersistenceError
from src.store.files import append_line, read_lines
from src.store.models import InternalLogEntry

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = (
    "Welcome to WebSync Station. If this is your first time running it, "
    "edit config.toml and restart."
)

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def format_entry(entry: InternalLogEntry) -> str:
    """Render an entry as a single ``timestamp - message`` line."""
    return f"{entry['timestamp']} - {entry['message']}"


class InternalLog:
    """Append-only event log backed by a JSON Lines file."""

    def __init__(
        self,
        path: str,
        entries: list[InternalLogEntry] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = path
        self._entries: list[InternalLogEntry] = list(entries or [])
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: str, clock: Callable[[], datetime] | None = None) -> "InternalLog":
        """Load existing entries from ``path``. An unreadable file starts an empty log."""
        try:
            raw = read_lines(path)
        except PersistenceError:
            logger.exception("Could not load internal log from %s, starting empty", path)
            raw = []

        entries: list[InternalLogEntry] = [
            InternalLogEntry(
                timestamp=str(r.get("timestamp", "")),
                severity=str(r.get("severity", "info")),
                message=str(r.get("message", "")),
            )
            for r in raw
        ]
        log = cls(path, entries, clock=clock)
        if not entries:
            _ = log.append(WELCOME_MESSAGE)
        return log

    def append(self, message: str, severity: str = "info") -> InternalLogEntry:
        """Record an event. Persistence failures are logged, never raised."""
        entry = InternalLogEntry(
            timestamp=self._clock().isoformat(),
            severity=severity,
            message=message,
        )
        logger.log(_LEVELS.get(severity, logging.INFO), message)

        with self._lock:
            self._entries.append(entry)
        try:
            append_line(self.path, dict(entry))
        except PersistenceError:
            logger.exception("Failed to persist internal log entry")
        return entry

    def tail(self, limit: int) -> list[InternalLogEntry]:
        """Return copies of the most recent ``limit`` entries, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return [InternalLogEntry(**e) for e in self._entries[-limit:]]

    def tail_lines(self, limit: int) -> list[str]:
        return [format_entry(e) for e in self.tail(limit)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
