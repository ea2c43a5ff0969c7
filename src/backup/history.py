"""Per-source backup history, stored next to the backup files it describes."""

import logging
import os
from datetime import datetime

from src.errors import PersistenceError
from src.store.files import read_document, write_document
from src.store.models import BackupRecord

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "history.json"


class BackupHistory:
    """Ordered records (oldest first) for one backup source."""

    def __init__(self, directory: str, records: list[BackupRecord] | None = None) -> None:
        self.directory = directory
        self._records: list[BackupRecord] = list(records or [])

    @property
    def path(self) -> str:
        return os.path.join(self.directory, HISTORY_FILENAME)

    @classmethod
    def load(cls, directory: str) -> "BackupHistory":
        """Load the history for ``directory``. Missing or unreadable → empty history."""
        path = os.path.join(directory, HISTORY_FILENAME)
        try:
            raw = read_document(path, default={"entries": []})
        except PersistenceError:
            logger.exception("Could not load backup history from %s", path)
            raw = {"entries": []}

        entries = raw.get("entries", []) if isinstance(raw, dict) else []
        records = [
            BackupRecord(
                filename=str(e["filename"]),
                timestamp=str(e["timestamp"]),
                size=int(e.get("size", 0)),
            )
            for e in entries
            if isinstance(e, dict) and "filename" in e and "timestamp" in e
        ]
        return cls(directory, records)

    @property
    def records(self) -> list[BackupRecord]:
        return [BackupRecord(**r) for r in self._records]

    def __len__(self) -> int:
        return len(self._records)

    def oldest(self) -> BackupRecord | None:
        return self._records[0] if self._records else None

    def find(self, filename: str) -> BackupRecord | None:
        for record in self._records:
            if record["filename"] == filename:
                return record
        return None

    def last_success(self) -> datetime | None:
        """Timestamp of the newest record, or None when there is no history."""
        if not self._records:
            return None
        try:
            return datetime.fromisoformat(self._records[-1]["timestamp"])
        except ValueError:
            logger.warning("Unparseable timestamp in %s: %s", self.path, self._records[-1]["timestamp"])
            return None

    def append(self, record: BackupRecord) -> None:
        self._records.append(record)

    def drop_oldest(self) -> BackupRecord:
        return self._records.pop(0)

    def save(self) -> None:
        """Persist the history.

        Raises:
            PersistenceError: If the document cannot be written.
        """
        write_document(self.path, {"entries": [dict(r) for r in self._records]})
