"""File-backed structured store for JSON documents and JSON Lines logs keyed by path.

Documents are replaced atomically (temp file + rename) so a crash mid-write
never leaves a truncated file behind. Logs are append-only JSON Lines.
Writes to the same path are serialized by a per-path lock; different paths
proceed independently.
"""

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from typing import Any

from src.errors import PersistenceError

logger = logging.getLogger(__name__)

_locks: dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def key_lock(path: str) -> threading.Lock:
    """Return the lock guarding writes to ``path`` (one lock per absolute path)."""
    key = os.path.abspath(path)
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


def read_document(path: str, default: Any = None) -> Any:
    """Read a JSON document. Returns ``default`` if the file does not exist.

    Raises:
        PersistenceError: If the file exists but cannot be read or parsed.
    """
    with key_lock(path):
        return _read_unlocked(path, default)


def write_document(path: str, document: Any) -> None:
    """Atomically replace the JSON document at ``path``.

    Raises:
        PersistenceError: On any I/O or serialization error.
    """
    with key_lock(path):
        _write_unlocked(path, document)


def update_document(path: str, default: Any, mutate: Callable[[Any], Any]) -> Any:
    """Read-modify-write a document under its lock. Returns the written document."""
    with key_lock(path):
        current = _read_unlocked(path, default)
        updated = mutate(current)
        _write_unlocked(path, updated)
        return updated


def append_line(path: str, record: dict[str, Any]) -> None:
    """Append one JSON record to a JSON Lines log.

    Raises:
        PersistenceError: On any I/O or serialization error.
    """
    with key_lock(path):
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            line = json.dumps(record, default=str)
            with open(path, "a", encoding="utf-8") as f:
                _ = f.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            msg = f"Failed to append to {path}: {exc}"
            raise PersistenceError(msg) from exc


def read_lines(path: str) -> list[dict[str, Any]]:
    """Read every record of a JSON Lines log. Missing file → empty list.

    Corrupted lines are skipped with a warning rather than failing the whole read.
    """
    with key_lock(path):
        try:
            with open(path, encoding="utf-8") as f:
                raw_lines = f.readlines()
        except FileNotFoundError:
            return []
        except OSError as exc:
            msg = f"Failed to read {path}: {exc}"
            raise PersistenceError(msg) from exc

    records: list[dict[str, Any]] = []
    for number, line in enumerate(raw_lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Skipping corrupted line %d in %s", number, path)
            continue
        if isinstance(record, dict):
            records.append(record)
    return records


def _read_unlocked(path: str, default: Any) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"Failed to read {path}: {exc}"
        raise PersistenceError(msg) from exc


def _write_unlocked(path: str, document: Any) -> None:
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    except OSError as exc:
        msg = f"Failed to write {path}: {exc}"
        raise PersistenceError(msg) from exc

    # Atomic write: write to temp file then rename
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, default=str)
        os.replace(tmp_path, path)
    except BaseException as exc:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        if isinstance(exc, (OSError, TypeError, ValueError)):
            msg = f"Failed to write {path}: {exc}"
            raise PersistenceError(msg) from exc
        raise
