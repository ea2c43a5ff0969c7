"""Backup execution as a pipeline of fetch, name, version, write and rotate.

Each run is an explicit composition of steps so every transition can be
tested on its own. At most one run per source is in flight; a concurrent
trigger for the same source is rejected with BackupBusy. Failures are logged,
escalated through the notifier and re-raised to the caller; no partial file
is ever left in the source directory.
"""

import asyncio
import contextlib
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from src.auth import auth_headers
from src.backup.history import HISTORY_FILENAME, BackupHistory
from src.backup.naming import candidate_filename, versioned_filename
from src.backup.restore import upload_backup
from src.backup.schedule import due_check, time_until_due
from src.document import AuthConfig, BackupSourceConfig
from src.errors import (
    BackupBusy,
    PersistenceError,
    RestoreError,
    RotationError,
    StationError,
    TransportError,
    UnknownSourceError,
)
from src.notify.notifier import Notifier, WarningEvent
from src.observability.metrics import BACKUP_BYTES, BACKUP_DURATION, BACKUPS_TOTAL, ROTATION_FAILURES_TOTAL
from src.store.internal_log import InternalLog
from src.store.models import BackupRecord

logger = logging.getLogger(__name__)

AuthResolver = Callable[[BackupSourceConfig], AuthConfig | None]


@dataclass(frozen=True)
class FetchedFile:
    temp_path: str
    size: int
    headers: httpx.Headers


def _discard(path: str) -> None:
    with contextlib.suppress(OSError):
        os.unlink(path)


class BackupScheduler:
    def __init__(
        self,
        sources: list[BackupSourceConfig],
        notifier: Notifier,
        internal_log: InternalLog,
        data_dir: str,
        *,
        auth_for: AuthResolver | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        download_timeout: float = 300.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sources = {s.description: s for s in sources}
        self._notifier = notifier
        self._log = internal_log
        self._data_dir = data_dir
        self._auth_for = auth_for or (lambda source: source.auth)
        self._download_timeout = download_timeout
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(follow_redirects=True, timeout=download_timeout)
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks = {name: asyncio.Lock() for name in self._sources}
        self._histories = {name: BackupHistory.load(self.directory_for(name)) for name in self._sources}

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    @property
    def sources(self) -> list[BackupSourceConfig]:
        return list(self._sources.values())

    def get_source(self, description: str) -> BackupSourceConfig:
        try:
            return self._sources[description]
        except KeyError:
            msg = f"No backup source named {description!r}"
            raise UnknownSourceError(msg) from None

    def directory_for(self, description: str) -> str:
        return os.path.join(self._data_dir, description)

    def history(self, description: str) -> list[BackupRecord]:
        _ = self.get_source(description)
        return self._histories[description].records

    def last_success(self, description: str) -> datetime | None:
        _ = self.get_source(description)
        return self._histories[description].last_success()

    def is_running(self, description: str) -> bool:
        return self._locks[description].locked()

    def is_due(self, source: BackupSourceConfig, now: datetime) -> bool:
        return due_check(source, now, self._histories[source.description].last_success())

    def due_sources(self, now: datetime) -> list[BackupSourceConfig]:
        return [s for s in self._sources.values() if self.is_due(s, now)]

    def time_until_due(self, description: str, now: datetime) -> timedelta:
        source = self.get_source(description)
        return time_until_due(source, now, self._histories[description].last_success())

    # -----------------------------------------------------------------------
    # Backup run
    # -----------------------------------------------------------------------

    async def run_backup(self, source: BackupSourceConfig, trigger: str = "manual") -> BackupRecord:
        """Back up ``source`` now, bypassing the due check.

        Raises:
            BackupBusy: If a run for the same source is already in flight.
            StationError: Any fetch/naming/storage failure, after it was logged and escalated.
        """
        lock = self._locks[source.description]
        if lock.locked():
            msg = f"Backup of {source.description} is already running"
            raise BackupBusy(msg)

        async with lock:
            logger.info("Attempting backup of %s (%s)", source.description, source.url)
            started = time.monotonic()
            try:
                record = await self._run_pipeline(source)
            except StationError as exc:
                BACKUPS_TOTAL.labels(source=source.description, trigger=trigger, status="error").inc()
                BACKUP_DURATION.observe(time.monotonic() - started)
                await self._report_failure(source, exc)
                raise

            BACKUPS_TOTAL.labels(source=source.description, trigger=trigger, status="success").inc()
            BACKUP_DURATION.observe(time.monotonic() - started)
            BACKUP_BYTES.labels(source=source.description).inc(record["size"])

            for error in self.rotate(source):
                _ = await self._notifier.notify(
                    WarningEvent(subject="Backup rotation failed", reason=str(error), timestamp=self._clock())
                )
            return record

    async def _run_pipeline(self, source: BackupSourceConfig) -> BackupRecord:
        directory = self.directory_for(source.description)
        fetched = await self.fetch(source, directory)
        try:
            filename = self.choose_filename(source, fetched, directory)
            return self.store(source, fetched, directory, filename)
        except BaseException:
            _discard(fetched.temp_path)
            raise

    async def fetch(self, source: BackupSourceConfig, directory: str) -> FetchedFile:
        """Download ``source.url`` into a temp file inside ``directory``.

        Raises:
            TransportError: Non-2xx response, network failure or timeout.
            PersistenceError: The temp file could not be written.
        """
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".download-", suffix=".part")
            os.close(fd)
        except OSError as exc:
            msg = f"Could not prepare {directory}: {exc}"
            raise PersistenceError(msg) from exc

        try:
            headers, size = await self._download(source, temp_path)
        except (TimeoutError, httpx.HTTPError) as exc:
            _discard(temp_path)
            reason = "timed out" if isinstance(exc, (TimeoutError, httpx.TimeoutException)) else str(exc)
            msg = f"Request to {source.url} failed: {reason or exc.__class__.__name__}"
            raise TransportError(msg) from exc
        except OSError as exc:
            _discard(temp_path)
            msg = f"Could not write download for {source.description}: {exc}"
            raise PersistenceError(msg) from exc
        except BaseException:
            _discard(temp_path)
            raise

        return FetchedFile(temp_path=temp_path, size=size, headers=headers)

    async def _download(self, source: BackupSourceConfig, temp_path: str) -> tuple[httpx.Headers, int]:
        size = 0
        headers = auth_headers(self._auth_for(source))
        async with asyncio.timeout(self._download_timeout):
            async with self._client_factory() as client:
                async with client.stream("GET", source.url, headers=headers) as response:
                    if not response.is_success:
                        msg = f"Request to {source.url} failed with status {response.status_code}"
                        raise TransportError(msg)
                    with open(temp_path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            _ = f.write(chunk)
                            size += len(chunk)
                    return response.headers, size

    def choose_filename(self, source: BackupSourceConfig, fetched: FetchedFile, directory: str) -> str:
        """Negotiate a collision-free name for the fetched file."""
        candidate = candidate_filename(fetched.headers, source.url)
        # A recorded name stays taken even if its file has gone missing
        reserved = {HISTORY_FILENAME} | {r["filename"] for r in self._histories[source.description].records}
        return versioned_filename(directory, candidate, reserved=reserved)

    def store(self, source: BackupSourceConfig, fetched: FetchedFile, directory: str, filename: str) -> BackupRecord:
        """Move the temp file into place and append the record to the history."""
        final_path = os.path.join(directory, filename)
        try:
            os.replace(fetched.temp_path, final_path)
        except OSError as exc:
            msg = f"Could not store {filename} for {source.description}: {exc}"
            raise PersistenceError(msg) from exc

        record = BackupRecord(filename=filename, timestamp=self._clock().isoformat(), size=fetched.size)
        history = self._histories[source.description]
        history.append(record)
        try:
            history.save()
        except PersistenceError:
            logger.exception("Failed to persist history for %s", source.description)

        _ = self._log.append(f"Backup of {source.description} stored as {filename} ({fetched.size} bytes)")
        return BackupRecord(**record)

    def rotate(self, source: BackupSourceConfig) -> list[RotationError]:
        """Evict the oldest records and their files until the history fits ``max_retained``.

        A file that cannot be deleted keeps its record and stops the pass.
        """
        history = self._histories[source.description]
        directory = self.directory_for(source.description)
        errors: list[RotationError] = []

        while len(history) > source.max_retained:
            oldest = history.oldest()
            if oldest is None:
                break
            filename = oldest["filename"]
            try:
                os.remove(os.path.join(directory, filename))
            except FileNotFoundError:
                _ = self._log.append(
                    f"Backup file {filename} of {source.description} was already missing, dropping its record",
                    "warning",
                )
            except OSError as exc:
                error = RotationError(f"Could not delete {filename} from {source.description}: {exc}")
                ROTATION_FAILURES_TOTAL.labels(source=source.description).inc()
                _ = self._log.append(str(error), "error")
                errors.append(error)
                break

            _ = history.drop_oldest()
            try:
                history.save()
            except PersistenceError:
                logger.exception("Failed to persist history for %s", source.description)
            _ = self._log.append(f"Rotated out {filename} from {source.description}")

        return errors

    async def _report_failure(self, source: BackupSourceConfig, exc: StationError) -> None:
        message = f"Backup failed for {source.description} ({source.url}): {exc}"
        _ = self._log.append(message, "error")
        _ = await self._notifier.notify(WarningEvent(subject="Backup failed", reason=message, timestamp=self._clock()))

    # -----------------------------------------------------------------------
    # Restore
    # -----------------------------------------------------------------------

    async def restore(self, source: BackupSourceConfig, filename: str) -> None:
        """Upload a stored backup to the source's restore route.

        Raises:
            BackupBusy: If a backup of the same source is in flight.
            RestoreError: No restore route, or ``filename`` is not in the history.
            TransportError: The upload failed or timed out.
            PersistenceError: The stored file could not be read.
        """
        if not source.restore_url:
            msg = f"No restore route configured for {source.description}"
            raise RestoreError(msg)
        if self._histories[source.description].find(filename) is None:
            msg = f"{filename} is not a stored backup of {source.description}"
            raise RestoreError(msg)

        lock = self._locks[source.description]
        if lock.locked():
            msg = f"Backup of {source.description} is running, try the restore again later"
            raise BackupBusy(msg)

        async with lock:
            path = os.path.join(self.directory_for(source.description), filename)
            headers = auth_headers(self._auth_for(source))
            try:
                async with asyncio.timeout(self._download_timeout):
                    async with self._client_factory() as client:
                        _ = await upload_backup(client, source.restore_url, path, headers)
            except (TransportError, TimeoutError, OSError) as exc:
                reason = "timed out" if isinstance(exc, TimeoutError) else str(exc)
                _ = self._log.append(f"Failed to restore file {filename} from {source.description}: {reason}", "error")
                if isinstance(exc, TransportError):
                    raise
                msg = f"Restore of {filename} failed: {reason}"
                if isinstance(exc, TimeoutError):
                    raise TransportError(msg) from exc
                raise PersistenceError(msg) from exc

            _ = self._log.append(f"Successfully restored file {filename} from {source.description}")
