"""The station core: wires monitor, backups and notifier, and drives the tick.

``Station`` is the whole public surface used by the API, the CLI and the
scheduler: the per-minute ``tick``, the manual triggers and read-only
queries. Outer layers get outcome objects back, never raw exceptions.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from src.backup.runner import BackupScheduler
from src.backup.schedule import format_time_left
from src.config import Settings
from src.document import BackupSourceConfig, StationConfig, load_document
from src.errors import BackupBusy, RestoreError, StationError
from src.notify.notifier import EmailSender, Notifier, QuotaCounter
from src.store.internal_log import InternalLog
from src.store.models import BackupRecord, InternalLogEntry
from src.uptime.monitor import MonitoredEndpoint, State, UptimeMonitor, endpoints_from_config

logger = logging.getLogger(__name__)

INTERNAL_LOG_FILENAME = "internal_log.jsonl"
QUOTA_FILENAME = "warning_quota.json"


@dataclass(frozen=True)
class BackupOutcome:
    description: str
    ok: bool
    record: BackupRecord | None = None
    error: str | None = None
    busy: bool = False
    unknown: bool = False
    rejected: bool = False


@dataclass(frozen=True)
class SourceStatus:
    description: str
    url: str
    interval: str
    max_retained: int
    stored: int
    last_backup: str | None
    next_backup_in: str
    running: bool


class Station:
    def __init__(
        self,
        config: StationConfig,
        data_dir: str,
        *,
        probe_timeout: float = 10.0,
        download_timeout: float = 300.0,
        dispatch_timeout: float = 20.0,
        clock: Callable[[], datetime] | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        email_sender: EmailSender | None = None,
    ) -> None:
        self.config = config
        self.data_dir = data_dir
        self._clock = clock or (lambda: datetime.now(UTC))
        self._backup_tasks: set[asyncio.Task[None]] = set()
        self._backups_enabled = config.schedule.backups_enabled

        self.internal_log = InternalLog.load(os.path.join(data_dir, INTERNAL_LOG_FILENAME), clock=self._clock)
        quota = QuotaCounter(
            os.path.join(data_dir, QUOTA_FILENAME),
            config.warning_settings.daily_max,
            clock=self._clock,
        )
        self.notifier = Notifier(
            config.warning_settings,
            config.smtp,
            config.auth_for_warnings(),
            self.internal_log,
            quota,
            client_factory=client_factory,
            email_sender=email_sender,
            dispatch_timeout=dispatch_timeout,
        )
        self.monitor = UptimeMonitor(
            endpoints_from_config(config),
            self.notifier,
            self.internal_log,
            client_factory=client_factory,
            probe_timeout=probe_timeout,
            clock=self._clock,
        )
        self.backups = BackupScheduler(
            config.backups,
            self.notifier,
            self.internal_log,
            data_dir,
            auth_for=config.auth_for_source,
            client_factory=client_factory,
            download_timeout=download_timeout,
            clock=self._clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Station":
        """Build a station from process settings, loading (or creating) the config document."""
        config = load_document(settings.config_path)
        return cls(
            config,
            settings.data_dir,
            probe_timeout=settings.probe_timeout_seconds,
            download_timeout=settings.download_timeout_seconds,
            dispatch_timeout=settings.dispatch_timeout_seconds,
        )

    # -----------------------------------------------------------------------
    # Tick
    # -----------------------------------------------------------------------

    @property
    def backups_enabled(self) -> bool:
        return self._backups_enabled

    def set_backups_enabled(self, enabled: bool) -> None:
        if enabled != self._backups_enabled:
            state = "enabled" if enabled else "disabled"
            _ = self.internal_log.append(f"Backup schedule {state}")
        self._backups_enabled = enabled

    async def tick(self, now: datetime | None = None) -> None:
        """One scheduler period: start due backups, then check due endpoints. Never raises."""
        now = now or self._clock()

        if self._backups_enabled:
            for source in self.backups.sources:
                try:
                    if self.backups.is_running(source.description) or not self.backups.is_due(source, now):
                        continue
                except Exception:  # pragma: no cover - logging catch-all
                    logger.exception("Due check failed for %s", source.description)
                    continue
                self._start_backup(source)

        try:
            _ = await self.monitor.check_due(now)
        except Exception:  # pragma: no cover - logging catch-all
            logger.exception("Uptime pass failed")

    def _start_backup(self, source: BackupSourceConfig) -> None:
        # Backups run in the background so a long download never delays uptime checks
        task = asyncio.create_task(self._scheduled_backup(source), name=f"backup:{source.description}")
        self._backup_tasks.add(task)
        task.add_done_callback(self._backup_tasks.discard)

    async def _scheduled_backup(self, source: BackupSourceConfig) -> None:
        try:
            _ = await self.backups.run_backup(source, trigger="scheduled")
        except StationError as exc:
            logger.debug("Scheduled backup of %s failed: %s", source.description, exc)
        except Exception:  # pragma: no cover - logging catch-all
            logger.exception("Scheduled backup of %s crashed", source.description)

    async def wait_for_backups(self) -> None:
        """Wait until every background backup started by ``tick`` has finished."""
        while self._backup_tasks:
            _ = await asyncio.gather(*list(self._backup_tasks), return_exceptions=True)

    # -----------------------------------------------------------------------
    # Manual triggers
    # -----------------------------------------------------------------------

    async def trigger_check_all(self) -> dict[str, State]:
        return await self.monitor.check_all()

    async def trigger_backup_now(self, description: str) -> BackupOutcome:
        try:
            source = self.backups.get_source(description)
        except StationError as exc:
            return BackupOutcome(description, ok=False, error=str(exc), unknown=True)

        try:
            record = await self.backups.run_backup(source, trigger="manual")
        except BackupBusy as exc:
            return BackupOutcome(description, ok=False, error=str(exc), busy=True)
        except StationError as exc:
            return BackupOutcome(description, ok=False, error=str(exc))
        return BackupOutcome(description, ok=True, record=record)

    async def restore_backup(self, description: str, filename: str) -> BackupOutcome:
        try:
            source = self.backups.get_source(description)
        except StationError as exc:
            return BackupOutcome(description, ok=False, error=str(exc), unknown=True)

        try:
            await self.backups.restore(source, filename)
        except BackupBusy as exc:
            return BackupOutcome(description, ok=False, error=str(exc), busy=True)
        except RestoreError as exc:
            return BackupOutcome(description, ok=False, error=str(exc), rejected=True)
        except StationError as exc:
            return BackupOutcome(description, ok=False, error=str(exc))
        return BackupOutcome(description, ok=True, record=self._find_record(description, filename))

    def _find_record(self, description: str, filename: str) -> BackupRecord | None:
        for record in self.backups.history(description):
            if record["filename"] == filename:
                return record
        return None

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def endpoint_states(self) -> list[MonitoredEndpoint]:
        return self.monitor.endpoints

    def source_statuses(self, now: datetime | None = None) -> list[SourceStatus]:
        now = now or self._clock()
        statuses: list[SourceStatus] = []
        for source in self.backups.sources:
            history = self.backups.history(source.description)
            statuses.append(
                SourceStatus(
                    description=source.description,
                    url=source.url,
                    interval=source.interval.name.lower(),
                    max_retained=source.max_retained,
                    stored=len(history),
                    last_backup=history[-1]["timestamp"] if history else None,
                    next_backup_in=format_time_left(self.backups.time_until_due(source.description, now)),
                    running=self.backups.is_running(source.description),
                )
            )
        return statuses

    def history(self, description: str) -> list[BackupRecord]:
        """Stored backups for one source, oldest first (the restore listing)."""
        return self.backups.history(description)

    def log_tail(self, limit: int = 100) -> list[InternalLogEntry]:
        return self.internal_log.tail(limit)
