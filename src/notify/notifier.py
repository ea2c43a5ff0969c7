"""Failure escalation: email and webhook warnings under a daily quota.

One warning event costs one quota unit no matter how many channels or routes
it is sent to. The quota resets at the local-day boundary and is persisted so
a restart does not hand out a fresh allowance. Quota exhaustion and channel
failures are recorded in the internal log; ``notify`` never raises.
"""

import asyncio
import enum
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from src.auth import auth_headers
from src.document import AuthConfig, SmtpConfig, WarningSettings
from src.errors import PersistenceError, QuotaExceeded
from src.notify.email import is_email_configured, send_warning_email
from src.notify.webhook import build_payload, post_warning
from src.observability.metrics import WARNING_DISPATCH_TOTAL, WARNINGS_TOTAL
from src.store.files import read_document, write_document
from src.store.internal_log import InternalLog
from src.store.models import QuotaState

logger = logging.getLogger(__name__)

EmailSender = Callable[[SmtpConfig, str, str, str, float], None]


class Channel(enum.StrEnum):
    EMAIL = "email"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class WarningEvent:
    subject: str
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class ChannelResult:
    channel: Channel
    target: str
    ok: bool
    error: str | None = None


@dataclass
class Outcome:
    dispatched: bool
    suppressed: bool = False
    results: list[ChannelResult] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Daily quota
# ---------------------------------------------------------------------------


class QuotaCounter:
    """Counts dispatched warnings per local day, persisted as a small JSON document."""

    def __init__(self, path: str, daily_max: int, clock: Callable[[], datetime] | None = None) -> None:
        self.path = path
        self.daily_max = daily_max
        self._clock = clock or (lambda: datetime.now(UTC))
        self._state = self._load()

    def _today(self) -> str:
        return self._clock().astimezone().date().isoformat()

    def _load(self) -> QuotaState:
        try:
            raw = read_document(self.path, default=None)
        except PersistenceError:
            logger.exception("Could not read warning quota, starting from zero")
            raw = None
        if isinstance(raw, dict) and "day" in raw and "sent" in raw:
            return QuotaState(day=str(raw["day"]), sent=int(raw["sent"]))
        return QuotaState(day=self._today(), sent=0)

    @property
    def sent_today(self) -> int:
        if self._state["day"] != self._today():
            return 0
        return self._state["sent"]

    def reserve(self) -> int:
        """Consume one unit of today's quota. Returns the new count.

        Raises:
            QuotaExceeded: If ``daily_max`` warnings were already sent today.
        """
        today = self._today()
        if self._state["day"] != today:
            self._state = QuotaState(day=today, sent=0)
        if self._state["sent"] >= self.daily_max:
            msg = f"Daily warning limit of {self.daily_max} reached"
            raise QuotaExceeded(msg)

        self._state["sent"] += 1
        try:
            write_document(self.path, dict(self._state))
        except PersistenceError:
            logger.exception("Failed to persist warning quota")
        return self._state["sent"]


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class Notifier:
    def __init__(
        self,
        settings: WarningSettings,
        smtp: SmtpConfig,
        auth: AuthConfig | None,
        internal_log: InternalLog,
        quota: QuotaCounter,
        *,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        email_sender: EmailSender | None = None,
        dispatch_timeout: float = 20.0,
    ) -> None:
        self._settings = settings
        self._smtp = smtp
        self._auth = auth
        self._log = internal_log
        self._quota = quota
        self._dispatch_timeout = dispatch_timeout
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=dispatch_timeout))
        self._email_sender = email_sender or send_warning_email
        self._quota_lock = asyncio.Lock()

    @property
    def quota(self) -> QuotaCounter:
        return self._quota

    def enabled_channels(self) -> list[Channel]:
        channels: list[Channel] = []
        if self._settings.use_email and is_email_configured(self._smtp, self._settings.email):
            channels.append(Channel.EMAIL)
        if self._settings.send_post_request and self._settings.post_request_routes:
            channels.append(Channel.WEBHOOK)
        return channels

    async def notify(self, event: WarningEvent) -> Outcome:
        """Dispatch ``event`` on every enabled channel, subject to the daily quota."""
        channels = self.enabled_channels()
        if not channels:
            _ = self._log.append(f"No warning channel enabled, not sent: {event.reason}", "warning")
            WARNINGS_TOTAL.labels(outcome="no_channel").inc()
            return Outcome(dispatched=False)

        async with self._quota_lock:
            try:
                _ = self._quota.reserve()
            except QuotaExceeded:
                _ = self._log.append(f"Warning limit exceeded, not sent: {event.subject}", "warning")
                WARNINGS_TOTAL.labels(outcome="suppressed").inc()
                return Outcome(dispatched=False, suppressed=True)

        WARNINGS_TOTAL.labels(outcome="dispatched").inc()
        log_lines = self._log.tail_lines(self._settings.log_lines)

        sends: list[Coroutine[Any, Any, list[ChannelResult]]] = []
        if Channel.EMAIL in channels:
            sends.append(self._send_email(event, log_lines))
        if Channel.WEBHOOK in channels:
            sends.append(self._send_webhooks(event, log_lines))

        results: list[ChannelResult] = []
        for channel_results in await asyncio.gather(*sends):
            results.extend(channel_results)
        return Outcome(dispatched=True, results=results)

    async def _send_email(self, event: WarningEvent, log_lines: list[str]) -> list[ChannelResult]:
        recipient = self._settings.email
        body = event.reason
        if log_lines:
            body += f"\n\nThese are the last {len(log_lines)} lines of the internal log:\n" + "\n".join(log_lines)

        try:
            async with asyncio.timeout(self._dispatch_timeout):
                await asyncio.to_thread(
                    self._email_sender, self._smtp, recipient, event.subject, body, self._dispatch_timeout
                )
        except Exception as exc:
            WARNING_DISPATCH_TOTAL.labels(channel=Channel.EMAIL, status="error").inc()
            error = str(exc) or exc.__class__.__name__
            _ = self._log.append(f"Failed to send warning email: {error}", "error")
            return [ChannelResult(Channel.EMAIL, recipient, ok=False, error=error)]

        WARNING_DISPATCH_TOTAL.labels(channel=Channel.EMAIL, status="success").inc()
        _ = self._log.append(f"Warning email sent to {recipient}")
        return [ChannelResult(Channel.EMAIL, recipient, ok=True)]

    async def _send_webhooks(self, event: WarningEvent, log_lines: list[str]) -> list[ChannelResult]:
        payload = build_payload(event.timestamp.isoformat(), event.reason, log_lines)
        results: list[ChannelResult] = []

        async with self._client_factory() as client:
            for route in self._settings.post_request_routes:
                try:
                    async with asyncio.timeout(self._dispatch_timeout):
                        _ = await post_warning(client, route, payload, auth_headers(self._auth))
                except Exception as exc:
                    WARNING_DISPATCH_TOTAL.labels(channel=Channel.WEBHOOK, status="error").inc()
                    error = str(exc) or exc.__class__.__name__
                    _ = self._log.append(f"Failed to send POST warning to {route}: {error}", "error")
                    results.append(ChannelResult(Channel.WEBHOOK, route, ok=False, error=error))
                    continue
                WARNING_DISPATCH_TOTAL.labels(channel=Channel.WEBHOOK, status="success").inc()
                _ = self._log.append(f"Sent POST warning to {route}")
                results.append(ChannelResult(Channel.WEBHOOK, route, ok=True))
        return results
