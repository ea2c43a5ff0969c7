"""Uptime monitoring: per-endpoint probes and the Up/Down state machine.

An endpoint goes Down only after more than ``downtime_tolerance`` failed
checks in a row, and a warning is sent once per Up→Down transition. The
first successful check brings it back Up (logged, not alerted).
"""

import asyncio
import dataclasses
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from src.document import StationConfig
from src.notify.notifier import Notifier, WarningEvent
from src.observability.metrics import ENDPOINT_UP, UPTIME_CHECKS_TOTAL, UPTIME_PROBE_DURATION
from src.store.internal_log import InternalLog

logger = logging.getLogger(__name__)


class State(enum.StrEnum):
    UP = "up"
    DOWN = "down"


@dataclass
class MonitoredEndpoint:
    description: str
    url: str
    check_interval: timedelta
    downtime_tolerance: int
    consecutive_failures: int = 0
    current_state: State = State.UP
    last_checked_at: datetime | None = None
    next_check_at: datetime | None = None
    last_error: str | None = None

    @property
    def name(self) -> str:
        return self.description or self.url


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    status_code: int | None
    error: str | None
    latency_ms: int


async def probe(client: httpx.AsyncClient, url: str, timeout: float) -> ProbeResult:
    """Send one GET to ``url``. Success means a 2xx status; errors and timeouts are failures."""
    started = time.monotonic()
    status_code: int | None = None
    error: str | None = None
    try:
        async with asyncio.timeout(timeout):
            response = await client.get(url, timeout=timeout)
        status_code = response.status_code
        if not response.is_success:
            error = f"HTTP {status_code}"
    except (TimeoutError, httpx.TimeoutException):
        error = "timeout"
    except httpx.ConnectError:
        error = "connect_error"
    except httpx.HTTPError as exc:
        error = exc.__class__.__name__.lower()

    elapsed = time.monotonic() - started
    UPTIME_PROBE_DURATION.observe(elapsed)
    return ProbeResult(
        ok=error is None,
        status_code=status_code,
        error=error,
        latency_ms=int(elapsed * 1000),
    )


def endpoints_from_config(config: StationConfig) -> list[MonitoredEndpoint]:
    defaults = config.url_uptime_settings
    return [
        MonitoredEndpoint(
            description=entry.description,
            url=entry.url,
            check_interval=timedelta(minutes=entry.interval_minutes or defaults.interval_minutes),
            downtime_tolerance=(
                entry.downtime_tolerance if entry.downtime_tolerance is not None else defaults.downtime_tolerance
            ),
        )
        for entry in config.urls
    ]


class UptimeMonitor:
    def __init__(
        self,
        endpoints: list[MonitoredEndpoint],
        notifier: Notifier,
        internal_log: InternalLog,
        *,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        probe_timeout: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._endpoints = endpoints
        self._notifier = notifier
        self._log = internal_log
        self._probe_timeout = probe_timeout
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(follow_redirects=True))
        self._clock = clock or (lambda: datetime.now(UTC))
        for endpoint in endpoints:
            ENDPOINT_UP.labels(endpoint=endpoint.name).set(1.0)

    @property
    def endpoints(self) -> list[MonitoredEndpoint]:
        """Snapshot copies of every endpoint's current state."""
        return [dataclasses.replace(e) for e in self._endpoints]

    def due_endpoints(self, now: datetime) -> list[MonitoredEndpoint]:
        return [e for e in self._endpoints if e.next_check_at is None or e.next_check_at <= now]

    async def check(self, endpoint: MonitoredEndpoint, scheduled_at: datetime | None = None) -> State:
        """Probe one endpoint and advance its state machine.

        The next check is due one interval after ``scheduled_at`` (the tick that
        started this check), so probe latency never shifts the cadence.
        """
        scheduled_at = scheduled_at or self._clock()
        async with self._client_factory() as client:
            result = await probe(client, endpoint.url, self._probe_timeout)

        now = self._clock()
        endpoint.last_checked_at = now
        endpoint.next_check_at = scheduled_at + endpoint.check_interval

        if result.ok:
            UPTIME_CHECKS_TOTAL.labels(endpoint=endpoint.name, result="up").inc()
            endpoint.consecutive_failures = 0
            endpoint.last_error = None
            if endpoint.current_state == State.DOWN:
                endpoint.current_state = State.UP
                _ = self._log.append(f"{endpoint.name} is back up")
            ENDPOINT_UP.labels(endpoint=endpoint.name).set(1.0)
            return endpoint.current_state

        UPTIME_CHECKS_TOTAL.labels(endpoint=endpoint.name, result="down").inc()
        endpoint.consecutive_failures += 1
        endpoint.last_error = result.error
        _ = self._log.append(f"{endpoint.name} is down: {result.error}", "warning")

        if endpoint.current_state == State.UP and endpoint.consecutive_failures > endpoint.downtime_tolerance:
            endpoint.current_state = State.DOWN
            ENDPOINT_UP.labels(endpoint=endpoint.name).set(0.0)
            _ = await self._notifier.notify(
                WarningEvent(
                    subject="Uptime check failed",
                    reason=(
                        f"Uptime check failed. URL down: {endpoint.name} ({endpoint.url}) after "
                        f"{endpoint.consecutive_failures} failed checks, last error: {result.error}"
                    ),
                    timestamp=now,
                )
            )
        return endpoint.current_state

    async def check_many(
        self, endpoints: list[MonitoredEndpoint], scheduled_at: datetime | None = None
    ) -> dict[str, State]:
        """Check endpoints concurrently. One endpoint's failure never affects another."""
        results = await asyncio.gather(*(self._guarded_check(e, scheduled_at) for e in endpoints))
        return {e.name: state for e, state in zip(endpoints, results, strict=True)}

    async def check_all(self) -> dict[str, State]:
        return await self.check_many(self._endpoints)

    async def check_due(self, now: datetime) -> dict[str, State]:
        return await self.check_many(self.due_endpoints(now), now)

    async def _guarded_check(self, endpoint: MonitoredEndpoint, scheduled_at: datetime | None) -> State:
        try:
            return await self.check(endpoint, scheduled_at)
        except Exception:  # pragma: no cover - logging catch-all
            logger.exception("Uptime check crashed for %s", endpoint.url)
            return endpoint.current_state
