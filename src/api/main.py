"""FastAPI surface for the station.

Exposes the manual triggers (check all URLs, back up a source now, restore a
stored backup), the schedule toggle and read-only state for any dashboard.
The station is built once at startup and ticked by the scheduler.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from src.config import get_settings
from src.engine.scheduler import start_scheduler, stop_scheduler
from src.engine.station import BackupOutcome, Station
from src.errors import UnknownSourceError
from src.observability.metrics import APP_INFO
from src.uptime.monitor import MonitoredEndpoint, State

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class EndpointStateResponse(BaseModel):
    description: str
    url: str
    state: str
    consecutive_failures: int
    downtime_tolerance: int
    last_checked_at: datetime | None = None
    next_check_at: datetime | None = None
    last_error: str | None = None


class BackupRecordResponse(BaseModel):
    filename: str
    timestamp: str
    size: int


class SourceStatusResponse(BaseModel):
    description: str
    url: str
    interval: str
    max_retained: int
    stored: int
    last_backup: str | None
    next_backup_in: str
    running: bool


class LogEntryResponse(BaseModel):
    timestamp: str
    severity: str
    message: str


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    endpoints_up: int
    endpoints_down: int
    backups_enabled: bool
    warnings_sent_today: int


class RestoreRequest(BaseModel):
    filename: str


class RestoreResponse(BaseModel):
    description: str
    filename: str


class ScheduleRequest(BaseModel):
    enabled: bool


class ScheduleResponse(BaseModel):
    backups_enabled: bool


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the station once at startup, tear down on shutdown."""
    settings = get_settings()
    APP_INFO.info({"version": "0.1.0"})

    logger.info("Loading station from %s", settings.config_path)
    try:
        station = Station.from_settings(settings)
        app.state.station = station
    except Exception:
        logger.exception("Failed to build station at startup")
        raise

    start_scheduler(station)
    yield
    stop_scheduler()
    logger.info("Shutting down WebSync Station")


app = FastAPI(title="WebSync Station", lifespan=lifespan)


def _station() -> Station:
    station: Station = app.state.station
    return station


def _endpoint_response(endpoint: MonitoredEndpoint) -> EndpointStateResponse:
    return EndpointStateResponse(
        description=endpoint.description,
        url=endpoint.url,
        state=endpoint.current_state.value,
        consecutive_failures=endpoint.consecutive_failures,
        downtime_tolerance=endpoint.downtime_tolerance,
        last_checked_at=endpoint.last_checked_at,
        next_check_at=endpoint.next_check_at,
        last_error=endpoint.last_error,
    )


def _raise_for_outcome(outcome: BackupOutcome) -> None:
    if outcome.ok:
        return
    if outcome.unknown:
        raise HTTPException(status_code=404, detail=outcome.error)
    if outcome.busy:
        raise HTTPException(status_code=409, detail=outcome.error)
    if outcome.rejected:
        raise HTTPException(status_code=400, detail=outcome.error)
    raise HTTPException(status_code=502, detail=outcome.error)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    station = _station()
    endpoints = station.endpoint_states()
    down = sum(1 for e in endpoints if e.current_state == State.DOWN)
    return HealthResponse(
        status="degraded" if down else "healthy",
        endpoints_up=len(endpoints) - down,
        endpoints_down=down,
        backups_enabled=station.backups_enabled,
        warnings_sent_today=station.notifier.quota.sent_today,
    )


@app.get("/endpoints", response_model=list[EndpointStateResponse])
async def endpoints() -> list[EndpointStateResponse]:
    return [_endpoint_response(e) for e in _station().endpoint_states()]


@app.post("/check", response_model=list[EndpointStateResponse])
async def check_all() -> list[EndpointStateResponse]:
    """Check every URL now, outside the regular cadence."""
    station = _station()
    _ = await station.trigger_check_all()
    return [_endpoint_response(e) for e in station.endpoint_states()]


@app.get("/backups", response_model=list[SourceStatusResponse])
async def backups() -> list[SourceStatusResponse]:
    return [SourceStatusResponse(**vars(s)) for s in _station().source_statuses()]


@app.get("/backups/{description}/history", response_model=list[BackupRecordResponse])
async def backup_history(description: str) -> list[BackupRecordResponse]:
    try:
        records = _station().history(description)
    except UnknownSourceError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [BackupRecordResponse(**r) for r in records]


@app.post("/backups/{description}", response_model=BackupRecordResponse)
async def backup_now(description: str) -> BackupRecordResponse:
    """Back up one source now, bypassing its schedule."""
    outcome = await _station().trigger_backup_now(description)
    _raise_for_outcome(outcome)
    assert outcome.record is not None
    return BackupRecordResponse(**outcome.record)


@app.post("/backups/{description}/restore", response_model=RestoreResponse)
async def restore(description: str, request: RestoreRequest) -> RestoreResponse:
    outcome = await _station().restore_backup(description, request.filename)
    _raise_for_outcome(outcome)
    return RestoreResponse(description=description, filename=request.filename)


@app.put("/schedule", response_model=ScheduleResponse)
async def schedule(request: ScheduleRequest) -> ScheduleResponse:
    """Enable or disable automatic backups. Manual triggers always work."""
    station = _station()
    station.set_backups_enabled(request.enabled)
    return ScheduleResponse(backups_enabled=station.backups_enabled)


@app.get("/log", response_model=list[LogEntryResponse])
async def log(limit: int = 100) -> list[LogEntryResponse]:
    return [LogEntryResponse(**e) for e in _station().log_tail(limit)]
