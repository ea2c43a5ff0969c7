"""APScheduler integration for the station tick.

Uses AsyncIOScheduler with CronTrigger to fire ``Station.tick`` once per
minute (configurable).  A tick that is still running when the next one is due
is skipped rather than stacked; backups started by a tick run in the
background, so in practice only slow uptime probes can cause a skip.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from src.config import get_settings
from src.engine.station import Station

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _tick_job(station: Station) -> None:
    """Async job executed by the scheduler. Exceptions never escape a tick."""
    try:
        await station.tick()
    except Exception:
        logger.exception("Station tick failed")


def start_scheduler(station: Station) -> None:
    """Start the APScheduler tick for ``station``. Restarts it if already running."""
    global _scheduler  # noqa: PLW0603

    stop_scheduler()
    settings = get_settings()
    if not settings.tick_cron:
        logger.info("Station scheduler disabled (TICK_CRON not set)")
        return

    trigger = CronTrigger.from_crontab(settings.tick_cron)
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _tick_job,
        trigger=trigger,
        args=[station],
        id="station_tick",
        name="Station tick",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info("Station scheduler started with cron: %s", settings.tick_cron)


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Station scheduler stopped")
        _scheduler = None
