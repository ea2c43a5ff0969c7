"""Run the station headless: load config, start the tick scheduler, run forever.

Usage:
    python -m scripts.run_station
"""

import asyncio
import logging
import sys

from src.config import get_settings
from src.engine.scheduler import start_scheduler, stop_scheduler
from src.engine.station import Station

logger = logging.getLogger(__name__)


async def main() -> None:
    """Build the station and keep the scheduler alive until interrupted."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        station = Station.from_settings(settings)
    except Exception as e:
        print(f"Failed to load station: {e}", file=sys.stderr)
        sys.exit(1)

    start_scheduler(station)
    logger.info(
        "Monitoring %d URL(s), %d backup source(s)",
        len(station.endpoint_states()),
        len(station.source_statuses()),
    )
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()
        await station.wait_for_backups()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
