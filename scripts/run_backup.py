"""Back up one source immediately and print the stored record.

Usage:
    python -m scripts.run_backup "nightly-db"
"""

import asyncio
import logging
import sys

from src.config import get_settings
from src.engine.station import Station

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


async def main(description: str) -> None:
    """Run one backup and report the outcome."""
    try:
        station = Station.from_settings(get_settings())
    except Exception as e:
        print(f"Failed to load station: {e}", file=sys.stderr)
        sys.exit(1)

    outcome = await station.trigger_backup_now(description)
    if not outcome.ok or outcome.record is None:
        print(f"Backup failed: {outcome.error}", file=sys.stderr)
        sys.exit(1)
    print(f"{outcome.record['filename']} ({outcome.record['size']} bytes) at {outcome.record['timestamp']}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__, file=sys.stderr)
        sys.exit(2)
    asyncio.run(main(sys.argv[1]))
