"""Interactive CLI for manual triggers and station status.

Usage:
    python -m src.cli

The scheduler is not started here; use ``python -m scripts.run_station``
or the API for unattended operation.
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

HELP = """Commands:
  check                 check every URL now
  status                endpoint states and backup schedule
  backup <description>  back up one source now
  history <description> stored backups of one source
  restore <description> <filename>
  log [n]               last n internal log lines (default 20)
  quit"""


def _print_status(station: Station) -> None:
    print("Endpoints:")
    for e in station.endpoint_states():
        marker = "UP  " if e.current_state.value == "up" else "DOWN"
        print(f"  [{marker}] {e.description or e.url}  failures={e.consecutive_failures}")
    print(f"Backups ({'enabled' if station.backups_enabled else 'disabled'}):")
    for s in station.source_statuses():
        last = s.last_backup or "never"
        print(f"  {s.description}: {s.stored}/{s.max_retained} stored, last {last}, next in {s.next_backup_in}")


async def _handle(station: Station, command: str, args: list[str]) -> None:
    if command == "check":
        states = await station.trigger_check_all()
        for name, state in states.items():
            print(f"  {name}: {state.value}")
        if not states:
            print("  No URLs configured.")
    elif command == "status":
        _print_status(station)
    elif command == "backup" and len(args) == 1:
        outcome = await station.trigger_backup_now(args[0])
        if outcome.ok and outcome.record is not None:
            print(f"  Stored {outcome.record['filename']} ({outcome.record['size']} bytes)")
        else:
            print(f"  Backup failed: {outcome.error}")
    elif command == "history" and len(args) == 1:
        try:
            records = station.history(args[0])
        except Exception as e:
            print(f"  {e}")
            return
        for r in records:
            print(f"  {r['timestamp']}  {r['filename']}  {r['size'] / 1000:.1f} KB")
        if not records:
            print("  No backups stored.")
    elif command == "restore" and len(args) == 2:
        outcome = await station.restore_backup(args[0], args[1])
        print("  Restored." if outcome.ok else f"  Restore failed: {outcome.error}")
    elif command == "log":
        limit = int(args[0]) if args and args[0].isdigit() else 20
        for entry in station.log_tail(limit):
            print(f"  {entry['timestamp']} - {entry['message']}")
    else:
        print(HELP)


async def _repl(station: Station) -> None:
    while True:
        try:
            line = (await asyncio.to_thread(input, "station> ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if not line:
            continue
        command, *args = line.split()
        if command.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            break

        try:
            await _handle(station, command.lower(), args)
        except Exception as e:
            print(f"\nError: {e}\n")


def main() -> None:
    """Run the interactive CLI loop."""
    print("WebSync Station (type 'help', 'quit' or Ctrl+C to exit)")
    print("=" * 50)

    try:
        station = Station.from_settings(get_settings())
    except Exception as e:
        print(f"Failed to load station: {e}")
        print("Check config.toml, or delete it to regenerate the default.")
        sys.exit(1)

    asyncio.run(_repl(station))


if __name__ == "__main__":
    main()
