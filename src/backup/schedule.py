"""Backup due-ness from interval + time-of-day rules.

A source is due when the current UTC time-of-day has passed its configured
minute AND at least one interval has elapsed since its last successful
backup. The last success comes from the persisted history, so the schedule
survives restarts. Monthly is a fixed 30 days.

"Elapsed" is measured with a ``TICK_GRACE`` allowance: a Daily source counts
as due once 23h59m have passed since its last success, not a full 24h, so a
run that finished a few seconds after its slot is due again at the next slot.
"""

from datetime import UTC, datetime, timedelta

from src.document import BackupSourceConfig, Interval

INTERVAL_DURATIONS: dict[Interval, timedelta] = {
    Interval.HOURLY: timedelta(hours=1),
    Interval.DAILY: timedelta(days=1),
    Interval.WEEKLY: timedelta(days=7),
    Interval.MONTHLY: timedelta(days=30),
}

# Absorbs tick jitter so a backup that finished a few seconds after its slot
# does not push the next run one tick later every cycle.
TICK_GRACE = timedelta(seconds=60)

MINUTES_PER_DAY = 24 * 60


def slot_minute(interval: Interval, time_of_day: int) -> int:
    """Minute within the hour (hourly) or within the day (everything else)."""
    if interval == Interval.HOURLY:
        return time_of_day % 60
    return time_of_day % MINUTES_PER_DAY


def slot_reached(interval: Interval, time_of_day: int, now: datetime) -> bool:
    utc_now = now.astimezone(UTC)
    slot = slot_minute(interval, time_of_day)
    if interval == Interval.HOURLY:
        return utc_now.minute >= slot
    return utc_now.hour * 60 + utc_now.minute >= slot


def due_check(source: BackupSourceConfig, now: datetime, last_success: datetime | None) -> bool:
    """Whether ``source`` should be backed up at ``now``."""
    if not slot_reached(source.interval, source.time_of_day, now):
        return False
    if last_success is None:
        return True
    return now - last_success >= INTERVAL_DURATIONS[source.interval] - TICK_GRACE


def next_due_at(source: BackupSourceConfig, now: datetime, last_success: datetime | None) -> datetime:
    """Earliest moment at or after ``now`` when ``source`` becomes due."""
    earliest = now.astimezone(UTC)
    if last_success is not None:
        earliest = max(earliest, last_success.astimezone(UTC) + INTERVAL_DURATIONS[source.interval] - TICK_GRACE)

    if slot_reached(source.interval, source.time_of_day, earliest):
        return earliest

    # The slot is still ahead within the same hour/day
    slot = slot_minute(source.interval, source.time_of_day)
    if source.interval == Interval.HOURLY:
        return earliest.replace(minute=slot, second=0, microsecond=0)
    return earliest.replace(hour=slot // 60, minute=slot % 60, second=0, microsecond=0)


def time_until_due(source: BackupSourceConfig, now: datetime, last_success: datetime | None) -> timedelta:
    return max(next_due_at(source, now, last_success) - now, timedelta(0))


def format_time_left(delta: timedelta) -> str:
    """Coarse human-readable countdown, e.g. ``"3 hours."``."""
    minutes = int(delta.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes} minutes."
    if minutes < MINUTES_PER_DAY:
        return f"{minutes // 60} hours."
    if minutes < 7 * MINUTES_PER_DAY:
        return f"{minutes // MINUTES_PER_DAY} days."
    return f"{minutes // (7 * MINUTES_PER_DAY)} weeks."
