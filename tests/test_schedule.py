"""Tests for backup due-ness and the time-left countdown."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from src.backup.schedule import (
    TICK_GRACE,
    due_check,
    format_time_left,
    next_due_at,
    slot_minute,
    time_until_due,
)
from src.document import BackupSourceConfig, Interval


def _source(interval: Interval = Interval.DAILY, time_of_day: int = 120) -> BackupSourceConfig:
    return BackupSourceConfig(
        description="nightly-db",
        url="https://site.test/backup",
        interval=interval,
        time_of_day=time_of_day,
    )


def _at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


class TestSlotMinute:
    def test_hourly_uses_minute_of_hour(self) -> None:
        assert slot_minute(Interval.HOURLY, 125) == 5

    def test_daily_uses_minute_of_day(self) -> None:
        assert slot_minute(Interval.DAILY, 725) == 725
        assert slot_minute(Interval.WEEKLY, 1440 + 30) == 30


class TestDueCheck:
    def test_never_backed_up_and_slot_passed(self) -> None:
        assert due_check(_source(time_of_day=120), _at(2, 0), None) is True

    def test_never_backed_up_before_slot(self) -> None:
        assert due_check(_source(time_of_day=120), _at(1, 59), None) is False

    def test_23_hours_after_last_success_not_due(self) -> None:
        last = _at(2, 0, day=9)

        assert due_check(_source(), last + timedelta(hours=23), last) is False

    def test_24_hours_after_last_success_due(self) -> None:
        last = _at(2, 0, day=9)

        assert due_check(_source(), last + timedelta(hours=24), last) is True

    def test_interval_elapsed_but_slot_not_reached(self) -> None:
        # Interval long elapsed, but it is still before the 02:00 slot
        last = _at(1, 0, day=8)

        assert due_check(_source(), _at(1, 30, day=10), last) is False

    def test_slot_jitter_within_grace(self) -> None:
        last = _at(2, 0, day=9) + timedelta(seconds=30)

        assert due_check(_source(), _at(2, 0, day=10), last) is True

    def test_hourly(self) -> None:
        source = _source(Interval.HOURLY, time_of_day=15)
        last = _at(3, 15)

        assert due_check(source, _at(3, 45), last) is False
        assert due_check(source, _at(4, 10), last) is False
        assert due_check(source, _at(4, 15), last) is True

    @pytest.mark.parametrize(
        ("interval", "days"),
        [(Interval.WEEKLY, 7), (Interval.MONTHLY, 30)],
    )
    def test_long_intervals(self, interval: Interval, days: int) -> None:
        source = _source(interval, time_of_day=0)
        last = _at(0, 0, day=1)

        assert due_check(source, last + timedelta(days=days) - TICK_GRACE - timedelta(minutes=1), last) is False
        assert due_check(source, last + timedelta(days=days), last) is True

    def test_non_utc_now_is_converted(self) -> None:
        cest = timezone(timedelta(hours=2))
        # 03:30 CEST is 01:30 UTC, before the 02:00 UTC slot
        now = datetime(2026, 3, 10, 3, 30, tzinfo=cest)

        assert due_check(_source(time_of_day=120), now, None) is False


class TestTimeUntilDue:
    def test_due_now_is_zero(self) -> None:
        assert time_until_due(_source(), _at(3, 0), None) == timedelta(0)

    def test_waits_for_slot(self) -> None:
        assert time_until_due(_source(time_of_day=120), _at(1, 0), None) == timedelta(hours=1)

    def test_waits_for_interval(self) -> None:
        last = _at(2, 0, day=9)
        now = _at(14, 0, day=9)

        assert next_due_at(_source(), now, last) == last + timedelta(days=1)
        assert time_until_due(_source(), now, last) == timedelta(hours=12)

    def test_next_due_is_actually_due(self) -> None:
        source = _source(time_of_day=600)
        last = _at(11, 0, day=9)
        now = _at(12, 0, day=9)

        due = next_due_at(source, now, last)

        assert due_check(source, due, last) is True
        assert due_check(source, due - timedelta(minutes=1), last) is False


class TestFormatTimeLeft:
    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(0), "0 minutes."),
            (timedelta(minutes=59), "59 minutes."),
            (timedelta(hours=3, minutes=20), "3 hours."),
            (timedelta(days=2, hours=5), "2 days."),
            (timedelta(days=15), "2 weeks."),
        ],
    )
    def test_units(self, delta: timedelta, expected: str) -> None:
        assert format_time_left(delta) == expected
