"""Local calendar at a fixed UTC+05:30 offset."""

from datetime import date, datetime, timezone

from coarc.gamification.day_utils import (
    local_date,
    local_day_start_utc,
    local_hour,
    local_today,
    local_yesterday,
    week_start,
)

IST = 330


class TestLocalCalendar:
    def test_day_rolls_over_at_local_midnight(self):
        # 18:29 UTC is 23:59 local, 18:30 UTC is the next local day
        assert local_date(datetime(2026, 3, 10, 18, 29, tzinfo=timezone.utc), IST) == date(2026, 3, 10)
        assert local_date(datetime(2026, 3, 10, 18, 30, tzinfo=timezone.utc), IST) == date(2026, 3, 11)

    def test_naive_datetimes_are_utc(self):
        assert local_hour(datetime(2026, 3, 10, 20, 0), IST) == 1

    def test_today_and_yesterday(self):
        now = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)
        assert local_today(IST, now) == date(2026, 3, 1)
        assert local_yesterday(IST, now) == date(2026, 2, 28)

    def test_week_starts_monday(self):
        assert week_start(date(2026, 3, 10)) == date(2026, 3, 9)
        assert week_start(date(2026, 3, 9)) == date(2026, 3, 9)
        assert week_start(date(2026, 3, 15)) == date(2026, 3, 9)

    def test_local_day_start_in_utc(self):
        assert local_day_start_utc(date(2026, 3, 10), IST) == datetime(2026, 3, 9, 18, 30, tzinfo=timezone.utc)
