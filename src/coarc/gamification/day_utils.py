"""Local-calendar helpers.

Every "today", "yesterday" and hour-of-day in the gamification layer is
computed at a fixed UTC offset (the community's timezone), never the
server's local time.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def local_tz(offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=offset_minutes))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(moment: datetime, offset_minutes: int) -> datetime:
    """Convert an aware (or naive-UTC) datetime to the local offset."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(local_tz(offset_minutes))


def local_date(moment: datetime, offset_minutes: int) -> date:
    return to_local(moment, offset_minutes).date()


def local_hour(moment: datetime, offset_minutes: int) -> int:
    return to_local(moment, offset_minutes).hour


def local_today(offset_minutes: int, now: datetime | None = None) -> date:
    return local_date(now or utc_now(), offset_minutes)


def local_yesterday(offset_minutes: int, now: datetime | None = None) -> date:
    return local_today(offset_minutes, now) - timedelta(days=1)


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def local_day_start_utc(day: date, offset_minutes: int) -> datetime:
    """UTC instant at which local ``day`` begins."""
    start = datetime(day.year, day.month, day.day, tzinfo=local_tz(offset_minutes))
    return start.astimezone(timezone.utc)
