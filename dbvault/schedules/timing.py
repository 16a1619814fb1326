"""Next-run arithmetic for daily, weekly and monthly backup schedules.

All times are naive UTC datetimes, matching how the metadata store keeps
timestamps. Runs always start on the hour.
"""

import calendar
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class ScheduleFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _on_day(moment: datetime, day: int) -> datetime:
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return moment.replace(day=min(day, last_day))


def _first_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return moment.replace(year=moment.year + 1, month=1, day=1)
    return moment.replace(month=moment.month + 1, day=1)


def next_run_at(
    frequency: ScheduleFrequency | str,
    hour: int,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """First run strictly after ``now``.

    ``day_of_week`` counts from Sunday = 0 and defaults to Sunday.
    ``day_of_month`` defaults to the 1st and is clamped to the month length.
    """
    frequency = ScheduleFrequency(frequency)
    now = now or utcnow()
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)

    if frequency is ScheduleFrequency.DAILY:
        if candidate <= now:
            candidate += timedelta(days=1)

    elif frequency is ScheduleFrequency.WEEKLY:
        target = 0 if day_of_week is None else day_of_week
        current = (candidate.weekday() + 1) % 7  # Python counts from Monday
        days_ahead = (target - current) % 7
        if days_ahead == 0 and candidate <= now:
            days_ahead = 7
        candidate += timedelta(days=days_ahead)

    else:
        day = day_of_month or 1
        candidate = _on_day(candidate, day)
        if candidate <= now:
            candidate = _on_day(_first_of_next_month(candidate), day)

    return candidate


def is_due(scheduled: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if scheduled is None:
        return False
    return scheduled <= (now or utcnow())


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe(
    frequency: ScheduleFrequency | str,
    hour: int,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> str:
    """Human readable form, e.g. ``Every Monday at 03:00 UTC``."""
    frequency = ScheduleFrequency(frequency)
    at = f"{hour:02d}:00 UTC"
    if frequency is ScheduleFrequency.DAILY:
        return f"Daily at {at}"
    if frequency is ScheduleFrequency.WEEKLY:
        return f"Every {WEEKDAY_NAMES[day_of_week or 0]} at {at}"
    return f"Monthly on the {_ordinal(day_of_month or 1)} at {at}"
