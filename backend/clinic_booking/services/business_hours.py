from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from ..errors import InvalidArgument
from ..models import Doctor
from .intervals import TimeInterval


@dataclass(frozen=True)
class BusinessHours:
    open_hour: int
    close_hour: int


# 0=Mon ... 6=Sun; a missing weekday means closed
WEEKLY_HOURS: Dict[int, BusinessHours] = {
    0: BusinessHours(9, 17),
    1: BusinessHours(9, 17),
    2: BusinessHours(9, 17),
    3: BusinessHours(9, 17),
    4: BusinessHours(9, 17),
    5: BusinessHours(10, 15),
}


def _require_date(day) -> date:
    # datetime is a date subclass; a datetime here means the caller skipped tz conversion
    if not isinstance(day, date) or isinstance(day, datetime):
        raise InvalidArgument(f"Expected a calendar date, got {day!r}")
    return day


def hours_for(day: date, doctor: Optional[Doctor] = None) -> Optional[BusinessHours]:
    """
    Opening hours for a calendar date in the clinic timezone, or None when closed.
    The table is clinic-wide; ``doctor`` is accepted so per-doctor schedules can
    slot in without changing callers.
    """
    return WEEKLY_HOURS.get(_require_date(day).weekday())


def local_instant(day: date, at: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=tz)


def day_window(day: date, tz: ZoneInfo) -> TimeInterval:
    """[00:00, next day 00:00) of ``day`` in clinic time."""
    _require_date(day)
    return TimeInterval(
        local_instant(day, time.min, tz),
        local_instant(day + timedelta(days=1), time.min, tz),
    )


def opening_window(day: date, tz: ZoneInfo, doctor: Optional[Doctor] = None) -> Optional[TimeInterval]:
    hours = hours_for(day, doctor)
    if hours is None:
        return None
    return TimeInterval(
        local_instant(day, time(hours.open_hour), tz),
        local_instant(day, time(hours.close_hour), tz),
    )
