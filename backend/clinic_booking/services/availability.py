from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from ..config import Settings
from ..errors import ExternalUnavailable, InvalidArgument, NotFound
from ..models import Doctor, Reservation
from .business_hours import day_window, local_instant, opening_window
from .calendar_base import CalendarGateway
from .intervals import BusyBlock, TimeInterval, blocks_within, overlaps_any
from .store import BookingStore, reservation_interval

logger = logging.getLogger(__name__)

MAX_DURATION_MINUTES = 24 * 60


def validate_duration(minutes: int) -> int:
    if not isinstance(minutes, int) or isinstance(minutes, bool) or not 0 < minutes <= MAX_DURATION_MINUTES:
        raise InvalidArgument(f"Duration must be between 1 and {MAX_DURATION_MINUTES} minutes, got {minutes!r}")
    return minutes


def calendar_for(doctor: Optional[Doctor]) -> Optional[str]:
    """The doctor's own calendar, or None for the clinic default calendar."""
    return doctor.google_calendar_id if doctor is not None else None


class AvailabilityResolver:
    """
    Read path: merges business hours, live local reservations and the external
    calendar's busy blocks into bookable slots.

    Busy blocks are fetched on every call and never outlive it.
    """

    def __init__(
        self,
        store: BookingStore,
        gateway: CalendarGateway,
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.tz = settings.tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def resolve_doctor(self, name: str) -> Doctor:
        doctor = self.store.get_doctor_by_name(name)
        if doctor is None:
            raise NotFound(f"Doctor {name!r} not found")
        return doctor

    def _busy(self, window: TimeInterval, doctor: Optional[Doctor]) -> List[BusyBlock]:
        cal = calendar_for(doctor)
        try:
            return self.gateway.list_busy(window.start, window.end, cal)
        except ExternalUnavailable:
            logger.warning("Busy blocks unavailable for calendar %s in %s..%s", cal or "default", window.start, window.end)
            raise

    def _booked(self, reservations: Sequence[Reservation]) -> List[TimeInterval]:
        return [reservation_interval(r, self.tz) for r in reservations]

    def free_starts(
        self,
        day: date,
        duration_minutes: int,
        step_minutes: int,
        booked: Sequence[TimeInterval],
        busy: Sequence[BusyBlock],
        doctor: Optional[Doctor] = None,
    ) -> Iterator[time]:
        """Lazily yield free slot starts for one day, ascending."""
        window = opening_window(day, self.tz, doctor)
        if window is None:
            return
        step = timedelta(minutes=step_minutes)
        cursor = window.start
        while cursor < window.end:
            slot = TimeInterval.starting_at(cursor, duration_minutes)
            if slot.end <= window.end and not overlaps_any(slot, booked) and not overlaps_any(slot, busy):
                yield cursor.time()
            cursor += step

    def available_slots(
        self,
        doctor: Optional[Doctor],
        day: date,
        duration_minutes: int,
        step_minutes: Optional[int] = None,
    ) -> List[time]:
        """
        Free start times for ``doctor`` on ``day``. ``doctor=None`` is the
        clinic-wide listing: every doctor's reservations against the default
        calendar. An empty list means nothing is free, including closed days.
        """
        validate_duration(duration_minutes)
        if step_minutes is None:
            step_minutes = self.settings.doctor_slot_step_minutes if doctor else self.settings.slot_step_minutes
        if step_minutes <= 0:
            raise InvalidArgument("Slot step must be positive")

        if opening_window(day, self.tz, doctor) is None:
            return []

        reservations = self.store.list_by_doctor_and_date(doctor.id if doctor else None, day)
        busy = self._busy(day_window(day, self.tz), doctor)
        return list(self.free_starts(day, duration_minutes, step_minutes, self._booked(reservations), busy, doctor))

    def available_dates(self, doctor: Doctor, year: int, month: int) -> List[date]:
        """
        Days of the month, from today on, with at least one free slot of the
        reference duration. One store query and one calendar fetch for the month.
        """
        if not 1 <= month <= 12 or not 1 <= year <= 9998:
            raise InvalidArgument(f"Invalid year/month: {year}-{month}")

        month_start = date(year, month, 1)
        month_end = date(year + (month == 12), month % 12 + 1, 1)
        today = self.today()
        if month_end <= today:
            return []

        booked_by_day: Dict[date, List[TimeInterval]] = defaultdict(list)
        for r in self.store.list_by_doctor_and_date_range(doctor.id, month_start, month_end):
            booked_by_day[r.appointment_date].append(reservation_interval(r, self.tz))

        month_window = TimeInterval(local_instant(month_start, time.min, self.tz), local_instant(month_end, time.min, self.tz))
        busy = self._busy(month_window, doctor)

        duration = self.settings.reference_duration_minutes
        step = self.settings.doctor_slot_step_minutes
        out: List[date] = []
        day = max(month_start, today)
        while day < month_end:
            day_busy = blocks_within(day_window(day, self.tz), busy)
            if next(self.free_starts(day, duration, step, booked_by_day.get(day, []), day_busy, doctor), None) is not None:
                out.append(day)
            day += timedelta(days=1)
        return out

    def is_available(self, doctor: Doctor, day: date, start: time, duration_minutes: int) -> bool:
        """Yes/no verdict for one exact interval against hours, reservations and the calendar."""
        validate_duration(duration_minutes)
        window = opening_window(day, self.tz, doctor)
        wanted = TimeInterval.starting_at(local_instant(day, start, self.tz), duration_minutes)
        if window is None or wanted.start < window.start or wanted.end > window.end:
            return False
        if self.store.find_conflicts(doctor.id, day, start, duration_minutes):
            return False
        return not overlaps_any(wanted, self._busy(wanted, doctor))
