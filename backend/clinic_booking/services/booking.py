"""
Write path for reservations.

Creation, rescheduling and cancellation re-validate against live data at the
moment of the write: local reservations first, then the doctor's calendar for
exactly the requested window. Calendar writes are best effort; a failed call
leaves the reservation with ``sync_status=sync_pending`` instead of failing the
request. Store failures always propagate.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import Settings
from ..errors import ExternalUnavailable, InvalidArgument, NotFound, SlotUnavailable, StoreFailure
from ..models import Doctor, Reservation, ReservationStatus, SyncStatus
from ..schemas import BookingCreateRequest, BookingUpdateRequest
from .availability import calendar_for, validate_duration
from .business_hours import local_instant, opening_window
from .calendar_base import CalendarGateway
from .intervals import BusyBlock, TimeInterval, overlaps_any
from .store import BookingStore, reservation_interval

logger = logging.getLogger(__name__)

_METADATA_FIELDS = ("client_name", "client_email", "client_phone", "service_type", "notes")


@dataclass
class BookingResult:
    reservation: Reservation
    sync_status: SyncStatus


@dataclass
class CancelResult:
    reservation: Reservation
    already_cancelled: bool = False


def event_text(values: Dict[str, Any], doctor: Doctor) -> Tuple[str, str]:
    """Summary and description of the calendar event mirroring a reservation."""
    summary = f"{values['service_type']} - {values['client_name']}"
    description = (
        f"Appointment with {doctor.name}\n\n"
        f"Service: {values['service_type']}\n"
        f"Client: {values['client_name']}\n"
        f"Email: {values['client_email']}\n"
        f"Phone: {values.get('client_phone') or 'N/A'}\n\n"
        f"Notes: {values.get('notes') or 'None'}"
    )
    return summary, description


def _metadata(r: Reservation, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    values = {name: getattr(r, name) for name in _METADATA_FIELDS}
    values.update(overrides or {})
    return values


class BookingTransaction:
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

    # helpers

    def _doctor_by_name(self, name: str) -> Doctor:
        doctor = self.store.get_doctor_by_name(name)
        if doctor is None:
            raise NotFound(f"Doctor {name!r} not found")
        return doctor

    def _reservation(self, reservation_id: str) -> Reservation:
        r = self.store.find_by_id(reservation_id)
        if r is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        return r

    def _duration(self, requested: Optional[int], service_type: Optional[str]) -> int:
        if requested is not None:
            return validate_duration(requested)
        if service_type:
            service = self.store.get_service_by_name(service_type)
            if service is not None:
                return service.duration_minutes
        return self.settings.default_duration_minutes

    def _interval(self, doctor: Doctor, day: date, start: time, duration_minutes: int) -> TimeInterval:
        if start.tzinfo is not None:
            raise InvalidArgument("Appointment time is wall-clock time in the clinic timezone; drop the offset")
        wanted = TimeInterval.starting_at(local_instant(day, start, self.tz), duration_minutes)
        if wanted.start < self.clock():
            raise InvalidArgument("Cannot book an appointment in the past")
        hours = opening_window(day, self.tz, doctor)
        if hours is None:
            raise SlotUnavailable(f"The clinic is closed on {day.isoformat()}")
        if wanted.start < hours.start or wanted.end > hours.end:
            raise SlotUnavailable("Requested time is outside business hours")
        return wanted

    def _check_local(self, doctor: Doctor, day: date, start: time, duration_minutes: int, exclude_id: Optional[str] = None) -> None:
        if self.store.find_conflicts(doctor.id, day, start, duration_minutes, exclude_id=exclude_id):
            raise SlotUnavailable("Time slot is not available")

    def _check_calendar(self, cal: str, wanted: TimeInterval, ignore: Optional[TimeInterval] = None) -> bool:
        """
        Re-read the doctor's calendar for exactly ``wanted``. Returns False when the
        calendar could not be read; raises SlotUnavailable on a conflict. ``ignore``
        drops the block of the reservation's own event when rescheduling.
        """
        try:
            busy: List[BusyBlock] = self.gateway.list_busy(wanted.start, wanted.end, cal)
        except ExternalUnavailable as e:
            logger.warning("Could not re-check calendar %s before booking: %s", cal, e)
            return False
        if ignore is not None and ignore in busy:
            # only the reservation's own event; another event at the same time still counts
            busy = list(busy)
            busy.remove(ignore)
        if overlaps_any(wanted, busy):
            raise SlotUnavailable("Time slot no longer available. Please select a different time.")
        return True

    def _discard_event(self, event_id: str, cal: Optional[str]) -> None:
        try:
            self.gateway.delete_event(event_id, cal)
        except ExternalUnavailable as e:
            logger.error("Orphaned calendar event %s in %s could not be removed: %s", event_id, cal, e)

    # operations

    def create(self, req: BookingCreateRequest) -> BookingResult:
        doctor = self._doctor_by_name(req.doctor_name)
        duration = self._duration(req.duration, req.service_type)
        wanted = self._interval(doctor, req.appointment_date, req.appointment_time, duration)

        # 1. local reservations
        self._check_local(doctor, req.appointment_date, req.appointment_time, duration)

        reservation = Reservation(
            id="res_" + uuid.uuid4().hex[:12],
            doctor_id=doctor.id,
            appointment_date=req.appointment_date,
            appointment_time=req.appointment_time,
            duration_minutes=duration,
            status=ReservationStatus.pending,
            client_name=req.client_name,
            client_email=req.client_email,
            client_phone=req.client_phone,
            service_type=req.service_type or "General Consultation",
            notes=req.notes,
        )

        # 2. + 3. doctor's calendar
        cal = calendar_for(doctor)
        event_id: Optional[str] = None
        if not cal:
            logger.info("Doctor %s has no calendar configured", doctor.name)
            sync_status = SyncStatus.no_calendar
        elif not self._check_calendar(cal, wanted):
            sync_status = SyncStatus.sync_pending
        else:
            try:
                summary, description = event_text(_metadata(reservation), doctor)
                event_id = self.gateway.insert_event(cal, summary, description, wanted)
                sync_status = SyncStatus.synced
            except ExternalUnavailable as e:
                logger.warning("Calendar event for %s %s not created, marking sync pending: %s", doctor.name, wanted.start, e)
                sync_status = SyncStatus.sync_pending

        # 4. persist
        reservation.status = ReservationStatus.confirmed
        reservation.sync_status = sync_status
        reservation.calendar_id = cal
        reservation.external_event_id = event_id
        try:
            self.store.insert(reservation)
        except (SlotUnavailable, StoreFailure):
            if event_id:
                self._discard_event(event_id, cal)
            raise

        logger.info("Booked %s with %s at %s (%s)", reservation.id, doctor.name, wanted.start, sync_status.value)
        return BookingResult(reservation, sync_status)

    def cancel(self, reservation_id: str) -> CancelResult:
        r = self._reservation(reservation_id)
        if r.status == ReservationStatus.cancelled:
            return CancelResult(r, already_cancelled=True)

        fields: Dict[str, Any] = {"status": ReservationStatus.cancelled}
        if r.external_event_id:
            try:
                self.gateway.delete_event(r.external_event_id, r.calendar_id)
            except ExternalUnavailable as e:
                # the event id is kept so a later sync can still remove it
                logger.error("Failed to delete calendar event %s for %s: %s", r.external_event_id, r.id, e)
                fields["sync_status"] = SyncStatus.sync_pending

        r = self.store.update_fields(r.id, **fields)
        logger.info("Cancelled reservation %s", r.id)
        return CancelResult(r)

    def update(self, reservation_id: str, changes: BookingUpdateRequest) -> BookingResult:
        r = self._reservation(reservation_id)
        if r.status == ReservationStatus.cancelled:
            raise InvalidArgument("A cancelled reservation cannot be changed")

        current_doctor = self.store.get_doctor(r.doctor_id)
        if current_doctor is None:
            raise NotFound(f"Doctor {r.doctor_id} not found")
        doctor = self._doctor_by_name(changes.doctor_name) if changes.doctor_name else current_doctor

        day = changes.appointment_date or r.appointment_date
        start = changes.appointment_time or r.appointment_time
        duration = validate_duration(changes.duration) if changes.duration is not None else r.duration_minutes

        fields: Dict[str, Any] = {
            name: getattr(changes, name) for name in _METADATA_FIELDS if getattr(changes, name) is not None
        }
        slot_changed = (doctor.id, day, start, duration) != (r.doctor_id, r.appointment_date, r.appointment_time, r.duration_minutes)
        if not fields and not slot_changed:
            return BookingResult(r, r.sync_status)

        old_interval = reservation_interval(r, self.tz)
        wanted = old_interval
        new_cal = calendar_for(doctor)
        has_own_event = bool(r.external_event_id) and r.calendar_id == new_cal
        calendar_ok = True
        if slot_changed:
            wanted = self._interval(doctor, day, start, duration)
            self._check_local(doctor, day, start, duration, exclude_id=r.id)
            if new_cal:
                own_block = old_interval if has_own_event else None
                calendar_ok = self._check_calendar(new_cal, wanted, ignore=own_block)
            fields.update(doctor_id=doctor.id, appointment_date=day, appointment_time=start, duration_minutes=duration)
        elif new_cal and not has_own_event:
            # an event is about to be written for an unchanged slot
            try:
                calendar_ok = self._check_calendar(new_cal, wanted)
            except SlotUnavailable:
                logger.warning("Calendar %s is busy at %s; %s stays sync pending", new_cal, wanted.start, r.id)
                calendar_ok = False

        text = event_text(_metadata(r, fields), doctor)
        sync_status, event_id, undo, cleanup = self._mirror_update(r, text, wanted, old_interval, new_cal, calendar_ok)
        fields.update(sync_status=sync_status, calendar_id=new_cal, external_event_id=event_id)

        try:
            r = self.store.update_fields(r.id, **fields)
        except (SlotUnavailable, StoreFailure):
            for step in undo:
                step()
            raise
        for step in cleanup:
            step()

        logger.info("Updated reservation %s (%s)", r.id, sync_status.value)
        return BookingResult(r, sync_status)

    def _mirror_update(
        self,
        r: Reservation,
        text: Tuple[str, str],
        wanted: TimeInterval,
        old_interval: TimeInterval,
        new_cal: Optional[str],
        calendar_ok: bool,
    ) -> Tuple[SyncStatus, Optional[str], List[Callable[[], None]], List[Callable[[], None]]]:
        """
        Bring the calendar mirror in line with the changed reservation.

        Returns the sync status, the event id to store, compensations to run if
        the persist fails, and cleanups to run once it has succeeded.
        """
        undo: List[Callable[[], None]] = []
        cleanup: List[Callable[[], None]] = []
        old_event, old_cal = r.external_event_id, r.calendar_id

        if old_event and old_cal != new_cal:
            # the old event keeps blocking its calendar until the move is persisted
            stale_event, stale_cal = old_event, old_cal
            cleanup.append(lambda: self._discard_event(stale_event, stale_cal))
            old_event = None
        if not new_cal:
            return SyncStatus.no_calendar, None, undo, cleanup
        if not calendar_ok:
            return SyncStatus.sync_pending, old_event, undo, cleanup

        summary, description = text
        if old_event:
            try:
                self.gateway.update_event(old_event, new_cal, summary=summary, description=description, interval=wanted)
            except ExternalUnavailable as e:
                logger.warning("Calendar event %s not updated, marking sync pending: %s", old_event, e)
                return SyncStatus.sync_pending, old_event, undo, cleanup

            def restore() -> None:
                try:
                    self.gateway.update_event(old_event, new_cal, interval=old_interval)
                except ExternalUnavailable as e:
                    logger.error("Calendar event %s could not be moved back to %s: %s", old_event, old_interval.start, e)

            undo.append(restore)
            return SyncStatus.synced, old_event, undo, cleanup

        try:
            event_id = self.gateway.insert_event(new_cal, summary, description, wanted)
        except ExternalUnavailable as e:
            logger.warning("Calendar event for %s not created, marking sync pending: %s", r.id, e)
            return SyncStatus.sync_pending, None, undo, cleanup
        undo.append(lambda: self._discard_event(event_id, new_cal))
        return SyncStatus.synced, event_id, undo, cleanup
