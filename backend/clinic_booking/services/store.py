from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, List, Optional, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from ..errors import NotFound, SlotUnavailable, StoreFailure
from ..models import Doctor, Reservation, ReservationStatus, Service, utcnow
from .intervals import TimeInterval, overlaps

logger = logging.getLogger(__name__)

_SLOT_FIELDS = {"doctor_id", "appointment_date", "appointment_time", "duration_minutes"}


def reservation_interval(r: Reservation, tz: ZoneInfo) -> TimeInterval:
    return TimeInterval.starting_at(
        datetime.combine(r.appointment_date, r.appointment_time, tzinfo=tz), r.duration_minutes
    )


class BookingStore(Protocol):
    def insert(self, reservation: Reservation) -> str: ...
    def find_by_id(self, reservation_id: str) -> Optional[Reservation]: ...
    def list_by_doctor_and_date(self, doctor_id: Optional[str], day: date, include_cancelled: bool = False) -> List[Reservation]: ...
    def list_by_doctor_and_date_range(self, doctor_id: Optional[str], start: date, end: date, include_cancelled: bool = False) -> List[Reservation]: ...
    def find_conflicts(self, doctor_id: str, day: date, start: time, duration_minutes: int, exclude_id: Optional[str] = None) -> List[Reservation]: ...
    def update_status(self, reservation_id: str, status: ReservationStatus) -> Reservation: ...
    def update_fields(self, reservation_id: str, **fields: Any) -> Reservation: ...
    def get_doctor(self, doctor_id: str) -> Optional[Doctor]: ...
    def get_doctor_by_name(self, name: str) -> Optional[Doctor]: ...
    def get_service_by_name(self, name: str) -> Optional[Service]: ...


class SqlBookingStore(BookingStore):
    """
    BookingStore over a SQLModel session.

    Writes take a per-doctor write lock (FOR UPDATE on the doctor row, or
    BEGIN IMMEDIATE on SQLite, which has no row locks), then re-check overlap
    and write in that same transaction, so concurrent writers for one doctor
    are serialized. The partial unique index on live (doctor, date, start)
    rows is the last line. Every rejection surfaces as SlotUnavailable.
    """

    def __init__(self, session: Session, tz: ZoneInfo) -> None:
        self.session = session
        self.tz = tz

    def _commit(self, action: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning("Constraint rejected %s: %s", action, e.orig)
            raise SlotUnavailable("Time slot was taken by a concurrent booking") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Database failure during %s", action)
            raise StoreFailure(f"Database failure during {action}") from e

    def _exec(self, stmt) -> List[Any]:
        try:
            return list(self.session.exec(stmt).all())
        except SQLAlchemyError as e:
            logger.exception("Database query failed")
            raise StoreFailure("Database query failed") from e

    def _get(self, model, key: str):
        try:
            return self.session.get(model, key)
        except SQLAlchemyError as e:
            logger.exception("Loading %s %s failed", model.__name__, key)
            raise StoreFailure(f"Failed to load {model.__name__}") from e

    def _lock_doctor(self, doctor_id: str) -> None:
        """Hold the doctor's write lock until the next commit or rollback."""
        try:
            conn = self.session.connection()
            if conn.dialect.name == "sqlite":
                if not conn.connection.driver_connection.in_transaction:
                    conn.exec_driver_sql("BEGIN IMMEDIATE")
            else:
                self.session.exec(select(Doctor).where(Doctor.id == doctor_id).with_for_update()).first()
        except OperationalError as e:
            self.session.rollback()
            logger.warning("Could not lock doctor %s for booking: %s", doctor_id, e.orig)
            raise SlotUnavailable("Another booking for this doctor is in progress, please retry") from e

    def _overlapping(self, doctor_id: str, day: date, start: time, duration_minutes: int, exclude_id: Optional[str] = None) -> List[Reservation]:
        wanted = TimeInterval.starting_at(datetime.combine(day, start, tzinfo=self.tz), duration_minutes)
        return [
            r for r in self.list_by_doctor_and_date(doctor_id, day)
            if r.id != exclude_id and overlaps(wanted, reservation_interval(r, self.tz))
        ]

    # reservations

    def insert(self, reservation: Reservation) -> str:
        self._lock_doctor(reservation.doctor_id)
        if self._overlapping(
            reservation.doctor_id,
            reservation.appointment_date,
            reservation.appointment_time,
            reservation.duration_minutes,
        ):
            self.session.rollback()
            raise SlotUnavailable("Time slot is not available")
        self.session.add(reservation)
        self._commit("reservation insert")
        self.session.refresh(reservation)
        return reservation.id

    def find_by_id(self, reservation_id: str) -> Optional[Reservation]:
        return self._get(Reservation, reservation_id)

    def list_by_doctor_and_date(self, doctor_id: Optional[str], day: date, include_cancelled: bool = False) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.appointment_date == day)
        if doctor_id is not None:
            stmt = stmt.where(Reservation.doctor_id == doctor_id)
        if not include_cancelled:
            stmt = stmt.where(Reservation.status != ReservationStatus.cancelled)
        return self._exec(stmt.order_by(Reservation.appointment_time))

    def list_by_doctor_and_date_range(self, doctor_id: Optional[str], start: date, end: date, include_cancelled: bool = False) -> List[Reservation]:
        """Reservations with start <= appointment_date < end."""
        stmt = select(Reservation).where(
            Reservation.appointment_date >= start,
            Reservation.appointment_date < end,
        )
        if doctor_id is not None:
            stmt = stmt.where(Reservation.doctor_id == doctor_id)
        if not include_cancelled:
            stmt = stmt.where(Reservation.status != ReservationStatus.cancelled)
        return self._exec(stmt.order_by(Reservation.appointment_date, Reservation.appointment_time))

    def list_reservations(
        self,
        status: Optional[ReservationStatus] = None,
        day: Optional[date] = None,
        doctor_id: Optional[str] = None,
    ) -> List[Reservation]:
        stmt = select(Reservation)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        if day is not None:
            stmt = stmt.where(Reservation.appointment_date == day)
        if doctor_id is not None:
            stmt = stmt.where(Reservation.doctor_id == doctor_id)
        return self._exec(stmt.order_by(Reservation.appointment_date, Reservation.appointment_time))

    def find_conflicts(self, doctor_id: str, day: date, start: time, duration_minutes: int, exclude_id: Optional[str] = None) -> List[Reservation]:
        """Unlocked read for pre-checks; writes repeat it under the doctor lock."""
        return self._overlapping(doctor_id, day, start, duration_minutes, exclude_id=exclude_id)

    def _require(self, reservation_id: str) -> Reservation:
        r = self.find_by_id(reservation_id)
        if r is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        return r

    def update_status(self, reservation_id: str, status: ReservationStatus) -> Reservation:
        return self.update_fields(reservation_id, status=status)

    def update_fields(self, reservation_id: str, **fields: Any) -> Reservation:
        r = self._require(reservation_id)
        for name in fields:
            if name not in Reservation.model_fields or name in ("id", "created_at"):
                raise StoreFailure(f"Unknown reservation field: {name}")
        # checked before mutating so autoflush never writes a conflicting row
        if _SLOT_FIELDS & fields.keys() and fields.get("status", r.status) != ReservationStatus.cancelled:
            doctor_id = fields.get("doctor_id", r.doctor_id)
            self._lock_doctor(doctor_id)
            if self._overlapping(
                doctor_id,
                fields.get("appointment_date", r.appointment_date),
                fields.get("appointment_time", r.appointment_time),
                fields.get("duration_minutes", r.duration_minutes),
                exclude_id=r.id,
            ):
                self.session.rollback()
                raise SlotUnavailable("New time slot is not available")
        for name, value in fields.items():
            setattr(r, name, value)
        r.updated_at = utcnow()
        self.session.add(r)
        self._commit("reservation update")
        self.session.refresh(r)
        return r

    # directory

    def get_doctor(self, doctor_id: str) -> Optional[Doctor]:
        return self._get(Doctor, doctor_id)

    def get_doctor_by_name(self, name: str) -> Optional[Doctor]:
        rows = self._exec(select(Doctor).where(Doctor.name == name, Doctor.active == True))  # noqa: E712
        return rows[0] if rows else None

    def list_doctors(self) -> List[Doctor]:
        return self._exec(select(Doctor).where(Doctor.active == True).order_by(Doctor.name))  # noqa: E712

    def get_service_by_name(self, name: str) -> Optional[Service]:
        rows = self._exec(select(Service).where(Service.name == name, Service.active == True))  # noqa: E712
        return rows[0] if rows else None

    def list_services(self) -> List[Service]:
        return self._exec(select(Service).where(Service.active == True).order_by(Service.name))  # noqa: E712
