from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import text
from sqlmodel import SQLModel, Field, Index


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReservationStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"


class SyncStatus(str, Enum):
    synced = "synced"
    sync_pending = "sync_pending"
    no_calendar = "no_calendar"


class Doctor(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str = Field(index=True, unique=True)
    specialization: Optional[str] = None
    active: bool = True
    google_calendar_id: Optional[str] = None


class Service(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    duration_minutes: int
    price: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    active: bool = True


class Reservation(SQLModel, table=True):
    id: str = Field(primary_key=True)
    doctor_id: str = Field(foreign_key="doctor.id")
    appointment_date: date
    appointment_time: time
    duration_minutes: int = 60

    status: ReservationStatus = ReservationStatus.pending
    sync_status: SyncStatus = SyncStatus.no_calendar
    calendar_id: Optional[str] = None
    external_event_id: Optional[str] = None

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    service_type: str = "General Consultation"
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


Index("idx_reservation_doctor_date", Reservation.doctor_id, Reservation.appointment_date)

# Two live reservations can never share a doctor/date/start, even when both
# writers passed the overlap pre-check.
Index(
    "uq_reservation_active_start",
    Reservation.doctor_id,
    Reservation.appointment_date,
    Reservation.appointment_time,
    unique=True,
    sqlite_where=text("status != 'cancelled'"),
    postgresql_where=text("status != 'cancelled'"),
)


class BookingEvent(SQLModel, table=True):
    id: str = Field(primary_key=True)
    reservation_id: Optional[str] = Field(default=None, index=True)
    event_type: str
    payload_json: str
    created_at: datetime = Field(default_factory=utcnow)
