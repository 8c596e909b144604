from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator

from .models import ReservationStatus, SyncStatus


def _whole_minutes(value: Optional[time]) -> Optional[time]:
    if value is not None and (value.second or value.microsecond):
        raise ValueError("appointment_time must be on a whole minute")
    return value


class BookingCreateRequest(BaseModel):
    doctor_name: str = Field(..., min_length=1, max_length=120)
    appointment_date: date
    appointment_time: time
    duration: Optional[int] = Field(None, gt=0, le=480)

    client_name: str = Field(..., min_length=1, max_length=120)
    client_email: EmailStr
    client_phone: Optional[str] = Field(None, min_length=7, max_length=30)
    service_type: Optional[str] = Field(None, max_length=120)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("appointment_time")
    @classmethod
    def check_whole_minute(cls, value: Optional[time]) -> Optional[time]:
        return _whole_minutes(value)


class BookingUpdateRequest(BaseModel):
    doctor_name: Optional[str] = Field(None, min_length=1, max_length=120)
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    duration: Optional[int] = Field(None, gt=0, le=480)

    client_name: Optional[str] = Field(None, min_length=1, max_length=120)
    client_email: Optional[EmailStr] = None
    client_phone: Optional[str] = Field(None, min_length=7, max_length=30)
    service_type: Optional[str] = Field(None, max_length=120)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("appointment_time")
    @classmethod
    def check_whole_minute(cls, value: Optional[time]) -> Optional[time]:
        return _whole_minutes(value)


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    doctor_id: str
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    status: ReservationStatus
    sync_status: SyncStatus
    calendar_id: Optional[str] = None
    external_event_id: Optional[str] = None
    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    service_type: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BookingResponse(BaseModel):
    booking: ReservationOut
    sync_status: SyncStatus
    message: str


class CancelResponse(BaseModel):
    booking: ReservationOut
    already_cancelled: bool
    message: str


class BookingsResponse(BaseModel):
    bookings: List[ReservationOut]
    count: int


class SlotsResponse(BaseModel):
    doctor: Optional[str] = None
    day: date
    duration: int
    slots: List[str]


class AvailableDatesResponse(BaseModel):
    doctor: str
    year: int
    month: int
    available_dates: List[date]


class AvailabilityCheckResponse(BaseModel):
    doctor: str
    day: date
    start: str
    duration: int
    available: bool


class DoctorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    specialization: Optional[str] = None
    has_calendar: bool = False


class DoctorsResponse(BaseModel):
    doctors: List[DoctorOut]


class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    duration_minutes: int
    price: Optional[Decimal] = None


class ServicesResponse(BaseModel):
    services: List[ServiceOut]


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: datetime
