from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime, time, timezone
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from .config import Settings, get_settings
from .db import create_db_and_tables, get_session, seed_defaults, verify_connection
from .errors import BookingError, NotFound
from .models import ReservationStatus
from .schemas import (
    AvailabilityCheckResponse, AvailableDatesResponse,
    BookingCreateRequest, BookingUpdateRequest,
    BookingResponse, BookingsResponse, CancelResponse,
    DoctorOut, DoctorsResponse, HealthResponse,
    ReservationOut, ServiceOut, ServicesResponse, SlotsResponse,
)
from .services.audit import events_for, log_event
from .services.availability import AvailabilityResolver
from .services.booking import BookingTransaction, CancelResult
from .services.calendar_base import CalendarGateway
from .services.calendar_demo import InMemoryCalendarGateway
from .services.calendar_google import GoogleCalendarGateway
from .services.store import SqlBookingStore

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_calendar_gateway(settings: Settings) -> CalendarGateway:
    if settings.google_service_account_file:
        return GoogleCalendarGateway.from_service_account_file(
            settings.google_service_account_file,
            settings.google_calendar_id or "primary",
            settings.tz,
            timeout=settings.calendar_timeout_seconds,
            num_retries=settings.calendar_num_retries,
        )
    logger.warning("No Google service account configured; using the in-memory calendar")
    return InMemoryCalendarGateway()


@asynccontextmanager
async def lifespan(app: FastAPI):
    verify_connection()
    create_db_and_tables()
    seed_defaults()
    # created once per process and shared read-only by every request
    app.state.calendar_gateway = build_calendar_gateway(settings)
    logger.info("Clinic booking API ready (timezone %s)", settings.clinic_timezone)
    yield


app = FastAPI(title="Clinic Booking API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "kind": exc.kind.value})


# dependencies

def get_calendar_gateway(request: Request) -> CalendarGateway:
    return request.app.state.calendar_gateway


def get_clock() -> Callable[[], datetime]:
    return lambda: datetime.now(timezone.utc)


def get_store(session: Session = Depends(get_session), cfg: Settings = Depends(get_settings)) -> SqlBookingStore:
    return SqlBookingStore(session, cfg.tz)


def get_resolver(
    store: SqlBookingStore = Depends(get_store),
    gateway: CalendarGateway = Depends(get_calendar_gateway),
    cfg: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AvailabilityResolver:
    return AvailabilityResolver(store, gateway, cfg, clock=clock)


def get_booking_transaction(
    store: SqlBookingStore = Depends(get_store),
    gateway: CalendarGateway = Depends(get_calendar_gateway),
    cfg: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingTransaction:
    return BookingTransaction(store, gateway, cfg, clock=clock)


def _hhmm(t: time) -> str:
    return t.strftime("%H:%M")


def _cancel_response(result: CancelResult) -> CancelResponse:
    message = "Booking already cancelled" if result.already_cancelled else "Booking cancelled successfully"
    return CancelResponse(
        booking=ReservationOut.model_validate(result.reservation),
        already_cancelled=result.already_cancelled,
        message=message,
    )


# routes

@app.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc))


@app.get("/api/doctors", response_model=DoctorsResponse)
def list_doctors(store: SqlBookingStore = Depends(get_store)):
    return DoctorsResponse(doctors=[
        DoctorOut(id=d.id, name=d.name, specialization=d.specialization, has_calendar=bool(d.google_calendar_id))
        for d in store.list_doctors()
    ])


@app.get("/api/services", response_model=ServicesResponse)
def list_services(store: SqlBookingStore = Depends(get_store)):
    return ServicesResponse(services=[ServiceOut.model_validate(s) for s in store.list_services()])


@app.get("/api/doctors/{doctor_name}/available-dates", response_model=AvailableDatesResponse)
def available_dates(
    doctor_name: str,
    year: int,
    month: int,
    resolver: AvailabilityResolver = Depends(get_resolver),
):
    doctor = resolver.resolve_doctor(doctor_name)
    days = resolver.available_dates(doctor, year, month)
    return AvailableDatesResponse(doctor=doctor.name, year=year, month=month, available_dates=days)


@app.get("/api/doctors/{doctor_name}/available-slots", response_model=SlotsResponse)
def doctor_available_slots(
    doctor_name: str,
    date: date,
    duration: Optional[int] = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    cfg: Settings = Depends(get_settings),
):
    doctor = resolver.resolve_doctor(doctor_name)
    minutes = duration or cfg.default_duration_minutes
    slots = resolver.available_slots(doctor, date, minutes)
    return SlotsResponse(doctor=doctor.name, day=date, duration=minutes, slots=[_hhmm(t) for t in slots])


@app.get("/api/doctors/{doctor_name}/availability", response_model=AvailabilityCheckResponse)
def doctor_availability_check(
    doctor_name: str,
    date: date,
    time: time,
    duration: Optional[int] = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    cfg: Settings = Depends(get_settings),
):
    doctor = resolver.resolve_doctor(doctor_name)
    minutes = duration or cfg.default_duration_minutes
    available = resolver.is_available(doctor, date, time, minutes)
    return AvailabilityCheckResponse(doctor=doctor.name, day=date, start=_hhmm(time), duration=minutes, available=available)


@app.get("/api/bookings/available-slots", response_model=SlotsResponse)
def available_slots(
    date: date,
    duration: Optional[int] = None,
    doctor: Optional[str] = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    cfg: Settings = Depends(get_settings),
):
    scoped = resolver.resolve_doctor(doctor) if doctor else None
    minutes = duration or cfg.default_duration_minutes
    # the generic listing keeps the finer step even when narrowed to one doctor
    slots = resolver.available_slots(scoped, date, minutes, step_minutes=cfg.slot_step_minutes)
    return SlotsResponse(doctor=scoped.name if scoped else None, day=date, duration=minutes, slots=[_hhmm(t) for t in slots])


@app.get("/api/bookings", response_model=BookingsResponse)
def list_bookings(
    status: Optional[ReservationStatus] = None,
    date: Optional[date] = None,
    store: SqlBookingStore = Depends(get_store),
):
    rows = store.list_reservations(status=status, day=date)
    return BookingsResponse(bookings=[ReservationOut.model_validate(r) for r in rows], count=len(rows))


@app.get("/api/bookings/{booking_id}", response_model=ReservationOut)
def get_booking(booking_id: str, store: SqlBookingStore = Depends(get_store)):
    r = store.find_by_id(booking_id)
    if r is None:
        raise NotFound(f"Booking {booking_id} not found")
    return ReservationOut.model_validate(r)


@app.get("/api/bookings/{booking_id}/history")
def booking_history(booking_id: str, session: Session = Depends(get_session), store: SqlBookingStore = Depends(get_store)):
    if store.find_by_id(booking_id) is None:
        raise NotFound(f"Booking {booking_id} not found")
    return [
        {"event_type": ev.event_type, "payload_json": ev.payload_json, "created_at": ev.created_at}
        for ev in events_for(session, booking_id)
    ]


@app.post("/api/bookings", response_model=BookingResponse, status_code=201)
def create_booking(
    req: BookingCreateRequest,
    session: Session = Depends(get_session),
    tx: BookingTransaction = Depends(get_booking_transaction),
):
    result = tx.create(req)
    r = result.reservation

    log_event(
        session,
        r.id,
        "booking_created",
        {"doctor_id": r.doctor_id, "date": r.appointment_date, "time": _hhmm(r.appointment_time),
         "duration": r.duration_minutes, "sync_status": result.sync_status.value},
    )

    return BookingResponse(
        booking=ReservationOut.model_validate(r),
        sync_status=result.sync_status,
        message="Booking created successfully",
    )


@app.put("/api/bookings/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    req: BookingUpdateRequest,
    session: Session = Depends(get_session),
    tx: BookingTransaction = Depends(get_booking_transaction),
):
    result = tx.update(booking_id, req)
    log_event(
        session,
        booking_id,
        "booking_updated",
        {"changes": req.model_dump(exclude_none=True), "sync_status": result.sync_status.value},
    )
    return BookingResponse(
        booking=ReservationOut.model_validate(result.reservation),
        sync_status=result.sync_status,
        message="Booking updated successfully",
    )


@app.put("/api/bookings/{booking_id}/cancel", response_model=CancelResponse)
def cancel_booking(
    booking_id: str,
    session: Session = Depends(get_session),
    tx: BookingTransaction = Depends(get_booking_transaction),
):
    result = tx.cancel(booking_id)
    if not result.already_cancelled:
        log_event(session, booking_id, "booking_cancelled", {"sync_status": result.reservation.sync_status.value})
    return _cancel_response(result)


@app.delete("/api/bookings/{booking_id}", response_model=CancelResponse)
def delete_booking(
    booking_id: str,
    session: Session = Depends(get_session),
    tx: BookingTransaction = Depends(get_booking_transaction),
):
    # rows are never removed; DELETE is a cancellation
    return cancel_booking(booking_id, session, tx)
