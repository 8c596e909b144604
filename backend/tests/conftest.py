"""
Shared fixtures: an in-memory SQLite database rebuilt for every test, the
in-memory calendar gateway and a clock pinned to Sunday 2024-09-01 08:00 in
the clinic timezone (America/New_York).
"""
import os
import sys
from datetime import date, datetime, time, timezone
from pathlib import Path

# must be set before clinic_booking builds its engine
os.environ["CLINIC_DATABASE_URL"] = "sqlite://"
os.environ["CLINIC_CLINIC_TIMEZONE"] = "America/New_York"
os.environ.pop("CLINIC_GOOGLE_SERVICE_ACCOUNT_FILE", None)

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from clinic_booking.config import get_settings
from clinic_booking.db import create_db_and_tables, engine, seed_defaults
from clinic_booking.main import app, get_calendar_gateway, get_clock
from clinic_booking.models import Doctor, Reservation, ReservationStatus
from clinic_booking.services.availability import AvailabilityResolver
from clinic_booking.services.booking import BookingTransaction
from clinic_booking.services.calendar_demo import InMemoryCalendarGateway
from clinic_booking.services.store import SqlBookingStore

FIXED_NOW = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2024, 9, 2)
SATURDAY = date(2024, 9, 7)
SUNDAY = date(2024, 9, 8)
TOMMY_CALENDAR = "tommy@clinic.test"


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    seed_defaults()
    yield


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def store(session, settings):
    return SqlBookingStore(session, settings.tz)


@pytest.fixture
def gateway():
    return InMemoryCalendarGateway()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def resolver(store, gateway, settings, clock):
    return AvailabilityResolver(store, gateway, settings, clock=clock)


@pytest.fixture
def tx(store, gateway, settings, clock):
    return BookingTransaction(store, gateway, settings, clock=clock)


@pytest.fixture
def tommy(session):
    return session.get(Doctor, "doc_1")


@pytest.fixture
def tommy_with_calendar(session):
    doctor = session.get(Doctor, "doc_1")
    doctor.google_calendar_id = TOMMY_CALENDAR
    session.add(doctor)
    session.commit()
    session.refresh(doctor)
    return doctor


@pytest.fixture
def make_reservation(store):
    counter = iter(range(1, 1000))

    def _make(doctor_id="doc_1", day=MONDAY, at=time(9, 0), duration=60, status=ReservationStatus.confirmed):
        r = Reservation(
            id=f"res_test{next(counter)}",
            doctor_id=doctor_id,
            appointment_date=day,
            appointment_time=at,
            duration_minutes=duration,
            status=status,
            client_name="Jane Doe",
            client_email="jane@example.com",
        )
        store.session.add(r)
        store.session.commit()
        return r

    return _make


@pytest.fixture
def client(gateway, clock):
    app.dependency_overrides[get_calendar_gateway] = lambda: gateway
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
