from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from clinic_booking.errors import ExternalUnavailable, InvalidArgument, NotFound
from clinic_booking.models import ReservationStatus
from clinic_booking.services.intervals import TimeInterval

from conftest import MONDAY, SATURDAY, SUNDAY, TOMMY_CALENDAR

NY = ZoneInfo("America/New_York")


def hours(*values):
    return [time(h, m) for h, m in values]


def busy(day, h1, m1, h2, m2):
    return TimeInterval(datetime.combine(day, time(h1, m1), tzinfo=NY), datetime.combine(day, time(h2, m2), tzinfo=NY))


def test_monday_hourly_slots_with_nothing_booked(resolver, tommy):
    slots = resolver.available_slots(tommy, MONDAY, 60)
    assert slots == [time(h) for h in range(9, 17)]


def test_busy_block_removes_only_the_overlapping_slot(resolver, gateway, tommy):
    gateway.add_busy(busy(MONDAY, 10, 0, 11, 0))
    slots = resolver.available_slots(tommy, MONDAY, 60)
    assert time(10) not in slots
    assert len(slots) == 7


def test_busy_blocks_come_from_the_doctors_calendar(resolver, gateway, tommy_with_calendar):
    gateway.add_busy(busy(MONDAY, 9, 0, 12, 0))  # default calendar, not Tommy's
    gateway.add_busy(busy(MONDAY, 15, 0, 16, 0), calendar_id=TOMMY_CALENDAR)
    slots = resolver.available_slots(tommy_with_calendar, MONDAY, 60)
    assert slots == hours((9, 0), (10, 0), (11, 0), (12, 0), (13, 0), (14, 0), (16, 0))


def test_closed_day_has_no_slots(resolver, gateway, tommy):
    assert resolver.available_slots(tommy, SUNDAY, 60) == []
    assert gateway.calls == []


def test_saturday_uses_short_hours(resolver, tommy):
    assert resolver.available_slots(tommy, SATURDAY, 60) == hours((10, 0), (11, 0), (12, 0), (13, 0), (14, 0))


def test_no_slot_runs_past_closing(resolver, tommy):
    for duration in (30, 45, 60, 90, 120, 240):
        for start in resolver.available_slots(tommy, MONDAY, duration, step_minutes=15):
            end_minutes = start.hour * 60 + start.minute + duration
            assert end_minutes <= 17 * 60
    assert resolver.available_slots(tommy, MONDAY, 90)[-1] == time(15)


def test_local_reservation_blocks_overlapping_slots(resolver, tommy, make_reservation):
    make_reservation(at=time(11, 30), duration=60)
    slots = resolver.available_slots(tommy, MONDAY, 60)
    assert time(11) not in slots
    assert time(12) not in slots
    assert time(10) in slots and time(13) in slots


def test_cancelled_reservation_frees_its_slot(resolver, tommy, make_reservation):
    make_reservation(at=time(9), status=ReservationStatus.cancelled)
    assert time(9) in resolver.available_slots(tommy, MONDAY, 60)


def test_other_doctors_reservations_do_not_block(resolver, tommy, make_reservation):
    make_reservation(doctor_id="doc_2", at=time(9))
    assert time(9) in resolver.available_slots(tommy, MONDAY, 60)


def test_clinic_wide_listing_uses_thirty_minute_steps(resolver, make_reservation):
    slots = resolver.available_slots(None, MONDAY, 60)
    assert len(slots) == 15
    assert slots[:3] == hours((9, 0), (9, 30), (10, 0))
    assert slots[-1] == time(16)

    make_reservation(doctor_id="doc_2", at=time(9))
    assert resolver.available_slots(None, MONDAY, 60)[0] == time(10)


def test_invalid_duration_is_rejected(resolver, tommy):
    with pytest.raises(InvalidArgument):
        resolver.available_slots(tommy, MONDAY, 0)
    with pytest.raises(InvalidArgument):
        resolver.available_slots(tommy, MONDAY, 60, step_minutes=0)


def test_calendar_failure_fails_the_listing(resolver, gateway, tommy):
    gateway.fail_on.add("list_busy")
    with pytest.raises(ExternalUnavailable):
        resolver.available_slots(tommy, MONDAY, 60)


def test_unknown_doctor(resolver):
    with pytest.raises(NotFound):
        resolver.resolve_doctor("Nobody")


def test_available_dates_skips_sundays_and_past_days(resolver, gateway, tommy):
    days = resolver.available_dates(tommy, 2024, 9)
    assert days[0] == MONDAY
    assert all(d.weekday() != 6 for d in days)
    assert len(days) == 25
    assert gateway.calls == ["list_busy"]


def test_available_dates_reads_the_store_once_per_month(resolver, store, tommy, make_reservation, monkeypatch):
    make_reservation(at=time(10))
    calls = []
    month_query = store.list_by_doctor_and_date_range

    def counted_month_query(*args, **kwargs):
        calls.append("range")
        return month_query(*args, **kwargs)

    def per_day_query(*args, **kwargs):
        calls.append("day")
        return []

    monkeypatch.setattr(store, "list_by_doctor_and_date_range", counted_month_query)
    monkeypatch.setattr(store, "list_by_doctor_and_date", per_day_query)

    days = resolver.available_dates(tommy, 2024, 9)
    assert MONDAY in days
    assert calls == ["range"]


def test_available_dates_drops_fully_blocked_days(resolver, gateway, tommy, make_reservation):
    # all-day event on Tuesday
    gateway.add_busy(TimeInterval(datetime(2024, 9, 3, tzinfo=NY), datetime(2024, 9, 4, tzinfo=NY)))
    # every hour of Saturday booked locally
    for h in range(10, 15):
        make_reservation(day=SATURDAY, at=time(h))
    days = resolver.available_dates(tommy, 2024, 9)
    assert date(2024, 9, 3) not in days
    assert SATURDAY not in days
    assert date(2024, 9, 4) in days


def test_available_dates_past_month_is_empty(resolver, gateway, tommy):
    assert resolver.available_dates(tommy, 2024, 8) == []
    assert gateway.calls == []


def test_available_dates_december_rolls_into_next_year(resolver, tommy):
    days = resolver.available_dates(tommy, 2024, 12)
    assert days[-1] == date(2024, 12, 31)


@pytest.mark.parametrize("year,month", [(2024, 0), (2024, 13), (0, 5)])
def test_available_dates_rejects_bad_months(resolver, tommy, year, month):
    with pytest.raises(InvalidArgument):
        resolver.available_dates(tommy, year, month)


def test_is_available_checks_hours_reservations_and_calendar(resolver, gateway, tommy, make_reservation):
    make_reservation(at=time(9))
    gateway.add_busy(busy(MONDAY, 13, 0, 13, 30))
    assert not resolver.is_available(tommy, MONDAY, time(9, 30), 60)
    assert not resolver.is_available(tommy, MONDAY, time(12, 45), 30)
    assert not resolver.is_available(tommy, MONDAY, time(16, 30), 60)
    assert not resolver.is_available(tommy, SUNDAY, time(10), 60)
    assert resolver.is_available(tommy, MONDAY, time(10), 60)


def test_availability_endpoint_returns_hh_mm_strings(client):
    response = client.get("/api/doctors/Tommy/available-slots", params={"date": "2024-09-02"})
    assert response.status_code == 200
    data = response.json()
    assert data["slots"] == ["09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00"]
    assert data["duration"] == 60


def test_generic_availability_endpoint_is_sorted(client):
    response = client.get("/api/bookings/available-slots", params={"date": "2024-09-02", "duration": 30})
    assert response.status_code == 200
    slots = response.json()["slots"]
    assert len(slots) == 16
    assert slots == sorted(slots)


def test_available_dates_endpoint(client):
    response = client.get("/api/doctors/Andy/available-dates", params={"year": 2024, "month": 9})
    assert response.status_code == 200
    assert response.json()["available_dates"][0] == "2024-09-02"

    response = client.get("/api/doctors/Andy/available-dates", params={"year": 2024, "month": 13})
    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_argument"


def test_availability_endpoint_unknown_doctor(client):
    response = client.get("/api/doctors/Nobody/available-slots", params={"date": "2024-09-02"})
    assert response.status_code == 404


def test_availability_endpoint_reports_calendar_outage(client, gateway):
    gateway.fail_on.add("list_busy")
    response = client.get("/api/doctors/Tommy/available-slots", params={"date": "2024-09-02"})
    assert response.status_code == 503
    assert response.json()["kind"] == "external_unavailable"
