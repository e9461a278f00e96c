"""Integration tests for the HTTP API.

The app is built around an injected in-memory engine with a frozen clock,
so no server or files are needed.
"""
from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

from booking_engine import config
from booking_engine.api import create_app
from booking_engine.auth import AccessGate
from booking_engine.engine import BookingEngine
from booking_engine.storage import APPOINTMENTS, TIME_SLOTS

STAFF_KEY = "staff passphrase"


@pytest.fixture(scope="module")
def key_hash():
    return AccessGate.hash_passphrase(STAFF_KEY)


@pytest.fixture
def settings():
    return config.Settings(
        storage_url="memory://",
        reminders_enabled=False,
        public_base_url="https://booking.example.com",
    )


@pytest.fixture
def api(engine, settings, key_hash):
    app = create_app(engine=engine, settings=settings, gate=AccessGate(key_hash))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def staff():
    return {"X-Access-Key": STAFF_KEY}


class TestPublicEndpoints:

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["remindersRunning"] is False
        assert response.headers["X-Request-ID"].startswith("req-")

    def test_business_info(self, api):
        data = api.get("/business").json()

        assert data["name"] == config.BUSINESS_INFO["name"]
        assert data["workingHours"] == config.BUSINESS_INFO["workingHours"]
        assert {s["name"] for s in data["services"]} == {s["name"] for s in config.SERVICES}

    def test_available_slots(self, api):
        data = api.get("/slots/available").json()

        assert [s["id"] for s in data] == ["s1", "s2", "s3"]
        assert data[0] == {
            "id": "s1",
            "date": "2024-06-10",
            "startTime": "09:00",
            "endTime": "09:30",
            "isAvailable": True,
        }

    def test_available_slots_time_of_day(self, api):
        data = api.get("/slots/available", params={"time_of_day": "afternoon"}).json()

        assert [s["id"] for s in data] == ["s3"]

    def test_available_slots_other_day(self, api):
        assert api.get("/slots/available", params={"date": "2024-06-11"}).json() == []

    def test_available_slots_next_days(self, api, engine, slot_factory):
        engine.store.insert(TIME_SLOTS, slot_factory("t1", "10:00", "10:30", day=date(2024, 6, 12)))
        engine.store.insert(TIME_SLOTS, slot_factory("t2", "10:00", "10:30", day=date(2024, 6, 11)))

        data = api.get("/slots/available", params={"days": 2}).json()

        assert [s["id"] for s in data] == ["s1", "s2", "s3", "t2"]

    def test_available_slots_days_must_be_positive(self, api):
        assert api.get("/slots/available", params={"days": 0}).status_code == 422

    def test_book(self, api, engine):
        response = api.post("/bookings", json={
            "name": "Bia Lima",
            "phone": "34 98888-7777",
            "timeSlotId": "s1",
            "service": "Design normal",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["durable"] is True
        assert data["client"]["name"] == "Bia Lima"
        assert data["appointment"]["status"] == "scheduled"
        assert data["appointment"]["slot"]["id"] == "s1"
        assert data["appointment"]["clientName"] == "Bia Lima"
        assert [s["id"] for s in api.get("/slots/available").json()] == ["s3"]

    def test_double_booking_conflict(self, api):
        body = {"name": "Bia", "phone": "34 98888-7777", "timeSlotId": "s3"}
        assert api.post("/bookings", json=body).status_code == 201

        response = api.post("/bookings", json=body)

        assert response.status_code == 409
        assert response.json()["code"] == "SLOT_UNAVAILABLE"

    def test_book_unknown_slot(self, api):
        response = api.post("/bookings", json={"name": "Bia", "phone": "34 98888-7777", "timeSlotId": "zz"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_book_unknown_service(self, api):
        response = api.post("/bookings", json={
            "name": "Bia",
            "phone": "34 98888-7777",
            "timeSlotId": "s1",
            "service": "Massage",
        })

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_SERVICE"

    def test_book_validation_error(self, api):
        response = api.post("/bookings", json={"name": "", "timeSlotId": "s1"})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestAccessGate:

    def test_staff_endpoint_requires_key(self, api):
        response = api.get("/clients")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_wrong_key_rejected(self, api):
        assert api.get("/clients", headers={"X-Access-Key": "guess"}).status_code == 401

    def test_correct_key_accepted(self, api, staff):
        response = api.get("/clients", headers=staff)

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == ["c1"]


class TestStaffEndpoints:

    def test_client_crud(self, api, staff):
        created = api.post("/clients", json={"name": "Caio", "phone": "11 91234-5678"}, headers=staff)
        assert created.status_code == 201
        client_id = created.json()["client"]["id"]

        updated = api.patch(f"/clients/{client_id}", json={"notes": "first visit"}, headers=staff)
        assert updated.json()["client"]["notes"] == "first visit"
        assert updated.json()["client"]["name"] == "Caio"

        assert api.get(f"/clients/{client_id}", headers=staff).json()["notes"] == "first visit"
        assert api.delete(f"/clients/{client_id}", headers=staff).status_code == 200
        assert api.get(f"/clients/{client_id}", headers=staff).status_code == 404

    def test_slot_management(self, api, staff):
        created = api.post(
            "/slots",
            json={"date": "2024-06-11", "startTime": "10:00", "endTime": "10:30"},
            headers=staff,
        )
        assert created.status_code == 201
        slot_id = created.json()["slot"]["id"]

        assert api.get("/slots", params={"date": "2024-06-11"}, headers=staff).json()[0]["id"] == slot_id
        assert api.delete(f"/slots/{slot_id}", headers=staff).status_code == 200

    def test_invalid_slot_rejected(self, api, staff):
        response = api.post(
            "/slots",
            json={"date": "2024-06-11", "startTime": "10:30", "endTime": "10:00"},
            headers=staff,
        )

        assert response.status_code == 422

    def test_generate_slots(self, api, staff):
        response = api.post(
            "/slots/generate",
            json={"startDate": "2024-06-11", "endDate": "2024-06-11", "startHour": 9, "endHour": 10},
            headers=staff,
        )

        assert response.status_code == 201
        assert response.json()["created"] == 2

    def test_next_slot(self, api, staff):
        assert api.get("/slots/s1/next", headers=staff).json()["id"] == "s2"
        assert api.get("/slots/s3/next", headers=staff).json() is None

    def test_appointment_lifecycle(self, api, staff):
        created = api.post(
            "/appointments",
            json={"clientId": "c1", "timeSlotId": "s1", "service": "design-henna"},
            headers=staff,
        )
        assert created.status_code == 201
        appointment = created.json()["appointment"]
        assert appointment["service"] == "Design com henna"

        listed = api.get("/appointments", params={"client_id": "c1"}, headers=staff).json()
        assert [a["id"] for a in listed] == [appointment["id"]]
        assert api.get("/agenda/2024-06-10", headers=staff).json()[0]["id"] == appointment["id"]

        cancelled = api.post(f"/appointments/{appointment['id']}/cancel", headers=staff)
        assert cancelled.json()["appointment"]["status"] == "cancelled"

        again = api.post(f"/appointments/{appointment['id']}/complete", headers=staff)
        assert again.status_code == 409
        assert again.json()["code"] == "INVALID_TRANSITION"

        assert api.delete(f"/appointments/{appointment['id']}", headers=staff).status_code == 200
        assert api.get(f"/appointments/{appointment['id']}", headers=staff).status_code == 404

    def test_delete_scheduled_appointment_refused(self, api, staff):
        appointment_id = api.post(
            "/appointments",
            json={"clientId": "c1", "timeSlotId": "s1"},
            headers=staff,
        ).json()["appointment"]["id"]

        assert api.delete(f"/appointments/{appointment_id}", headers=staff).status_code == 409

    def test_upcoming_appointments(self, api, staff, clock):
        api.post("/appointments", json={"clientId": "c1", "timeSlotId": "s3"}, headers=staff)
        api.post("/appointments", json={"clientId": "c1", "timeSlotId": "s1"}, headers=staff)
        clock.set(datetime(2024, 6, 10, 9, 0))

        upcoming = api.get("/appointments", params={"upcoming": "true"}, headers=staff).json()

        assert [a["timeSlotId"] for a in upcoming] == ["s3"]

    def test_update_business_and_share_link(self, api, staff):
        response = api.put(
            "/business",
            json={"name": "Studio", "address": "Rua 1", "phone": "5511999990000", "workingHours": "9-18"},
            headers=staff,
        )
        assert response.status_code == 200
        assert api.get("/business").json()["name"] == "Studio"

        link = api.get("/business/share-link", headers=staff).json()["link"]
        assert link.startswith("https://wa.me/5511999990000?text=")

    def test_reminder_sweep(self, api, staff, clock, notifier):
        api.post("/appointments", json={"clientId": "c1", "timeSlotId": "s1"}, headers=staff)
        clock.set(datetime(2024, 6, 10, 8, 30))

        sent = api.post("/reminders/sweep", headers=staff).json()["sent"]

        assert len(sent) == 1
        assert sent[0]["client_name"] == "Ana Souza"
        assert len(notifier.notices) == 1
        assert api.post("/reminders/sweep", headers=staff).json()["sent"] == []

    def test_reset(self, api, staff):
        assert api.post("/admin/reset", headers=staff).json()["reset"] is True
        assert api.get("/slots/available").json() == []


class TestDurability:

    def test_not_durable_write_is_flagged(self, flaky_storage, clock, settings):
        engine = BookingEngine(flaky_storage(failing={APPOINTMENTS}), clock=clock).initialize()
        app = create_app(engine=engine, settings=settings, gate=AccessGate())

        with TestClient(app) as api:
            response = api.post("/bookings", json={"name": "Bia", "phone": "34 98888-7777", "timeSlotId": "s1"})

        assert response.status_code == 201
        assert response.json()["durable"] is False

    def test_strict_failure_is_503(self, flaky_storage, clock, settings):
        engine = BookingEngine(flaky_storage(failing={APPOINTMENTS}), clock=clock, strict=True).initialize()
        app = create_app(engine=engine, settings=settings, gate=AccessGate())

        with TestClient(app) as api:
            response = api.post("/bookings", json={"name": "Bia", "phone": "34 98888-7777", "timeSlotId": "s1"})
            available = api.get("/slots/available").json()

        assert response.status_code == 503
        assert response.json()["code"] == "PERSISTENCE_FAILURE"
        assert [s["id"] for s in available] == ["s1", "s2", "s3"]


class TestLifespan:

    def test_engine_built_from_settings(self, tmp_path):
        settings = config.Settings(storage_url=f"json://{tmp_path}", reminders_enabled=True)
        app = create_app(settings=settings, gate=AccessGate())

        with TestClient(app) as api:
            assert api.get("/health").json()["remindersRunning"] is True
            assert api.get("/slots/available").json() == []

        assert not app.state.engine.reminders.running
