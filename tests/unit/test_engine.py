"""Test engine-level admin operations and wiring."""
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from booking_engine import config
from booking_engine.engine import BookingEngine
from booking_engine.errors import ClientNotFound, SlotNotFound, SlotUnavailable
from booking_engine.models import BusinessInfo
from booking_engine.notifications import LoggingNotifier, WebhookNotifier
from booking_engine.reservation import SuccessorPolicy
from booking_engine.storage import InMemoryStorage, RetryingStorage


class TestConstruction:

    def test_from_settings(self, clock):
        settings = config.Settings(
            storage_url="memory://",
            strict_persistence=True,
            successor_policy="release",
            reminder_lead_minutes=60,
        )

        engine = BookingEngine.from_settings(settings, clock=clock)

        assert isinstance(engine.store.storage, InMemoryStorage)
        assert engine.store.strict is True
        assert engine.reservation.successor_policy == SuccessorPolicy.RELEASE
        assert engine.reminders.lead_minutes == 60
        assert isinstance(engine.reminders.notifier, LoggingNotifier)

    def test_webhook_url_selects_webhook_notifier(self, tmp_path):
        settings = config.Settings(
            storage_url=f"json://{tmp_path}",
            webhook_url="https://hooks.example.com/remind",
        )

        engine = BookingEngine.from_settings(settings)

        assert isinstance(engine.store.storage, RetryingStorage)
        assert isinstance(engine.reminders.notifier, WebhookNotifier)

    def test_invalid_successor_policy_rejected(self):
        with pytest.raises(ValidationError):
            config.Settings(successor_policy="sometimes")

    def test_load_settings_from_env(self, monkeypatch):
        monkeypatch.delenv("BOOKING_STORAGE_URL", raising=False)
        monkeypatch.setenv("BOOKING_DATA_DIR", "/tmp/booking")
        monkeypatch.setenv("BOOKING_STRICT_PERSISTENCE", "true")
        monkeypatch.setenv("BOOKING_REMINDERS_ENABLED", "no")

        settings = config.load_settings()

        assert settings.storage_url == "json:///tmp/booking"
        assert settings.strict_persistence is True
        assert settings.reminders_enabled is False


class TestAvailability:

    def test_available_slots_sorted(self, engine, clock):
        clock.set(datetime(2024, 6, 10, 9, 10))

        assert [s.id for s in engine.available_slots()] == ["s2", "s3"]

    def test_available_slots_for_day(self, engine):
        assert engine.available_slots(on=date(2024, 6, 11)) == []

    def test_booked_slots_disappear(self, engine):
        engine.create_appointment("c1", "s1", "Design normal")

        assert [s.id for s in engine.available_slots()] == ["s3"]

    def test_find_next_slot(self, engine):
        assert engine.find_next_slot("s1").id == "s2"
        assert engine.find_next_slot("s3") is None


class TestClients:

    def test_add_client(self, engine):
        client = engine.add_client("Bia", "2", email="bia@example.com").value

        assert engine.get_client(client.id).email == "bia@example.com"

    def test_update_client(self, engine):
        result = engine.update_client("c1", phone="34 90000-0000", notes="prefers mornings")

        assert result.value.phone == "34 90000-0000"
        assert engine.get_client("c1").notes == "prefers mornings"

    def test_update_client_id_not_editable(self, engine):
        with pytest.raises(ValueError):
            engine.update_client("c1", id="c9")

    def test_update_client_validates(self, engine):
        with pytest.raises(ValidationError):
            engine.update_client("c1", name="")

    def test_update_unknown_client(self, engine):
        with pytest.raises(ClientNotFound):
            engine.update_client("nope", name="X")

    def test_delete_client(self, engine):
        engine.delete_client("c1")

        with pytest.raises(ClientNotFound):
            engine.get_client("c1")


class TestSlots:

    def test_add_slot(self, engine):
        slot = engine.add_slot(date(2024, 6, 11), "10:00", "10:30").value

        assert engine.get_slot(slot.id).is_available

    def test_generate_slots_skips_existing(self, engine):
        result = engine.generate_slots(
            date(2024, 6, 10),
            date(2024, 6, 10),
            {"start_hour": 9, "end_hour": 11, "slot_duration_minutes": 30},
        )

        assert [s.start_time for s in result.value] == ["10:00", "10:30"]
        assert len(engine.store.time_slots) == 5

    def test_delete_free_slot(self, engine):
        engine.delete_slot("s3")

        with pytest.raises(SlotNotFound):
            engine.get_slot("s3")

    def test_delete_held_slot_refused(self, engine):
        engine.create_appointment("c1", "s1", "Design normal")

        with pytest.raises(SlotUnavailable):
            engine.delete_slot("s1")


class TestBusiness:

    def test_default_business_info(self, engine):
        assert engine.business_info.name == config.BUSINESS_INFO["name"]

    def test_update_business_info(self, engine, storage):
        info = BusinessInfo(name="Studio", address="Rua 1", phone="5511999990000", working_hours="9-18")

        engine.update_business_info(info)

        assert engine.business_info == info
        assert storage.load_collection("business_info") == [info.to_record()]

    def test_share_link_uses_business_phone(self, engine):
        link = engine.share_link("https://booking.example.com/")

        assert link.startswith(f"https://wa.me/{config.BUSINESS_INFO['phone']}?text=")
        assert "booking.example.com%2Fagendar" in link or "booking.example.com/agendar" in link

    def test_reset(self, engine):
        engine.reset()

        assert engine.store.clients == ()
        assert engine.store.time_slots == ()
