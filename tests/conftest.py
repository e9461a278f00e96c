"""Shared test fixtures."""
from datetime import date, datetime

import pytest

from booking_engine.clock import FrozenClock
from booking_engine.engine import BookingEngine
from booking_engine.models import Client, TimeSlot
from booking_engine.notifications import RecordingNotifier
from booking_engine.storage import CLIENTS, TIME_SLOTS, InMemoryStorage

TODAY = date(2024, 6, 10)  # a Monday


class FlakyStorage(InMemoryStorage):
    """In-memory storage whose writes fail for the named collections."""

    def __init__(self, failing=(), error=None, initial=None):
        # Seed first so the initial records are never refused
        self.failing = set()
        self.save_calls = []
        super().__init__(initial=initial)
        self.failing = set(failing)
        self.error = error or OSError("disk full")
        self.save_calls = []

    def save_collection(self, name, records):
        self.save_calls.append(name)
        if name in self.failing:
            raise self.error
        super().save_collection(name, records)


def make_slot(slot_id, start, end, day=TODAY, available=True):
    return TimeSlot(id=slot_id, date=day, start_time=start, end_time=end, is_available=available)


@pytest.fixture
def clock():
    """Frozen at 08:00 on the test day."""
    return FrozenClock(datetime(2024, 6, 10, 8, 0))


@pytest.fixture
def client_record():
    return Client(id="c1", name="Ana Souza", phone="(34) 99112-2682")


@pytest.fixture
def slot_records():
    """Two contiguous morning slots plus one later the same day."""
    return [
        make_slot("s1", "09:00", "09:30"),
        make_slot("s2", "09:30", "10:00"),
        make_slot("s3", "14:00", "14:30"),
    ]


@pytest.fixture
def storage(client_record, slot_records):
    return InMemoryStorage(initial={
        CLIENTS: [client_record.to_record()],
        TIME_SLOTS: [s.to_record() for s in slot_records],
    })


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(storage, clock, notifier):
    """Initialized engine over the seeded in-memory storage."""
    return BookingEngine(storage, clock=clock, notifier=notifier).initialize()


@pytest.fixture
def slot_factory():
    return make_slot


@pytest.fixture
def flaky_storage(client_record, slot_records):
    """Build a seeded FlakyStorage failing writes to the given collections."""
    def _create(failing=(), error=None):
        return FlakyStorage(
            failing=failing,
            error=error,
            initial={
                CLIENTS: [client_record.to_record()],
                TIME_SLOTS: [s.to_record() for s in slot_records],
            },
        )
    return _create
