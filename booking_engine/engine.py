"""Booking engine: the explicitly constructed scheduling context.

Wires the Entity Store, reservation logic, appointment lifecycle and reminder
scheduler around one storage backend and one clock. Nothing here is a
process-wide singleton; build an engine, call initialize(), pass it around.

Usage:
    engine = BookingEngine(JSONFileStorage("data"))
    engine.initialize()
    slot = engine.available_slots()[0]
    engine.book("Ana", "34 99112-2682", slot.id, "Design normal")
"""
from datetime import date
from typing import Any, Dict, List, Optional, Union

from booking_engine import config
from booking_engine.availability import available_slots, slots_for_date, sort_slots
from booking_engine.clock import SystemClock
from booking_engine.errors import ClientNotFound, SlotNotFound, SlotUnavailable
from booking_engine.lifecycle import AppointmentLifecycle
from booking_engine.logging_config import get_logger
from booking_engine.models import (
    EDITABLE_CLIENT_FIELDS,
    Appointment,
    AppointmentStatus,
    BusinessInfo,
    Client,
    ServiceCatalog,
    TimeSlot,
)
from booking_engine.notifications import (
    LoggingNotifier,
    Notifier,
    WebhookNotifier,
    build_share_link,
)
from booking_engine.reminders import ReminderScheduler
from booking_engine.reservation import SlotReservation, SuccessorPolicy
from booking_engine.slots import generate_range_slots, new_id
from booking_engine.storage import CLIENTS, TIME_SLOTS, StorageBackend, storage_from_url
from booking_engine.store import EntityStore, WriteResult

logger = get_logger(__name__)


class BookingEngine:
    """Composition root for every scheduling operation."""

    def __init__(
        self,
        storage: StorageBackend,
        clock=None,
        catalog: Optional[ServiceCatalog] = None,
        strict: bool = False,
        successor_policy: Union[SuccessorPolicy, str] = SuccessorPolicy.KEEP_RESERVED,
        notifier: Optional[Notifier] = None,
        reminder_lead_minutes: int = config.REMINDER["lead_minutes"],
        reminder_tolerance_minutes: int = config.REMINDER["tolerance_minutes"],
        reminder_period_seconds: float = config.REMINDER["period_seconds"],
        reminder_sleep=None,
    ):
        self.clock = clock or SystemClock()
        self.catalog = catalog or ServiceCatalog.from_config(config.SERVICES)
        self.store = EntityStore(storage, strict=strict)
        self.reservation = SlotReservation(self.store, SuccessorPolicy(successor_policy))
        self.lifecycle = AppointmentLifecycle(self.store, self.reservation, self.catalog, self.clock)

        reminder_kwargs = {}
        if reminder_sleep is not None:
            reminder_kwargs["sleep"] = reminder_sleep
        self.reminders = ReminderScheduler(
            self.lifecycle,
            notifier=notifier or LoggingNotifier(),
            clock=self.clock,
            lead_minutes=reminder_lead_minutes,
            tolerance_minutes=reminder_tolerance_minutes,
            period_seconds=reminder_period_seconds,
            **reminder_kwargs
        )

    @classmethod
    def from_settings(cls, settings: config.Settings, clock=None, notifier: Optional[Notifier] = None):
        """Build an engine from runtime settings."""
        if notifier is None and settings.webhook_url:
            notifier = WebhookNotifier(settings.webhook_url)
        return cls(
            storage_from_url(settings.storage_url),
            clock=clock,
            strict=settings.strict_persistence,
            successor_policy=settings.successor_policy,
            notifier=notifier,
            reminder_lead_minutes=settings.reminder_lead_minutes,
            reminder_tolerance_minutes=settings.reminder_tolerance_minutes,
            reminder_period_seconds=settings.reminder_period_seconds,
        )

    def initialize(self) -> "BookingEngine":
        """Load all collections from storage. Returns self for chaining."""
        self.store.initialize()
        return self

    # ------------------------------------------------------------ availability

    def available_slots(self, on: Optional[date] = None) -> List[TimeSlot]:
        """Bookable slots right now, in date/time order, optionally for one day."""
        offer = available_slots(self.store.time_slots, self.clock.now())
        if on is not None:
            return slots_for_date(offer, on)
        return sort_slots(offer)

    def find_next_slot(self, slot_id: str) -> Optional[TimeSlot]:
        return self.reservation.find_successor(slot_id)

    # ----------------------------------------------------------------- clients

    def get_client(self, client_id: str) -> Client:
        client = self.store.get(CLIENTS, client_id)
        if client is None:
            raise ClientNotFound(client_id)
        return client

    def add_client(
        self,
        name: str,
        phone: str,
        email: Optional[str] = None,
        notes: Optional[str] = None
    ) -> WriteResult:
        client = Client(id=new_id(), name=name, phone=phone, email=email or None, notes=notes or None)
        result = self.store.insert(CLIENTS, client)
        logger.info("client_added", client_id=client.id, durable=result.durable)
        return result

    def update_client(self, client_id: str, **changes: Any) -> WriteResult:
        """
        Edit a client's name, phone, email or notes.

        Raises:
            ClientNotFound: Unknown client
            ValueError: Attempt to change a non-editable field (id)
        """
        unknown = set(changes) - set(EDITABLE_CLIENT_FIELDS)
        if unknown:
            raise ValueError(f"Client fields not editable: {', '.join(sorted(unknown))}")

        with self.store.lock:
            current = self.get_client(client_id)
            # Re-validate through the model so field constraints still hold
            updated = Client.model_validate({**current.model_dump(), **changes})
            return self.store.update(CLIENTS, updated)

    def delete_client(self, client_id: str) -> WriteResult:
        with self.store.lock:
            self.get_client(client_id)
            result = self.store.remove(CLIENTS, client_id)
        logger.info("client_deleted", client_id=client_id, durable=result.durable)
        return result

    # ------------------------------------------------------------------- slots

    def get_slot(self, slot_id: str) -> TimeSlot:
        slot = self.store.get(TIME_SLOTS, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        return slot

    def add_slot(self, day: date, start_time: str, end_time: str) -> WriteResult:
        slot = TimeSlot(id=new_id(), date=day, start_time=start_time, end_time=end_time, is_available=True)
        return self.store.insert(TIME_SLOTS, slot)

    def generate_slots(
        self,
        start_date: date,
        end_date: date,
        operating_hours: Optional[Dict[str, Any]] = None
    ) -> WriteResult:
        """
        Create slots for every open day in the range.

        Slots whose (date, startTime) already exists are not duplicated.

        Returns:
            WriteResult whose value is the tuple of slots actually added
        """
        generated = generate_range_slots(start_date, end_date, operating_hours)

        with self.store.lock:
            existing = {s.sort_key for s in self.store.time_slots}
            added = tuple(s for s in generated if s.sort_key not in existing)
            result = self.store.commit({TIME_SLOTS: self.store.time_slots + added}, value=added)

        logger.info(
            "slots_generated",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            added=len(added),
            durable=result.durable
        )
        return result

    def delete_slot(self, slot_id: str) -> WriteResult:
        """
        Remove a slot.

        Raises:
            SlotNotFound: Unknown slot
            SlotUnavailable: A scheduled appointment holds the slot
        """
        with self.store.lock:
            self.get_slot(slot_id)
            held = any(
                a.time_slot_id == slot_id and a.status == AppointmentStatus.SCHEDULED
                for a in self.store.appointments
            )
            if held:
                raise SlotUnavailable(slot_id, "is booked by a scheduled appointment")
            return self.store.remove(TIME_SLOTS, slot_id)

    # ------------------------------------------------------------ appointments

    def create_appointment(self, client_id: str, time_slot_id: str, service: str) -> WriteResult:
        return self.lifecycle.create(client_id, time_slot_id, service)

    def book(self, name: str, phone: str, time_slot_id: str, service: str = config.DEFAULT_SERVICE,
             email: Optional[str] = None, notes: Optional[str] = None) -> WriteResult:
        return self.lifecycle.book(name, phone, time_slot_id, service, email=email, notes=notes)

    def complete(self, appointment_id: str) -> WriteResult:
        return self.lifecycle.complete(appointment_id)

    def cancel(self, appointment_id: str) -> WriteResult:
        return self.lifecycle.cancel(appointment_id)

    def purge(self, appointment_id: str) -> WriteResult:
        return self.lifecycle.purge(appointment_id)

    def get_appointment(self, appointment_id: str) -> Appointment:
        return self.lifecycle.get(appointment_id)

    def appointments_by_client(self, client_id: str) -> List[Appointment]:
        return self.lifecycle.by_client(client_id)

    def appointments_by_date(self, target: Union[date, str]) -> List[Appointment]:
        return self.lifecycle.by_date(target)

    def upcoming_appointments(self) -> List[Appointment]:
        return self.lifecycle.upcoming(self.clock.now())

    def agenda(self, target: Union[date, str]) -> List[Appointment]:
        return self.lifecycle.agenda(target)

    # ---------------------------------------------------------------- business

    @property
    def business_info(self) -> BusinessInfo:
        """Stored profile, or the configured default when none was saved yet."""
        return self.store.business_info or BusinessInfo.model_validate(config.BUSINESS_INFO)

    def update_business_info(self, info: BusinessInfo) -> WriteResult:
        result = self.store.replace_business_info(info)
        logger.info("business_info_updated", durable=result.durable)
        return result

    def share_link(self, public_base_url: str) -> str:
        """WhatsApp link advertising the public booking page."""
        booking_url = public_base_url.rstrip("/") + config.BOOKING_PATH
        return build_share_link(self.business_info.phone, booking_url)

    def reset(self) -> WriteResult:
        """Delete all stored data."""
        logger.warning("store_reset")
        return self.store.reset()
