"""Appointment lifecycle: creation, status transitions and queries.

State machine:

    scheduled --> completed
    scheduled --> cancelled

completed and cancelled are terminal. There is no way back to scheduled.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from booking_engine.availability import is_offerable
from booking_engine.clock import SystemClock
from booking_engine.errors import (
    AppointmentNotFound,
    ClientNotFound,
    InvalidService,
    InvalidTransition,
    SlotNotFound,
    SlotUnavailable,
)
from booking_engine.logging_config import get_logger
from booking_engine.models import (
    Appointment,
    AppointmentStatus,
    Client,
    ServiceCatalog,
    TimeSlot,
)
from booking_engine.reservation import SlotReservation
from booking_engine.slots import new_id
from booking_engine.store import EntityStore, WriteResult
from booking_engine.storage import APPOINTMENTS, CLIENTS, TIME_SLOTS

logger = get_logger(__name__)


# Current status -> statuses it may move to
VALID_TRANSITIONS: Dict[AppointmentStatus, List[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.COMPLETED: [],
    AppointmentStatus.CANCELLED: [],
}


def validate_transition(current: AppointmentStatus, intended: AppointmentStatus) -> bool:
    """
    Validate an appointment status change.

    Example:
        >>> validate_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED)
        True
        >>> validate_transition(AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED)
        False
    """
    return intended in VALID_TRANSITIONS.get(current, [])


@dataclass(frozen=True)
class Booking:
    """Result of the public booking flow."""
    client: Client
    appointment: Appointment


class AppointmentLifecycle:
    """Creates appointments and moves them through their states."""

    def __init__(
        self,
        store: EntityStore,
        reservation: SlotReservation,
        catalog: ServiceCatalog,
        clock=None
    ):
        self.store = store
        self.reservation = reservation
        self.catalog = catalog
        self.clock = clock or SystemClock()

    # ---------------------------------------------------------------- creation

    def _resolve_service(self, service: str) -> str:
        config = self.catalog.get(service)
        if config is None:
            raise InvalidService(service)
        return config.name

    def _check_bookable(self, time_slot_id: str, now: datetime) -> TimeSlot:
        slot = self.store.get(TIME_SLOTS, time_slot_id)
        if slot is None:
            raise SlotNotFound(time_slot_id)
        if not slot.is_available:
            raise SlotUnavailable(time_slot_id)
        if not is_offerable(slot, now):
            raise SlotUnavailable(time_slot_id, "has already started")
        return slot

    def create(self, client_id: str, time_slot_id: str, service: str) -> WriteResult:
        """
        Book a slot for an existing client.

        All-or-nothing: the appointment and the slot reservation are
        committed together, or nothing changes.

        Args:
            client_id: Existing client id
            time_slot_id: Slot to book
            service: Service id or label from the catalogue

        Returns:
            WriteResult whose value is the new Appointment

        Raises:
            ClientNotFound, SlotNotFound, SlotUnavailable, InvalidService
        """
        label = self._resolve_service(service)

        with self.store.lock:
            if self.store.get(CLIENTS, client_id) is None:
                raise ClientNotFound(client_id)

            now = self.clock.now()
            self._check_bookable(time_slot_id, now)
            updated_slots = self.reservation.plan_reserve(time_slot_id)

            appointment = Appointment(
                id=new_id(),
                client_id=client_id,
                time_slot_id=time_slot_id,
                status=AppointmentStatus.SCHEDULED,
                service=label,
                created_at=now,
            )
            result = self.store.commit(
                {
                    TIME_SLOTS: updated_slots,
                    APPOINTMENTS: self.store.appointments + (appointment,),
                },
                value=appointment
            )

        logger.info(
            "appointment_created",
            appointment_id=appointment.id,
            client_id=client_id,
            time_slot_id=time_slot_id,
            service=label,
            durable=result.durable
        )
        return result

    def book(
        self,
        name: str,
        phone: str,
        time_slot_id: str,
        service: str,
        email: Optional[str] = None,
        notes: Optional[str] = None
    ) -> WriteResult:
        """
        Public booking flow: register the client and book in one step.

        The client is stored only if the appointment can be created.

        Returns:
            WriteResult whose value is a Booking
        """
        label = self._resolve_service(service)

        with self.store.lock:
            now = self.clock.now()
            self._check_bookable(time_slot_id, now)
            updated_slots = self.reservation.plan_reserve(time_slot_id)

            client = Client(id=new_id(), name=name, phone=phone, email=email or None, notes=notes or None)
            appointment = Appointment(
                id=new_id(),
                client_id=client.id,
                time_slot_id=time_slot_id,
                status=AppointmentStatus.SCHEDULED,
                service=label,
                created_at=now,
            )
            result = self.store.commit(
                {
                    CLIENTS: self.store.clients + (client,),
                    TIME_SLOTS: updated_slots,
                    APPOINTMENTS: self.store.appointments + (appointment,),
                },
                value=Booking(client=client, appointment=appointment)
            )

        logger.info(
            "booking_confirmed",
            appointment_id=appointment.id,
            client_id=client.id,
            time_slot_id=time_slot_id,
            durable=result.durable
        )
        return result

    # ------------------------------------------------------------- transitions

    def get(self, appointment_id: str) -> Appointment:
        appointment = self.store.get(APPOINTMENTS, appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _transitioned(self, appointment_id: str, intended: AppointmentStatus) -> Appointment:
        appointment = self.get(appointment_id)
        if not validate_transition(appointment.status, intended):
            raise InvalidTransition(appointment_id, appointment.status, intended)
        return appointment.model_copy(update={"status": intended})

    def _replace(self, appointment: Appointment):
        return tuple(
            appointment if a.id == appointment.id else a
            for a in self.store.appointments
        )

    def complete(self, appointment_id: str) -> WriteResult:
        """
        Mark a scheduled appointment as completed. Slot stays consumed.

        Raises:
            AppointmentNotFound, InvalidTransition
        """
        with self.store.lock:
            completed = self._transitioned(appointment_id, AppointmentStatus.COMPLETED)
            result = self.store.commit({APPOINTMENTS: self._replace(completed)}, value=completed)

        logger.info("appointment_completed", appointment_id=appointment_id, durable=result.durable)
        return result

    def cancel(self, appointment_id: str) -> WriteResult:
        """
        Cancel a scheduled appointment and release its slot.

        Raises:
            AppointmentNotFound, InvalidTransition
        """
        with self.store.lock:
            cancelled = self._transitioned(appointment_id, AppointmentStatus.CANCELLED)
            changes = {APPOINTMENTS: self._replace(cancelled)}
            try:
                changes[TIME_SLOTS] = self.reservation.plan_release(cancelled.time_slot_id)
            except SlotNotFound:
                logger.warning(
                    "cancel_without_slot",
                    appointment_id=appointment_id,
                    time_slot_id=cancelled.time_slot_id
                )
            result = self.store.commit(changes, value=cancelled)

        logger.info("appointment_cancelled", appointment_id=appointment_id, durable=result.durable)
        return result

    def purge(self, appointment_id: str) -> WriteResult:
        """
        Physically delete a completed or cancelled appointment.

        Raises:
            AppointmentNotFound, InvalidTransition (appointment still scheduled)
        """
        with self.store.lock:
            appointment = self.get(appointment_id)
            if not appointment.is_terminal:
                raise InvalidTransition(appointment_id, appointment.status, "deleted")
            result = self.store.remove(APPOINTMENTS, appointment_id)

        logger.info("appointment_purged", appointment_id=appointment_id, durable=result.durable)
        return result

    def flag_reminder(self, appointment_id: str) -> Optional[WriteResult]:
        """
        Set reminder_sent on a still-scheduled appointment.

        When storage does not acknowledge the flag, the in-memory flag is
        cleared again so a later sweep retries, and the non-durable result is
        returned.

        Returns:
            WriteResult, or None when the appointment is no longer eligible
            (cancelled, completed, removed or already flagged)
        """
        with self.store.lock:
            appointment = self.store.get(APPOINTMENTS, appointment_id)
            if (
                appointment is None
                or appointment.status != AppointmentStatus.SCHEDULED
                or appointment.reminder_sent
            ):
                return None
            flagged = appointment.model_copy(update={"reminder_sent": True})
            result = self.store.commit({APPOINTMENTS: self._replace(flagged)}, value=flagged)
            if not result.durable:
                # Stored copy still reads unflagged; memory must match it
                self.store.commit({APPOINTMENTS: self._replace(appointment)}, value=appointment)
            return result

    # ----------------------------------------------------------------- queries

    def by_client(self, client_id: str) -> List[Appointment]:
        return [a for a in self.store.appointments if a.client_id == client_id]

    def by_date(self, target: Union[date, str]) -> List[Appointment]:
        """Appointments whose slot falls on `target` (any status)."""
        if isinstance(target, str):
            target = date.fromisoformat(target)
        slot_ids = {s.id for s in self.store.time_slots if s.date == target}
        return [a for a in self.store.appointments if a.time_slot_id in slot_ids]

    def upcoming(self, now: Optional[datetime] = None) -> List[Appointment]:
        """Scheduled appointments starting strictly after now, soonest first."""
        now = now or self.clock.now()
        slots = {s.id: s for s in self.store.time_slots}
        pending = [
            (slots[a.time_slot_id].start_at, a)
            for a in self.store.appointments
            if a.status == AppointmentStatus.SCHEDULED
            and a.time_slot_id in slots
            and slots[a.time_slot_id].start_at > now
        ]
        pending.sort(key=lambda item: item[0])
        return [a for _, a in pending]

    def agenda(self, target: Union[date, str]) -> List[Appointment]:
        """Scheduled appointments on one day ordered by start time."""
        slots = {s.id: s for s in self.store.time_slots}
        day = [
            a for a in self.by_date(target)
            if a.status == AppointmentStatus.SCHEDULED
        ]
        return sorted(day, key=lambda a: slots[a.time_slot_id].start_time)
