"""Slot reservation: flip availability on booking, restore it on cancellation.

Booking a slot also takes its contiguous successor (same date, starts when the
booked slot ends) so that a service spanning two listed half-hour slots is not
double-booked. Whether cancellation frees that successor again is a policy:

- KEEP_RESERVED: successor stays unavailable (historical behaviour)
- RELEASE: successor is freed too, unless a scheduled appointment holds it
"""
from enum import Enum
from typing import Optional, Tuple

from booking_engine.errors import SlotNotFound, SlotUnavailable
from booking_engine.logging_config import get_logger
from booking_engine.models import AppointmentStatus, TimeSlot
from booking_engine.store import EntityStore, WriteResult
from booking_engine.storage import TIME_SLOTS

logger = get_logger(__name__)

Slots = Tuple[TimeSlot, ...]


class SuccessorPolicy(str, Enum):
    """What release() does with the contiguous successor slot."""
    KEEP_RESERVED = "keep_reserved"
    RELEASE = "release"


def find_successor(slots: Slots, slot: TimeSlot) -> Optional[TimeSlot]:
    """The slot on the same date starting exactly when `slot` ends."""
    return next(
        (s for s in slots if s.date == slot.date and s.start_time == slot.end_time),
        None
    )


def _with_availability(slots: Slots, changes) -> Slots:
    return tuple(
        s.model_copy(update={"is_available": changes[s.id]}) if s.id in changes else s
        for s in slots
    )


class SlotReservation:
    """
    Reserve and release time slots in the Entity Store.

    plan_* methods validate and compute the new slot collection without
    writing, so the lifecycle can commit slots and appointments together.
    Callers must hold store.lock between planning and committing.
    """

    def __init__(
        self,
        store: EntityStore,
        successor_policy: SuccessorPolicy = SuccessorPolicy.KEEP_RESERVED
    ):
        self.store = store
        self.successor_policy = SuccessorPolicy(successor_policy)

    def _require(self, slot_id: str) -> TimeSlot:
        slot = self.store.get(TIME_SLOTS, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        return slot

    def find_successor(self, slot_id: str) -> Optional[TimeSlot]:
        """
        Get the contiguous successor of a slot.

        Raises:
            SlotNotFound: If slot_id is unknown
        """
        return find_successor(self.store.time_slots, self._require(slot_id))

    def plan_reserve(self, slot_id: str) -> Slots:
        """
        Compute the slot collection after reserving slot_id.

        Raises:
            SlotNotFound: If slot_id is unknown
            SlotUnavailable: If the slot is already reserved
        """
        slot = self._require(slot_id)
        if not slot.is_available:
            raise SlotUnavailable(slot_id)

        changes = {slot.id: False}
        successor = find_successor(self.store.time_slots, slot)
        if successor is not None and successor.is_available:
            changes[successor.id] = False

        return _with_availability(self.store.time_slots, changes)

    def plan_release(self, slot_id: str) -> Slots:
        """
        Compute the slot collection after releasing slot_id.

        Raises:
            SlotNotFound: If slot_id is unknown
        """
        slot = self._require(slot_id)
        changes = {slot.id: True}

        if self.successor_policy == SuccessorPolicy.RELEASE:
            successor = find_successor(self.store.time_slots, slot)
            if successor is not None and not successor.is_available and not self._held(successor.id):
                changes[successor.id] = True

        return _with_availability(self.store.time_slots, changes)

    def _held(self, slot_id: str) -> bool:
        return any(
            a.time_slot_id == slot_id and a.status == AppointmentStatus.SCHEDULED
            for a in self.store.appointments
        )

    def reserve(self, slot_id: str) -> WriteResult:
        """
        Reserve a slot (and its contiguous successor when available).

        The availability check and the flip happen under the store lock with
        no I/O in between.

        Returns:
            WriteResult whose value is the updated slot collection
        """
        with self.store.lock:
            updated = self.plan_reserve(slot_id)
            result = self.store.commit({TIME_SLOTS: updated}, value=updated)

        logger.info("slot_reserved", slot_id=slot_id, durable=result.durable)
        return result

    def release(self, slot_id: str) -> WriteResult:
        """
        Make a slot available again, applying the successor policy.

        Returns:
            WriteResult whose value is the updated slot collection
        """
        with self.store.lock:
            updated = self.plan_release(slot_id)
            result = self.store.commit({TIME_SLOTS: updated}, value=updated)

        logger.info(
            "slot_released",
            slot_id=slot_id,
            successor_policy=self.successor_policy.value,
            durable=result.durable
        )
        return result
