"""Availability filtering.

available_slots() decides which slots can be offered right now:
- future dates: offered when available
- today: offered only when the start time is strictly after now
- past dates: never offered

TimeFilter narrows an offer list by time-of-day preference and day count.
"""
from datetime import date, datetime
from enum import Enum
from typing import Iterable, List

from booking_engine.models import TimeSlot


def is_offerable(slot: TimeSlot, now: datetime) -> bool:
    """Check whether a single slot can be booked at `now`."""
    if not slot.is_available:
        return False

    today = now.date()
    if slot.date > today:
        return True
    if slot.date == today:
        return slot.start_at > now
    return False


def available_slots(slots: Iterable[TimeSlot], now: datetime) -> List[TimeSlot]:
    """
    Filter slots down to the ones a client may book.

    No ordering is imposed; use sort_slots() when order matters.

    Args:
        slots: All known slots
        now: Reference time (local wall clock)

    Returns:
        Offerable slots, input order preserved
    """
    return [slot for slot in slots if is_offerable(slot, now)]


def sort_slots(slots: Iterable[TimeSlot]) -> List[TimeSlot]:
    """Order by (date, startTime); HH:MM is fixed width so string order is time order."""
    return sorted(slots, key=lambda s: s.sort_key)


def slots_for_date(slots: Iterable[TimeSlot], target: date) -> List[TimeSlot]:
    """Slots on one calendar day, sorted by start time."""
    return sort_slots(s for s in slots if s.date == target)


class TimeOfDay(str, Enum):
    """Time of day preferences."""
    MORNING = "morning"  # Before 12:00
    AFTERNOON = "afternoon"  # 12:00 and after
    ANY = "any"


class TimeFilter:
    """Filter availability slots by time of day."""

    MORNING_CUTOFF = 12  # 12:00 (noon)

    def filter_by_time_of_day(
        self,
        slots: List[TimeSlot],
        preference: TimeOfDay
    ) -> List[TimeSlot]:
        """
        Filter slots by time of day preference.

        Args:
            slots: Available slots
            preference: Morning, afternoon, or any

        Returns:
            Filtered slots
        """
        if preference == TimeOfDay.ANY:
            return list(slots)

        filtered = []
        for slot in slots:
            hour = int(slot.start_time.split(":")[0])

            if preference == TimeOfDay.MORNING and hour < self.MORNING_CUTOFF:
                filtered.append(slot)
            elif preference == TimeOfDay.AFTERNOON and hour >= self.MORNING_CUTOFF:
                filtered.append(slot)

        return filtered

    def limit_to_next_days(
        self,
        slots: List[TimeSlot],
        max_days: int = 3
    ) -> List[TimeSlot]:
        """
        Limit slots to the first N unique days, in date order.

        Args:
            slots: Available slots
            max_days: Maximum number of days to keep

        Returns:
            Slots from at most max_days distinct dates
        """
        seen_dates = set()
        limited = []

        for slot in sort_slots(slots):
            if slot.date not in seen_dates:
                if len(seen_dates) >= max_days:
                    break
                seen_dates.add(slot.date)

            limited.append(slot)

        return limited
