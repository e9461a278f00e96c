"""Day-range slot generation.

Builds fixed-length slots across a date range from the operating hours in
config.OPERATING_HOURS (08:00-20:00 in 30-minute steps, closed on Sunday).
"""
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, Any, List, Optional

from booking_engine import config
from booking_engine.models import TimeSlot


def new_id() -> str:
    """Opaque record id."""
    return uuid.uuid4().hex


def generate_day_slots(
    target: date,
    start_hour: int = config.OPERATING_HOURS["start_hour"],
    end_hour: int = config.OPERATING_HOURS["end_hour"],
    slot_minutes: int = config.OPERATING_HOURS["slot_duration_minutes"],
) -> List[TimeSlot]:
    """
    Generate contiguous slots for one day.

    Args:
        target: Calendar day
        start_hour: First slot starts at this hour
        end_hour: Last slot ends at or before this hour
        slot_minutes: Slot length

    Returns:
        Available slots in start-time order
    """
    if not 0 <= start_hour < end_hour <= 24:
        raise ValueError(f"Invalid operating hours {start_hour}-{end_hour}")
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")

    slots = []
    current = datetime.combine(target, datetime.min.time()) + timedelta(hours=start_hour)
    day_end = datetime.combine(target, datetime.min.time()) + timedelta(hours=end_hour)
    step = timedelta(minutes=slot_minutes)

    while current + step <= day_end:
        slot_end = current + step
        # A slot may not spill over midnight
        if slot_end.date() != target:
            break
        slots.append(TimeSlot(
            id=new_id(),
            date=target,
            start_time=current.strftime("%H:%M"),
            end_time=slot_end.strftime("%H:%M"),
            is_available=True,
        ))
        current = slot_end

    return slots


def generate_range_slots(
    start_date: date,
    end_date: date,
    operating_hours: Optional[Dict[str, Any]] = None,
) -> List[TimeSlot]:
    """
    Generate slots for every open day in [start_date, end_date].

    Args:
        start_date: First day (inclusive)
        end_date: Last day (inclusive)
        operating_hours: Overrides for config.OPERATING_HOURS

    Returns:
        Generated slots, ordered by date then start time
    """
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date")

    hours = {**config.OPERATING_HOURS, **(operating_hours or {})}
    closed = {day.lower() for day in hours.get("closed_weekdays", [])}

    slots = []
    current = start_date
    while current <= end_date:
        if current.strftime("%A").lower() not in closed:
            slots.extend(generate_day_slots(
                current,
                start_hour=hours["start_hour"],
                end_hour=hours["end_hour"],
                slot_minutes=hours["slot_duration_minutes"],
            ))
        current += timedelta(days=1)

    return slots
