# backend/telemed_booking/services/slots/calculator.py
"""
Candidate slot generation.

Turns business hours into fixed-duration candidate slots for a date range.

Contains:
✓ business_hours (per weekday start/end/enabled)
✓ slot_duration

Does NOT contain:
✗ Existing appointments (conflicts.py)
✗ Blackouts, advance window, per-day cap (rules.py)
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Mapping

from ...schemas.availability_settings import WEEKDAYS, DayHours
from .config import time_str_to_minutes
from .types import CandidateSlot


def generate_candidate_slots(
    from_date: date,
    to_date: date,
    slot_duration: int,
    provider_id: str | None,
    practice_id: str | None,
    business_hours: Mapping[str, DayHours],
    tz: tzinfo,
    resource_id: str | None = None,
) -> list[CandidateSlot]:
    """
    Generate candidate slots for every day in [from_date, to_date].

    Pure function: no I/O, same input → same output.

    Returns:
        Slots in ascending start order. A step whose end would pass the
        day's closing time is dropped (no partial final slot).
    """
    if slot_duration <= 0:
        raise ValueError(f"slot_duration must be positive, got {slot_duration}")

    slots: list[CandidateSlot] = []
    current = from_date
    while current <= to_date:
        slots.extend(_day_slots(
            current, slot_duration, provider_id, practice_id,
            business_hours, tz, resource_id,
        ))
        current += timedelta(days=1)

    return slots


def _day_slots(
    target_date: date,
    slot_duration: int,
    provider_id: str | None,
    practice_id: str | None,
    business_hours: Mapping[str, DayHours],
    tz: tzinfo,
    resource_id: str | None,
) -> list[CandidateSlot]:
    hours = business_hours.get(WEEKDAYS[target_date.weekday()])
    if hours is None or not hours.enabled:
        return []

    start_min = time_str_to_minutes(hours.start)
    end_min = time_str_to_minutes(hours.end)
    midnight = datetime.combine(target_date, time.min, tzinfo=tz)

    slots = []
    t = start_min
    while t < end_min:
        if t + slot_duration <= end_min:
            slots.append(CandidateSlot(
                start=midnight + timedelta(minutes=t),
                end=midnight + timedelta(minutes=t + slot_duration),
                provider_id=provider_id,
                practice_id=practice_id,
                duration=slot_duration,
                resource_id=resource_id,
            ))
        t += slot_duration

    return slots
