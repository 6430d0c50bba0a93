# backend/telemed_booking/services/slots/rules.py
"""
Business rules applied after conflict filtering.

Order is fixed:
  a. slot starts before now
  b. slot is more than advance_booking_days ahead
  c. slot date is a blocked date
  d. slot is outside its weekday's enabled window
  e. slot overlaps a blocked time slot of that date
  f. max_slots_per_day keeps the earliest N of each date
"""

import logging
from datetime import datetime, time
from typing import Iterable

from ...schemas.availability_settings import AvailabilitySettings
from .config import time_str_to_minutes
from .conflicts import overlaps
from .types import CandidateSlot

logger = logging.getLogger(__name__)


def slot_sort_key(slot: CandidateSlot) -> tuple:
    return slot.start, str(slot.provider_id or ""), str(slot.resource_id or "")


def apply_business_rules(
    slots: Iterable[CandidateSlot],
    rules: AvailabilitySettings,
    now: datetime,
) -> list[CandidateSlot]:
    """
    Filter slots by business rules.

    Returns:
        Slots sorted ascending by start (tie-break provider id, resource id).
    """
    tz = rules.tz
    blocked_dates = set(rules.blocked_dates)
    blocked_by_date: dict = {}
    for blocked in rules.blocked_time_slots:
        blocked_by_date.setdefault(blocked.date, []).append((
            datetime.combine(blocked.date, time.fromisoformat(blocked.start_time), tzinfo=tz),
            datetime.combine(blocked.date, time.fromisoformat(blocked.end_time), tzinfo=tz),
        ))

    kept: list[CandidateSlot] = []
    for slot in slots:
        # a. past
        if slot.start < now:
            continue

        # b. advance booking window, in whole days
        if (slot.start - now).days > rules.advance_booking_days:
            continue

        local_start = slot.start.astimezone(tz)
        local_end = slot.end.astimezone(tz)
        slot_date = local_start.date()

        # c. blocked date
        if slot_date in blocked_dates:
            continue

        # d. business hours of the weekday
        if not _within_business_hours(rules, local_start, local_end):
            continue

        # e. blocked time slots of that date
        if any(overlaps(slot.start, slot.end, b_start, b_end)
               for b_start, b_end in blocked_by_date.get(slot_date, ())):
            continue

        kept.append(slot)

    kept.sort(key=slot_sort_key)

    # f. per-day cap
    if rules.max_slots_per_day:
        per_day: dict = {}
        limited = []
        for slot in kept:
            slot_date = slot.start.astimezone(tz).date()
            count = per_day.get(slot_date, 0)
            if count < rules.max_slots_per_day:
                limited.append(slot)
                per_day[slot_date] = count + 1
        kept = limited

    logger.debug("Business rules kept %d slots", len(kept))
    return kept


def _within_business_hours(
    rules: AvailabilitySettings,
    local_start: datetime,
    local_end: datetime,
) -> bool:
    if local_end.date() != local_start.date():
        return False

    hours = rules.hours_for(local_start.date())
    if not hours.enabled:
        return False

    start_min = local_start.hour * 60 + local_start.minute
    end_min = local_end.hour * 60 + local_end.minute
    return (
        start_min >= time_str_to_minutes(hours.start)
        and end_min <= time_str_to_minutes(hours.end)
    )
