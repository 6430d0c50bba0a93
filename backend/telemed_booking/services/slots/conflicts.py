# backend/telemed_booking/services/slots/conflicts.py
"""
Conflict detection between candidate slots and existing appointments.

Intervals are half-open: a slot ending exactly when another begins does
not conflict.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from .types import CandidateSlot, ExistingAppointment, Interval, Scope

logger = logging.getLogger(__name__)


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """True if [s1, e1) and [s2, e2) intersect."""
    return s1 < e2 and s2 < e1


def in_scope(scope: Scope, appointment: ExistingAppointment) -> bool:
    """
    Decide whether an existing appointment competes with the given scope.

    Provider is compared when both sides have one; otherwise resource when
    both sides have one; patient only when the scope names neither a
    provider nor a resource.
    """
    if scope.provider_id is not None and appointment.provider_id is not None:
        return str(scope.provider_id) == str(appointment.provider_id)

    if scope.resource_id is not None and appointment.resource_id is not None:
        return str(scope.resource_id) == str(appointment.resource_id)

    if scope.provider_id is None and scope.resource_id is None:
        if scope.patient_id is not None and appointment.patient_id is not None:
            return str(scope.patient_id) == str(appointment.patient_id)

    return False


def busy_intervals(
    appointments: Iterable[ExistingAppointment],
    scope: Scope,
    default_duration: timedelta,
    buffer: timedelta = timedelta(0),
    exclude_ids: Iterable[str] = (),
) -> list[Interval]:
    """
    Intervals occupied in `scope`, sorted by start.

    Cancelled appointments and `exclude_ids` are skipped. An appointment
    without an end is assumed to last `default_duration`.
    """
    excluded = {str(i) for i in exclude_ids}
    intervals = [
        appt.interval(default_duration, buffer)
        for appt in appointments
        if not appt.is_cancelled
        and (appt.id is None or str(appt.id) not in excluded)
        and in_scope(scope, appt)
    ]
    return sorted(intervals)


def filter_conflicting_slots(
    slots: Sequence[CandidateSlot],
    appointments: Sequence[ExistingAppointment],
    slot_duration: int,
    buffer_time: int = 0,
) -> list[CandidateSlot]:
    """Drop candidate slots that overlap an existing appointment in their scope."""
    default_duration = timedelta(minutes=slot_duration)
    buffer = timedelta(minutes=buffer_time)

    busy_by_scope: dict[Scope, list[Interval]] = {}
    available = []
    for slot in slots:
        scope = slot.scope
        if scope not in busy_by_scope:
            busy_by_scope[scope] = busy_intervals(appointments, scope, default_duration, buffer)

        if not any(overlaps(slot.start, slot.end, b.start, b.end) for b in busy_by_scope[scope]):
            available.append(slot)

    logger.debug(
        "Filtered conflicting slots: potential=%d available=%d conflicts=%d",
        len(slots), len(available), len(slots) - len(available),
    )
    return available
