from datetime import timedelta

import pytest

from telemed_booking.schemas.availability_settings import default_business_hours
from telemed_booking.services.slots.calculator import generate_candidate_slots
from telemed_booking.services.slots.conflicts import (
    busy_intervals,
    filter_conflicting_slots,
    in_scope,
    overlaps,
)
from telemed_booking.services.slots.types import ExistingAppointment, Interval, Scope

from conftest import LA, MONDAY, at

THIRTY = timedelta(minutes=30)


@pytest.mark.parametrize("a, b, expected", [
    (("10:00", "10:30"), ("10:15", "10:45"), True),
    (("10:00", "10:30"), ("10:30", "11:00"), False),   # touching ends
    (("10:00", "11:00"), ("10:15", "10:30"), True),    # containment
    (("09:00", "09:30"), ("10:00", "10:30"), False),
])
def test_overlaps_is_half_open_and_symmetric(a, b, expected):
    s1, e1 = at(a[0]), at(a[1])
    s2, e2 = at(b[0]), at(b[1])
    assert overlaps(s1, e1, s2, e2) is expected
    assert overlaps(s2, e2, s1, e1) is expected


def test_scope_provider_takes_precedence():
    appt = ExistingAppointment(start=at("10:00"), provider_id="prov-2", resource_id="room-1")
    # same resource but different provider → not competing
    assert not in_scope(Scope(provider_id="prov-1", resource_id="room-1"), appt)
    assert in_scope(Scope(provider_id="prov-2"), appt)


def test_scope_falls_back_to_resource_when_provider_missing_on_one_side():
    appt = ExistingAppointment(start=at("10:00"), resource_id="room-1")
    assert in_scope(Scope(provider_id="prov-1", resource_id="room-1"), appt)
    assert not in_scope(Scope(provider_id="prov-1", resource_id="room-2"), appt)


def test_patient_scope_only_without_provider_and_resource():
    appt = ExistingAppointment(start=at("10:00"), provider_id="prov-9", patient_id="pat-1")
    assert in_scope(Scope(patient_id="pat-1"), appt)
    assert not in_scope(Scope(provider_id="prov-1", patient_id="pat-1"), appt)


def test_ids_are_compared_as_strings():
    appt = ExistingAppointment(start=at("10:00"), provider_id=7)
    assert in_scope(Scope(provider_id="7"), appt)


@pytest.mark.parametrize("status", ["Cancelled", "canceled", "CancelledByPatient", " cancel "])
def test_cancelled_appointments_are_not_busy(status):
    appt = ExistingAppointment(start=at("10:00"), end=at("10:30"), provider_id="prov-1", status=status)
    assert busy_intervals([appt], Scope(provider_id="prov-1"), THIRTY) == []


def test_missing_end_assumes_slot_duration():
    appt = ExistingAppointment(start=at("10:00"), provider_id="prov-1")
    assert busy_intervals([appt], Scope(provider_id="prov-1"), THIRTY) == [
        Interval(at("10:00"), at("10:30")),
    ]


def test_buffer_pads_end_and_excluded_ids_skipped():
    appointments = [
        ExistingAppointment(start=at("10:00"), end=at("10:30"), provider_id="prov-1", id="a"),
        ExistingAppointment(start=at("12:00"), end=at("12:30"), provider_id="prov-1", id="b"),
    ]
    busy = busy_intervals(
        appointments, Scope(provider_id="prov-1"), THIRTY,
        buffer=timedelta(minutes=10), exclude_ids=["b"],
    )
    assert busy == [Interval(at("10:00"), at("10:40"))]


def test_filter_drops_only_overlapping_slots_in_scope():
    slots = generate_candidate_slots(
        MONDAY, MONDAY, 30, "prov-1", "prac-1", default_business_hours(), LA,
    )
    appointments = [
        ExistingAppointment(start=at("10:00"), end=at("10:30"), provider_id="prov-1"),
        ExistingAppointment(start=at("11:15"), end=at("11:45"), provider_id="prov-1"),
        ExistingAppointment(start=at("14:00"), end=at("15:00"), provider_id="prov-2"),
        ExistingAppointment(start=at("16:00"), end=at("16:30"), provider_id="prov-1", status="Canceled"),
    ]

    available = filter_conflicting_slots(slots, appointments, slot_duration=30)
    starts = [s.start.strftime("%H:%M") for s in available]

    assert "10:00" not in starts
    assert "11:00" not in starts and "11:30" not in starts
    assert "14:00" in starts and "16:00" in starts
    assert len(available) == 16 - 3
