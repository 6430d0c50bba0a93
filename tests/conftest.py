import asyncio
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from telemed_booking.config import RegionMapping
from telemed_booking.exceptions import ExternalQueryError
from telemed_booking.models import Base
from telemed_booking.services.practice_management import parse_datetime
from telemed_booking.services.retry import RetryPolicy
from telemed_booking.services.scheduling import SchedulingFacade
from telemed_booking.services.settings_store import SettingsStore
from telemed_booking.services.slots.cache import AvailabilityCache
from telemed_booking.services.slots.config import BookingConfig
from telemed_booking.services.slots.overlay import BookingOverlayCache
from telemed_booking.services.slots.redis_store import MemoryCacheBackend
from telemed_booking.services.slots.types import ExistingAppointment

LA = ZoneInfo("America/Los_Angeles")
MONDAY = date(2024, 6, 10)
# Sunday noon before MONDAY
NOW = datetime(2024, 6, 9, 12, 0, tzinfo=LA)


def at(hhmm: str, day: date = MONDAY) -> datetime:
    """Local wall-clock time on `day` in the practice timezone."""
    return datetime.combine(day, time.fromisoformat(hhmm), tzinfo=LA)


class Clock:
    """Manually advanced unix-time clock for the in-memory backend."""

    def __init__(self, start: datetime = NOW):
        self.value = start.timestamp()

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakePracticeManagement:
    """
    In-memory practice-management system.

    visible=False mimics replication lag: created appointments are
    acknowledged but not returned by queries.
    """

    def __init__(self):
        self.appointments: list[ExistingAppointment] = []
        self.created: list[dict] = []
        self.updated: list[tuple[str, dict]] = []
        self.cancelled: list[str] = []
        self.visible = True
        self.query_error: Exception | None = None
        self.create_errors: list[Exception] = []
        self.cancel_error: Exception | None = None
        self.query_calls = 0
        self.block: asyncio.Event | None = None
        self._next_id = 1

    def add(self, start: str, end: str | None, provider_id="prov-1", **kwargs) -> ExistingAppointment:
        appt = ExistingAppointment(
            start=at(start),
            end=at(end) if end else None,
            provider_id=provider_id,
            **kwargs,
        )
        self.appointments.append(appt)
        return appt

    async def query_appointments(self, scope, start, end, practice_id=None):
        self.query_calls += 1
        if self.block is not None:
            await self.block.wait()
        if self.query_error is not None:
            raise self.query_error
        return list(self.appointments)

    async def create_appointment(self, payload):
        if self.create_errors:
            raise self.create_errors.pop(0)
        appointment_id = f"appt-{self._next_id}"
        self._next_id += 1
        self.created.append(payload)
        if self.visible:
            self.appointments.append(ExistingAppointment(
                start=parse_datetime(payload["startTime"]),
                end=parse_datetime(payload["endTime"]),
                provider_id=payload.get("providerId"),
                resource_id=payload.get("resourceId"),
                patient_id=payload.get("patientId"),
                status="Scheduled",
                id=appointment_id,
            ))
        return {"id": appointment_id, **payload}

    async def update_appointment(self, appointment_id, changes):
        self.updated.append((appointment_id, changes))
        return {"id": appointment_id, **changes}

    async def cancel_appointment(self, appointment_id):
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(appointment_id)
        self.appointments = [a for a in self.appointments if a.id != appointment_id]
        return {"id": appointment_id, "status": "Cancelled"}


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def backend(clock):
    return MemoryCacheBackend(clock=clock)


@pytest.fixture
def availability_cache(backend):
    return AvailabilityCache(backend, prefix="test", timeout=1.0)


@pytest.fixture
def overlay(backend, clock):
    return BookingOverlayCache(backend, prefix="test", timeout=1.0, clock=clock)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def settings_store(session_factory):
    return SettingsStore(session_factory, timeout=5.0)


@pytest.fixture
def pm():
    return FakePracticeManagement()


@pytest.fixture
def region_mapping():
    return {
        "CA": RegionMapping(
            practice_id="prac-1",
            default_provider_id="prov-1",
            provider_name="Dr. Example",
        ),
    }


@pytest.fixture
def facade(settings_store, pm, availability_cache, overlay, region_mapping):
    return SchedulingFacade(
        settings_store=settings_store,
        pm_client=pm,
        cache=availability_cache,
        overlay=overlay,
        config=BookingConfig(),
        region_mapping=region_mapping,
        retry=RetryPolicy(attempts=2, timeout=1.0, base_delay=0),
        clock=lambda: NOW,
    )


def transient_query_error() -> ExternalQueryError:
    return ExternalQueryError("upstream unavailable", transient=True, status_code=503)


def monday_slot_starts(response: dict) -> list[str]:
    return [
        datetime.fromisoformat(s["start"]).astimezone(LA).strftime("%H:%M")
        for s in response["slots"]
        if datetime.fromisoformat(s["start"]).astimezone(LA).date() == MONDAY
    ]
