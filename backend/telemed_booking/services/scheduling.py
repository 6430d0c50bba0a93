"""
Scheduling facade: availability listing and appointment mutations.

Reads:  cache → settings → candidates → upstream + overlay → conflicts
        → business rules → cache → page
Writes: resolve (fail closed) → upstream write (fail closed)
        → overlay → cache invalidation

Nothing here locks across requests. Two concurrent bookings of the same
interval are separated by the overlay and immediate invalidation, and
ultimately by the practice-management system itself.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, Mapping

from ..config import RegionMapping
from ..exceptions import ExternalServiceError, ExternalWriteError, NoSlotFound, UnsupportedRegion
from ..schemas.availability_settings import AvailabilitySettings
from ..utils.pagination import paginate, parse_pagination
from .practice_management import PracticeManagementClient, extract_appointment_id
from .retry import RetryPolicy, call_with_retry
from .settings_store import SettingsStore
from .slots.availability import calculate_availability, fetch_existing_appointments
from .slots.cache import AvailabilityCache
from .slots.config import BookingConfig
from .slots.conflicts import busy_intervals
from .slots.invalidator import invalidate_availability_cache
from .slots.overlay import BookingOverlayCache
from .slots.resolver import resolve_booking_interval, search_window
from .slots.types import (
    BookingResult,
    CandidateSlot,
    Interval,
    RescheduleResult,
    Resolution,
    Scope,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityQuery:
    region: str
    provider_id: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int | None = None
    limit: int | None = None


@dataclass
class BookingRequest:
    start: datetime
    end: datetime | None = None
    duration_minutes: int | None = None
    region: str | None = None
    provider_id: str | None = None
    resource_id: str | None = None
    patient_id: str | None = None
    practice_id: str | None = None
    details: dict = field(default_factory=dict)  # passed upstream as-is (reason, notes, ...)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_slot(slot: CandidateSlot) -> dict:
    return {
        "start": slot.start.isoformat(),
        "end": slot.end.isoformat(),
        "provider_id": slot.provider_id,
        "practice_id": slot.practice_id,
        "resource_id": slot.resource_id,
        "duration": slot.duration,
    }


class SchedulingFacade:
    def __init__(
        self,
        settings_store: SettingsStore,
        pm_client: PracticeManagementClient,
        cache: AvailabilityCache,
        overlay: BookingOverlayCache,
        config: BookingConfig = BookingConfig(),
        region_mapping: Mapping[str, RegionMapping] | None = None,
        retry: RetryPolicy = RetryPolicy(),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings_store = settings_store
        self.pm_client = pm_client
        self.cache = cache
        self.overlay = overlay
        self.config = config
        self.region_mapping = {k.upper(): v for k, v in (region_mapping or {}).items()}
        self.retry = retry
        self.clock = clock

    def _region(self, region: str) -> RegionMapping:
        mapping = self.region_mapping.get(region.upper())
        if mapping is None:
            raise UnsupportedRegion(region)
        return mapping

    # ══════════════════════════════════════════════════════════════════════
    # Availability
    # ══════════════════════════════════════════════════════════════════════

    async def get_availability(self, query: AvailabilityQuery) -> dict:
        """
        One page of bookable slots for a region (and optionally a provider).

        Raises:
            UnsupportedRegion: region has no practice mapping
            ValueError: to_date before from_date
        """
        region = query.region.upper()
        mapping = self._region(region)
        provider_id = query.provider_id or mapping.default_provider_id

        rules = await self.settings_store.get_settings()
        now = self.clock()
        from_date = query.from_date or now.astimezone(rules.tz).date()
        to_date = query.to_date or from_date + timedelta(days=rules.advance_booking_days)
        if to_date < from_date:
            raise ValueError("to_date must not be before from_date")

        page, limit = parse_pagination(
            query.page, query.limit, self.config.page_size, self.config.max_page_size,
        )
        key = self.cache.key_for(
            region, provider_id, mapping.practice_id, from_date, to_date, page, limit,
        )

        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug(f"Availability cache hit: {key}")
            return {**cached, "cached": True}

        slots = await calculate_availability(
            rules,
            Scope(provider_id=provider_id, resource_id=mapping.resource_id),
            mapping.practice_id,
            from_date,
            to_date,
            self.pm_client,
            self.overlay,
            now,
            self.retry,
        )

        page_slots, meta = paginate(slots, page, limit)
        response = {
            "region": region,
            "provider_id": provider_id,
            "provider_name": mapping.provider_name,
            "practice_id": mapping.practice_id,
            "timezone": rules.timezone,
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
            "slot_duration": rules.slot_duration,
            "slots": [serialize_slot(s) for s in page_slots],
            "meta": meta,
        }

        # only a completed computation reaches the cache
        await self.cache.set(key, response, self.config.availability_cache_ttl_seconds)
        return {**response, "cached": False}

    # ══════════════════════════════════════════════════════════════════════
    # Booking
    # ══════════════════════════════════════════════════════════════════════

    async def book_appointment(
        self,
        request: BookingRequest,
        exclude_ids: Iterable[str] = (),
    ) -> BookingResult:
        """
        Book the requested interval or the nearest free one after it.

        Raises:
            NoSlotFound: no free interval within the shift budget
            ExternalQueryError: existing appointments could not be read
            ExternalWriteError: the practice-management system rejected the create
        """
        rules = await self.settings_store.get_settings()
        scope, practice_id = self._booking_scope(request)
        requested = self._requested_interval(request, rules)

        resolution = await self._resolve(requested, scope, practice_id, rules, exclude_ids)
        if resolution.adjusted:
            logger.info(
                f"Requested {requested.start.isoformat()} conflicts in {scope.key}, "
                f"moved to {resolution.resolved.start.isoformat()} after {resolution.shifts} shifts"
            )

        return await self._create(resolution, scope, practice_id, request.details)

    def _booking_scope(self, request: BookingRequest) -> tuple[Scope, str | None]:
        mapping = self._region(request.region) if request.region else None
        scope = Scope(
            provider_id=request.provider_id or (mapping.default_provider_id if mapping else None),
            resource_id=request.resource_id or (mapping.resource_id if mapping else None),
            patient_id=request.patient_id,
        )
        if scope.key == "unscoped":
            raise ValueError("booking needs a provider, resource or patient (or a mapped region)")
        practice_id = request.practice_id or (mapping.practice_id if mapping else None)
        return scope, practice_id

    @staticmethod
    def _requested_interval(request: BookingRequest, rules: AvailabilitySettings) -> Interval:
        start = request.start
        if start.tzinfo is None:
            start = start.replace(tzinfo=rules.tz)
        end = request.end
        if end is None:
            end = start + timedelta(minutes=request.duration_minutes or rules.slot_duration)
        elif end.tzinfo is None:
            end = end.replace(tzinfo=rules.tz)
        if end <= start:
            raise ValueError("appointment end must be after its start")
        return Interval(start, end)

    async def _resolve(
        self,
        requested: Interval,
        scope: Scope,
        practice_id: str | None,
        rules: AvailabilitySettings,
        exclude_ids: Iterable[str] = (),
        max_attempts: int | None = None,
    ) -> Resolution:
        if max_attempts is None:
            max_attempts = self.config.shift_max_attempts
        window = search_window(requested, self.config.shift_increment, max_attempts)
        # whole local day: earlier appointments may run into the requested time
        day_start = datetime.combine(
            requested.start.astimezone(rules.tz).date(), time.min, tzinfo=rules.tz,
        )
        existing = await fetch_existing_appointments(
            self.pm_client, self.overlay, scope,
            min(day_start, window.start), window.end, practice_id,
            fail_open=False, retry=self.retry,
        )
        busy = busy_intervals(
            existing,
            scope,
            default_duration=timedelta(minutes=rules.slot_duration),
            buffer=timedelta(minutes=rules.buffer_time),
            exclude_ids=exclude_ids,
        )
        return resolve_booking_interval(requested, busy, self.config.shift_increment, max_attempts)

    async def _create(
        self,
        resolution: Resolution,
        scope: Scope,
        practice_id: str | None,
        details: dict,
    ) -> BookingResult:
        start, end = resolution.resolved
        payload = {
            **details,
            "startTime": start.isoformat(),
            "endTime": end.isoformat(),
            "providerId": scope.provider_id,
            "resourceId": scope.resource_id,
            "patientId": scope.patient_id,
            "practiceId": practice_id,
        }
        payload = {k: v for k, v in payload.items() if v is not None}

        upstream = await self._write(
            lambda: self.pm_client.create_appointment(payload), "appointment create",
        )
        appointment_id = extract_appointment_id(upstream)
        if appointment_id is None:
            logger.warning("Practice-management create returned no appointment id")

        await asyncio.shield(self._record_booking(scope, resolution.resolved, appointment_id))

        logger.info(
            f"Appointment booked: id={appointment_id} scope={scope.key} "
            f"start={start.isoformat()} shifts={resolution.shifts}"
        )
        return BookingResult(
            appointment_id=appointment_id,
            start=start,
            end=end,
            original_start=resolution.original.start,
            original_end=resolution.original.end,
            shifts=resolution.shifts,
            provider_id=scope.provider_id,
            practice_id=practice_id,
            upstream=upstream or {},
        )

    async def _write(self, operation, description: str):
        return await call_with_retry(
            operation,
            attempts=self.retry.attempts,
            timeout=self.retry.timeout,
            base_delay=self.retry.base_delay,
            error_cls=ExternalWriteError,
            description=description,
            retry_on_timeout=False,
        )

    async def _record_booking(self, scope: Scope, interval: Interval, appointment_id: str | None) -> None:
        """Overlay first, then invalidation: a reader missing the cache must see the overlay."""
        await self.overlay.record(
            scope, interval.start, interval.end,
            self.config.overlay_ttl_seconds,
            appointment_id=appointment_id,
        )
        await invalidate_availability_cache(self.cache, provider_id=scope.provider_id)

    async def _forget_booking(self, scope: Scope | None, appointment_id: str) -> None:
        if scope is not None:
            await self.overlay.forget(scope, appointment_id)
        await invalidate_availability_cache(
            self.cache, provider_id=scope.provider_id if scope else None,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Cancel / update / reschedule
    # ══════════════════════════════════════════════════════════════════════

    async def cancel_appointment(
        self,
        appointment_id: str,
        scope: Scope | None = None,
    ) -> dict:
        """
        Cancel upstream, then drop the overlay entry and cached availability.

        Without a scope the whole availability cache is invalidated.
        """
        upstream = await self._write(
            lambda: self.pm_client.cancel_appointment(appointment_id), "appointment cancel",
        )
        await asyncio.shield(self._forget_booking(scope, appointment_id))
        logger.info(f"Appointment cancelled: id={appointment_id}")
        return upstream or {}

    async def update_appointment(
        self,
        appointment_id: str,
        changes: dict,
        scope: Scope | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        """
        Pass changes upstream. A new start/end is written as given (no
        conflict resolution) and replaces the appointment's overlay entry.
        """
        payload = dict(changes)
        rules = None
        if start is not None:
            rules = await self.settings_store.get_settings()
            interval = self._requested_interval(BookingRequest(start=start, end=end), rules)
            payload["startTime"] = interval.start.isoformat()
            payload["endTime"] = interval.end.isoformat()

        upstream = await self._write(
            lambda: self.pm_client.update_appointment(appointment_id, payload),
            "appointment update",
        )

        async def bookkeeping():
            if scope is not None:
                await self.overlay.forget(scope, appointment_id)
                if rules is not None:
                    await self.overlay.record(
                        scope, interval.start, interval.end,
                        self.config.overlay_ttl_seconds,
                        appointment_id=appointment_id,
                    )
            await invalidate_availability_cache(
                self.cache, provider_id=scope.provider_id if scope else None,
            )

        await asyncio.shield(bookkeeping())
        logger.info(f"Appointment updated: id={appointment_id} fields={sorted(payload)}")
        return upstream or {}

    async def reschedule_appointment(
        self,
        appointment_id: str,
        request: BookingRequest,
        original_start: datetime | None = None,
        original_end: datetime | None = None,
    ) -> RescheduleResult:
        """
        Cancel the old appointment, then book the new one.

        Not atomic. If the new booking fails after the cancel went through,
        the original interval (original_start, original_end; end defaults
        to one slot) is booked again; the result then reports "restored"
        or, if that fails too or the original is unknown, "original_lost".
        A failed cancel raises and leaves everything unchanged.
        """
        scope, practice_id = self._booking_scope(request)
        # reject a malformed request before anything is cancelled
        rules = await self.settings_store.get_settings()
        self._requested_interval(request, rules)
        original = None
        if original_start is not None:
            original = self._requested_interval(
                BookingRequest(start=original_start, end=original_end), rules,
            )
        await self.cancel_appointment(appointment_id, scope=scope)

        try:
            booking = await self.book_appointment(request, exclude_ids=(appointment_id,))
        except (NoSlotFound, ExternalServiceError) as e:
            logger.error(f"Reschedule of {appointment_id} failed after cancel: {e}")
            return await self._restore(
                appointment_id, original, scope, practice_id, rules, request.details, e,
            )

        logger.info(f"Appointment rescheduled: {appointment_id} → {booking.appointment_id}")
        return RescheduleResult(
            status="rescheduled",
            cancelled_appointment_id=appointment_id,
            booking=booking,
        )

    async def _restore(
        self,
        appointment_id: str,
        original: Interval | None,
        scope: Scope,
        practice_id: str | None,
        rules: AvailabilitySettings,
        details: dict,
        cause: Exception,
    ) -> RescheduleResult:
        """
        Re-book the cancelled interval exactly, unless someone else took it
        in the meantime. Never shifts: a moved original is not a restore.
        """
        if original is None:
            logger.error(f"Appointment {appointment_id} lost: original interval unknown")
            return RescheduleResult(
                status="original_lost",
                cancelled_appointment_id=appointment_id,
                error=str(cause),
            )

        try:
            resolution = await self._resolve(
                original, scope, practice_id, rules,
                exclude_ids=(appointment_id,), max_attempts=1,
            )
            restored = await self._create(resolution, scope, practice_id, details)
        except (NoSlotFound, ExternalServiceError) as e:
            logger.error(f"Appointment {appointment_id} lost: restoring original failed: {e}")
            return RescheduleResult(
                status="original_lost",
                cancelled_appointment_id=appointment_id,
                error=f"{cause}; restore failed: {e}",
            )

        logger.warning(f"Reschedule of {appointment_id} rolled back as {restored.appointment_id}")
        return RescheduleResult(
            status="restored",
            cancelled_appointment_id=appointment_id,
            booking=restored,
            restored_appointment_id=restored.appointment_id,
            error=str(cause),
        )
