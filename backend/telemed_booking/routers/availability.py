# backend/telemed_booking/routers/availability.py
"""
Availability API endpoints.

GET    /availability/{region}               - bookable slots (paginated, cached)
GET    /availability/settings               - current business rules (admin)
PATCH  /availability/settings               - partial update (admin)
PUT    /availability/settings/hours/{day}   - one weekday's hours (admin)
POST   /availability/settings/blocked-dates        (admin)
DELETE /availability/settings/blocked-dates/{date} (admin)
POST   /availability/settings/blocked-slots        (admin)
DELETE /availability/settings/blocked-slots        (admin)

Every admin change invalidates all cached availability.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_availability_cache, get_facade, get_settings_store, require_admin
from ..exceptions import ConfigurationError, SettingsWriteError, UnsupportedRegion
from ..schemas.availability_settings import (
    AvailabilitySettings,
    AvailabilitySettingsResponse,
    AvailabilitySettingsUpdate,
    BlockDateRequest,
    BlockTimeSlotRequest,
    BusinessHoursUpdate,
)
from ..schemas.slots import AvailabilityResponse
from ..services.scheduling import AvailabilityQuery, SchedulingFacade
from ..services.settings_store import SettingsStore
from ..services.slots.cache import AvailabilityCache
from ..services.slots.invalidator import invalidate_availability_cache


router = APIRouter(prefix="/availability", tags=["availability"])


# ═══════════════════════════════════════════════════════════════════════════
# Admin: settings
# ═══════════════════════════════════════════════════════════════════════════

async def _apply(mutation, cache: AvailabilityCache) -> AvailabilitySettingsResponse:
    try:
        updated = await mutation
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SettingsWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    deleted = await invalidate_availability_cache(cache)
    return AvailabilitySettingsResponse(settings=updated, invalidated_keys=deleted)


@router.get(
    "/settings",
    response_model=AvailabilitySettings,
    dependencies=[Depends(require_admin)],
)
async def get_availability_settings(store: SettingsStore = Depends(get_settings_store)):
    return await store.get_settings()


@router.patch(
    "/settings",
    response_model=AvailabilitySettingsResponse,
    dependencies=[Depends(require_admin)],
)
async def update_availability_settings(
    data: AvailabilitySettingsUpdate,
    store: SettingsStore = Depends(get_settings_store),
    cache: AvailabilityCache = Depends(get_availability_cache),
):
    return await _apply(store.update_settings(data), cache)


@router.put(
    "/settings/hours/{day}",
    response_model=AvailabilitySettingsResponse,
    dependencies=[Depends(require_admin)],
)
async def update_business_hours(
    day: str,
    data: BusinessHoursUpdate,
    store: SettingsStore = Depends(get_settings_store),
    cache: AvailabilityCache = Depends(get_availability_cache),
):
    return await _apply(
        store.update_business_hours(day, data.start, data.end, data.enabled), cache,
    )


@router.post(
    "/settings/blocked-dates",
    response_model=AvailabilitySettingsResponse,
    dependencies=[Depends(require_admin)],
)
async def block_date(
    data: BlockDateRequest,
    store: SettingsStore = Depends(get_settings_store),
    cache: AvailabilityCache = Depends(get_availability_cache),
):
    return await _apply(store.block_date(data.date), cache)


@router.delete(
    "/settings/blocked-dates/{blocked}",
    response_model=AvailabilitySettingsResponse,
    dependencies=[Depends(require_admin)],
)
async def unblock_date(
    blocked: date,
    store: SettingsStore = Depends(get_settings_store),
    cache: AvailabilityCache = Depends(get_availability_cache),
):
    return await _apply(store.unblock_date(blocked), cache)


@router.post(
    "/settings/blocked-slots",
    response_model=AvailabilitySettingsResponse,
    dependencies=[Depends(require_admin)],
)
async def block_time_slot(
    data: BlockTimeSlotRequest,
    store: SettingsStore = Depends(get_settings_store),
    cache: AvailabilityCache = Depends(get_availability_cache),
):
    return await _apply(
        store.block_time_slot(data.date, data.start_time, data.end_time), cache,
    )


@router.delete(
    "/settings/blocked-slots",
    response_model=AvailabilitySettingsResponse,
    dependencies=[Depends(require_admin)],
)
async def unblock_time_slot(
    blocked_date: date,
    start_time: str,
    end_time: str,
    store: SettingsStore = Depends(get_settings_store),
    cache: AvailabilityCache = Depends(get_availability_cache),
):
    return await _apply(
        store.unblock_time_slot(blocked_date, start_time, end_time), cache,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Public: slots
# ═══════════════════════════════════════════════════════════════════════════

@router.get("/{region}", response_model=AvailabilityResponse)
async def get_availability(
    region: str,
    provider_id: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    facade: SchedulingFacade = Depends(get_facade),
):
    """Bookable slots of a region, earliest first."""
    query = AvailabilityQuery(
        region=region,
        provider_id=provider_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )
    try:
        return await facade.get_availability(query)
    except UnsupportedRegion as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
