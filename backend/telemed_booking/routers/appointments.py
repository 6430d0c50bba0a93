# backend/telemed_booking/routers/appointments.py
# Appointments live in the practice-management system; these endpoints
# only mutate them through the scheduling facade.

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_facade
from ..exceptions import (
    ConfigurationError,
    ExternalServiceError,
    NoSlotFound,
    UnsupportedRegion,
)
from ..schemas.appointments import (
    AppointmentCancelRead,
    AppointmentCreate,
    AppointmentRead,
    AppointmentUpdate,
    RescheduleCreate,
    RescheduleRead,
)
from ..services.scheduling import BookingRequest, SchedulingFacade
from ..services.slots.types import BookingResult, Scope

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NoSlotFound):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, ExternalServiceError):
        # transient: worth retrying later; otherwise the upstream refused
        code = status.HTTP_503_SERVICE_UNAVAILABLE if e.transient else status.HTTP_502_BAD_GATEWAY
        return HTTPException(status_code=code, detail=str(e))
    if isinstance(e, (ConfigurationError, UnsupportedRegion)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


_HANDLED = (NoSlotFound, ExternalServiceError, ConfigurationError, UnsupportedRegion, ValueError)


def _booking_request(data: AppointmentCreate) -> BookingRequest:
    return BookingRequest(
        start=data.start,
        end=data.end,
        duration_minutes=data.duration_minutes,
        region=data.region,
        provider_id=data.provider_id,
        resource_id=data.resource_id,
        patient_id=data.patient_id,
        practice_id=data.practice_id,
        details=data.details(),
    )


def _read(result: BookingResult) -> AppointmentRead:
    return AppointmentRead(
        id=result.appointment_id,
        start=result.start,
        end=result.end,
        provider_id=result.provider_id,
        practice_id=result.practice_id,
        original_start=result.original_start,
        original_end=result.original_end,
        auto_adjusted=result.auto_adjusted,
        shifts=result.shifts,
    )


@router.post("/", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    facade: SchedulingFacade = Depends(get_facade),
):
    try:
        result = await facade.book_appointment(_booking_request(data))
    except _HANDLED as e:
        raise _http_error(e)
    return _read(result)


@router.patch("/{id}")
async def update_appointment(
    id: str,
    data: AppointmentUpdate,
    facade: SchedulingFacade = Depends(get_facade),
):
    changes = data.model_dump(
        exclude_unset=True,
        exclude={"start", "end", "provider_id", "resource_id", "patient_id"},
    )
    scope = Scope(data.provider_id, data.resource_id, data.patient_id)
    try:
        upstream = await facade.update_appointment(
            id,
            changes,
            scope=scope if scope != Scope() else None,
            start=data.start,
            end=data.end,
        )
    except _HANDLED as e:
        raise _http_error(e)
    return {"id": id, "updated": True, "upstream": upstream}


@router.delete("/{id}", response_model=AppointmentCancelRead)
async def cancel_appointment(
    id: str,
    provider_id: str | None = None,
    resource_id: str | None = None,
    patient_id: str | None = None,
    facade: SchedulingFacade = Depends(get_facade),
):
    scope = Scope(provider_id, resource_id, patient_id)
    try:
        await facade.cancel_appointment(id, scope=scope if scope != Scope() else None)
    except _HANDLED as e:
        raise _http_error(e)
    return AppointmentCancelRead(id=id)


@router.post("/{id}/reschedule", response_model=RescheduleRead)
async def reschedule_appointment(
    id: str,
    data: RescheduleCreate,
    facade: SchedulingFacade = Depends(get_facade),
):
    try:
        result = await facade.reschedule_appointment(
            id, _booking_request(data), data.original_start, data.original_end,
        )
    except _HANDLED as e:
        raise _http_error(e)

    return RescheduleRead(
        status=result.status,
        degraded=result.degraded,
        cancelled_id=result.cancelled_appointment_id,
        appointment=_read(result.booking) if result.booking else None,
        restored_id=result.restored_appointment_id,
        error=result.error,
    )
