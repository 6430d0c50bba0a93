"""
Practice-management (EHR) client.

Appointments are owned by the practice-management system; the engine only
reads them and asks it to create, update or cancel. Reads are eventually
consistent: a freshly created appointment may be missing from queries for
a while (see services/slots/overlay.py).

Upstream payloads differ between vendors and endpoints, so field lookup is
tolerant: startTime / StartTime / start, providerId / ProviderID, etc.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from ..exceptions import ExternalQueryError, ExternalWriteError
from .slots.types import ExistingAppointment, Scope

logger = logging.getLogger(__name__)


class PracticeManagementClient(Protocol):
    async def query_appointments(
        self,
        scope: Scope,
        start: datetime,
        end: datetime,
        practice_id: str | None = None,
    ) -> list[ExistingAppointment]: ...

    async def create_appointment(self, payload: dict) -> dict: ...

    async def update_appointment(self, appointment_id: str, changes: dict) -> dict: ...

    async def cancel_appointment(self, appointment_id: str) -> dict: ...


# ──────────────────────────────────────────────────────────────────────────
# Normalisation
# ──────────────────────────────────────────────────────────────────────────

_FIELDS = {
    "id": ("id", "appointmentId", "AppointmentID", "AppointmentId", "ID"),
    "start": ("startTime", "StartTime", "start", "Start", "startDateTime", "StartDateTime"),
    "end": ("endTime", "EndTime", "end", "End", "endDateTime", "EndDateTime"),
    "provider_id": ("providerId", "ProviderID", "ProviderId", "provider_id"),
    "resource_id": ("resourceId", "ResourceID", "ResourceId", "resource_id"),
    "patient_id": ("patientId", "PatientID", "PatientId", "patient_id"),
    "status": ("status", "Status", "appointmentStatus", "AppointmentStatus", "ConfirmationStatus"),
}


def _pick(raw: dict, field: str) -> Any:
    for name in _FIELDS[field]:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return None


def _as_id(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_datetime(value: Any) -> datetime | None:
    """ISO 8601 string (trailing Z allowed) → aware datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_appointment(raw: dict) -> ExistingAppointment | None:
    """Map one upstream record to ExistingAppointment; None when it has no usable start."""
    start = parse_datetime(_pick(raw, "start"))
    if start is None:
        return None

    patient_id = _pick(raw, "patient_id")
    if patient_id is None and isinstance(raw.get("patient"), dict):
        patient_id = raw["patient"].get("id")

    return ExistingAppointment(
        start=start,
        end=parse_datetime(_pick(raw, "end")),
        provider_id=_as_id(_pick(raw, "provider_id")),
        resource_id=_as_id(_pick(raw, "resource_id")),
        patient_id=_as_id(patient_id),
        status=_pick(raw, "status"),
        id=_as_id(_pick(raw, "id")),
    )


def extract_appointment_id(payload: dict | None) -> str | None:
    if not payload:
        return None
    found = _pick(payload, "id")
    if found is None and isinstance(payload.get("appointment"), dict):
        found = _pick(payload["appointment"], "id")
    return _as_id(found)


# ──────────────────────────────────────────────────────────────────────────
# HTTP implementation
# ──────────────────────────────────────────────────────────────────────────

class HttpPracticeManagementClient:
    """
    JSON-over-HTTP client (httpx).

    GET    /appointments?fromDate&toDate&providerId&resourceId&patientId&practiceId
    POST   /appointments
    PATCH  /appointments/{id}
    DELETE /appointments/{id}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: type[ExternalQueryError] | type[ExternalWriteError],
        **kwargs,
    ) -> Any:
        is_read = error_cls is ExternalQueryError
        try:
            resp = await self._client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            # request never reached the upstream: safe to repeat, even for writes
            raise error_cls(f"{method} {path} → connect failed: {e!r}", transient=True) from e
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {path} → {e!r}", transient=is_read) from e

        if resp.status_code >= 400:
            transient = is_read and (resp.status_code >= 500 or resp.status_code == 429)
            logger.error(f"Practice-management error: {method} {path} -> {resp.status_code}")
            raise error_cls(
                f"{method} {path} → HTTP {resp.status_code}",
                transient=transient,
                status_code=resp.status_code,
            )

        if resp.status_code == 204 or not resp.content:
            return None

        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"{method} {path} → invalid JSON response") from e

    async def query_appointments(
        self,
        scope: Scope,
        start: datetime,
        end: datetime,
        practice_id: str | None = None,
    ) -> list[ExistingAppointment]:
        params = {"fromDate": start.isoformat(), "toDate": end.isoformat()}
        if scope.provider_id is not None:
            params["providerId"] = scope.provider_id
        if scope.resource_id is not None:
            params["resourceId"] = scope.resource_id
        if scope.patient_id is not None:
            params["patientId"] = scope.patient_id
        if practice_id is not None:
            params["practiceId"] = practice_id

        data = await self._request("GET", "/appointments", ExternalQueryError, params=params)

        if isinstance(data, dict):
            data = data.get("appointments") or data.get("data") or data.get("items") or []
        if not isinstance(data, list):
            raise ExternalQueryError("GET /appointments → unexpected response shape")

        appointments = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            appt = normalize_appointment(raw)
            if appt is None:
                logger.warning(f"Skipping appointment without a start time: {raw.get('id')}")
                continue
            appointments.append(appt)
        return appointments

    async def create_appointment(self, payload: dict) -> dict:
        return await self._request("POST", "/appointments", ExternalWriteError, json=payload) or {}

    async def update_appointment(self, appointment_id: str, changes: dict) -> dict:
        return await self._request(
            "PATCH", f"/appointments/{appointment_id}", ExternalWriteError, json=changes,
        ) or {}

    async def cancel_appointment(self, appointment_id: str) -> dict:
        return await self._request(
            "DELETE", f"/appointments/{appointment_id}", ExternalWriteError,
        ) or {}
