# backend/telemed_booking/services/slots/overlay.py
"""
Overlay of just-confirmed bookings.

The practice-management system does not show a new appointment to reads
right away. Until overlay_ttl has passed, the booking is recorded here and
merged into every availability computation and conflict check of its
scope.

Key format: {prefix}:booked:{scope_key}
Value: Sorted Set, member = JSON entry, score = expire_ts.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .redis_store import CacheBackend
from .types import ExistingAppointment, Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverlayEntry:
    scope_key: str
    start: datetime
    end: datetime
    expires_at: float
    appointment_id: str | None = None
    scope: Scope = Scope()

    def as_appointment(self) -> ExistingAppointment:
        return ExistingAppointment(
            start=self.start,
            end=self.end,
            provider_id=self.scope.provider_id,
            resource_id=self.scope.resource_id,
            patient_id=self.scope.patient_id,
            status="booked",
            id=self.appointment_id,
            source="overlay",
        )


class BookingOverlayCache:
    KEY_PREFIX = "booked"

    def __init__(
        self,
        backend: CacheBackend,
        prefix: str = "tmb",
        timeout: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.prefix = prefix
        self.timeout = timeout
        self.clock = clock

    def _key(self, scope_key: str) -> str:
        return f"{self.prefix}:{self.KEY_PREFIX}:{scope_key}"

    @staticmethod
    def _member(start: datetime, end: datetime, appointment_id: str | None, scope: Scope) -> str:
        return json.dumps({
            "id": appointment_id,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "provider_id": scope.provider_id,
            "resource_id": scope.resource_id,
            "patient_id": scope.patient_id,
        }, sort_keys=True)

    async def put(
        self,
        scope_key: str,
        start: datetime,
        end: datetime,
        ttl: int,
        appointment_id: str | None = None,
        scope: Scope | None = None,
    ) -> bool:
        """Record a confirmed booking. Returns False if the backend failed."""
        expire_ts = self.clock() + ttl
        member = self._member(start, end, appointment_id, scope or Scope())
        try:
            await asyncio.wait_for(
                self.backend.add_expiring_member(self._key(scope_key), member, expire_ts),
                self.timeout,
            )
            return True
        except Exception as e:
            logger.error(f"Failed to record booked slot in overlay: {scope_key} → {e!r}")
            return False

    async def get_all(self, scope_key: str) -> list[OverlayEntry]:
        """Live entries of a scope, oldest expiry first. Empty on backend failure."""
        try:
            raw = await asyncio.wait_for(
                self.backend.live_members(self._key(scope_key), self.clock()),
                self.timeout,
            )
        except Exception as e:
            logger.warning(f"Overlay read failed, ignoring overlay: {scope_key} → {e!r}")
            return []

        entries = []
        for member, expire_ts in raw:
            try:
                data = json.loads(member)
                entries.append(OverlayEntry(
                    scope_key=scope_key,
                    start=datetime.fromisoformat(data["start"]),
                    end=datetime.fromisoformat(data["end"]),
                    expires_at=expire_ts,
                    appointment_id=data.get("id"),
                    scope=Scope(
                        provider_id=data.get("provider_id"),
                        resource_id=data.get("resource_id"),
                        patient_id=data.get("patient_id"),
                    ),
                ))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping malformed overlay member in {scope_key}: {member!r}")
        return entries

    # ── whole scope ──────────────────────────────────────────────────────
    # A booking is written under every dimension it names, so a reader
    # scoped by provider and one scoped by resource both see it.

    async def record(
        self,
        scope: Scope,
        start: datetime,
        end: datetime,
        ttl: int,
        appointment_id: str | None = None,
    ) -> bool:
        results = [
            await self.put(key, start, end, ttl, appointment_id=appointment_id, scope=scope)
            for key in scope.keys
        ]
        return all(results)

    async def get_for_scope(self, scope: Scope) -> list[OverlayEntry]:
        """Live entries under any of the scope's keys, each booking once."""
        seen = set()
        entries = []
        for key in scope.keys:
            for entry in await self.get_all(key):
                identity = (entry.appointment_id, entry.start, entry.end, entry.scope)
                if identity not in seen:
                    seen.add(identity)
                    entries.append(entry)
        return entries

    async def forget(self, scope: Scope, appointment_id: str) -> int:
        removed = 0
        for key in scope.keys:
            removed += await self.discard(key, appointment_id)
        return removed

    async def discard(self, scope_key: str, appointment_id: str) -> int:
        """Drop the entries of a cancelled or moved appointment."""
        removed = 0
        for entry in await self.get_all(scope_key):
            if entry.appointment_id is None or str(entry.appointment_id) != str(appointment_id):
                continue
            member = self._member(entry.start, entry.end, entry.appointment_id, entry.scope)
            try:
                removed += await asyncio.wait_for(
                    self.backend.remove_member(self._key(scope_key), member),
                    self.timeout,
                )
            except Exception as e:
                logger.warning(f"Overlay discard failed: {scope_key} → {e!r}")
        return removed
