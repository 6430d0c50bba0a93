"""
Persisted availability settings (single row in availability_settings).

Reads never fail: if the row cannot be read the defaults are served and a
warning is logged. Writes always surface their failure; settings only
change once the new row has been committed.
"""

import asyncio
import json
import logging
from datetime import date, datetime, timezone
from typing import Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from ..database import SessionLocal
from ..exceptions import ConfigurationError, SettingsWriteError
from ..models.availability import AvailabilitySettingsRow
from ..schemas.availability_settings import (
    WEEKDAYS,
    AvailabilitySettings,
    AvailabilitySettingsUpdate,
    BlockedTimeSlot,
)

logger = logging.getLogger(__name__)

_FIELDS = set(AvailabilitySettings.model_fields)

# the one settings row; a second insert of it fails on the primary key
SETTINGS_ROW_ID = 1


def _row_to_settings(row: AvailabilitySettingsRow) -> AvailabilitySettings:
    return AvailabilitySettings(
        business_hours=json.loads(row.business_hours or "{}"),
        blocked_dates=json.loads(row.blocked_dates or "[]"),
        blocked_time_slots=json.loads(row.blocked_time_slots or "[]"),
        advance_booking_days=row.advance_booking_days,
        slot_duration=row.slot_duration,
        buffer_time=row.buffer_time,
        max_slots_per_day=row.max_slots_per_day,
        timezone=row.timezone,
    )


def _fill_row(row: AvailabilitySettingsRow, value: AvailabilitySettings) -> None:
    data = value.model_dump(mode="json")
    row.business_hours = json.dumps(data["business_hours"])
    row.blocked_dates = json.dumps(data["blocked_dates"])
    row.blocked_time_slots = json.dumps(data["blocked_time_slots"])
    row.advance_booking_days = value.advance_booking_days
    row.slot_duration = value.slot_duration
    row.buffer_time = value.buffer_time
    row.max_slots_per_day = value.max_slots_per_day
    row.timezone = value.timezone
    row.updated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class SettingsStore:
    """
    Async facade over the settings row.

    SQLAlchemy sessions are synchronous; every database call runs in a
    worker thread and is bounded by `timeout`. Mutations are serialised by
    an asyncio lock so two admin edits cannot interleave read-merge-write.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal, timeout: float = 5.0):
        self.session_factory = session_factory
        self.timeout = timeout
        self._lock = asyncio.Lock()

    # ── database (worker thread) ──────────────────────────────────────────

    def _with_session(self, fn: Callable[[Session], object]):
        db = self.session_factory()
        try:
            return fn(db)
        finally:
            db.close()

    async def _run(self, fn: Callable[[Session], object]):
        return await asyncio.wait_for(
            asyncio.to_thread(self._with_session, fn),
            self.timeout,
        )

    @staticmethod
    def _current_row(db: Session) -> AvailabilitySettingsRow | None:
        return db.get(AvailabilitySettingsRow, SETTINGS_ROW_ID)

    def _load_or_create(self, db: Session) -> AvailabilitySettings:
        row = self._current_row(db)
        if row is not None:
            return _row_to_settings(row)

        defaults = AvailabilitySettings()
        row = AvailabilitySettingsRow(id=SETTINGS_ROW_ID)
        _fill_row(row, defaults)
        db.add(row)
        try:
            db.commit()
            logger.info("Created default availability settings")
        except Exception:
            db.rollback()
            logger.warning("Could not persist default availability settings", exc_info=True)
        return defaults

    def _save(self, db: Session, value: AvailabilitySettings) -> None:
        row = self._current_row(db)
        if row is None:
            row = AvailabilitySettingsRow(id=SETTINGS_ROW_ID)
            db.add(row)
        _fill_row(row, value)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

    # ── public API ───────────────────────────────────────────────────────

    async def get_settings(self) -> AvailabilitySettings:
        """Current settings; defaults when the row is missing or unreadable."""
        try:
            return await self._run(self._load_or_create)
        except Exception:
            logger.warning("Availability settings unreadable, serving defaults", exc_info=True)
            return AvailabilitySettings()

    async def update_settings(self, partial: dict | AvailabilitySettingsUpdate) -> AvailabilitySettings:
        """
        Merge `partial` into the current settings and persist.

        business_hours is merged per weekday: unmentioned days keep their
        hours, a mentioned day may change only some of its fields.

        Raises:
            ConfigurationError: the merged settings are invalid
            SettingsWriteError: the settings could not be read or committed
        """
        if isinstance(partial, AvailabilitySettingsUpdate):
            partial = partial.model_dump(exclude_unset=True)
        return await self._mutate(lambda current: partial)

    async def block_date(self, day: date) -> AvailabilitySettings:
        def change(current: AvailabilitySettings):
            if day in current.blocked_dates:
                return None
            return {"blocked_dates": [*current.blocked_dates, day]}
        return await self._mutate(change)

    async def unblock_date(self, day: date) -> AvailabilitySettings:
        def change(current: AvailabilitySettings):
            if day not in current.blocked_dates:
                return None
            return {"blocked_dates": [d for d in current.blocked_dates if d != day]}
        return await self._mutate(change)

    async def block_time_slot(self, day: date, start_time: str, end_time: str) -> AvailabilitySettings:
        def change(current: AvailabilitySettings):
            identity = (day, start_time, end_time)
            if any(s.identity == identity for s in current.blocked_time_slots):
                return None
            new = {"date": day, "start_time": start_time, "end_time": end_time}
            return {"blocked_time_slots": [*(s.model_dump() for s in current.blocked_time_slots), new]}
        return await self._mutate(change)

    async def unblock_time_slot(self, day: date, start_time: str, end_time: str) -> AvailabilitySettings:
        def change(current: AvailabilitySettings):
            identity = (day, start_time, end_time)
            remaining: list[BlockedTimeSlot] = [
                s for s in current.blocked_time_slots if s.identity != identity
            ]
            if len(remaining) == len(current.blocked_time_slots):
                return None
            return {"blocked_time_slots": [s.model_dump() for s in remaining]}
        return await self._mutate(change)

    async def update_business_hours(
        self,
        day: str,
        start: str,
        end: str,
        enabled: bool = True,
    ) -> AvailabilitySettings:
        day = day.lower()
        if day not in WEEKDAYS:
            raise ConfigurationError(f"Unknown weekday: {day}")
        return await self._mutate(lambda current: {
            "business_hours": {day: {"start": start, "end": end, "enabled": enabled}},
        })

    # ── mutation core ────────────────────────────────────────────────────

    async def _mutate(
        self,
        build_partial: Callable[[AvailabilitySettings], dict | None],
    ) -> AvailabilitySettings:
        async with self._lock:
            try:
                current = await self._run(self._load_or_create)
            except Exception as e:
                # never overwrite a row we could not read
                raise SettingsWriteError(f"Cannot read current settings: {e!r}") from e

            partial = build_partial(current)
            if partial is None:
                return current

            merged = self._merge(current, partial)

            try:
                await self._run(lambda db: self._save(db, merged))
            except Exception as e:
                logger.error(f"Failed to persist availability settings: {e!r}")
                raise SettingsWriteError(f"Cannot persist settings: {e!r}") from e

            logger.info(f"Availability settings updated: {sorted(partial)}")
            return merged

    @staticmethod
    def _merge(current: AvailabilitySettings, partial: dict) -> AvailabilitySettings:
        unknown = set(partial) - _FIELDS
        if unknown:
            raise ConfigurationError(f"Unknown settings fields: {sorted(unknown)}")

        data = current.model_dump()
        for field, value in partial.items():
            if field == "business_hours" and value is not None:
                hours = dict(data["business_hours"])
                for day, day_hours in value.items():
                    if hasattr(day_hours, "model_dump"):
                        day_hours = day_hours.model_dump()
                    hours[str(day).lower()] = {**hours.get(str(day).lower(), {}), **day_hours}
                data["business_hours"] = hours
            else:
                data[field] = value

        try:
            return AvailabilitySettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
