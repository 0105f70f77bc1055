"""
Calendar rule store: weekly windows, booking types and per-date overrides.

Uniqueness (one window per weekday, one override per date, unique slugs) is
enforced by the schema; the checks here only turn the common cases into
readable errors before the database has to.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from redis.exceptions import RedisError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import Conflict, InvalidRequest, NotFound
from backend.app.models import (
    ACTIVE_BOOKING_STATUSES,
    AvailabilityOverride,
    AvailabilityWindow,
    Booking,
    BookingType,
)
from backend.app.services.hours_cache import HoursCache
from backend.app.services.scheduling_config import Clock, is_valid_time_str, time_str_to_minutes


logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class WeeklyWindow:
    day_of_week: int  # 0 = Monday
    start_time: str
    end_time: str
    is_active: bool = True


def slugify(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-")


def _check_hours(start_time: str | None, end_time: str | None, label: str) -> None:
    if not is_valid_time_str(start_time) or not is_valid_time_str(end_time):
        raise InvalidRequest(f"{label}: start and end must be HH:MM")
    if time_str_to_minutes(start_time) >= time_str_to_minutes(end_time):
        raise InvalidRequest(f"{label}: start {start_time} must be before end {end_time}")


def _check_window(window: WeeklyWindow) -> None:
    if not 0 <= window.day_of_week <= 6:
        raise InvalidRequest(f"day_of_week must be 0..6, got {window.day_of_week}")
    _check_hours(window.start_time, window.end_time, f"weekday {window.day_of_week}")


class CalendarRuleStore:
    def __init__(self, session: AsyncSession, *, today: Clock, hours_cache: HoursCache | None = None):
        self.session = session
        self.today = today
        self.hours_cache = hours_cache
        self._stale_days: set[date] = set()
        self._stale_all = False

    def _mark_stale(self, days: list[date] | None = None) -> None:
        if days is None:
            self._stale_all = True
        else:
            self._stale_days.update(days)

    async def invalidate_pending(self) -> None:
        """
        Drop cached hours touched by mutations since the last call.

        Call after the transaction commits: a reader between an earlier
        invalidation and the commit would put the old hours back.
        """
        stale_all, stale_days = self._stale_all, sorted(self._stale_days)
        self._stale_all = False
        self._stale_days = set()
        if self.hours_cache is None or not (stale_all or stale_days):
            return
        try:
            await self.hours_cache.invalidate(None if stale_all else stale_days)
        except RedisError:
            logger.warning("Hours cache invalidation failed; entries expire after their TTL", exc_info=True)

    # ── Weekly windows ───────────────────────────────────────────────────

    async def get_weekly_windows(self) -> list[AvailabilityWindow]:
        result = await self.session.execute(
            select(AvailabilityWindow).order_by(AvailabilityWindow.day_of_week)
        )
        return list(result.scalars())

    async def set_weekly_windows(self, windows: Iterable[WeeklyWindow]) -> list[AvailabilityWindow]:
        """Replace the whole weekly template. Weekdays left out become closed."""
        windows = list(windows)
        seen: set[int] = set()
        for window in windows:
            _check_window(window)
            if window.day_of_week in seen:
                raise InvalidRequest(f"weekday {window.day_of_week} appears more than once")
            seen.add(window.day_of_week)

        await self.session.execute(delete(AvailabilityWindow))
        self.session.add_all(
            AvailabilityWindow(
                day_of_week=window.day_of_week,
                start_time=window.start_time,
                end_time=window.end_time,
                is_active=window.is_active,
            )
            for window in windows
        )
        await self.session.flush()
        self._mark_stale()
        logger.info("Weekly windows replaced: %d day(s) configured", len(windows))
        return await self.get_weekly_windows()

    async def upsert_weekly_window(self, window: WeeklyWindow) -> AvailabilityWindow:
        _check_window(window)
        result = await self.session.execute(
            select(AvailabilityWindow).where(AvailabilityWindow.day_of_week == window.day_of_week)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = AvailabilityWindow(day_of_week=window.day_of_week)
            self.session.add(row)
        row.start_time = window.start_time
        row.end_time = window.end_time
        row.is_active = window.is_active
        await self.session.flush()
        self._mark_stale()
        logger.info("Weekly window for weekday %d set to %s-%s", window.day_of_week, window.start_time, window.end_time)
        return row

    # ── Booking types ────────────────────────────────────────────────────

    async def list_booking_types(self, active_only: bool = False) -> list[BookingType]:
        stmt = select(BookingType).order_by(BookingType.name)
        if active_only:
            stmt = stmt.where(BookingType.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def get_booking_type(self, booking_type_id: int) -> BookingType | None:
        return await self.session.get(BookingType, booking_type_id)

    async def get_booking_type_by_slug(self, slug: str) -> BookingType | None:
        result = await self.session.execute(select(BookingType).where(BookingType.slug == slug))
        return result.scalar_one_or_none()

    async def upsert_booking_type(
        self,
        booking_type_id: int | None = None,
        *,
        name: str,
        slug: str | None = None,
        description: str | None = None,
        duration_minutes: int = 30,
        buffer_after_minutes: int = 0,
        max_bookings_per_day: int | None = None,
        requires_approval: bool = False,
        confirmation_message: str | None = None,
        is_active: bool = True,
    ) -> BookingType:
        """Create a booking type, or update it when booking_type_id is given."""
        name = name.strip()
        if not name:
            raise InvalidRequest("name is required")
        slug = slugify(slug or name)
        if not slug:
            raise InvalidRequest(f"cannot derive a slug from {name!r}")
        if duration_minutes <= 0:
            raise InvalidRequest("duration_minutes must be positive")
        if buffer_after_minutes < 0:
            raise InvalidRequest("buffer_after_minutes must be >= 0")
        if max_bookings_per_day is not None and max_bookings_per_day <= 0:
            raise InvalidRequest("max_bookings_per_day must be positive when set")

        booking_type = None
        if booking_type_id is not None:
            booking_type = await self.get_booking_type(booking_type_id)
            if booking_type is None:
                raise NotFound(f"Booking type {booking_type_id} not found")

        clash = await self.get_booking_type_by_slug(slug)
        if clash is not None and clash is not booking_type:
            raise Conflict(f"Slug {slug!r} is already used by booking type {clash.id}")

        if booking_type is None:
            booking_type = BookingType()
            self.session.add(booking_type)

        booking_type.name = name
        booking_type.slug = slug
        booking_type.description = description
        booking_type.duration_minutes = duration_minutes
        booking_type.buffer_after_minutes = buffer_after_minutes
        booking_type.max_bookings_per_day = max_bookings_per_day
        booking_type.requires_approval = requires_approval
        booking_type.confirmation_message = confirmation_message
        booking_type.is_active = is_active
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise Conflict(f"Slug {slug!r} is already in use") from exc

        logger.info("Booking type %s saved (id=%s)", slug, booking_type.id)
        return booking_type

    async def delete_booking_type(self, booking_type_id: int) -> None:
        booking_type = await self.get_booking_type(booking_type_id)
        if booking_type is None:
            raise NotFound(f"Booking type {booking_type_id} not found")

        upcoming = await self.session.scalar(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.booking_type_id == booking_type_id,
                Booking.slot_date >= self.today(),
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        )
        if upcoming:
            raise Conflict(
                f"Booking type {booking_type.slug!r} has {upcoming} upcoming booking(s); "
                "cancel them or deactivate the type instead"
            )

        await self.session.delete(booking_type)
        await self.session.flush()
        logger.info("Booking type %s deleted", booking_type.slug)

    # ── Overrides ────────────────────────────────────────────────────────

    async def get_overrides_in_range(self, start: date, end: date) -> list[AvailabilityOverride]:
        if start > end:
            raise InvalidRequest("start must be on or before end")
        result = await self.session.execute(
            select(AvailabilityOverride)
            .where(AvailabilityOverride.date >= start, AvailabilityOverride.date <= end)
            .order_by(AvailabilityOverride.date)
        )
        return list(result.scalars())

    async def get_override_for_date(self, day: date) -> AvailabilityOverride | None:
        result = await self.session.execute(
            select(AvailabilityOverride).where(AvailabilityOverride.date == day)
        )
        return result.scalar_one_or_none()

    async def add_override(
        self,
        day: date,
        *,
        is_available: bool = False,
        start_time: str | None = None,
        end_time: str | None = None,
        reason: str | None = None,
    ) -> AvailabilityOverride:
        """Block a date, or give it custom hours. Refuses to replace an existing override."""
        if is_available:
            _check_hours(start_time, end_time, f"override for {day.isoformat()}")
        else:
            start_time = end_time = None

        existing = await self.get_override_for_date(day)
        if existing is not None:
            raise Conflict(
                f"An override already exists for {day.isoformat()} (id {existing.id}); remove it first"
            )

        override = AvailabilityOverride(
            date=day,
            is_available=is_available,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
        )
        self.session.add(override)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise Conflict(f"An override already exists for {day.isoformat()}") from exc

        self._mark_stale([day])
        logger.info(
            "Override added for %s: %s",
            day,
            f"{start_time}-{end_time}" if is_available else "closed",
        )
        return override

    async def _remove(self, override: AvailabilityOverride | None) -> bool:
        if override is None:
            return False
        day = override.date
        await self.session.delete(override)
        await self.session.flush()
        self._mark_stale([day])
        logger.info("Override removed for %s", day)
        return True

    async def remove_override(self, override_id: int) -> bool:
        return await self._remove(await self.session.get(AvailabilityOverride, override_id))

    async def remove_override_for_date(self, day: date) -> bool:
        return await self._remove(await self.get_override_for_date(day))
