"""
Availability resolution: which dates and times can be booked.

Hours for a date come from the override for that date when one exists,
otherwise from the weekly window for its weekday. Bookability layers the
booking type, the lead-time floor and the type's daily cap on top of that.
Per-slot capacity is not part of bookability: the ledger decides
that atomically at reservation time, and the counts shown in calendars are
advisory.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterator

from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import InvalidRequest, NotFound
from backend.app.models import ACTIVE_BOOKING_STATUSES, AvailabilityOverride, AvailabilityWindow, Booking, BookingType
from backend.app.services.hours_cache import HoursCache
from backend.app.services.scheduling_config import (
    Clock,
    DayHours,
    SchedulingConfig,
    is_valid_time_str,
    minutes_to_time_str,
    time_str_to_minutes,
)
from backend.app.services.slot_ledger import SlotLedger


logger = logging.getLogger(__name__)

# Reasons returned by unbookable_reason, in the order they are checked.
REASON_INACTIVE_TYPE = "inactive_type"
REASON_PAST_DATE = "past_date"
REASON_LEAD_TIME = "lead_time"
REASON_CLOSED = "closed"
REASON_DAILY_CAP = "daily_cap"


def generate_slots(hours: DayHours, step_minutes: int) -> Iterator[str]:
    """
    Slot start times from hours.start up to, but excluding, hours.end.

    >>> list(generate_slots(DayHours("09:00", "10:00"), 30))
    ['09:00', '09:30']

    Arguments are checked eagerly; each call returns a fresh iterator.
    """
    if step_minutes <= 0:
        raise ValueError(f"step_minutes must be positive, got {step_minutes}")
    start = time_str_to_minutes(hours.start)
    end = time_str_to_minutes(hours.end)

    def _iter() -> Iterator[str]:
        current = start
        while current < end:
            yield minutes_to_time_str(current)
            current += step_minutes

    return _iter()


def slot_step(booking_type: BookingType | None, config: SchedulingConfig) -> int:
    """Minutes between slot starts: duration plus buffer, or the global interval."""
    if booking_type is None:
        return config.slot_interval_minutes
    return booking_type.duration_minutes + booking_type.buffer_after_minutes


def _hours_from_window(window: AvailabilityWindow | None) -> DayHours | None:
    if window is None or not window.is_active:
        return None
    return DayHours(start=window.start_time, end=window.end_time)


def _hours_from_override(override: AvailabilityOverride) -> DayHours | None:
    if not override.is_available:
        return None
    if not (is_valid_time_str(override.start_time) and is_valid_time_str(override.end_time)):
        # Legacy row without hours: treat as closed rather than guessing.
        logger.warning("Override for %s is available but has no hours; treating as closed", override.date)
        return None
    return DayHours(start=override.start_time, end=override.end_time)


def _date_range(start: date, end: date) -> list[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


@dataclass(frozen=True)
class SlotAvailability:
    time: str
    capacity: int
    booked: int
    remaining: int
    available: bool


@dataclass(frozen=True)
class DayAvailability:
    date: date
    hours: DayHours | None
    reason: str | None
    slots: list[SlotAvailability] = field(default_factory=list)

    @property
    def bookable(self) -> bool:
        return self.reason is None


class AvailabilityResolver:
    def __init__(
        self,
        session: AsyncSession,
        config: SchedulingConfig,
        *,
        hours_cache: HoursCache | None = None,
        today: Clock | None = None,
    ):
        self.session = session
        self.config = config
        self.hours_cache = hours_cache
        self.today = today or config.today

    # ── Hours ────────────────────────────────────────────────────────────

    async def get_hours_for_date(self, day: date) -> DayHours | None:
        hours = await self.get_hours_for_range(day, day)
        return hours[day]

    async def get_hours_for_range(self, start: date, end: date) -> dict[date, DayHours | None]:
        """Resolved hours for every date in [start, end]; None means closed."""
        if start > end:
            raise InvalidRequest("start must be on or before end")
        days = _date_range(start, end)

        cached: dict[date, DayHours | None] = {}
        if self.hours_cache is not None:
            try:
                cached = await self.hours_cache.get_many(days)
            except RedisError:
                logger.warning("Hours cache read failed; resolving from the database", exc_info=True)
        missing = [day for day in days if day not in cached]
        if not missing:
            return {day: cached[day] for day in days}

        resolved = await self._resolve_hours(missing[0], missing[-1])
        fresh = {day: resolved[day] for day in missing}
        if self.hours_cache is not None:
            try:
                await self.hours_cache.store_many(fresh)
            except RedisError:
                logger.warning("Hours cache write failed", exc_info=True)

        merged = {**cached, **fresh}
        return {day: merged[day] for day in days}

    async def _resolve_hours(self, start: date, end: date) -> dict[date, DayHours | None]:
        windows = await self.session.execute(select(AvailabilityWindow))
        by_weekday = {window.day_of_week: window for window in windows.scalars()}

        overrides = await self.session.execute(
            select(AvailabilityOverride).where(
                AvailabilityOverride.date >= start,
                AvailabilityOverride.date <= end,
            )
        )
        by_date = {override.date: override for override in overrides.scalars()}

        hours: dict[date, DayHours | None] = {}
        for day in _date_range(start, end):
            override = by_date.get(day)
            if override is not None:
                hours[day] = _hours_from_override(override)
            else:
                hours[day] = _hours_from_window(by_weekday.get(day.weekday()))
        return hours

    async def get_slots_for_date(self, day: date, booking_type: BookingType | None = None) -> list[str]:
        hours = await self.get_hours_for_date(day)
        if hours is None:
            return []
        return list(generate_slots(hours, slot_step(booking_type, self.config)))

    # ── Bookability ──────────────────────────────────────────────────────

    def earliest_date(self, booking_type: BookingType | None = None) -> date:
        slug = booking_type.slug if booking_type is not None else ""
        return self.today() + timedelta(days=self.config.lead_time_days(slug))

    async def _daily_counts(self, booking_type: BookingType | None, start: date, end: date) -> dict[date, int]:
        if booking_type is None or booking_type.max_bookings_per_day is None:
            return {}
        result = await self.session.execute(
            select(Booking.slot_date, func.count().label("count"))
            .where(
                Booking.booking_type_id == booking_type.id,
                Booking.slot_date >= start,
                Booking.slot_date <= end,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .group_by(Booking.slot_date)
        )
        return {row.slot_date: row.count for row in result}

    def _reason(
        self,
        day: date,
        booking_type: BookingType | None,
        hours: DayHours | None,
        booked_that_day: int,
    ) -> str | None:
        if booking_type is not None and not booking_type.is_active:
            return REASON_INACTIVE_TYPE
        if day < self.today():
            return REASON_PAST_DATE
        if day < self.earliest_date(booking_type):
            return REASON_LEAD_TIME
        if hours is None:
            return REASON_CLOSED
        if booking_type is not None and booking_type.max_bookings_per_day is not None:
            if booked_that_day >= booking_type.max_bookings_per_day:
                return REASON_DAILY_CAP
        return None

    async def unbookable_reason(self, day: date, booking_type: BookingType | None = None) -> str | None:
        """Why the date cannot be booked for this type, or None when it can."""
        hours = await self.get_hours_for_date(day)
        counts = await self._daily_counts(booking_type, day, day)
        return self._reason(day, booking_type, hours, counts.get(day, 0))

    async def is_bookable(self, day: date, booking_type: BookingType | None = None) -> bool:
        return await self.unbookable_reason(day, booking_type) is None

    async def next_available_date(self, booking_type: BookingType | None = None) -> date:
        """First bookable date on or after the lead-time floor, within the horizon."""
        if booking_type is not None and not booking_type.is_active:
            raise InvalidRequest(f"Booking type {booking_type.slug!r} is inactive")
        start = max(self.earliest_date(booking_type), self.today())
        end = start + timedelta(days=self.config.horizon_days - 1)

        hours = await self.get_hours_for_range(start, end)
        counts = await self._daily_counts(booking_type, start, end)
        for day in _date_range(start, end):
            if self._reason(day, booking_type, hours[day], counts.get(day, 0)) is None:
                return day

        slug = booking_type.slug if booking_type is not None else "pickup"
        logger.error(
            "No bookable date for %s between %s and %s; check weekly windows and overrides",
            slug, start, end,
        )
        raise NotFound(f"No bookable date for {slug!r} within {self.config.horizon_days} days")

    # ── Calendar ─────────────────────────────────────────────────────────

    async def get_calendar(
        self,
        start: date,
        end: date,
        booking_type: BookingType | None = None,
    ) -> list[DayAvailability]:
        """
        Per-day bookability and per-slot fill for [start, end].

        Runs a fixed number of queries whatever the range length. Slot
        counts come from the ledger, falling back to the default capacity for
        slots nobody has booked yet.
        """
        if start > end:
            raise InvalidRequest("start must be on or before end")
        if (end - start).days + 1 > self.config.horizon_days:
            raise InvalidRequest(f"calendar range may span at most {self.config.horizon_days} days")

        hours_by_day = await self.get_hours_for_range(start, end)
        counts = await self._daily_counts(booking_type, start, end)
        ledger = await SlotLedger(self.session).get_entries_in_range(start, end)
        step = slot_step(booking_type, self.config)
        default_capacity = self.config.default_slot_capacity

        calendar: list[DayAvailability] = []
        for day in _date_range(start, end):
            hours = hours_by_day[day]
            reason = self._reason(day, booking_type, hours, counts.get(day, 0))
            slots: list[SlotAvailability] = []
            if hours is not None:
                for slot_time in generate_slots(hours, step):
                    entry = ledger.get((day, slot_time))
                    capacity = entry.capacity if entry else default_capacity
                    booked = entry.booked if entry else 0
                    remaining = max(0, capacity - booked)
                    slots.append(
                        SlotAvailability(
                            time=slot_time,
                            capacity=capacity,
                            booked=booked,
                            remaining=remaining,
                            available=reason is None and remaining > 0,
                        )
                    )
            calendar.append(DayAvailability(date=day, hours=hours, reason=reason, slots=slots))
        return calendar
