"""
Reservation entry point: validate, re-check availability, take a ledger unit.

Runs inside the caller's transaction so the ledger increment and the booking
row commit or roll back together. There are no internal retries; a caller
that wants one re-runs reserve() from the top so the bookability check is
fresh.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from backend.app.core.errors import InvalidRequest, NotFound, SlotUnavailable
from backend.app.models import (
    ACTIVE_BOOKING_STATUSES,
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
    Booking,
    BookingType,
)
from backend.app.services.availability import AvailabilityResolver
from backend.app.services.rule_store import CalendarRuleStore
from backend.app.services.scheduling_config import Clock, SchedulingConfig, is_valid_time_str
from backend.app.services.slot_ledger import SlotLedger


logger = logging.getLogger(__name__)

REASON_OUTSIDE_HOURS = "outside_hours"
REASON_SLOT_FULL = "slot_full"


@dataclass(frozen=True)
class Reservation:
    booking_id: int
    date: date
    time: str
    status: str


def _parse_date(value: date | str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(f"date must be YYYY-MM-DD, got {value!r}") from exc


class ReservationService:
    def __init__(
        self,
        session: AsyncSession,
        config: SchedulingConfig,
        *,
        today: Clock | None = None,
    ):
        self.session = session
        self.config = config
        self.today = today or config.today
        self.rules = CalendarRuleStore(session, today=self.today)
        # No hours cache: the bookability check must see committed rules.
        self.resolver = AvailabilityResolver(session, config, today=self.today)
        self.ledger = SlotLedger(session)

    async def _resolve_type(self, booking_type: BookingType | str | None) -> BookingType | None:
        if booking_type is None or isinstance(booking_type, BookingType):
            resolved = booking_type
        else:
            resolved = await self.rules.get_booking_type_by_slug(booking_type)
            if resolved is None:
                raise InvalidRequest(f"Unknown booking type {booking_type!r}")
        if resolved is not None and not resolved.is_active:
            raise InvalidRequest(f"Booking type {resolved.slug!r} is not active")
        return resolved

    async def reserve(
        self,
        slot_date: date | str,
        slot_time: str,
        booking_type: BookingType | str | None = None,
    ) -> Reservation:
        """
        Reserve one unit of capacity at (slot_date, slot_time).

        Raises InvalidRequest for malformed input, a past date or an unknown
        or inactive booking type, and SlotUnavailable(reason) when the slot
        cannot be had right now.
        """
        slot_date = _parse_date(slot_date)
        if not is_valid_time_str(slot_time):
            raise InvalidRequest(f"time must be HH:MM, got {slot_time!r}")
        if slot_date < self.today():
            raise InvalidRequest(f"{slot_date.isoformat()} is in the past")
        resolved_type = await self._resolve_type(booking_type)

        reason = await self.resolver.unbookable_reason(slot_date, resolved_type)
        if reason is not None:
            raise SlotUnavailable(reason)
        if slot_time not in await self.resolver.get_slots_for_date(slot_date, resolved_type):
            raise SlotUnavailable(
                REASON_OUTSIDE_HOURS,
                f"{slot_time} is not a slot on {slot_date.isoformat()}",
            )

        if not await self.ledger.reserve(slot_date, slot_time, self.config.default_slot_capacity):
            logger.warning("Slot %s %s filled before it could be reserved", slot_date, slot_time)
            raise SlotUnavailable(REASON_SLOT_FULL)

        status = BOOKING_PENDING if resolved_type is not None and resolved_type.requires_approval else BOOKING_CONFIRMED
        booking = Booking(
            booking_type_id=resolved_type.id if resolved_type is not None else None,
            slot_date=slot_date,
            slot_time=slot_time,
            status=status,
        )
        self.session.add(booking)
        await self.session.flush()

        logger.info(
            "Reserved %s %s for %s (booking %s, %s)",
            slot_date, slot_time,
            resolved_type.slug if resolved_type is not None else "pickup",
            booking.id, status,
        )
        return Reservation(booking_id=booking.id, date=slot_date, time=slot_time, status=status)

    async def cancel(self, slot_date: date | str, slot_time: str) -> bool:
        """
        Cancel one booking at the slot (the oldest active one) and release its
        unit. A slot with no booking rows at all only has its ledger unit
        released. Returns whether anything was released; repeats are no-ops.
        """
        slot_date = _parse_date(slot_date)
        if not is_valid_time_str(slot_time):
            raise InvalidRequest(f"time must be HH:MM, got {slot_time!r}")

        oldest = aliased(Booking)
        oldest_active_id = (
            select(oldest.id)
            .where(
                oldest.slot_date == slot_date,
                oldest.slot_time == slot_time,
                oldest.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .order_by(oldest.id)
            .limit(1)
            .scalar_subquery()
        )
        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == oldest_active_id, Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .values(status=BOOKING_CANCELLED, cancelled_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            on_record = await self.session.scalar(
                select(func.count())
                .select_from(Booking)
                .where(Booking.slot_date == slot_date, Booking.slot_time == slot_time)
            )
            if on_record:
                logger.info("Cancel of %s %s ignored: no active booking", slot_date, slot_time)
                return False

        released = await self.ledger.release(slot_date, slot_time)
        if released:
            logger.info("Released %s %s", slot_date, slot_time)
        return released

    async def cancel_booking(self, booking_id: int) -> Reservation:
        """Cancel a booking and release its slot exactly once."""
        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .values(status=BOOKING_CANCELLED, cancelled_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        booking = await self.session.get(Booking, booking_id, populate_existing=True)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")

        if result.rowcount == 1:
            await self.ledger.release(booking.slot_date, booking.slot_time)
            logger.info("Booking %s cancelled; released %s %s", booking_id, booking.slot_date, booking.slot_time)
        else:
            logger.info("Booking %s was already cancelled", booking_id)
        return Reservation(
            booking_id=booking.id,
            date=booking.slot_date,
            time=booking.slot_time,
            status=booking.status,
        )
