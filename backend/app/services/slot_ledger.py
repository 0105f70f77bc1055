"""
Slot ledger: the only writer of "how full is this slot".

Per (date, time) key the ledger holds (capacity, booked) with
0 <= booked <= capacity, enforced by a CHECK constraint and by the shape of
every statement here:

  reserve  INSERT .. ON CONFLICT DO NOTHING, then
           UPDATE .. SET booked = booked + 1 WHERE booked < capacity
  release  UPDATE .. SET booked = booked - 1 WHERE booked > 0

Both mutations are single statements, so the storage engine's row lock is the
whole concurrency story. Callers own the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Mapping

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import Conflict, InvalidRequest
from backend.app.db.upsert import dialect_insert
from backend.app.models import ACTIVE_BOOKING_STATUSES, Booking, SlotLedgerEntry


logger = logging.getLogger(__name__)

SlotKey = tuple[date, str]

SLOT_LEDGER = SlotLedgerEntry.__table__


@dataclass(frozen=True)
class LedgerCounts:
    capacity: int
    booked: int

    @property
    def remaining(self) -> int:
        return max(0, self.capacity - self.booked)


@dataclass(frozen=True)
class SyncSummary:
    updated: int
    created: int
    clamped: int


def _slot_filter(slot_date: date, slot_time: str):
    return and_(SlotLedgerEntry.slot_date == slot_date, SlotLedgerEntry.slot_time == slot_time)


def entries_in_range_query(start: date, end: date, *, for_update: bool = False):
    stmt = (
        select(
            SlotLedgerEntry.slot_date,
            SlotLedgerEntry.slot_time,
            SlotLedgerEntry.capacity,
            SlotLedgerEntry.booked,
        )
        .where(SlotLedgerEntry.slot_date >= start, SlotLedgerEntry.slot_date <= end)
        .order_by(SlotLedgerEntry.slot_date, SlotLedgerEntry.slot_time)
    )
    if for_update:
        # Blocks concurrent reserve/release on these rows; a no-op on SQLite.
        stmt = stmt.with_for_update()
    return stmt


class SlotLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Read ─────────────────────────────────────────────────────────────

    async def get_counts(self, slot_date: date, slot_time: str) -> LedgerCounts | None:
        result = await self.session.execute(
            select(SlotLedgerEntry.capacity, SlotLedgerEntry.booked).where(_slot_filter(slot_date, slot_time))
        )
        row = result.one_or_none()
        if row is None:
            return None
        return LedgerCounts(capacity=row.capacity, booked=row.booked)

    async def get_capacity(self, slot_date: date, slot_time: str, default_capacity: int) -> int:
        """Configured capacity, or the default when the slot has no ledger row yet."""
        counts = await self.get_counts(slot_date, slot_time)
        return counts.capacity if counts else default_capacity

    async def get_booked(self, slot_date: date, slot_time: str) -> int:
        counts = await self.get_counts(slot_date, slot_time)
        return counts.booked if counts else 0

    async def get_remaining(self, slot_date: date, slot_time: str, default_capacity: int) -> int:
        counts = await self.get_counts(slot_date, slot_time)
        if counts is None:
            return max(0, default_capacity)
        return counts.remaining

    async def get_entries_in_range(
        self, start: date, end: date, *, for_update: bool = False
    ) -> dict[SlotKey, LedgerCounts]:
        """
        All ledger rows with start <= date <= end, in one query. With
        for_update the rows stay locked until the transaction ends.
        """
        result = await self.session.execute(entries_in_range_query(start, end, for_update=for_update))
        return {
            (row.slot_date, row.slot_time): LedgerCounts(capacity=row.capacity, booked=row.booked)
            for row in result
        }

    # ── Write ────────────────────────────────────────────────────────────

    async def _ensure_row(self, slot_date: date, slot_time: str, default_capacity: int) -> None:
        insert = dialect_insert(self.session)
        await self.session.execute(
            insert(SLOT_LEDGER)
            .values(slot_date=slot_date, slot_time=slot_time, capacity=default_capacity, booked=0)
            .on_conflict_do_nothing(index_elements=["slot_date", "slot_time"])
        )

    async def reserve(self, slot_date: date, slot_time: str, default_capacity: int) -> bool:
        """Take one unit of capacity if any is left. Returns whether it was taken."""
        await self._ensure_row(slot_date, slot_time, default_capacity)
        result = await self.session.execute(
            update(SlotLedgerEntry)
            .where(
                _slot_filter(slot_date, slot_time),
                SlotLedgerEntry.booked < SlotLedgerEntry.capacity,
            )
            .values(booked=SlotLedgerEntry.booked + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, slot_date: date, slot_time: str) -> bool:
        """
        Give back one unit. Floored at zero and silent on unknown slots, so
        duplicate cancellation signals are harmless. Returns whether a unit
        was actually released.
        """
        result = await self.session.execute(
            update(SlotLedgerEntry)
            .where(_slot_filter(slot_date, slot_time), SlotLedgerEntry.booked > 0)
            .values(booked=SlotLedgerEntry.booked - 1)
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        if not released:
            logger.info("Release of %s %s ignored: nothing booked", slot_date, slot_time)
        return released

    async def set_capacity(self, slot_date: date, slot_time: str, capacity: int) -> LedgerCounts:
        """Create or resize a slot. Shrinking below the booked count is refused."""
        if capacity < 0:
            raise InvalidRequest("capacity must be >= 0")
        insert = dialect_insert(self.session)
        stmt = insert(SLOT_LEDGER).values(
            slot_date=slot_date, slot_time=slot_time, capacity=capacity, booked=0
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["slot_date", "slot_time"],
            set_={"capacity": stmt.excluded.capacity},
            where=SlotLedgerEntry.booked <= stmt.excluded.capacity,
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            booked = await self.get_booked(slot_date, slot_time)
            raise Conflict(
                f"Slot {slot_date.isoformat()} {slot_time} already has {booked} booking(s); "
                f"capacity cannot be set to {capacity}"
            )
        return LedgerCounts(capacity=capacity, booked=await self.get_booked(slot_date, slot_time))

    async def sync_from_source(
        self,
        start: date,
        end: date,
        actual_counts: Mapping[SlotKey, int],
        default_capacity: int,
    ) -> SyncSummary:
        """
        Overwrite booked counts in [start, end] with the authoritative counts.

        Ledger rows missing from actual_counts drop to zero; counts for slots
        without a row create one with default_capacity. A count above capacity
        is clamped so the ledger invariant survives, and logged.

        Rows in range are locked for the rest of the transaction. Lock them
        before computing actual_counts (get_entries_in_range(for_update=True))
        so a reservation committed in between is not overwritten.
        """
        if start > end:
            raise InvalidRequest("start must be on or before end")
        for (slot_date, slot_time), count in actual_counts.items():
            if not start <= slot_date <= end:
                raise InvalidRequest(f"count for {slot_date.isoformat()} {slot_time} is outside the sync range")
            if count < 0:
                raise InvalidRequest(f"count for {slot_date.isoformat()} {slot_time} is negative")

        existing = await self.get_entries_in_range(start, end, for_update=True)
        updated = created = clamped = 0

        for key, counts in existing.items():
            target = actual_counts.get(key, 0)
            if target > counts.capacity:
                logger.warning(
                    "Ledger sync: %s %s has %d bookings for capacity %d; clamping",
                    key[0], key[1], target, counts.capacity,
                )
                target = counts.capacity
                clamped += 1
            if target != counts.booked:
                await self.session.execute(
                    update(SlotLedgerEntry)
                    .where(_slot_filter(*key))
                    .values(booked=target)
                    .execution_options(synchronize_session=False)
                )
                updated += 1

        insert = dialect_insert(self.session)
        for key, count in actual_counts.items():
            if key in existing:
                continue
            booked = count
            if booked > default_capacity:
                logger.warning(
                    "Ledger sync: %s %s has %d bookings for default capacity %d; clamping",
                    key[0], key[1], count, default_capacity,
                )
                booked = default_capacity
                clamped += 1
            await self.session.execute(
                insert(SLOT_LEDGER)
                .values(slot_date=key[0], slot_time=key[1], capacity=default_capacity, booked=booked)
                .on_conflict_do_nothing(index_elements=["slot_date", "slot_time"])
            )
            created += 1

        logger.info(
            "Ledger sync %s..%s: %d updated, %d created, %d clamped",
            start, end, updated, created, clamped,
        )
        return SyncSummary(updated=updated, created=created, clamped=clamped)

    async def count_active_bookings(self, start: date, end: date) -> dict[SlotKey, int]:
        """Non-cancelled bookings per slot in [start, end]; the source for sync_from_source."""
        result = await self.session.execute(
            select(Booking.slot_date, Booking.slot_time, func.count().label("count"))
            .where(
                Booking.slot_date >= start,
                Booking.slot_date <= end,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .group_by(Booking.slot_date, Booking.slot_time)
        )
        return {(row.slot_date, row.slot_time): row.count for row in result}
