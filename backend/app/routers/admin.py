"""Back-office configuration endpoints. Authentication is handled in front of the API."""
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import InvalidRequest, NotFound
from backend.app.db.session import get_session
from backend.app.routers.dependencies import get_config, get_ledger, get_rule_store
from backend.app.routers.schemas import (
    BookingTypeIn,
    BookingTypeOut,
    CapacityIn,
    LedgerEntryOut,
    LedgerSyncIn,
    LedgerSyncOut,
    OverrideIn,
    OverrideOut,
    WeeklyWindowBody,
    WeeklyWindowIn,
    WeeklyWindowOut,
)
from backend.app.services.rule_store import CalendarRuleStore, WeeklyWindow
from backend.app.services.scheduling_config import SchedulingConfig
from backend.app.services.slot_ledger import SlotLedger


router = APIRouter(prefix="/admin", tags=["admin"])


# ── Weekly windows ───────────────────────────────────────────────────────


@router.get("/availability/windows", response_model=list[WeeklyWindowOut])
async def list_windows(rules: CalendarRuleStore = Depends(get_rule_store)):
    return await rules.get_weekly_windows()


@router.put("/availability/windows", response_model=list[WeeklyWindowOut])
async def replace_windows(
    payload: list[WeeklyWindowIn],
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    async with session.begin():
        windows = await rules.set_weekly_windows(WeeklyWindow(**item.model_dump()) for item in payload)
    await rules.invalidate_pending()
    return windows


@router.put("/availability/windows/{day_of_week}", response_model=WeeklyWindowOut)
async def upsert_window(
    day_of_week: int,
    payload: WeeklyWindowBody,
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    async with session.begin():
        window = await rules.upsert_weekly_window(WeeklyWindow(day_of_week=day_of_week, **payload.model_dump()))
    await rules.invalidate_pending()
    return window


# ── Booking types ────────────────────────────────────────────────────────


@router.get("/booking-types", response_model=list[BookingTypeOut])
async def list_booking_types(
    active_only: bool = False,
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    return await rules.list_booking_types(active_only=active_only)


@router.post("/booking-types", response_model=BookingTypeOut, status_code=status.HTTP_201_CREATED)
async def create_booking_type(
    payload: BookingTypeIn,
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    async with session.begin():
        booking_type = await rules.upsert_booking_type(**payload.model_dump())
    return booking_type


@router.put("/booking-types/{booking_type_id}", response_model=BookingTypeOut)
async def update_booking_type(
    booking_type_id: int,
    payload: BookingTypeIn,
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    async with session.begin():
        booking_type = await rules.upsert_booking_type(booking_type_id, **payload.model_dump())
    return booking_type


@router.delete("/booking-types/{booking_type_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking_type(
    booking_type_id: int,
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
) -> None:
    async with session.begin():
        await rules.delete_booking_type(booking_type_id)


# ── Overrides ────────────────────────────────────────────────────────────


@router.get("/overrides", response_model=list[OverrideOut])
async def list_overrides(
    start: date,
    end: date,
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    return await rules.get_overrides_in_range(start, end)


@router.post("/overrides", response_model=OverrideOut, status_code=status.HTTP_201_CREATED)
async def create_override(
    payload: OverrideIn,
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
):
    async with session.begin():
        override = await rules.add_override(
            payload.date,
            is_available=payload.is_available,
            start_time=payload.start_time,
            end_time=payload.end_time,
            reason=payload.reason,
        )
    await rules.invalidate_pending()
    await session.refresh(override)
    return override


@router.delete("/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_override(
    override_id: int,
    session: AsyncSession = Depends(get_session),
    rules: CalendarRuleStore = Depends(get_rule_store),
) -> None:
    async with session.begin():
        removed = await rules.remove_override(override_id)
    await rules.invalidate_pending()
    if not removed:
        raise NotFound(f"Override {override_id} not found")


# ── Ledger ───────────────────────────────────────────────────────────────


@router.get("/ledger", response_model=list[LedgerEntryOut])
async def list_ledger(
    start: date,
    end: date,
    ledger: SlotLedger = Depends(get_ledger),
):
    if start > end:
        raise InvalidRequest("start must be on or before end")
    entries = await ledger.get_entries_in_range(start, end)
    return [
        LedgerEntryOut(
            date=slot_date,
            time=slot_time,
            capacity=counts.capacity,
            booked=counts.booked,
            remaining=counts.remaining,
        )
        for (slot_date, slot_time), counts in entries.items()
    ]


@router.put("/ledger/capacity", response_model=LedgerEntryOut)
async def set_capacity(
    payload: CapacityIn,
    session: AsyncSession = Depends(get_session),
    ledger: SlotLedger = Depends(get_ledger),
):
    async with session.begin():
        counts = await ledger.set_capacity(payload.date, payload.time, payload.capacity)
    return LedgerEntryOut(
        date=payload.date,
        time=payload.time,
        capacity=counts.capacity,
        booked=counts.booked,
        remaining=counts.remaining,
    )


@router.post("/ledger/sync", response_model=LedgerSyncOut)
async def sync_ledger(
    payload: LedgerSyncIn,
    session: AsyncSession = Depends(get_session),
    ledger: SlotLedger = Depends(get_ledger),
    config: SchedulingConfig = Depends(get_config),
):
    """Recompute booked counts in the range from the bookings table."""
    async with session.begin():
        # Lock the range first so bookings committed meanwhile are counted.
        await ledger.get_entries_in_range(payload.start, payload.end, for_update=True)
        counts = await ledger.count_active_bookings(payload.start, payload.end)
        summary = await ledger.sync_from_source(
            payload.start, payload.end, counts, config.default_slot_capacity
        )
    return LedgerSyncOut(updated=summary.updated, created=summary.created, clamped=summary.clamped)
