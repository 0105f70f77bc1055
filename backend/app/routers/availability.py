from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from backend.app.core.errors import InvalidRequest
from backend.app.models import BookingType
from backend.app.routers.dependencies import get_resolver, get_rule_store
from backend.app.routers.schemas import (
    BookableOut,
    CalendarOut,
    DayAvailabilityOut,
    DayHoursOut,
    HoursOut,
    NextAvailableOut,
    SlotAvailabilityOut,
    SlotsOut,
)
from backend.app.services.availability import AvailabilityResolver
from backend.app.services.rule_store import CalendarRuleStore


router = APIRouter(prefix="/availability", tags=["availability"])


async def _booking_type(rules: CalendarRuleStore, slug: str | None) -> BookingType | None:
    if slug is None:
        return None
    booking_type = await rules.get_booking_type_by_slug(slug)
    if booking_type is None:
        raise InvalidRequest(f"Unknown booking type {slug!r}")
    return booking_type


@router.get("/hours", response_model=HoursOut)
async def hours_for_date(
    day: date = Query(alias="date"),
    resolver: AvailabilityResolver = Depends(get_resolver),
) -> HoursOut:
    hours = await resolver.get_hours_for_date(day)
    return HoursOut(date=day, hours=DayHoursOut(**hours.as_dict()) if hours else None)


@router.get("/slots", response_model=SlotsOut)
async def slots_for_date(
    day: date = Query(alias="date"),
    booking_type: str | None = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    rules: CalendarRuleStore = Depends(get_rule_store),
) -> SlotsOut:
    resolved = await _booking_type(rules, booking_type)
    slots = await resolver.get_slots_for_date(day, resolved)
    return SlotsOut(date=day, booking_type=booking_type, slots=slots)


@router.get("/bookable", response_model=BookableOut)
async def bookable(
    day: date = Query(alias="date"),
    booking_type: str | None = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    rules: CalendarRuleStore = Depends(get_rule_store),
) -> BookableOut:
    resolved = await _booking_type(rules, booking_type)
    reason = await resolver.unbookable_reason(day, resolved)
    return BookableOut(
        date=day,
        bookable=reason is None,
        reason=reason,
        earliest_date=resolver.earliest_date(resolved),
    )


@router.get("/next", response_model=NextAvailableOut)
async def next_available(
    booking_type: str | None = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    rules: CalendarRuleStore = Depends(get_rule_store),
) -> NextAvailableOut:
    resolved = await _booking_type(rules, booking_type)
    day = await resolver.next_available_date(resolved)
    return NextAvailableOut(booking_type=booking_type, date=day)


@router.get("/calendar", response_model=CalendarOut)
async def calendar(
    start: date,
    end: date,
    booking_type: str | None = None,
    resolver: AvailabilityResolver = Depends(get_resolver),
    rules: CalendarRuleStore = Depends(get_rule_store),
) -> CalendarOut:
    resolved = await _booking_type(rules, booking_type)
    days = await resolver.get_calendar(start, end, resolved)
    return CalendarOut(
        start=start,
        end=end,
        booking_type=booking_type,
        days=[
            DayAvailabilityOut(
                date=day.date,
                hours=DayHoursOut(**day.hours.as_dict()) if day.hours else None,
                bookable=day.bookable,
                reason=day.reason,
                slots=[
                    SlotAvailabilityOut(
                        time=slot.time,
                        capacity=slot.capacity,
                        booked=slot.booked,
                        remaining=slot.remaining,
                        available=slot.available,
                    )
                    for slot in day.slots
                ],
            )
            for day in days
        ],
    )
