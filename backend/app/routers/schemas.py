from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


# "HH:MM", zero-padded, 00:00-23:59
TIME_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"


class DayHoursOut(BaseModel):
    start: str
    end: str


class HoursOut(BaseModel):
    date: date
    hours: DayHoursOut | None


class SlotsOut(BaseModel):
    date: date
    booking_type: str | None = None
    slots: list[str]


class BookableOut(BaseModel):
    date: date
    bookable: bool
    reason: str | None = None
    earliest_date: date


class NextAvailableOut(BaseModel):
    booking_type: str | None = None
    date: date


class SlotAvailabilityOut(BaseModel):
    time: str
    capacity: int
    booked: int
    remaining: int
    available: bool


class DayAvailabilityOut(BaseModel):
    date: date
    hours: DayHoursOut | None
    bookable: bool
    reason: str | None = None
    slots: list[SlotAvailabilityOut]


class CalendarOut(BaseModel):
    start: date
    end: date
    booking_type: str | None = None
    days: list[DayAvailabilityOut]


class ReservationIn(BaseModel):
    date: date
    time: str = Field(pattern=TIME_PATTERN)
    # Slug; omitted for plain pickups that only follow the default lead time
    booking_type: str | None = Field(default=None, max_length=200)


class ReservationOut(BaseModel):
    booking_id: int
    date: date
    time: str
    status: str


class SlotRef(BaseModel):
    date: date
    time: str = Field(pattern=TIME_PATTERN)


class CancelOut(BaseModel):
    released: bool


# ── Admin ────────────────────────────────────────────────────────────────


class WeeklyWindowIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)  # 0 = Monday
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    is_active: bool = True


class WeeklyWindowBody(BaseModel):
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    is_active: bool = True


class WeeklyWindowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool


class BookingTypeIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    duration_minutes: int = Field(default=30, gt=0, le=24 * 60)
    buffer_after_minutes: int = Field(default=0, ge=0, le=24 * 60)
    max_bookings_per_day: int | None = Field(default=None, gt=0)
    requires_approval: bool = False
    confirmation_message: str | None = Field(default=None, max_length=2000)
    is_active: bool = True


class BookingTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: str | None
    duration_minutes: int
    buffer_after_minutes: int
    max_bookings_per_day: int | None
    requires_approval: bool
    confirmation_message: str | None
    is_active: bool


class OverrideIn(BaseModel):
    date: date
    is_available: bool = False
    start_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    end_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    reason: str | None = Field(default=None, max_length=500)


class OverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    is_available: bool
    start_time: str | None
    end_time: str | None
    reason: str | None
    created_at: datetime | None = None


class LedgerEntryOut(BaseModel):
    date: date
    time: str
    capacity: int
    booked: int
    remaining: int


class CapacityIn(BaseModel):
    date: date
    time: str = Field(pattern=TIME_PATTERN)
    capacity: int = Field(ge=0)


class LedgerSyncIn(BaseModel):
    start: date
    end: date


class LedgerSyncOut(BaseModel):
    updated: int
    created: int
    clamped: int
