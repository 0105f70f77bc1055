"""
Scheduling configuration threaded explicitly into the ledger and resolver.

Values come from Settings once per process; tests build their own
SchedulingConfig instead of touching global state.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Mapping
from zoneinfo import ZoneInfo

from backend.app.core.config import settings


TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class SchedulingConfig:
    """
    Attributes:
        default_slot_capacity: capacity of a ledger row created on first booking
        slot_interval_minutes: grid step when no booking type is involved
        horizon_days: how far ahead next-available scans and calendars may look
        default_lead_time_days: lead time for slugs missing from lead_times
        lead_times: minimum days of notice keyed by booking type slug
        timezone: business timezone used to compute "today"
    """
    default_slot_capacity: int = 2
    slot_interval_minutes: int = 30
    horizon_days: int = 90
    default_lead_time_days: int = 7
    lead_times: Mapping[str, int] = field(default_factory=dict)
    timezone: str = "America/New_York"

    def __post_init__(self):
        if self.slot_interval_minutes <= 0:
            raise ValueError(f"slot_interval_minutes must be positive, got {self.slot_interval_minutes}")
        if self.default_slot_capacity < 0:
            raise ValueError(f"default_slot_capacity must be >= 0, got {self.default_slot_capacity}")
        object.__setattr__(self, "lead_times", MappingProxyType(dict(self.lead_times)))

    def lead_time_days(self, slug: str) -> int:
        return self.lead_times.get(slug, self.default_lead_time_days)

    def today(self) -> date:
        return datetime.now(ZoneInfo(self.timezone)).date()


@lru_cache
def get_scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(
        default_slot_capacity=settings.DEFAULT_SLOT_CAPACITY,
        slot_interval_minutes=settings.SLOT_INTERVAL_MINUTES,
        horizon_days=settings.BOOKING_HORIZON_DAYS,
        default_lead_time_days=settings.DEFAULT_LEAD_TIME_DAYS,
        lead_times=settings.LEAD_TIME_DAYS,
        timezone=settings.TIMEZONE,
    )


Clock = Callable[[], date]


@dataclass(frozen=True)
class DayHours:
    """Opening hours for one date, half-open: [start, end)."""
    start: str
    end: str

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


# ── Time-of-day helpers ──────────────────────────────────────────────────


def is_valid_time_str(value: str) -> bool:
    return isinstance(value, str) and TIME_RE.match(value) is not None


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    match = TIME_RE.match(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"invalid time of day: {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time_str(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
