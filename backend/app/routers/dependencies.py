from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core import redis_client as redis_module
from backend.app.core.config import settings
from backend.app.db.session import get_session
from backend.app.services.availability import AvailabilityResolver
from backend.app.services.hours_cache import HoursCache
from backend.app.services.reservations import ReservationService
from backend.app.services.rule_store import CalendarRuleStore
from backend.app.services.scheduling_config import Clock, SchedulingConfig, get_scheduling_config
from backend.app.services.slot_ledger import SlotLedger


def get_config() -> SchedulingConfig:
    return get_scheduling_config()


def get_clock(config: SchedulingConfig = Depends(get_config)) -> Clock:
    """Today's date in the business timezone; overridden in tests."""
    return config.today


def get_hours_cache() -> HoursCache | None:
    if redis_module.redis_client is None:
        return None
    return HoursCache(redis_module.redis_client, ttl_seconds=settings.HOURS_CACHE_TTL_SECONDS)


def get_rule_store(
    session: AsyncSession = Depends(get_session),
    today: Clock = Depends(get_clock),
    hours_cache: HoursCache | None = Depends(get_hours_cache),
) -> CalendarRuleStore:
    return CalendarRuleStore(session, today=today, hours_cache=hours_cache)


def get_resolver(
    session: AsyncSession = Depends(get_session),
    config: SchedulingConfig = Depends(get_config),
    today: Clock = Depends(get_clock),
    hours_cache: HoursCache | None = Depends(get_hours_cache),
) -> AvailabilityResolver:
    return AvailabilityResolver(session, config, hours_cache=hours_cache, today=today)


def get_ledger(session: AsyncSession = Depends(get_session)) -> SlotLedger:
    return SlotLedger(session)


def get_reservation_service(
    session: AsyncSession = Depends(get_session),
    config: SchedulingConfig = Depends(get_config),
    today: Clock = Depends(get_clock),
) -> ReservationService:
    return ReservationService(session, config, today=today)
