"""
Redis read-through cache of resolved opening hours per date.

Key format: sched:hours:{YYYY-MM-DD}
Value: JSON {"start": "HH:MM", "end": "HH:MM"} or the sentinel "closed".

Only configuration-derived hours are cached. Ledger counts are always read
live because they are the contended state.

Invalidation:
✓ weekly windows replaced / edited → all cached dates
✓ override added / removed → that date
"""
import json
import logging
from datetime import date

import redis.asyncio as redis

from backend.app.services.scheduling_config import DayHours


logger = logging.getLogger(__name__)

CLOSED_SENTINEL = "closed"


class HoursCache:
    KEY_PREFIX = "sched:hours"

    def __init__(self, client: redis.Redis, ttl_seconds: int = 3600):
        self.redis = client
        self.ttl_seconds = ttl_seconds

    def _key(self, day: date) -> str:
        return f"{self.KEY_PREFIX}:{day.isoformat()}"

    async def get_many(self, days: list[date]) -> dict[date, DayHours | None]:
        """Return cached hours for the dates that are present; misses are omitted."""
        if not days:
            return {}
        raw_values = await self.redis.mget([self._key(day) for day in days])
        hits: dict[date, DayHours | None] = {}
        for day, raw in zip(days, raw_values):
            if raw is None:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode()
            if raw == CLOSED_SENTINEL:
                hits[day] = None
                continue
            try:
                data = json.loads(raw)
                hits[day] = DayHours(start=data["start"], end=data["end"])
            except (ValueError, KeyError, TypeError):
                logger.warning("Discarding malformed hours cache entry for %s", day)
        return hits

    async def store_many(self, hours_by_day: dict[date, DayHours | None]) -> None:
        if not hours_by_day:
            return
        pipe = self.redis.pipeline()
        for day, hours in hours_by_day.items():
            value = CLOSED_SENTINEL if hours is None else json.dumps(hours.as_dict())
            pipe.set(self._key(day), value, ex=self.ttl_seconds)
        await pipe.execute()

    async def invalidate(self, days: list[date] | None = None) -> int:
        """Delete cached dates, or every cached date when days is None."""
        if days:
            keys = [self._key(day) for day in days]
        else:
            keys = [key async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}:*")]
        if not keys:
            return 0
        return await self.redis.delete(*keys)
