import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from backend.app.core.config import settings


logger = logging.getLogger(__name__)

# Backs the optional hours cache only; slot counts never live in Redis.
redis_client: redis.Redis | None = None


async def init_redis() -> None:
    """
    Connect the hours cache. Leaves the client unset when REDIS_URL is empty
    or the server does not answer, in which case reads go to the database.
    """
    global redis_client
    redis_client = None
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set; hours cache disabled")
        return

    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except RedisError as exc:
        logger.warning("Redis at startup unreachable, hours cache disabled: %s", exc)
        await client.aclose()
        return
    redis_client = client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
