import logging

from fastapi import APIRouter, Depends, HTTPException
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core import redis_client as redis_module
from backend.app.db.session import get_session


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    """Basic liveness probe."""
    return {"ok": True}


@router.get("/readiness")
async def readiness(session: AsyncSession = Depends(get_session)) -> dict[str, bool]:
    """Ensure the database, and Redis when configured, are reachable."""
    await session.execute(text("SELECT 1"))

    if redis_module.redis_client is not None:
        try:
            await redis_module.redis_client.ping()
        except RedisError as exc:
            logger.warning("Readiness: Redis ping failed: %s", exc)
            raise HTTPException(status_code=503, detail="Redis unavailable") from exc

    return {"ready": True}
