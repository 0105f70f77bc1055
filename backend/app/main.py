from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.core.config import settings
from backend.app.core.errors import SchedulingError, scheduling_error_handler
from backend.app.core.logging import configure_logging
from backend.app.core.redis_client import close_redis, init_redis
import backend.app.routers.admin as admin
import backend.app.routers.availability as availability
import backend.app.routers.health as health
import backend.app.routers.reservations as reservations


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_redis()
    try:
        yield
    finally:
        await close_redis()


app = FastAPI(
    title="Pickup Scheduling API",
    lifespan=lifespan,
)

app.add_exception_handler(SchedulingError, scheduling_error_handler)

app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(availability.router, prefix=settings.API_PREFIX)
app.include_router(reservations.router, prefix=settings.API_PREFIX)
app.include_router(admin.router, prefix=settings.API_PREFIX)
