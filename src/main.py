"""FastAPI application entry point.

Run with: uvicorn src.main:app --port 8000

The competition runtime (tick, candle and schedule loops) runs inside this
process, started and stopped by the lifespan handler.
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from sqlalchemy import text

from config.settings import settings
from src.tc_common.database import async_session_factory, engine
from src.tc_common.datetime_utils import local_now
from src.tc_common.errors import AppError
from src.tc_common.middleware.request_log import RequestLogMiddleware
from src.tc_common.response import error_response
from src.tc_competition.api.router import router as competition_router
from src.tc_competition.domain.events import EventBus
from src.tc_competition.engine.runtime import CompetitionRuntime
from src.tc_competition.engine.scheduler import CompetitionScheduler
from src.tc_competition.infrastructure.redis_events import RedisEventBus
from src.tc_market.engine.price_feed import PriceFeed
from src.tc_room.api.router import router as room_router
from src.tc_room.api.router import user_router
from src.tc_room.domain.repository import RoomRepositoryProtocol
from src.tc_room.infrastructure.persistence import RoomRepository

logger = logging.getLogger(__name__)


def build_scheduler(repo: RoomRepositoryProtocol, events: EventBus) -> CompetitionScheduler:
    feed = PriceFeed(
        initial_price=settings.INITIAL_PRICE,
        volatility=settings.PRICE_VOLATILITY,
    )
    return CompetitionScheduler(
        repo=repo,
        feed=feed,
        events=events,
        clock=lambda: local_now(settings.COMPETITION_TIMEZONE),
        initial_price=settings.INITIAL_PRICE,
        grace_seconds=settings.CLOSING_GRACE_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis, start the runtime. Shutdown: stop and dispose."""
    logging.basicConfig(level=settings.LOG_LEVEL)

    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    await redis.ping()

    repo = RoomRepository(async_session_factory)
    scheduler = build_scheduler(
        repo, RedisEventBus(redis, settings.EVENTS_CHANNEL_PREFIX)
    )
    runtime = CompetitionRuntime(
        scheduler,
        tick_interval=settings.TICK_INTERVAL_SECONDS,
        candle_timeframe=settings.CANDLE_TIMEFRAME_SECONDS,
        schedule_interval=settings.SCHEDULE_CHECK_INTERVAL_SECONDS,
    )
    app.state.room_repo = repo
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        runtime.start()
    else:
        logger.warning("Scheduler disabled; rooms will only move on explicit requests")
    yield
    # Shutdown
    await runtime.stop()
    await engine.dispose()
    await redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(room_router, prefix="/api/v1")
app.include_router(user_router, prefix="/api/v1")
app.include_router(competition_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
