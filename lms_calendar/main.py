# lms_calendar/main.py
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from http import HTTPStatus

from lms_calendar.api.routes import calendar, health, video_links
from lms_calendar.core.config import get_settings
from lms_calendar.core.logging_config import configure_logging
from lms_calendar.db.session import engine, init_db_for_startup
from lms_calendar.services.rate_limiter import RateLimiter
from lms_calendar.services.room_cache import RoomCache
from lms_calendar.services.room_provider_client import RoomProviderClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create missing tables, run the room-cache sweeper for the lifetime of
    the process and dispose of the engine on shutdown.
    """
    await init_db_for_startup()

    sweeper = asyncio.create_task(app.state.room_cache.run_sweeper())
    logger.info("%s is ready", app.title)

    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await engine.dispose()
    logger.info("Shutting down...")


def create_app() -> FastAPI:
    """
    Application factory for the LMS Calendar service.
    """
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend service that schedules a course's live sessions, provisions\n"
            "their video rooms with the external provider under rate limiting, and\n"
            "gates access to those rooms for course owners and enrolled students."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Process-wide collaborators shared by every request
    rate_limiter = RateLimiter(
        min_interval_seconds=settings.PROVIDER_MIN_INTERVAL_MS / 1000.0,
        serialize_calls=settings.PROVIDER_SERIALIZE_CALLS,
    )
    app.state.rate_limiter = rate_limiter
    app.state.room_cache = RoomCache(ttl_seconds=settings.ROOM_CACHE_TTL_SECONDS)
    app.state.room_provider = (
        RoomProviderClient.from_settings(settings, rate_limiter)
        if settings.VIDEOCHAT_URL
        else None
    )
    if app.state.room_provider is None:
        logger.warning("VIDEOCHAT_URL is not set; sessions will be stored without rooms")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=HTTPStatus.BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    # Routers
    app.include_router(health.router)
    app.include_router(calendar.router)
    app.include_router(video_links.router)

    return app


app = create_app()
