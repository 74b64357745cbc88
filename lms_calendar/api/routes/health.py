# lms_calendar/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from lms_calendar.core.config import get_settings


router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """
    Response schema for the health check endpoint.
    """

    status: str = Field(..., examples=["ok"])
    app_name: str = Field(..., examples=["LMS Calendar Service"])
    environment: str = Field(
        ...,
        description="Current deployment environment (local/test/dev/stage/prod).",
        examples=["local"],
    )
    video_provider_configured: bool = Field(
        ...,
        description="False when VIDEOCHAT_URL is unset; sessions are then stored without rooms.",
    )
    room_cache_entries: int = Field(
        ...,
        description="Rooms currently held in the process-local cache (expired ones included until swept).",
    )
    timestamp_utc: datetime = Field(
        ...,
        description="Server-side timestamp (UTC) at which this health check was generated.",
        examples=["2025-01-01T10:30:00Z"],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check for the LMS Calendar service",
    description=(
        "Lightweight liveness probe. Does not touch the database or call the "
        "video provider, so it stays green while downstream systems are degraded."
    ),
)
async def health_check(request: Request) -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        video_provider_configured=request.app.state.room_provider is not None,
        room_cache_entries=len(request.app.state.room_cache),
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
