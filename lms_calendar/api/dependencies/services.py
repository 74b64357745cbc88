# lms_calendar/api/dependencies/services.py
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.core.config import get_settings
from lms_calendar.db.session import get_db
from lms_calendar.services.room_cache import RoomCache
from lms_calendar.services.session_normalizer import SessionNormalizer
from lms_calendar.services.session_reconciler import RoomProvisioner, SessionReconciler


def get_room_cache(request: Request) -> RoomCache:
    """
    The process-wide room cache created by the application factory.
    """
    return request.app.state.room_cache


def get_room_provider(request: Request) -> Optional[RoomProvisioner]:
    """
    The shared provider client, or None when VIDEOCHAT_URL is not configured.
    """
    return request.app.state.room_provider


def get_session_reconciler(
    db: AsyncSession = Depends(get_db),
    cache: RoomCache = Depends(get_room_cache),
    provider: Optional[RoomProvisioner] = Depends(get_room_provider),
) -> SessionReconciler:
    settings = get_settings()
    return SessionReconciler(
        db=db,
        provider=provider,
        cache=cache,
        normalizer=SessionNormalizer(
            default_timezone=settings.DEFAULT_TIMEZONE,
            default_title=settings.DEFAULT_SESSION_TITLE,
            default_type=settings.DEFAULT_SESSION_TYPE,
        ),
        stale_policy=settings.STALE_SESSION_POLICY,
    )
