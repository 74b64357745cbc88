# lms_calendar/core/security.py
"""JWT helpers for user tokens and room tokens."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from lms_calendar.core.config import get_settings


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a user access token. Issuance normally happens elsewhere; used by tooling and tests."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=8)),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> int:
    """
    Decode a user token and return the user id from its `sub` claim.

    Raises JWTError on an invalid signature, expiry, or missing subject.
    """
    settings = get_settings()
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    subject = payload.get("sub")
    if subject is None:
        raise JWTError("Token has no subject")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise JWTError("Token subject is not a user id") from exc


def create_room_token(room_id: str, course_id: int) -> str:
    """Sign a token that identifies a room inside a course."""
    settings = get_settings()
    payload = {"room_id": room_id, "course_id": course_id}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_room_token(token: str) -> dict[str, Any]:
    """Decode a room token. Raises JWTError if it is invalid or lacks a room id."""
    settings = get_settings()
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    if not payload.get("room_id") or payload.get("course_id") is None:
        raise JWTError("Room token is missing room_id/course_id")
    return payload


def create_provider_token(course_id: int, ttl_seconds: int = 300) -> str:
    """Short-lived bearer token presented to the video-room provider."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "course_id": course_id,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
