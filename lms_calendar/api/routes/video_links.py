# lms_calendar/api/routes/video_links.py
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import APIRouter, Depends, Header, HTTPException, Path
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.api.dependencies.internal_auth import verify_internal_api_key
from lms_calendar.core.security import decode_access_token, decode_room_token
from lms_calendar.db.session import get_db
from lms_calendar.schemas.room import CourseAccessRead, VideoLinkRead
from lms_calendar.services.course_access import has_course_access
from lms_calendar.services.session_store import find_session_by_room

router = APIRouter(prefix="/api", tags=["Video provider"])


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@router.get(
    "/validate-course-access/{user_id}/{course_id}",
    response_model=CourseAccessRead,
    dependencies=[Depends(verify_internal_api_key)],
    summary="Check whether a user may join rooms of a course",
    description=(
        "Provider-facing lookup: `allowed` is true for the course owner and for "
        "enrolled students. Protected via the `X-Internal-Api-Key` header when "
        "configured."
    ),
)
async def validate_course_access(
    user_id: int = Path(..., ge=1),
    course_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> CourseAccessRead:
    return CourseAccessRead(allowed=await has_course_access(db, course_id, user_id))


@router.get(
    "/video-links/{room_token}",
    response_model=VideoLinkRead,
    summary="Resolve a room token for a participant",
    description=(
        "Called by the video provider when a participant opens a room link. "
        "Validates the room token, the participant's bearer token, the session's "
        "time window and the participant's access to the course."
    ),
    responses={
        401: {"description": "Missing/invalid user token or invalid room token."},
        403: {"description": "Session not running, or no access to the course."},
        404: {"description": "Room not found."},
    },
)
async def resolve_video_link(
    room_token: str = Path(..., min_length=1),
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> VideoLinkRead:
    if not authorization:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Missing user token.")

    try:
        room_claims = decode_room_token(room_token)
    except JWTError:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Invalid or expired room token.")

    _, _, user_token = authorization.partition(" ")
    try:
        user_id = decode_access_token(user_token or authorization)
    except JWTError:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="User not authenticated.")

    room_id = str(room_claims["room_id"])
    session = await find_session_by_room(db, room_id)
    if session is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Room not found.")

    now = datetime.now(tz=timezone.utc)
    start = _as_utc(session.start_utc)
    end = _as_utc(session.end_utc)
    if now < start:
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="The session has not started yet.")
    if now > end:
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="The session has ended.")

    if not await has_course_access(db, session.course_id, user_id):
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="No access to this course.")

    return VideoLinkRead(
        room_id=room_id,
        course_id=session.course_id,
        user_id=user_id,
        start_time=start,
        end_time=end,
    )
