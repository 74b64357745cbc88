# lms_calendar/api/routes/calendar.py
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from urllib.parse import parse_qs, urlencode, urlsplit

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from fastapi.responses import JSONResponse, RedirectResponse
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.api.dependencies.auth import require_course_owner
from lms_calendar.api.dependencies.services import get_session_reconciler
from lms_calendar.core.config import get_settings
from lms_calendar.core.security import create_room_token, decode_access_token
from lms_calendar.db.session import get_db
from lms_calendar.models.course import Course
from lms_calendar.schemas.class_session import (
    ClassSessionRead,
    ReconcileRequest,
    ReconcileSummary,
)
from lms_calendar.services.course_access import get_course, has_course_access
from lms_calendar.services.session_reconciler import SessionReconciler
from lms_calendar.services.session_store import find_session_by_room, list_course_sessions

router = APIRouter(prefix="/courses", tags=["Calendar"])


def _join_path(course_id: int, room_id: str | None) -> str | None:
    if not room_id:
        return None
    return f"/courses/{course_id}/join/{room_id}"


@router.post(
    "/{course_id}/dates",
    response_model=ReconcileSummary,
    status_code=HTTPStatus.OK,
    summary="Schedule live sessions and provision their video rooms",
    description=(
        "Reconcile the submitted sessions with the course calendar.\n\n"
        "- Sessions are keyed by their local calendar date; re-submitting a date "
        "updates its times/title/type in place.\n"
        "- Dates that already have a room keep it (`reused`); rooms provisioned in "
        "the last minute are served from cache (`cached`).\n"
        "- Remaining dates are provisioned in one batch call to the video provider.\n"
        "- Invalid sessions (unparseable, unknown timezone, `final <= inicio`) are "
        "reported as `invalid` and never stored.\n\n"
        "Only the course owner may call this endpoint."
    ),
    responses={
        200: {
            "description": "Per-session outcomes (partial provider failures included).",
            "content": {
                "application/json": {
                    "example": {
                        "course_id": 1,
                        "total": 2,
                        "successful": 1,
                        "failed": 0,
                        "invalid": 1,
                        "removed": 0,
                        "rate_limited": False,
                        "retry_after": None,
                        "counts": {"created": 1, "invalid": 1},
                        "results": [
                            {
                                "index": 0,
                                "date": "2024-03-01",
                                "inicio": "2024-03-01T09:00",
                                "status": "created",
                                "detail": None,
                            },
                            {
                                "index": 1,
                                "date": None,
                                "inicio": "2024-03-02T10:00",
                                "status": "invalid",
                                "detail": "final must be after inicio",
                            },
                        ],
                    }
                }
            },
        },
        400: {"description": "Malformed body or empty `sessions` list."},
        401: {"description": "Missing or invalid bearer token."},
        403: {"description": "Caller does not own the course."},
        404: {"description": "Course not found."},
        429: {
            "description": (
                "Provider rate limit exhausted. The body carries the same summary; "
                "`Retry-After` is set when the provider suggested a delay."
            ),
        },
    },
)
async def schedule_course_sessions(
    payload: ReconcileRequest,
    course: Course = Depends(require_course_owner),
    reconciler: SessionReconciler = Depends(get_session_reconciler),
):
    """
    Reconcile desired sessions for a course owned by the caller.
    """
    if not payload.sessions:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="At least one session is required.",
        )

    summary = await reconciler.reconcile(course.id, payload.sessions)

    if summary.rate_limited:
        headers = {}
        if summary.retry_after is not None:
            headers["Retry-After"] = str(max(1, round(summary.retry_after)))
        return JSONResponse(
            status_code=HTTPStatus.TOO_MANY_REQUESTS,
            content=summary.model_dump(mode="json"),
            headers=headers,
        )

    return summary


@router.get(
    "/{course_id}/dates",
    response_model=list[ClassSessionRead],
    summary="List recent and upcoming sessions of a course",
    description=(
        "Return the course's sessions whose end lies within the configured lookback "
        "window (two weeks by default) or later, earliest first.\n\n"
        "Room identifiers and provider links are not exposed: each session carries "
        "a `join_path` pointing at the access-checking join proxy."
    ),
    responses={404: {"description": "Course not found."}},
)
async def list_course_dates(
    course_id: int = Path(..., ge=1, description="Numeric ID of the course."),
    db: AsyncSession = Depends(get_db),
) -> list[ClassSessionRead]:
    course = await get_course(db, course_id)
    if course is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Course with id={course_id} not found.",
        )

    settings = get_settings()
    lower_bound = datetime.now(tz=timezone.utc) - timedelta(days=settings.SESSION_LOOKBACK_DAYS)
    sessions = await list_course_sessions(db, course_id, ending_after=lower_bound)

    return [
        ClassSessionRead.model_validate(session).model_copy(
            update={"join_path": _join_path(course_id, session.room_id)}
        )
        for session in sessions
    ]


def _extract_user_token(request: Request) -> str | None:
    token = request.query_params.get("auth")
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials

    return request.cookies.get("token")


def _room_token_from_link(join_link: str | None) -> str | None:
    if not join_link:
        return None
    values = parse_qs(urlsplit(join_link).query).get("token")
    return values[0] if values else None


@router.get(
    "/{course_id}/join/{room_id}",
    status_code=HTTPStatus.FOUND,
    summary="Join a session's video room",
    description=(
        "Access-checking proxy in front of the video provider. The user token may "
        "be passed as `?auth=`, as a bearer header or as a `token` cookie. Course "
        "owners and enrolled students are redirected to the provider's join page."
    ),
    responses={
        302: {"description": "Redirect to the provider join URL."},
        401: {"description": "Missing or invalid user token."},
        403: {"description": "User has no access to the course."},
        404: {"description": "Room not found in this course."},
        503: {"description": "Video provider URL is not configured."},
    },
)
async def join_session_room(
    request: Request,
    course_id: int = Path(..., ge=1),
    room_id: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    token = _extract_user_token(request)
    if not token:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Token required.")

    try:
        user_id = decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Invalid token.")

    if not await has_course_access(db, course_id, user_id):
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="No access to this course.")

    session = await find_session_by_room(db, room_id, course_id=course_id)
    if session is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Room not found.")

    settings = get_settings()
    if not settings.VIDEOCHAT_URL:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            detail="Video provider is not configured.",
        )

    room_token = _room_token_from_link(session.join_link) or create_room_token(room_id, course_id)
    query = urlencode({"token": room_token, "user_token": token})
    redirect_url = f"{str(settings.VIDEOCHAT_URL).rstrip('/')}/join?{query}"
    return RedirectResponse(url=redirect_url, status_code=HTTPStatus.FOUND)
