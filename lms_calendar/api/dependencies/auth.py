# lms_calendar/api/dependencies/auth.py
from typing import Optional

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.core.security import decode_access_token
from lms_calendar.db.session import get_db
from lms_calendar.models.course import Course
from lms_calendar.services.course_access import get_course

# Bearer token extractor
security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> int:
    """
    Extract and validate the bearer token, returning the caller's user id.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_course_owner(
    course_id: int = Path(..., ge=1, description="Numeric ID of the course."),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Course:
    """
    Resolve the course from the path and ensure the caller owns it.

    Runs before any reconciliation work: unknown course -> 404, other
    owner -> 403.
    """
    course = await get_course(db, course_id)
    if course is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Course with id={course_id} not found.",
        )
    if course.owner_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the course owner can schedule sessions.",
        )
    return course
