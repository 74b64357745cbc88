# lms_calendar/services/course_access.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.models.course import Course, CourseEnrollment


async def get_course(db: AsyncSession, course_id: int) -> Optional[Course]:
    result = await db.execute(select(Course).where(Course.id == course_id))
    return result.scalar_one_or_none()


async def is_course_owner(db: AsyncSession, course_id: int, user_id: int) -> bool:
    stmt = select(Course.id).where(Course.id == course_id, Course.owner_id == user_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def has_course_access(db: AsyncSession, course_id: int, user_id: int) -> bool:
    """
    True if `user_id` owns the course or is enrolled in it.
    """
    if await is_course_owner(db, course_id, user_id):
        return True

    stmt = select(CourseEnrollment.id).where(
        CourseEnrollment.course_id == course_id,
        CourseEnrollment.user_id == user_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None
