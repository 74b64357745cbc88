# lms_calendar/services/session_store.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date as date_type, datetime
from typing import Iterable, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.models.class_session import ClassSession
from lms_calendar.schemas.class_session import NormalizedSession


@dataclass(frozen=True)
class StoredRoom:
    """
    Room fields of a persisted session row (either may be None).
    """

    room_id: Optional[str]
    join_link: Optional[str]


async def fetch_sessions_by_dates(
    db: AsyncSession,
    course_id: int,
    local_dates: Iterable[date_type],
) -> dict[date_type, StoredRoom]:
    """
    Batched lookup of the persisted rows for `course_id` on any of
    `local_dates`. Every existing row is returned, with or without a room.
    """
    dates = sorted(set(local_dates))
    if not dates:
        return {}

    stmt = select(
        ClassSession.local_date,
        ClassSession.room_id,
        ClassSession.join_link,
    ).where(
        ClassSession.course_id == course_id,
        ClassSession.local_date.in_(dates),
    )
    result = await db.execute(stmt)
    return {
        row.local_date: StoredRoom(room_id=row.room_id, join_link=row.join_link)
        for row in result
    }


def _dialect_insert(db: AsyncSession):
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert
    if dialect_name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Upsert is not supported for dialect '{dialect_name}'")


async def upsert_session(
    db: AsyncSession,
    course_id: int,
    session: NormalizedSession,
    room_id: Optional[str],
    join_link: Optional[str],
) -> StoredRoom:
    """
    Insert or update the row keyed by (course_id, local_date) in a single
    statement and return the room fields as persisted.

    Schedule fields are always overwritten. `room_id`/`join_link` are
    coalesced: a NULL in the new write keeps the stored value.
    """
    insert = _dialect_insert(db)
    stmt = insert(ClassSession).values(
        course_id=course_id,
        local_date=session.local_date,
        start_utc=session.start_utc,
        end_utc=session.end_utc,
        timezone=session.timezone,
        title=session.title,
        session_type=session.session_type,
        room_id=room_id,
        join_link=join_link,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ClassSession.course_id, ClassSession.local_date],
        set_={
            "start_utc": stmt.excluded.start_utc,
            "end_utc": stmt.excluded.end_utc,
            "timezone": stmt.excluded.timezone,
            "title": stmt.excluded.title,
            "session_type": stmt.excluded.session_type,
            "room_id": func.coalesce(stmt.excluded.room_id, ClassSession.room_id),
            "join_link": func.coalesce(stmt.excluded.join_link, ClassSession.join_link),
            "updated_at": func.now(),
        },
    ).returning(ClassSession.room_id, ClassSession.join_link)

    result = await db.execute(stmt)
    row = result.one()
    return StoredRoom(room_id=row.room_id, join_link=row.join_link)


async def delete_future_sessions_except(
    db: AsyncSession,
    course_id: int,
    keep_dates: Iterable[date_type],
    now: datetime,
) -> int:
    """
    Delete sessions of `course_id` that start after `now` and whose date is
    not in `keep_dates`. Past sessions are never touched.
    """
    conditions = [
        ClassSession.course_id == course_id,
        ClassSession.start_utc > now,
    ]
    keep = sorted(set(keep_dates))
    if keep:
        conditions.append(ClassSession.local_date.not_in(keep))

    result = await db.execute(delete(ClassSession).where(and_(*conditions)))
    return result.rowcount or 0


async def list_course_sessions(
    db: AsyncSession,
    course_id: int,
    ending_after: datetime,
) -> list[ClassSession]:
    """
    Sessions of a course whose end is at or after `ending_after`, earliest first.
    """
    stmt = (
        select(ClassSession)
        .where(
            ClassSession.course_id == course_id,
            ClassSession.end_utc >= ending_after,
        )
        .order_by(ClassSession.start_utc.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_session_by_room(
    db: AsyncSession,
    room_id: str,
    course_id: Optional[int] = None,
) -> Optional[ClassSession]:
    stmt = select(ClassSession).where(ClassSession.room_id == room_id)
    if course_id is not None:
        stmt = stmt.where(ClassSession.course_id == course_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()
