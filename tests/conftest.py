# tests/conftest.py
import os
import tempfile

# Settings and the engine are built at import time, so the test environment
# must be in place before anything from lms_calendar is imported.
os.environ["APP_ENV"] = "test"
os.environ["DB_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.gettempdir(), f"lms_calendar_test_{os.getpid()}.db"
)
os.environ["VIDEOCHAT_URL"] = "http://videochat.test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("INTERNAL_API_KEY", None)
os.environ.pop("STALE_SESSION_POLICY", None)

from datetime import date as date_type, datetime  # noqa: E402
from typing import Callable, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from lms_calendar.api.dependencies.services import get_room_provider  # noqa: E402
from lms_calendar.core.config import get_settings  # noqa: E402
from lms_calendar.core.security import create_access_token  # noqa: E402
from lms_calendar.db.session import (  # noqa: E402
    AsyncSessionLocal,
    _build_sync_db_url,
    reset_schema_sync,
)
from lms_calendar.main import create_app  # noqa: E402
from lms_calendar.models.class_session import ClassSession  # noqa: E402
from lms_calendar.models.course import Course, CourseEnrollment  # noqa: E402
from lms_calendar.schemas.class_session import NormalizedSession  # noqa: E402
from lms_calendar.schemas.room import ProvisionedRoom  # noqa: E402


class FakeRoomProvider:
    """
    Stand-in for RoomProviderClient used by reconciler and route tests.

    Every call is recorded; by default each requested date gets a room named
    after it. Set `error` to make calls raise, or `skip_dates` to leave some
    dates out of the answer.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[int, list[NormalizedSession]]] = []
        self.error: Optional[Exception] = None
        self.skip_dates: set[date_type] = set()
        self.before_answer: Optional[Callable] = None

    async def provision_rooms(self, course_id, sessions):
        self.calls.append((course_id, list(sessions)))
        if self.before_answer is not None:
            await self.before_answer(course_id, sessions)
        if self.error is not None:
            raise self.error
        return {
            s.local_date: ProvisionedRoom(
                room_id=f"room-{course_id}-{s.local_date.isoformat()}",
                join_link=f"http://videochat.test/room?token=tok-{s.local_date.isoformat()}",
            )
            for s in sessions
            if s.local_date not in self.skip_dates
        }


@pytest.fixture(autouse=True)
def _reset_db():
    """
    Every test starts from an empty schema.
    """
    reset_schema_sync()
    yield


@pytest.fixture
def sync_db():
    """
    Synchronous ORM session on the test database, for seeding and
    inspecting rows from plain (non-async) tests.
    """
    engine = create_engine(_build_sync_db_url(get_settings().DB_URL))
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest_asyncio.fixture
async def async_db():
    """
    Async ORM session for service-level tests (same engine as the app).
    """
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def course_factory(sync_db):
    def _create(owner_id: int = 1, students: tuple[int, ...] = (), title: str = "Course") -> int:
        course = Course(title=title, owner_id=owner_id)
        sync_db.add(course)
        sync_db.flush()
        for student_id in students:
            sync_db.add(CourseEnrollment(course_id=course.id, user_id=student_id))
        sync_db.commit()
        return course.id

    return _create


@pytest.fixture
def session_factory(sync_db):
    def _create(
        course_id: int,
        start_utc: datetime,
        end_utc: datetime,
        room_id: Optional[str] = None,
        join_link: Optional[str] = None,
        local_date: Optional[date_type] = None,
    ) -> int:
        row = ClassSession(
            course_id=course_id,
            local_date=local_date or start_utc.date(),
            start_utc=start_utc,
            end_utc=end_utc,
            timezone="UTC",
            title="Clase",
            session_type="Clase en vivo",
            room_id=room_id,
            join_link=join_link,
        )
        sync_db.add(row)
        sync_db.commit()
        return row.id

    return _create


@pytest.fixture
def fake_provider() -> FakeRoomProvider:
    return FakeRoomProvider()


@pytest.fixture
def app(fake_provider):
    application = create_app()
    application.dependency_overrides[get_room_provider] = lambda: fake_provider
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
