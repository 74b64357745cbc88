# lms_calendar/db/session.py
from collections.abc import AsyncGenerator

from sqlalchemy import create_engine as create_sync_engine, event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from lms_calendar.core.config import get_settings
from lms_calendar.db.base import Base

# Import ORM models so that Base.metadata is aware of them
from lms_calendar.models.course import Course, CourseEnrollment  # noqa: F401
from lms_calendar.models.class_session import ClassSession  # noqa: F401

settings = get_settings()

IS_TEST = settings.APP_ENV.lower() == "test"

# ---------------------------------------------------------------------------
# Main application engine + session
# ---------------------------------------------------------------------------
engine = create_async_engine(
    settings.DB_URL,
    echo=False,
    # Tests drive the engine from more than one event loop (TestClient portal
    # + pytest-asyncio), so connections must not be pooled across loops.
    poolclass=NullPool if IS_TEST else None,
)

if engine.dialect.name == "sqlite":
    # pysqlite defers BEGIN until the first DML, which breaks SAVEPOINT;
    # take over transaction control so begin_nested() behaves as on Postgres.
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides an async SQLAlchemy session.

    The session is automatically closed when the request is completed.
    """
    async with AsyncSessionLocal() as session:
        yield session


# ---------------------------------------------------------------------------
# PRODUCTION / DEV: DB init for app startup
# ---------------------------------------------------------------------------
async def init_db_for_startup() -> None:
    """
    Initialize DB schema for application startup.

    Only creates missing tables; existing data is left untouched.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---------------------------------------------------------------------------
# TESTS ONLY: reset schema using a SYNC engine
# ---------------------------------------------------------------------------

def _build_sync_db_url(async_url: str) -> str:
    """
    Convert an async driver URL into its synchronous counterpart:
    'postgresql+asyncpg://...' -> 'postgresql://...',
    'sqlite+aiosqlite://...'   -> 'sqlite://...'.
    """
    for async_driver in ("+asyncpg", "+aiosqlite"):
        if async_driver in async_url:
            return async_url.replace(async_driver, "")
    return async_url


def reset_schema_sync() -> None:
    """
    TEST-ONLY: run drop_all + create_all using a synchronous engine.

    This sidesteps event-loop ownership entirely, so it can be called from
    plain (sync) pytest fixtures.
    """
    sync_engine = create_sync_engine(_build_sync_db_url(settings.DB_URL))

    with sync_engine.begin() as conn:
        Base.metadata.drop_all(bind=conn)
        Base.metadata.create_all(bind=conn)

    sync_engine.dispose()
