# lms_calendar/core/config.py
from enum import Enum
from functools import lru_cache

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StaleSessionPolicy(str, Enum):
    """
    What to do with persisted sessions whose date is missing from a later
    submission for the same course.
    """

    KEEP = "keep"
    DELETE_FUTURE = "delete_future"


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables (or a local `.env` file)
    at runtime and cover:
    - DB connection
    - token verification for course owners / students
    - the video-room provider endpoint and its rate-limit budget
    - room cache lifetime and calendar defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "LMS Calendar Service"
    APP_ENV: str = Field("local", description="Environment name: local/test/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Root log level.")

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./lms_calendar.db",
        description="SQLAlchemy-compatible async database URL",
    )

    INTERNAL_API_KEY: str | None = Field(
        default=None,
        description="API key required for internal endpoints used by the video provider.",
    )

    JWT_SECRET: str = Field(
        "change-me",
        description="Shared HS256 secret used to verify user tokens and sign room tokens.",
    )
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: str = Field(
        "http://localhost:5173",
        description="Comma-separated list of allowed browser origins.",
    )

    # --- Video-room provider ---
    VIDEOCHAT_URL: AnyHttpUrl | None = Field(
        default=None,
        description="Base URL of the video-room provider. Provisioning is disabled when unset.",
    )
    VIDEOCHAT_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Timeout applied to every outbound provisioning call.",
    )
    PROVIDER_MIN_INTERVAL_MS: int = Field(
        default=100,
        description="Minimum spacing between two outbound provisioning calls (process-wide).",
    )
    PROVIDER_SERIALIZE_CALLS: bool = Field(
        default=False,
        description="If true, at most one provisioning call is in flight at a time.",
    )
    PROVIDER_MAX_ATTEMPTS: int = Field(
        default=4,
        description="Maximum attempts per provisioning call when the provider answers 429.",
    )
    PROVIDER_BASE_DELAY_SECONDS: float = Field(
        default=1.0,
        description="Base delay of the exponential backoff applied on 429 responses.",
    )
    PROVIDER_MAX_DELAY_SECONDS: float = Field(
        default=60.0,
        description="Upper bound for any single backoff wait.",
    )
    PROVIDER_JITTER_SECONDS: float = Field(
        default=0.25,
        description="Maximum random jitter added to computed backoff waits.",
    )

    # --- Calendar behaviour ---
    ROOM_CACHE_TTL_SECONDS: float = Field(
        default=60.0,
        description="Lifetime of process-local room cache entries.",
    )
    DEFAULT_TIMEZONE: str = Field(
        default="America/Bogota",
        description="IANA zone applied to submitted sessions that omit one.",
    )
    DEFAULT_SESSION_TITLE: str = "Clase"
    DEFAULT_SESSION_TYPE: str = "Clase en vivo"
    SESSION_LOOKBACK_DAYS: int = Field(
        default=14,
        description="How far back GET /courses/{id}/dates reaches, measured on session end.",
    )
    STALE_SESSION_POLICY: StaleSessionPolicy = Field(
        default=StaleSessionPolicy.KEEP,
        description="Handling of future sessions absent from a new submission.",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
