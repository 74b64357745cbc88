# lms_calendar/schemas/class_session.py
from __future__ import annotations

from datetime import date as date_type, datetime, timezone as dt_timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionStatus(str, Enum):
    """
    Per-session outcome of a reconciliation run.
    """

    CREATED = "created"
    UPDATED = "updated"
    CACHED = "cached"
    REUSED = "reused"
    FALLBACK = "fallback"
    FAILED = "failed"
    INVALID = "invalid"


# Statuses that leave the session persisted (with or without a room)
SUCCESSFUL_STATUSES = frozenset(
    {
        SessionStatus.CREATED,
        SessionStatus.UPDATED,
        SessionStatus.CACHED,
        SessionStatus.REUSED,
        SessionStatus.FALLBACK,
    }
)


# --------------------------------------------------------------------------
# Inbound: POST /courses/{course_id}/dates
# --------------------------------------------------------------------------

class SessionRequest(BaseModel):
    """
    One desired class meeting as submitted by the course owner.

    Timestamps are local wall-clock times in `timezone`; an explicit UTC
    offset inside the string is honoured and converted into that zone.
    """

    inicio: str = Field(
        ...,
        description="Local start timestamp (ISO 8601).",
        examples=["2024-03-01T09:00"],
    )
    final: str = Field(
        ...,
        description="Local end timestamp (ISO 8601).",
        examples=["2024-03-01T10:00"],
    )
    timezone: str | None = Field(
        default=None,
        description="IANA timezone name. The service default applies when omitted.",
        examples=["America/Bogota"],
    )
    titulo: str | None = Field(
        default=None,
        description="Session title.",
        examples=["Clase 1: Introducción"],
    )
    type: str | None = Field(
        default=None,
        description="Free-form session type.",
        examples=["Clase en vivo"],
    )


class ReconcileRequest(BaseModel):
    """
    Request body for scheduling (or re-scheduling) a course's live sessions.
    """

    sessions: list[SessionRequest] = Field(
        ...,
        description="Desired sessions. Must contain at least one entry.",
    )


# --------------------------------------------------------------------------
# Outbound: reconciliation summary
# --------------------------------------------------------------------------

class SessionOutcome(BaseModel):
    """
    Result of reconciling one submitted session.
    """

    index: int = Field(..., description="Position of the session in the submitted list.")
    date: date_type | None = Field(
        None,
        description="Local calendar date the session was stored under (null when invalid).",
    )
    inicio: str = Field(..., description="Echo of the submitted start timestamp.")
    status: SessionStatus
    detail: str | None = Field(
        None,
        description="Reason for `failed`/`invalid`/`fallback` outcomes.",
    )


class ReconcileSummary(BaseModel):
    """
    Aggregate returned by POST /courses/{course_id}/dates.
    """

    course_id: int
    total: int = Field(..., description="Number of sessions submitted.")
    successful: int = Field(..., description="Sessions persisted (any non-failed, non-invalid status).")
    failed: int
    invalid: int
    removed: int = Field(
        0,
        description="Stale future sessions deleted under the `delete_future` policy.",
    )
    rate_limited: bool = Field(
        False,
        description="True when the provider kept answering 429 until retries ran out.",
    )
    retry_after: float | None = Field(
        None,
        description="Seconds suggested by the provider (Retry-After) when rate limited.",
    )
    counts: dict[str, int] = Field(
        default_factory=dict,
        description="Number of outcomes per status.",
    )
    results: list[SessionOutcome] = Field(default_factory=list)

    @classmethod
    def from_outcomes(
        cls,
        course_id: int,
        outcomes: list[SessionOutcome],
        removed: int = 0,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> "ReconcileSummary":
        ordered = sorted(outcomes, key=lambda outcome: outcome.index)
        counts: dict[str, int] = {}
        for outcome in ordered:
            counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1

        return cls(
            course_id=course_id,
            total=len(ordered),
            successful=sum(1 for o in ordered if o.status in SUCCESSFUL_STATUSES),
            failed=counts.get(SessionStatus.FAILED.value, 0),
            invalid=counts.get(SessionStatus.INVALID.value, 0),
            removed=removed,
            rate_limited=rate_limited,
            retry_after=retry_after,
            counts=counts,
            results=ordered,
        )


# --------------------------------------------------------------------------
# Read schema (GET /courses/{course_id}/dates)
# --------------------------------------------------------------------------

class ClassSessionRead(BaseModel):
    """
    Public representation of a scheduled session. The raw provider link and
    room id are never exposed; callers join through `join_path`.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    local_date: date_type
    start_utc: datetime
    end_utc: datetime
    timezone: str
    title: str
    session_type: str
    join_path: str | None = Field(
        None,
        description="Relative proxy path that validates access before redirecting to the room.",
        examples=["/courses/1/join/room-abc"],
    )

    @field_validator("start_utc", "end_utc")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes; stored values are always UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=dt_timezone.utc)
        return value.astimezone(dt_timezone.utc)


# --------------------------------------------------------------------------
# Internal: normalized session windows
# --------------------------------------------------------------------------

class NormalizedSession(BaseModel):
    """
    A submitted session after timezone resolution and validation.

    `start_utc`/`end_utc` are aware UTC datetimes and `local_date` is the
    calendar date of the start in `timezone`.
    """

    index: int
    inicio: str
    start_utc: datetime
    end_utc: datetime
    local_date: date_type
    timezone: str
    title: str
    session_type: str


class InvalidSession(BaseModel):
    """
    A submitted session that was dropped before lookup/provisioning.
    """

    index: int
    inicio: str
    reason: str
