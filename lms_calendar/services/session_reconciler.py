# lms_calendar/services/session_reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_calendar.core.config import StaleSessionPolicy
from lms_calendar.schemas.class_session import (
    NormalizedSession,
    ReconcileSummary,
    SessionOutcome,
    SessionRequest,
    SessionStatus,
)
from lms_calendar.schemas.room import ProvisionedRoom
from lms_calendar.services.room_cache import RoomCache
from lms_calendar.services.room_provider_client import (
    RoomProviderError,
    RoomProviderRateLimited,
)
from lms_calendar.services.session_normalizer import SessionNormalizer
from lms_calendar.services.session_store import (
    StoredRoom,
    delete_future_sessions_except,
    fetch_sessions_by_dates,
    upsert_session,
)

logger = logging.getLogger(__name__)


@dataclass
class _ProvisioningResult:
    rooms: dict[date_type, ProvisionedRoom] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    rate_limited: bool = False
    retry_after: Optional[float] = None


class RoomProvisioner(Protocol):
    async def provision_rooms(
        self,
        course_id: int,
        sessions: list[NormalizedSession],
    ) -> dict[date_type, ProvisionedRoom]:
        ...


class SessionReconciler:
    """
    Matches a course's desired sessions against persisted and cached rooms,
    provisions only the gap, and upserts every valid session.

    Pipeline
    --------
    1) Normalize and validate the submission (invalid entries are reported).
    2) One batched lookup of existing rows for the submitted local dates;
       its transaction is closed before the provider is called.
    3) Resolve each session from the room cache (`cached`) or from a stored
       non-null room (`reused`); everything else needs provisioning.
    4) One provider request per run for the remaining distinct dates.
    5) Coalescing upsert per session, each in its own savepoint.
    6) Optional removal of stale future sessions.

    Provider failures never abort the run: a session whose room could not be
    provisioned is still persisted and reported as `fallback` (a room is
    already stored for its date) or `failed` (no room at all).
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[RoomProvisioner],
        cache: RoomCache,
        normalizer: Optional[SessionNormalizer] = None,
        stale_policy: StaleSessionPolicy = StaleSessionPolicy.KEEP,
    ) -> None:
        self.db = db
        self.provider = provider
        self.cache = cache
        self.normalizer = normalizer or SessionNormalizer()
        self.stale_policy = stale_policy

    async def reconcile(
        self,
        course_id: int,
        requests: list[SessionRequest],
    ) -> ReconcileSummary:
        normalized = self.normalizer.normalize(requests)

        outcomes: list[SessionOutcome] = [
            SessionOutcome(
                index=invalid.index,
                inicio=invalid.inicio,
                status=SessionStatus.INVALID,
                detail=invalid.reason,
            )
            for invalid in normalized.invalid
        ]

        sessions = normalized.valid
        if not sessions:
            return ReconcileSummary.from_outcomes(course_id, outcomes)

        existing = await fetch_sessions_by_dates(
            self.db, course_id, (s.local_date for s in sessions)
        )
        # Release the lookup transaction before calling the provider
        await self.db.commit()

        # index -> (room, status) for sessions resolved without the provider
        resolved: dict[int, tuple[ProvisionedRoom, SessionStatus]] = {}
        pending: list[NormalizedSession] = []

        for session in sessions:
            cached = self.cache.get(self._cache_key(course_id, session))
            if cached is not None:
                resolved[session.index] = (cached, SessionStatus.CACHED)
                continue

            stored = existing.get(session.local_date)
            if stored is not None and stored.room_id:
                resolved[session.index] = (
                    ProvisionedRoom(room_id=stored.room_id, join_link=stored.join_link),
                    SessionStatus.REUSED,
                )
                continue

            pending.append(session)

        provisioning = await self._provision(course_id, pending)

        for session in sessions:
            outcomes.append(
                await self._persist(
                    course_id,
                    session,
                    resolved,
                    provisioning,
                    existing,
                )
            )

        removed = 0
        if self.stale_policy == StaleSessionPolicy.DELETE_FUTURE:
            removed = await delete_future_sessions_except(
                self.db,
                course_id,
                keep_dates=(s.local_date for s in sessions),
                now=datetime.now(tz=timezone.utc),
            )

        await self.db.commit()

        summary = ReconcileSummary.from_outcomes(
            course_id,
            outcomes,
            removed=removed,
            rate_limited=provisioning.rate_limited,
            retry_after=provisioning.retry_after,
        )
        logger.info(
            "Reconciled course %s: total=%d successful=%d failed=%d invalid=%d counts=%s",
            course_id,
            summary.total,
            summary.successful,
            summary.failed,
            summary.invalid,
            summary.counts,
        )
        return summary

    @staticmethod
    def _cache_key(course_id: int, session: NormalizedSession):
        return RoomCache.make_key(course_id, session.local_date, session.start_utc, session.end_utc)

    async def _provision(
        self,
        course_id: int,
        pending: list[NormalizedSession],
    ) -> _ProvisioningResult:
        """
        Provision rooms for the pending sessions in a single batch.
        """
        if not pending:
            return _ProvisioningResult()

        # One entry per distinct date; the last submitted window wins
        batch_by_date: dict[date_type, NormalizedSession] = {}
        for session in pending:
            batch_by_date[session.local_date] = session
        batch = list(batch_by_date.values())

        if self.provider is None:
            logger.warning(
                "No room provider configured; %d session(s) of course %s left without a room",
                len(batch),
                course_id,
            )
            return _ProvisioningResult(failure_reason="room provider is not configured")

        try:
            rooms = await self.provider.provision_rooms(course_id, batch)
        except RoomProviderRateLimited as exc:
            logger.error("Provisioning for course %s gave up: %s", course_id, exc)
            return _ProvisioningResult(
                failure_reason=str(exc),
                rate_limited=True,
                retry_after=exc.retry_after,
            )
        except RoomProviderError as exc:
            logger.error("Provisioning for course %s failed: %s", course_id, exc)
            return _ProvisioningResult(failure_reason=str(exc))

        for session in pending:
            room = rooms.get(session.local_date)
            if room is not None:
                self.cache.set(self._cache_key(course_id, session), room)

        return _ProvisioningResult(rooms=rooms)

    async def _persist(
        self,
        course_id: int,
        session: NormalizedSession,
        resolved: dict[int, tuple[ProvisionedRoom, SessionStatus]],
        provisioning: _ProvisioningResult,
        existing: dict[date_type, StoredRoom],
    ) -> SessionOutcome:
        detail: Optional[str] = None

        if session.index in resolved:
            room, status = resolved[session.index]
        elif session.local_date in provisioning.rooms:
            room = provisioning.rooms[session.local_date]
            status = (
                SessionStatus.UPDATED
                if session.local_date in existing
                else SessionStatus.CREATED
            )
        else:
            room = None
            status = SessionStatus.FAILED
            detail = provisioning.failure_reason or "provider returned no room for this date"

        try:
            async with self.db.begin_nested():
                stored = await upsert_session(
                    self.db,
                    course_id,
                    session,
                    room_id=room.room_id if room else None,
                    join_link=room.join_link if room else None,
                )
        except SQLAlchemyError as exc:
            logger.error(
                "Persisting session %s of course %s failed: %s",
                session.local_date,
                course_id,
                exc,
            )
            return SessionOutcome(
                index=session.index,
                date=session.local_date,
                inicio=session.inicio,
                status=SessionStatus.FAILED,
                detail="could not persist session",
            )

        # Later entries for the same date in this run update this row
        existing[session.local_date] = stored

        if room is None and stored.room_id:
            # A room already persisted for this date survives the failed call
            status = SessionStatus.FALLBACK
            logger.warning(
                "Kept previous room for course %s on %s after provisioning failure",
                course_id,
                session.local_date,
            )

        return SessionOutcome(
            index=session.index,
            date=session.local_date,
            inicio=session.inicio,
            status=status,
            detail=detail,
        )
