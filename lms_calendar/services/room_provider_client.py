# lms_calendar/services/room_provider_client.py
from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import dataclass
from datetime import date as date_type, datetime, timezone
from email.utils import parsedate_to_datetime
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from lms_calendar.core.config import Settings
from lms_calendar.core.security import create_provider_token
from lms_calendar.schemas.class_session import NormalizedSession
from lms_calendar.schemas.room import ProviderSessionRequest, ProvisionedRoom
from lms_calendar.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class RoomProviderError(RuntimeError):
    """
    Raised when the video-room provider cannot be reached or answers with a
    non-recoverable error (non-429 status, timeout, malformed payload).
    """


class RoomProviderRateLimited(RoomProviderError):
    """
    Raised when the provider kept answering 429 until the retry budget ran
    out ("max retries exceeded").
    """

    def __init__(self, attempts: int, retry_after: Optional[float] = None) -> None:
        super().__init__(
            f"Provider rate limit: max retries exceeded after {attempts} attempts"
        )
        self.attempts = attempts
        if retry_after is not None and not math.isfinite(retry_after):
            retry_after = None
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Tagged outcome of a single attempt
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProvisionSuccess:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class ProvisionRateLimited:
    retry_after: Optional[float]


@dataclass(frozen=True)
class ProvisionFatal:
    error: str
    status_code: Optional[int] = None


ProvisionOutcome = Union[ProvisionSuccess, ProvisionRateLimited, ProvisionFatal]


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Interpret a `Retry-After` header given either as delta-seconds or as an
    HTTP date. Returns seconds to wait (never negative) or None if absent,
    unparseable or not finite.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            return None
        return max(0.0, seconds)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(tz=timezone.utc)
    return max(0.0, (when - now).total_seconds())


class RoomProviderClient:
    """
    Client for the video-room provider's batch provisioning endpoint.

    Responsibilities
    ----------------
    - Sign a short-lived bearer token for every call.
    - Pace calls through the shared RateLimiter.
    - Retry 429 answers with `Retry-After` or capped exponential backoff.
    - Correlate the provider's per-session answers back to local dates.

    Notes
    -----
    - Non-429 errors and timeouts are never retried.
    - `sleep` is injectable so tests can observe backoff waits.
    """

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        timeout_seconds: float = 5.0,
        max_attempts: int = 4,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 60.0,
        jitter_seconds: float = 0.25,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._base_url = base_url.rstrip("/")
        self._rate_limiter = rate_limiter
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max_attempts
        self._base_delay_seconds = base_delay_seconds
        self._max_delay_seconds = max_delay_seconds
        self._jitter_seconds = jitter_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, rate_limiter: RateLimiter) -> "RoomProviderClient":
        if not settings.VIDEOCHAT_URL:
            raise RoomProviderError("VIDEOCHAT_URL must be configured to provision rooms.")
        return cls(
            base_url=str(settings.VIDEOCHAT_URL),
            rate_limiter=rate_limiter,
            timeout_seconds=settings.VIDEOCHAT_TIMEOUT_SECONDS,
            max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            base_delay_seconds=settings.PROVIDER_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.PROVIDER_MAX_DELAY_SECONDS,
            jitter_seconds=settings.PROVIDER_JITTER_SECONDS,
        )

    @property
    def calls_url(self) -> str:
        return f"{self._base_url}/api/calls"

    def backoff_delay(self, attempt: int) -> float:
        """
        Wait before retrying after the `attempt`-th 429 without a Retry-After:
        `base * 2^(attempt-1)` plus jitter, capped at `max_delay_seconds`.
        """
        delay = self._base_delay_seconds * (2 ** (attempt - 1))
        delay += random.uniform(0, self._jitter_seconds)
        return min(delay, self._max_delay_seconds)

    async def _attempt(self, payload: Dict[str, Any], course_id: int) -> ProvisionOutcome:
        headers = {
            "Authorization": f"Bearer {create_provider_token(course_id)}",
            "Accept": "application/json",
        }

        try:
            async with self._rate_limiter.slot():
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    resp = await client.post(self.calls_url, json=payload, headers=headers)
        except httpx.TimeoutException:
            return ProvisionFatal(error=f"Provider timed out after {self._timeout_seconds}s")
        except httpx.HTTPError as exc:
            return ProvisionFatal(error=f"Provider request failed: {exc}")

        if resp.status_code == HTTPStatus.TOO_MANY_REQUESTS:
            return ProvisionRateLimited(
                retry_after=parse_retry_after(resp.headers.get("Retry-After"))
            )

        if resp.status_code // 100 != 2:
            return ProvisionFatal(
                error=f"Provider POST failed (status={resp.status_code}): {resp.text}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError:
            return ProvisionFatal(error="Provider returned a non-JSON body", status_code=resp.status_code)
        if not isinstance(data, dict):
            return ProvisionFatal(error="Provider returned an unexpected payload", status_code=resp.status_code)
        return ProvisionSuccess(payload=data)

    async def post_with_retry(self, payload: Dict[str, Any], course_id: int) -> Dict[str, Any]:
        """
        POST `payload` to the provider, retrying only on 429.

        Raises
        ------
        RoomProviderRateLimited
            When every attempt was answered with 429.
        RoomProviderError
            On any other failure.
        """
        last_retry_after: Optional[float] = None

        for attempt in range(1, self._max_attempts + 1):
            outcome = await self._attempt(payload, course_id)

            if isinstance(outcome, ProvisionSuccess):
                return outcome.payload

            if isinstance(outcome, ProvisionFatal):
                raise RoomProviderError(outcome.error)

            last_retry_after = outcome.retry_after
            if attempt == self._max_attempts:
                break

            if outcome.retry_after is not None:
                wait = min(outcome.retry_after, self._max_delay_seconds)
            else:
                wait = self.backoff_delay(attempt)
            logger.warning(
                "Provider rate limited course %s (attempt %d/%d); retrying in %.2fs",
                course_id,
                attempt,
                self._max_attempts,
                wait,
            )
            await self._sleep(wait)

        raise RoomProviderRateLimited(attempts=self._max_attempts, retry_after=last_retry_after)

    async def provision_rooms(
        self,
        course_id: int,
        sessions: list[NormalizedSession],
    ) -> Dict[date_type, ProvisionedRoom]:
        """
        Request rooms for a batch of sessions (one entry per local date) and
        return the rooms the provider granted, keyed by local date.

        Dates missing from the answer are simply absent from the result.
        """
        if not sessions:
            return {}

        entries = [
            ProviderSessionRequest(
                session_date=s.local_date,
                start_utc=s.start_utc,
                end_utc=s.end_utc,
                title=s.title,
                type=s.session_type,
            ).model_dump(mode="json")
            for s in sessions
        ]
        data = await self.post_with_retry(
            {"course_id": course_id, "sessions": entries},
            course_id,
        )
        return self._parse_rooms(data, sessions)

    @staticmethod
    def _parse_rooms(
        data: Dict[str, Any],
        sessions: list[NormalizedSession],
    ) -> Dict[date_type, ProvisionedRoom]:
        rooms: Dict[date_type, ProvisionedRoom] = {}

        items = data.get("sessions")
        if items is None and len(sessions) == 1 and data.get("room_id"):
            # Single-session answer without the batch envelope
            items = [{**data, "session_date": sessions[0].local_date.isoformat()}]

        if not isinstance(items, list):
            raise RoomProviderError("Provider response has no 'sessions' list")

        wanted = {s.local_date.isoformat(): s.local_date for s in sessions}
        for item in items:
            if not isinstance(item, dict):
                continue
            local_date = wanted.get(str(item.get("session_date")))
            room_id = item.get("room_id")
            if local_date is None or not room_id:
                continue
            rooms[local_date] = ProvisionedRoom(
                room_id=str(room_id),
                join_link=item.get("link") or item.get("join_link"),
            )

        return rooms
