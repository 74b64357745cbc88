# lms_calendar/services/rate_limiter.py
from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Callable, Optional


class RateLimiter:
    """
    Process-wide pacing for outbound provider calls.

    - `acquire_slot()` suspends the caller until at least
      `min_interval_seconds` have passed since the previous call started.
    - With `serialize_calls=True`, `slot()` additionally holds a lock for the
      whole duration of the call so at most one call is in flight.

    One instance is shared by every reconciliation running in the process.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.1,
        serialize_calls: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must not be negative")
        self.min_interval_seconds = min_interval_seconds
        self.serialize_calls = serialize_calls
        self._clock = clock
        self._sleep = sleep
        self._last_request_at: Optional[float] = None
        self._spacing_lock = asyncio.Lock()
        self._call_lock = asyncio.Lock() if serialize_calls else None

    async def acquire_slot(self) -> None:
        async with self._spacing_lock:
            if self._last_request_at is not None:
                wait = self._last_request_at + self.min_interval_seconds - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_request_at = self._clock()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        if self._call_lock is None:
            await self.acquire_slot()
            yield
            return

        async with self._call_lock:
            await self.acquire_slot()
            yield
