# lms_calendar/services/room_cache.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date as date_type, datetime
from typing import Callable, Optional

from lms_calendar.schemas.room import ProvisionedRoom

logger = logging.getLogger(__name__)

RoomCacheKey = tuple[int, str, str, str]


@dataclass
class _CacheEntry:
    room: ProvisionedRoom
    cached_at: float


class RoomCache:
    """
    Process-local, TTL-bounded memory of recently provisioned rooms.

    Entries are advisory: they let an immediate re-submission skip the
    provider, but the database remains the source of truth. Concurrent
    read/write races are tolerated.

    Notes
    -----
    - An entry is only returned while `now - cached_at < ttl_seconds`.
    - Expired entries found on read are dropped immediately.
    - `run_sweeper()` purges expired entries every `ttl_seconds`.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[RoomCacheKey, _CacheEntry] = {}

    @staticmethod
    def make_key(
        course_id: int,
        local_date: date_type,
        start_utc: datetime,
        end_utc: datetime,
    ) -> RoomCacheKey:
        return (course_id, local_date.isoformat(), start_utc.isoformat(), end_utc.isoformat())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: RoomCacheKey) -> Optional[ProvisionedRoom]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at >= self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return entry.room

    def set(self, key: RoomCacheKey, room: ProvisionedRoom) -> None:
        self._entries[key] = _CacheEntry(room=room, cached_at=self._clock())

    def purge_expired(self) -> int:
        """
        Remove every entry older than the TTL. Returns the number removed.
        """
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.cached_at >= self.ttl_seconds
        ]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    async def run_sweeper(self) -> None:
        """
        Purge expired entries every `ttl_seconds` until cancelled.
        """
        while True:
            await asyncio.sleep(self.ttl_seconds)
            removed = self.purge_expired()
            if removed:
                logger.debug("Room cache sweep removed %d expired entries", removed)
