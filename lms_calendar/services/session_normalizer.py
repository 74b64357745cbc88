# lms_calendar/services/session_normalizer.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lms_calendar.schemas.class_session import (
    InvalidSession,
    NormalizedSession,
    SessionRequest,
)


@dataclass
class NormalizationResult:
    valid: list[NormalizedSession] = field(default_factory=list)
    invalid: list[InvalidSession] = field(default_factory=list)


class SessionNormalizer:
    """
    Turns raw submitted sessions into UTC windows keyed by local date.

    Rules
    -----
    - A missing `timezone` falls back to `default_timezone`.
    - Naive timestamps are wall-clock times in that zone; timestamps with an
      explicit offset are converted into it first.
    - `local_date` is the calendar date of the start in the zone.
    - A session is valid only if both timestamps parse, the zone exists and
      `end_utc > start_utc`. Invalid sessions are reported, never raised.
    """

    def __init__(
        self,
        default_timezone: str = "America/Bogota",
        default_title: str = "Clase",
        default_type: str = "Clase en vivo",
    ) -> None:
        self.default_timezone = default_timezone
        self.default_title = default_title
        self.default_type = default_type

    def normalize(self, sessions: list[SessionRequest]) -> NormalizationResult:
        result = NormalizationResult()

        for index, raw in enumerate(sessions):
            tz_name = raw.timezone or self.default_timezone
            try:
                zone = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                result.invalid.append(
                    InvalidSession(index=index, inicio=raw.inicio, reason=f"unknown timezone '{tz_name}'")
                )
                continue

            start_local = self._parse_local(raw.inicio, zone)
            end_local = self._parse_local(raw.final, zone)
            if start_local is None or end_local is None:
                result.invalid.append(
                    InvalidSession(index=index, inicio=raw.inicio, reason="unparseable timestamp")
                )
                continue

            start_utc = start_local.astimezone(timezone.utc)
            end_utc = end_local.astimezone(timezone.utc)
            if end_utc <= start_utc:
                result.invalid.append(
                    InvalidSession(index=index, inicio=raw.inicio, reason="final must be after inicio")
                )
                continue

            result.valid.append(
                NormalizedSession(
                    index=index,
                    inicio=raw.inicio,
                    start_utc=start_utc,
                    end_utc=end_utc,
                    local_date=start_local.date(),
                    timezone=tz_name,
                    title=raw.titulo or self.default_title,
                    session_type=raw.type or self.default_type,
                )
            )

        return result

    @staticmethod
    def _parse_local(value: str, zone: ZoneInfo) -> datetime | None:
        """
        Parse an ISO timestamp as a wall-clock time in `zone`.
        """
        try:
            parsed = datetime.fromisoformat(value.strip())
        except (AttributeError, ValueError):
            return None

        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=zone)
        return parsed.astimezone(zone)
