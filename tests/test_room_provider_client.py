# tests/test_room_provider_client.py
from datetime import date, datetime, timedelta, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional

import httpx
import pytest

from lms_calendar.schemas.class_session import NormalizedSession
from lms_calendar.services.rate_limiter import RateLimiter
from lms_calendar.services.room_provider_client import (
    RoomProviderClient,
    RoomProviderError,
    RoomProviderRateLimited,
    parse_retry_after,
)


class _FakeResponse:
    def __init__(
        self,
        status_code: int,
        json_data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json_data = json_data
        self.headers = headers or {}
        # For debugging / error messages
        self.text = str(json_data)

    def json(self) -> Any:
        if self._json_data is None:
            raise ValueError("No JSON body")
        return self._json_data


class _FakeAsyncClient:
    """
    Minimal stand-in for httpx.AsyncClient used in tests.

    Responses are served from the class-level `responses` queue in order; an
    exception placed in the queue is raised instead of returned.
    """

    responses: List[Any] = []
    requests: List[Dict[str, Any]] = []

    def __init__(self, timeout: float | None = None):
        self._timeout = timeout

    async def __aenter__(self) -> "_FakeAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, json: Any = None, headers: Optional[Dict[str, str]] = None):
        _FakeAsyncClient.requests.append({"url": url, "json": json, "headers": headers})
        item = _FakeAsyncClient.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class _SleepRecorder:
    def __init__(self) -> None:
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


@pytest.fixture
def fake_http(monkeypatch):
    _FakeAsyncClient.responses = []
    _FakeAsyncClient.requests = []
    monkeypatch.setattr(httpx, "AsyncClient", _FakeAsyncClient)
    return _FakeAsyncClient


def _client(sleep: _SleepRecorder, **overrides) -> RoomProviderClient:
    options = {
        "base_url": "http://videochat.test/",
        "rate_limiter": RateLimiter(min_interval_seconds=0),
        "max_attempts": 4,
        "base_delay_seconds": 1.0,
        "max_delay_seconds": 60.0,
        "jitter_seconds": 0.25,
        "sleep": sleep,
    }
    options.update(overrides)
    return RoomProviderClient(**options)


def _session(day: int, index: int = 0) -> NormalizedSession:
    start = datetime(2024, 3, day, 14, 0, tzinfo=timezone.utc)
    return NormalizedSession(
        index=index,
        inicio=f"2024-03-{day:02d}T09:00",
        start_utc=start,
        end_utc=start + timedelta(hours=1),
        local_date=date(2024, 3, day),
        timezone="America/Bogota",
        title="Clase",
        session_type="Clase en vivo",
    )


def _rooms_answer(*days: int) -> Dict[str, Any]:
    return {
        "sessions": [
            {
                "session_date": f"2024-03-{day:02d}",
                "room_id": f"R{day}",
                "link": f"http://videochat.test/room?token=t{day}",
            }
            for day in days
        ]
    }


@pytest.mark.asyncio
async def test_provision_rooms_posts_one_batch_and_maps_rooms_by_date(fake_http):
    """
    A successful call sends every session in one POST and correlates the
    answer back to local dates.
    """
    fake_http.responses = [_FakeResponse(HTTPStatus.OK, _rooms_answer(1, 2))]
    sleep = _SleepRecorder()

    rooms = await _client(sleep).provision_rooms(7, [_session(1, 0), _session(2, 1)])

    assert set(rooms) == {date(2024, 3, 1), date(2024, 3, 2)}
    assert rooms[date(2024, 3, 1)].room_id == "R1"
    assert rooms[date(2024, 3, 2)].join_link == "http://videochat.test/room?token=t2"

    [request] = fake_http.requests
    assert request["url"] == "http://videochat.test/api/calls"
    assert request["headers"]["Authorization"].startswith("Bearer ")
    assert request["json"]["course_id"] == 7
    assert [s["session_date"] for s in request["json"]["sessions"]] == ["2024-03-01", "2024-03-02"]
    assert request["json"]["sessions"][0]["title"] == "Clase"
    assert sleep.waits == []


@pytest.mark.asyncio
async def test_dates_missing_from_answer_are_absent(fake_http):
    fake_http.responses = [_FakeResponse(HTTPStatus.OK, _rooms_answer(1))]

    rooms = await _client(_SleepRecorder()).provision_rooms(7, [_session(1), _session(2, 1)])

    assert list(rooms) == [date(2024, 3, 1)]


@pytest.mark.asyncio
async def test_single_session_bare_answer_is_accepted(fake_http):
    fake_http.responses = [
        _FakeResponse(HTTPStatus.CREATED, {"room_id": "R9", "link": "http://videochat.test/room?token=x"})
    ]

    rooms = await _client(_SleepRecorder()).provision_rooms(7, [_session(9)])

    assert rooms[date(2024, 3, 9)].room_id == "R9"


@pytest.mark.asyncio
async def test_retry_after_header_is_honoured(fake_http):
    fake_http.responses = [
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {"error": "slow down"}, headers={"Retry-After": "2"}),
        _FakeResponse(HTTPStatus.OK, _rooms_answer(1)),
    ]
    sleep = _SleepRecorder()

    rooms = await _client(sleep).provision_rooms(7, [_session(1)])

    assert rooms[date(2024, 3, 1)].room_id == "R1"
    assert sleep.waits == [2.0]
    assert len(fake_http.requests) == 2


@pytest.mark.asyncio
async def test_backoff_grows_without_retry_after(fake_http):
    """
    Three consecutive 429s without a hint: waits grow strictly and stay under
    the cap; the fourth attempt succeeds.
    """
    fake_http.responses = [
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {}),
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {}),
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {}),
        _FakeResponse(HTTPStatus.OK, _rooms_answer(1)),
    ]
    sleep = _SleepRecorder()

    rooms = await _client(sleep, max_delay_seconds=10.0).provision_rooms(7, [_session(1)])

    assert rooms[date(2024, 3, 1)].room_id == "R1"
    assert len(sleep.waits) == 3
    assert sleep.waits[0] < sleep.waits[1] < sleep.waits[2]
    assert all(wait <= 10.0 for wait in sleep.waits)
    assert 1.0 <= sleep.waits[0] <= 1.25


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_raises(fake_http):
    fake_http.responses = [
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {}, headers={"Retry-After": "7"})
        for _ in range(3)
    ]
    sleep = _SleepRecorder()

    with pytest.raises(RoomProviderRateLimited) as exc_info:
        await _client(sleep, max_attempts=3).provision_rooms(7, [_session(1)])

    assert exc_info.value.attempts == 3
    assert exc_info.value.retry_after == 7.0
    assert "max retries exceeded" in str(exc_info.value)
    # No wait after the final attempt
    assert sleep.waits == [7.0, 7.0]


@pytest.mark.asyncio
async def test_retry_after_is_capped(fake_http):
    fake_http.responses = [
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {}, headers={"Retry-After": "3600"}),
        _FakeResponse(HTTPStatus.OK, _rooms_answer(1)),
    ]
    sleep = _SleepRecorder()

    await _client(sleep, max_delay_seconds=30.0).provision_rooms(7, [_session(1)])

    assert sleep.waits == [30.0]


@pytest.mark.asyncio
async def test_non_429_error_is_not_retried(fake_http):
    fake_http.responses = [_FakeResponse(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "boom"})]
    sleep = _SleepRecorder()

    with pytest.raises(RoomProviderError) as exc_info:
        await _client(sleep).provision_rooms(7, [_session(1)])

    assert not isinstance(exc_info.value, RoomProviderRateLimited)
    assert "status=500" in str(exc_info.value)
    assert len(fake_http.requests) == 1
    assert sleep.waits == []


@pytest.mark.asyncio
async def test_timeout_is_fatal(fake_http):
    fake_http.responses = [httpx.ReadTimeout("timed out")]

    with pytest.raises(RoomProviderError) as exc_info:
        await _client(_SleepRecorder(), timeout_seconds=5).provision_rooms(7, [_session(1)])

    assert "timed out" in str(exc_info.value)
    assert len(fake_http.requests) == 1


@pytest.mark.asyncio
async def test_non_json_body_is_fatal(fake_http):
    fake_http.responses = [_FakeResponse(HTTPStatus.OK, None)]

    with pytest.raises(RoomProviderError):
        await _client(_SleepRecorder()).provision_rooms(7, [_session(1)])


@pytest.mark.asyncio
async def test_empty_batch_makes_no_call(fake_http):
    rooms = await _client(_SleepRecorder()).provision_rooms(7, [])

    assert rooms == {}
    assert fake_http.requests == []


def test_backoff_delay_is_capped():
    client = _client(_SleepRecorder(), base_delay_seconds=1.0, max_delay_seconds=5.0)

    assert client.backoff_delay(10) == 5.0


def test_parse_retry_after_accepts_seconds_and_http_dates():
    now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)

    assert parse_retry_after("12") == 12.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 30.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:00:00 GMT", now=now) == 0.0
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


@pytest.mark.parametrize("value", ["inf", "1e999", "-inf", "nan"])
def test_parse_retry_after_ignores_non_finite_values(value):
    assert parse_retry_after(value) is None


@pytest.mark.asyncio
async def test_infinite_retry_after_is_not_carried_into_the_error(fake_http):
    fake_http.responses = [
        _FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, {}, headers={"Retry-After": "1e999"})
        for _ in range(2)
    ]
    sleep = _SleepRecorder()

    with pytest.raises(RoomProviderRateLimited) as exc_info:
        await _client(sleep, max_attempts=2, max_delay_seconds=10.0).provision_rooms(7, [_session(1)])

    assert exc_info.value.retry_after is None
    assert all(wait <= 10.0 for wait in sleep.waits)


def test_client_requires_base_url():
    with pytest.raises(ValueError):
        RoomProviderClient(base_url="", rate_limiter=RateLimiter())
