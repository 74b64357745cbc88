# tests/test_health.py
from http import HTTPStatus


def test_health_endpoint_ok(client):
    """
    Basic sanity test to verify that /health responds with 200 OK
    and has the expected JSON shape and types.
    """
    response = client.get("/health")

    assert response.status_code == HTTPStatus.OK
    data = response.json()

    assert data["status"] == "ok"
    assert isinstance(data["app_name"], str)
    assert data["environment"] == "test"
    assert data["video_provider_configured"] is True
    assert data["room_cache_entries"] == 0
    assert "timestamp_utc" in data


def test_health_reports_cached_rooms(client, course_factory, auth_headers):
    """
    Rooms provisioned by a reconciliation show up in the cache counter.
    """
    course_id = course_factory(owner_id=1)
    client.post(
        f"/courses/{course_id}/dates",
        json={"sessions": [{"inicio": "2024-03-01T09:00", "final": "2024-03-01T10:00"}]},
        headers=auth_headers(1),
    )

    response = client.get("/health")

    assert response.status_code == HTTPStatus.OK
    assert response.json()["room_cache_entries"] == 1
