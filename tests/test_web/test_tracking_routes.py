"""Tests for the /track ingestion endpoint."""

import hashlib
import json
from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient

from homeboard.analytics.events import MAX_BATCH_SIZE
from homeboard.db import MarketplaceStorage
from homeboard.models import AnalyticsEvent

SESSION = "0b9f8a1e-3c1d-4e2a-9f55-2c1b7d9e4a10"


def _event(name: str = "page_view", **extra: object) -> dict[str, object]:
    event: dict[str, object] = {
        "session_id": SESSION,
        "anon_id": "anon-browser-1",
        "event_name": name,
        "occurred_at": "2025-03-03T17:59:00Z",
    }
    event.update(extra)
    return event


async def _stored(storage: MarketplaceStorage) -> list[AnalyticsEvent]:
    start = datetime(2025, 3, 3, tzinfo=UTC)
    return await storage.analytics.get_events_between(
        start - timedelta(days=1), start + timedelta(days=2)
    )


class TestTrack:
    async def test_batch_stored(self, client: TestClient, storage: MarketplaceStorage) -> None:
        body = {
            "events": [
                _event(),
                _event("listing_view", event_props={"listing_id": "abc"}, user_id="user-9"),
            ]
        }
        resp = client.post(
            "/track",
            json=body,
            headers={"user-agent": "pytest-agent", "x-forwarded-for": "203.0.113.5, 10.0.0.1"},
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "count": 2}
        events = await _stored(storage)
        assert sorted(e.event_name for e in events) == ["listing_view", "page_view"]
        view = next(e for e in events if e.event_name == "listing_view")
        assert view.props == {"listing_id": "abc"}
        assert view.user_id == "user-9"
        assert view.ua == "pytest-agent"
        assert view.ip_hash == hashlib.sha256(b"203.0.113.5").hexdigest()
        assert view.session_id == SESSION
        assert view.anon_id != "anon-browser-1"

    async def test_beacon_text_plain(
        self, client: TestClient, storage: MarketplaceStorage
    ) -> None:
        resp = client.post(
            "/track",
            content=json.dumps(_event()),
            headers={"content-type": "text/plain;charset=UTF-8"},
        )
        assert resp.json()["count"] == 1

    async def test_empty_body(self, client: TestClient) -> None:
        resp = client.post("/track", content=b"  ")
        assert resp.status_code == 400
        assert resp.json() == {"error": "No events provided"}

    async def test_invalid_json(self, client: TestClient) -> None:
        resp = client.post("/track", content=b"{not json")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid JSON body"}

    async def test_too_many(self, client: TestClient) -> None:
        resp = client.post("/track", json=[_event()] * (MAX_BATCH_SIZE + 1))
        assert resp.status_code == 400
        assert "Too many events" in resp.json()["error"]

    async def test_missing_fields(self, client: TestClient) -> None:
        resp = client.post("/track", json=[{"event_name": "page_view"}])
        assert resp.status_code == 400
        assert resp.json() == {"error": "Event missing required fields"}
