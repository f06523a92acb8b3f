"""Tests for analytics and impersonation persistence."""

from datetime import date, datetime, timedelta

from homeboard.db import MarketplaceStorage
from homeboard.models import AnalyticsEvent, DailyAnalytics, Profile, TopFilter, TopListing


def _event(name: str, at: datetime, **props: object) -> AnalyticsEvent:
    return AnalyticsEvent(
        session_id="s1", anon_id="a1", event_name=name, props=props, occurred_at=at
    )


class TestEvents:
    async def test_insert_and_read_window(
        self, storage: MarketplaceStorage, now: datetime
    ) -> None:
        count = await storage.analytics.insert_events(
            [
                _event("page_view", now - timedelta(hours=2), path="/"),
                _event("page_view", now),
                _event("page_view", now + timedelta(hours=2)),
            ]
        )
        assert count == 3
        events = await storage.analytics.get_events_between(now - timedelta(hours=3), now)
        assert len(events) == 1
        assert events[0].props == {"path": "/"}

    async def test_insert_empty(self, storage: MarketplaceStorage) -> None:
        assert await storage.analytics.insert_events([]) == 0

    async def test_delete_before_by_name(self, storage: MarketplaceStorage, now: datetime) -> None:
        old = now - timedelta(days=40)
        await storage.analytics.insert_events(
            [
                _event("listing_impression_batch", old),
                _event("page_view", old),
                _event("listing_impression_batch", now),
            ]
        )
        deleted = await storage.analytics.delete_events_before(
            now - timedelta(days=30), only_event="listing_impression_batch"
        )
        assert deleted == 1
        remaining = await storage.analytics.get_events_between(old, now + timedelta(seconds=1))
        assert sorted(e.event_name for e in remaining) == [
            "listing_impression_batch",
            "page_view",
        ]


class TestRollupTables:
    async def test_replace_day_overwrites(self, storage: MarketplaceStorage) -> None:
        day = date(2025, 3, 2)
        await storage.analytics.replace_day(
            DailyAnalytics(date=day, dau=5),
            [TopListing(listing_id="l1", views=3, impressions=10, ctr=30.0, rank=1)],
            [TopFilter(filter_key="bedrooms", filter_value="2", uses=4, rank=1)],
        )
        await storage.analytics.replace_day(
            DailyAnalytics(date=day, dau=7),
            [TopListing(listing_id="l1", views=4, impressions=10, ctr=40.0, rank=1)],
            [],
        )
        rows = await storage.analytics.get_daily_range(day, day + timedelta(days=1))
        assert [r.dau for r in rows] == [7]
        assert await storage.analytics.get_top_listing_totals(day, day + timedelta(days=1)) == {
            "l1": (4, 10)
        }
        assert await storage.analytics.get_top_filter_totals(day, day + timedelta(days=1)) == {}

    async def test_range_excludes_end(self, storage: MarketplaceStorage) -> None:
        for offset in range(3):
            await storage.analytics.replace_day(
                DailyAnalytics(date=date(2025, 3, 1) + timedelta(days=offset)), [], []
            )
        rows = await storage.analytics.get_daily_range(date(2025, 3, 1), date(2025, 3, 3))
        assert [r.date.day for r in rows] == [1, 2]


class TestImpersonationStorage:
    async def test_session_lifecycle(
        self, storage: MarketplaceStorage, admin: Profile, owner: Profile, now: datetime
    ) -> None:
        repo = storage.impersonation
        session = await repo.create_session(
            admin_user_id=admin.id,
            impersonated_user_id=owner.id,
            session_token="tok",
            started_at=now,
            expires_at=now + timedelta(hours=2),
            ip_address="127.0.0.1",
            user_agent="pytest",
        )
        assert (await repo.get_by_token("tok")) == session
        assert [s.id for s in await repo.get_open_sessions(admin.id)] == [session.id]
        assert await repo.get_expired_open_sessions(now) == []

        assert await repo.end_session(session.id, now) is True
        assert await repo.end_session(session.id, now) is False
        assert await repo.get_open_sessions(admin.id) == []

    async def test_audit_log(
        self, storage: MarketplaceStorage, admin: Profile, owner: Profile, now: datetime
    ) -> None:
        repo = storage.impersonation
        session = await repo.create_session(
            admin_user_id=admin.id,
            impersonated_user_id=owner.id,
            session_token="tok",
            started_at=now,
            expires_at=now + timedelta(hours=2),
            ip_address=None,
            user_agent=None,
        )
        await repo.log_action(session, "page_view", page_path="/dashboard", timestamp=now)
        await repo.log_action(
            session, "session_end", action_details={"reason": "manual"}, timestamp=now
        )
        log = await repo.get_audit_log(session.id)
        assert [e["action_type"] for e in log] == ["page_view", "session_end"]
        assert log[0]["page_path"] == "/dashboard"
        assert log[1]["action_details"] == {"reason": "manual"}
