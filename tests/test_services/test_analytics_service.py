"""Tests for the analytics rollup and dashboard queries."""

from datetime import UTC, date, datetime, timedelta

import pytest
import pytest_asyncio

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.models import AnalyticsEvent
from homeboard.services.analytics import AnalyticsService

LISTING_A = "11111111-1111-4111-8111-111111111111"
LISTING_B = "22222222-2222-4222-8222-222222222222"

# Sunday afternoon / Monday afternoon in New York
YESTERDAY = datetime(2025, 3, 2, 17, 0, tzinfo=UTC)
TODAY = datetime(2025, 3, 3, 16, 0, tzinfo=UTC)


def _event(
    name: str,
    at: datetime,
    *,
    session: str = "s1",
    user: str | None = None,
    **props: object,
) -> AnalyticsEvent:
    return AnalyticsEvent(
        session_id=session, anon_id="a1", user_id=user, event_name=name, props=props, occurred_at=at
    )


@pytest.fixture
def service(storage: MarketplaceStorage, settings_obj: Settings) -> AnalyticsService:
    return AnalyticsService(storage, settings_obj)


@pytest_asyncio.fixture
async def seeded(storage: MarketplaceStorage) -> MarketplaceStorage:
    await storage.analytics.insert_events(
        [
            _event("page_view", YESTERDAY, user="u1"),
            _event("page_view", YESTERDAY + timedelta(minutes=12), user="u1"),
            _event("page_view", YESTERDAY, session="s2"),
            _event("listing_view", YESTERDAY, listing_id=LISTING_A),
            _event("listing_impression_batch", YESTERDAY, listing_ids=[LISTING_A, LISTING_B]),
            _event("filter_apply", YESTERDAY, filters={"bedrooms": "2"}),
            # Late Sunday evening locally, already Monday in UTC
            _event("page_view", datetime(2025, 3, 3, 3, 0, tzinfo=UTC), session="s3"),
            _event("page_view", TODAY, session="s4", user="u2"),
            _event("listing_view", TODAY, session="s4", listing_id=LISTING_A),
            _event("filter_apply", TODAY, session="s4", filters={"bedrooms": "2"}),
        ]
    )
    return storage


class TestRollup:
    async def test_rollup_yesterday_uses_local_day(
        self, service: AnalyticsService, seeded: MarketplaceStorage, now: datetime
    ) -> None:
        summary = await service.rollup_yesterday(now)
        assert summary.date == date(2025, 3, 2)
        assert summary.visitors == 3
        assert summary.dau == 1
        assert summary.listing_views == 1
        assert summary.avg_session_minutes == 4.0

        stored = await seeded.analytics.get_daily_range(date(2025, 3, 2), date(2025, 3, 3))
        assert stored == [summary]
        totals = await seeded.analytics.get_top_listing_totals(date(2025, 3, 2), date(2025, 3, 3))
        assert totals == {LISTING_A: (1, 1), LISTING_B: (0, 1)}

    async def test_rerun_is_idempotent(
        self, service: AnalyticsService, seeded: MarketplaceStorage
    ) -> None:
        await service.rollup_day(date(2025, 3, 2))
        await service.rollup_day(date(2025, 3, 2))
        rows = await seeded.analytics.get_daily_range(date(2025, 3, 1), date(2025, 3, 4))
        assert len(rows) == 1

    async def test_backfill_oldest_first(self, service: AnalyticsService, now: datetime) -> None:
        days = await service.backfill(3, now)
        assert days == [date(2025, 2, 28), date(2025, 3, 1), date(2025, 3, 2)]


class TestDashboard:
    async def test_summary_combines_history_and_today(
        self, service: AnalyticsService, seeded: MarketplaceStorage, now: datetime
    ) -> None:
        await service.rollup_yesterday(now)
        summary = await service.summary(days_back=7, now=now)

        assert summary["start_date"] == "2025-02-25"
        assert summary["end_date"] == "2025-03-03"
        assert summary["visitors"] == 3 + 1
        assert summary["listing_views"] == 2
        assert summary["dau_sparkline"] == [0, 0, 0, 0, 0, 1, 1]
        assert summary["avg_session_minutes"] == 2.0

    async def test_summary_empty(self, service: AnalyticsService, now: datetime) -> None:
        summary = await service.summary(days_back=1, now=now)
        assert summary["dau"] == 0
        assert summary["avg_session_minutes"] == 0.0
        assert summary["dau_sparkline"] == [0]

    async def test_window_counts_today_as_first_day(
        self, service: AnalyticsService, seeded: MarketplaceStorage, now: datetime
    ) -> None:
        await service.rollup_yesterday(now)
        today_only = await service.summary(days_back=1, now=now)
        with_yesterday = await service.summary(days_back=2, now=now)

        assert today_only["start_date"] == today_only["end_date"] == "2025-03-03"
        assert today_only["visitors"] == 1
        assert with_yesterday["start_date"] == "2025-03-02"
        assert with_yesterday["dau_sparkline"] == [1, 1]

    async def test_top_listings_add_live_counts(
        self, service: AnalyticsService, seeded: MarketplaceStorage, now: datetime
    ) -> None:
        await service.rollup_yesterday(now)
        top = await service.top_listings(days_back=7, limit=10, now=now)
        assert [(t.listing_id, t.views, t.impressions, t.rank) for t in top] == [
            (LISTING_A, 2, 1, 1),
            (LISTING_B, 0, 1, 2),
        ]
        assert top[0].ctr == 200.0

    async def test_top_filters(
        self, service: AnalyticsService, seeded: MarketplaceStorage, now: datetime
    ) -> None:
        await service.rollup_yesterday(now)
        top = await service.top_filters(now=now)
        assert [(f.filter_key, f.filter_value, f.uses) for f in top] == [("bedrooms", "2", 2)]

    async def test_listing_drilldown(
        self, service: AnalyticsService, seeded: MarketplaceStorage, now: datetime
    ) -> None:
        await service.rollup_yesterday(now)
        rows = await service.listing_drilldown(LISTING_A, days_back=2, now=now)
        assert rows == [
            {"date": "2025-03-02", "views": 1, "impressions": 1, "ctr": 100.0},
            {"date": "2025-03-03", "views": 1, "impressions": 0, "ctr": 0.0},
        ]


class TestCleanup:
    async def test_retention_per_event_type(
        self, service: AnalyticsService, storage: MarketplaceStorage, now: datetime
    ) -> None:
        await storage.analytics.insert_events(
            [
                _event("listing_impression_batch", now - timedelta(days=31)),
                _event("listing_impression_batch", now - timedelta(days=5)),
                _event("page_view", now - timedelta(days=31)),
                _event("page_view", now - timedelta(days=91)),
            ]
        )
        result = await service.cleanup(now)
        assert result == {"impressions_deleted": 1, "events_deleted": 1}
        remaining = await storage.analytics.get_events_between(now - timedelta(days=100), now)
        assert len(remaining) == 2
