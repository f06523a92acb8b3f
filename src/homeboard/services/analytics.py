"""Nightly analytics rollup, retention cleanup and dashboard queries."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from homeboard.analytics.rollup import (
    IMPRESSION_BATCH,
    click_through_rate,
    filter_counts,
    listing_counts,
    rank_filters,
    rank_listings,
    summarize_day,
)
from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.logging import get_logger
from homeboard.models import AnalyticsEvent, DailyAnalytics, TopFilter, TopListing
from homeboard.utils.dates import local_day_bounds, local_today, utc_now

logger = get_logger(__name__)

_COUNTER_FIELDS = (
    "dau",
    "visitors",
    "returners",
    "listing_views",
    "post_starts",
    "post_submits",
    "post_success",
    "post_abandoned",
)


class AnalyticsService:
    """Rolls raw events into daily tables and answers admin dashboard queries.

    Days are calendar days in ``settings.analytics_timezone``. Dashboard
    queries combine stored history (days before today) with a live
    aggregation of today's raw events.
    """

    def __init__(self, storage: MarketplaceStorage, settings: Settings) -> None:
        self.storage = storage
        self.settings = settings
        self.tz = settings.analytics_timezone

    async def _events_for(self, day: date) -> list[AnalyticsEvent]:
        start, end = local_day_bounds(day, self.tz)
        return await self.storage.analytics.get_events_between(start, end)

    # --- rollup ---

    async def rollup_day(self, day: date) -> DailyAnalytics:
        """Recompute and replace the stored rows for ``day``."""
        events = await self._events_for(day)
        summary = summarize_day(day, events)
        top_listings = rank_listings(listing_counts(events))
        top_filters = rank_filters(filter_counts(events))
        await self.storage.analytics.replace_day(summary, top_listings, top_filters)
        logger.info(
            "analytics_rollup_complete",
            date=day.isoformat(),
            events=len(events),
            top_listings=len(top_listings),
            top_filters=len(top_filters),
        )
        return summary

    async def rollup_yesterday(self, now: datetime | None = None) -> DailyAnalytics:
        return await self.rollup_day(local_today(self.tz, now) - timedelta(days=1))

    async def backfill(self, days: int, now: datetime | None = None) -> list[date]:
        """Roll up each of the previous ``days`` days, oldest first."""
        today = local_today(self.tz, now)
        done = []
        for offset in range(days, 0, -1):
            day = today - timedelta(days=offset)
            await self.rollup_day(day)
            done.append(day)
        return done

    async def cleanup(self, now: datetime | None = None) -> dict[str, int]:
        """Apply retention: impressions are kept shorter than other events."""
        now = now or utc_now()
        impressions = await self.storage.analytics.delete_events_before(
            now - timedelta(days=self.settings.impression_retention_days),
            only_event=IMPRESSION_BATCH,
        )
        others = await self.storage.analytics.delete_events_before(
            now - timedelta(days=self.settings.event_retention_days),
            except_event=IMPRESSION_BATCH,
        )
        logger.info("analytics_cleanup_complete", impressions=impressions, events=others)
        return {"impressions_deleted": impressions, "events_deleted": others}

    # --- dashboard ---

    def _window(self, days_back: int, now: datetime | None) -> tuple[date, date]:
        """First and last local day of a window of `days_back` days ending today."""
        today = local_today(self.tz, now)
        return today - timedelta(days=max(days_back, 1) - 1), today

    async def summary(self, days_back: int = 7, now: datetime | None = None) -> dict[str, Any]:
        """Totals over the window plus a per-day DAU sparkline (oldest first)."""
        start, today = self._window(days_back, now)
        history = await self.storage.analytics.get_daily_range(start, today)
        today_events = await self._events_for(today)
        live = summarize_day(today, today_events)

        totals = {
            name: sum(getattr(row, name) for row in history) + getattr(live, name)
            for name in _COUNTER_FIELDS
        }

        averages = []
        if history:
            averages.append(sum(row.avg_session_minutes for row in history) / len(history))
        if today_events:
            averages.append(live.avg_session_minutes)
        avg_session = round(sum(averages) / len(averages), 2) if averages else 0.0

        dau_by_day = {row.date: row.dau for row in history}
        dau_by_day[today] = live.dau
        sparkline = [
            dau_by_day.get(start + timedelta(days=offset), 0)
            for offset in range((today - start).days + 1)
        ]

        return {
            "start_date": start.isoformat(),
            "end_date": today.isoformat(),
            **totals,
            "avg_session_minutes": avg_session,
            "dau_sparkline": sparkline,
        }

    async def top_listings(
        self, days_back: int = 7, limit: int = 10, now: datetime | None = None
    ) -> list[TopListing]:
        start, today = self._window(days_back, now)
        totals = await self.storage.analytics.get_top_listing_totals(start, today)
        for listing_id, (views, impressions) in listing_counts(
            await self._events_for(today)
        ).items():
            prev_views, prev_impressions = totals.get(listing_id, (0, 0))
            totals[listing_id] = (prev_views + views, prev_impressions + impressions)
        return rank_listings(totals, limit)

    async def top_filters(
        self, days_back: int = 7, limit: int = 10, now: datetime | None = None
    ) -> list[TopFilter]:
        start, today = self._window(days_back, now)
        totals = await self.storage.analytics.get_top_filter_totals(start, today)
        for key, uses in filter_counts(await self._events_for(today)).items():
            totals[key] = totals.get(key, 0) + uses
        return rank_filters(totals, limit)

    async def listing_drilldown(
        self, listing_id: str, days_back: int = 30, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Daily views, impressions and CTR for one listing, oldest first."""
        start, today = self._window(days_back, now)
        per_day = await self.storage.analytics.get_listing_days(listing_id, start, today)
        per_day[today] = listing_counts(await self._events_for(today)).get(listing_id, (0, 0))

        rows = []
        for offset in range((today - start).days + 1):
            day = start + timedelta(days=offset)
            views, impressions = per_day.get(day, (0, 0))
            rows.append(
                {
                    "date": day.isoformat(),
                    "views": views,
                    "impressions": impressions,
                    "ctr": click_through_rate(views, impressions),
                }
            )
        return rows
