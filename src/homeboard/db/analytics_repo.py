"""Raw analytics events and their daily rollup tables."""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine, Sequence
from datetime import date, datetime
from typing import Any

import aiosqlite

from homeboard.db.row_mappers import parse_json_object
from homeboard.logging import get_logger
from homeboard.models import AnalyticsEvent, DailyAnalytics, TopFilter, TopListing
from homeboard.utils.dates import from_db, to_db

logger = get_logger(__name__)

IMPRESSION_EVENT = "listing_impression_batch"

_DAILY_COLUMNS = (
    "dau",
    "visitors",
    "returners",
    "avg_session_minutes",
    "listing_views",
    "post_starts",
    "post_submits",
    "post_success",
    "post_abandoned",
)


class AnalyticsRepository:
    """Event ingestion and rollup persistence."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    async def insert_events(self, events: Sequence[AnalyticsEvent]) -> int:
        if not events:
            return 0
        conn = await self._get_connection()
        await conn.executemany(
            """
            INSERT INTO analytics_events (
                session_id, anon_id, user_id, event_name, props, occurred_at, ua, ip_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    e.session_id,
                    e.anon_id,
                    e.user_id,
                    e.event_name,
                    json.dumps(e.props),
                    to_db(e.occurred_at),
                    e.ua,
                    e.ip_hash,
                )
                for e in events
            ],
        )
        await conn.commit()
        return len(events)

    async def get_events_between(self, start: datetime, end: datetime) -> list[AnalyticsEvent]:
        """Events with ``start <= occurred_at < end``, in time order."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT session_id, anon_id, user_id, event_name, props, occurred_at, ua, ip_hash
            FROM analytics_events
            WHERE occurred_at >= ? AND occurred_at < ?
            ORDER BY occurred_at, id
            """,
            (to_db(start), to_db(end)),
        )
        return [
            AnalyticsEvent(
                session_id=row["session_id"],
                anon_id=row["anon_id"],
                user_id=row["user_id"],
                event_name=row["event_name"],
                props=parse_json_object(row["props"]),
                occurred_at=from_db(row["occurred_at"]),
                ua=row["ua"],
                ip_hash=row["ip_hash"],
            )
            for row in await cursor.fetchall()
        ]

    async def replace_day(
        self,
        summary: DailyAnalytics,
        top_listings: Sequence[TopListing],
        top_filters: Sequence[TopFilter],
    ) -> None:
        """Swap in the rollup rows for one date in a single transaction."""
        conn = await self._get_connection()
        day = summary.date.isoformat()
        try:
            await conn.execute("DELETE FROM daily_analytics WHERE date = ?", (day,))
            await conn.execute("DELETE FROM daily_top_listings WHERE date = ?", (day,))
            await conn.execute("DELETE FROM daily_top_filters WHERE date = ?", (day,))
            await conn.execute(
                f"""
                INSERT INTO daily_analytics (date, {", ".join(_DAILY_COLUMNS)})
                VALUES (?, {", ".join("?" for _ in _DAILY_COLUMNS)})
                """,
                [day, *(getattr(summary, c) for c in _DAILY_COLUMNS)],
            )
            await conn.executemany(
                """
                INSERT INTO daily_top_listings (date, listing_id, views, impressions, ctr, rank)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [(day, t.listing_id, t.views, t.impressions, t.ctr, t.rank) for t in top_listings],
            )
            await conn.executemany(
                """
                INSERT INTO daily_top_filters (date, filter_key, filter_value, uses, rank)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(day, f.filter_key, f.filter_value, f.uses, f.rank) for f in top_filters],
            )
            await conn.commit()
        except aiosqlite.Error:
            await conn.rollback()
            raise

    async def delete_events_before(
        self,
        cutoff: datetime,
        *,
        only_event: str | None = None,
        except_event: str | None = None,
    ) -> int:
        """Delete events older than cutoff, optionally restricted by event name."""
        conn = await self._get_connection()
        sql = "DELETE FROM analytics_events WHERE occurred_at < ?"
        params: list[Any] = [to_db(cutoff)]
        if only_event is not None:
            sql += " AND event_name = ?"
            params.append(only_event)
        if except_event is not None:
            sql += " AND event_name != ?"
            params.append(except_event)
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor.rowcount

    async def get_daily_range(self, start: date, end: date) -> list[DailyAnalytics]:
        """Stored daily rows with ``start <= date < end``, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            SELECT date, {", ".join(_DAILY_COLUMNS)} FROM daily_analytics
            WHERE date >= ? AND date < ?
            ORDER BY date
            """,
            (start.isoformat(), end.isoformat()),
        )
        return [
            DailyAnalytics(
                date=date.fromisoformat(row["date"]),
                **{c: row[c] for c in _DAILY_COLUMNS},
            )
            for row in await cursor.fetchall()
        ]

    async def get_top_listing_totals(self, start: date, end: date) -> dict[str, tuple[int, int]]:
        """Summed (views, impressions) per listing over stored days."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT listing_id, SUM(views) AS views, SUM(impressions) AS impressions
            FROM daily_top_listings
            WHERE date >= ? AND date < ?
            GROUP BY listing_id
            """,
            (start.isoformat(), end.isoformat()),
        )
        return {
            row["listing_id"]: (row["views"] or 0, row["impressions"] or 0)
            for row in await cursor.fetchall()
        }

    async def get_top_filter_totals(self, start: date, end: date) -> dict[tuple[str, str], int]:
        """Summed uses per (key, value) over stored days."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT filter_key, filter_value, SUM(uses) AS uses
            FROM daily_top_filters
            WHERE date >= ? AND date < ?
            GROUP BY filter_key, filter_value
            """,
            (start.isoformat(), end.isoformat()),
        )
        return {
            (row["filter_key"], row["filter_value"]): row["uses"] or 0
            for row in await cursor.fetchall()
        }

    async def get_listing_days(
        self, listing_id: str, start: date, end: date
    ) -> dict[date, tuple[int, int]]:
        """Per-day (views, impressions) for one listing from stored rollups."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT date, views, impressions FROM daily_top_listings
            WHERE listing_id = ? AND date >= ? AND date < ?
            """,
            (listing_id, start.isoformat(), end.isoformat()),
        )
        return {
            date.fromisoformat(row["date"]): (row["views"], row["impressions"])
            for row in await cursor.fetchall()
        }
