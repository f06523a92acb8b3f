"""Pure aggregation of raw analytics events into daily figures.

Everything here works on in-memory ``AnalyticsEvent`` lists so the same code
serves the nightly rollup and the live "today" numbers on the dashboard.
"""

from __future__ import annotations

import json
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Any, Final

from homeboard.analytics.events import UUID_RE
from homeboard.models import AnalyticsEvent, DailyAnalytics, TopFilter, TopListing

PAGE_VIEW: Final = "page_view"
LISTING_VIEW: Final = "listing_view"
IMPRESSION_BATCH: Final = "listing_impression_batch"
FILTER_APPLY: Final = "filter_apply"

POST_STARTS: Final = frozenset({"listing_post_start", "post_start"})
POST_SUBMITS: Final = frozenset({"listing_post_submit", "post_submit"})
POST_SUCCESS: Final = frozenset(
    {"listing_post_submit_success", "listing_post_success", "post_submit_success"}
)
POST_ABANDONED: Final = frozenset({"listing_post_abandoned", "post_abandoned"})

SESSION_GAP_CAP_MINUTES: Final = 30.0
TOP_LIMIT: Final = 50


def _is_listing_id(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_RE.match(value))


def average_session_minutes(events: Iterable[AnalyticsEvent]) -> float:
    """Mean per-session duration with each inter-event gap capped at 30 minutes."""
    by_session: dict[str, list[AnalyticsEvent]] = defaultdict(list)
    for event in events:
        by_session[event.session_id].append(event)
    if not by_session:
        return 0.0

    totals = []
    for session_events in by_session.values():
        ordered = sorted(session_events, key=lambda e: e.occurred_at)
        total = 0.0
        for prev, cur in zip(ordered, ordered[1:], strict=False):
            gap = (cur.occurred_at - prev.occurred_at).total_seconds() / 60
            total += min(gap, SESSION_GAP_CAP_MINUTES)
        totals.append(total)
    return round(sum(totals) / len(totals), 2)


def summarize_day(day: date, events: Sequence[AnalyticsEvent]) -> DailyAnalytics:
    """Headline counters for one day's events."""
    names = Counter(e.event_name for e in events)
    active_users = {e.user_id for e in events if e.event_name == PAGE_VIEW and e.user_id}

    def count(aliases: frozenset[str]) -> int:
        return sum(names[name] for name in aliases)

    return DailyAnalytics(
        date=day,
        dau=len(active_users),
        visitors=len({e.session_id for e in events}),
        returners=len(active_users),
        avg_session_minutes=average_session_minutes(events),
        listing_views=names[LISTING_VIEW],
        post_starts=count(POST_STARTS),
        post_submits=count(POST_SUBMITS),
        post_success=count(POST_SUCCESS),
        post_abandoned=count(POST_ABANDONED),
    )


def listing_counts(events: Iterable[AnalyticsEvent]) -> dict[str, tuple[int, int]]:
    """(views, impressions) per listing id."""
    views: Counter[str] = Counter()
    impressions: Counter[str] = Counter()
    for event in events:
        if event.event_name == LISTING_VIEW:
            listing_id = event.props.get("listing_id")
            if _is_listing_id(listing_id):
                views[listing_id] += 1
        elif event.event_name == IMPRESSION_BATCH:
            ids = event.props.get("listing_ids")
            if ids is None:
                ids = event.props.get("ids")
            if isinstance(ids, list):
                impressions.update(i for i in ids if _is_listing_id(i))
    return {
        listing_id: (views[listing_id], impressions[listing_id])
        for listing_id in views.keys() | impressions.keys()
    }


def click_through_rate(views: int, impressions: int) -> float:
    if impressions <= 0:
        return 0.0
    return round(views / impressions * 100, 2)


def rank_listings(
    counts: Mapping[str, tuple[int, int]], limit: int = TOP_LIMIT
) -> list[TopListing]:
    """Order by views, then impressions, and assign 1-based ranks."""
    ordered = sorted(counts.items(), key=lambda item: (-item[1][0], -item[1][1], item[0]))
    return [
        TopListing(
            listing_id=listing_id,
            views=views,
            impressions=impressions,
            ctr=click_through_rate(views, impressions),
            rank=rank,
        )
        for rank, (listing_id, (views, impressions)) in enumerate(ordered[:limit], start=1)
    ]


def _filter_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def filter_counts(events: Iterable[AnalyticsEvent]) -> dict[tuple[str, str], int]:
    """Uses per (filter key, stringified value) from ``filter_apply`` events."""
    uses: Counter[tuple[str, str]] = Counter()
    for event in events:
        if event.event_name != FILTER_APPLY:
            continue
        filters = event.props.get("filters")
        if isinstance(filters, dict):
            uses.update((str(key), _filter_value(value)) for key, value in filters.items())
    return dict(uses)


def rank_filters(counts: Mapping[tuple[str, str], int], limit: int = TOP_LIMIT) -> list[TopFilter]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        TopFilter(filter_key=key, filter_value=value, uses=uses, rank=rank)
        for rank, ((key, value), uses) in enumerate(ordered[:limit], start=1)
    ]
