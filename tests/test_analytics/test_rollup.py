"""Tests for in-memory event aggregation."""

from datetime import UTC, date, datetime, timedelta

from hypothesis import given
from hypothesis import strategies as st

from homeboard.analytics.rollup import (
    average_session_minutes,
    click_through_rate,
    filter_counts,
    listing_counts,
    rank_filters,
    rank_listings,
    summarize_day,
)
from homeboard.models import AnalyticsEvent

T0 = datetime(2025, 3, 2, 15, 0, tzinfo=UTC)
LISTING_A = "11111111-1111-4111-8111-111111111111"
LISTING_B = "22222222-2222-4222-8222-222222222222"


def _event(
    name: str,
    minutes: float = 0,
    *,
    session: str = "s1",
    user: str | None = None,
    **props: object,
) -> AnalyticsEvent:
    return AnalyticsEvent(
        session_id=session,
        anon_id="a1",
        user_id=user,
        event_name=name,
        props=props,
        occurred_at=T0 + timedelta(minutes=minutes),
    )


class TestSessionLength:
    def test_gaps_are_capped(self) -> None:
        events = [_event("page_view", 0), _event("page_view", 10), _event("page_view", 100)]
        assert average_session_minutes(events) == 40.0

    def test_mean_across_sessions(self) -> None:
        events = [
            _event("page_view", 0, session="s1"),
            _event("page_view", 20, session="s1"),
            _event("page_view", 5, session="s2"),
        ]
        assert average_session_minutes(events) == 10.0

    def test_no_events(self) -> None:
        assert average_session_minutes([]) == 0.0

    @given(st.lists(st.floats(min_value=0, max_value=24 * 60), min_size=1, max_size=30))
    def test_bounded_by_cap(self, offsets: list[float]) -> None:
        events = [_event("page_view", m) for m in offsets]
        result = average_session_minutes(events)
        assert 0 <= result <= 30 * (len(offsets) - 1) + 0.01


class TestSummarizeDay:
    def test_counters(self) -> None:
        events = [
            _event("page_view", user="u1"),
            _event("page_view", session="s2", user="u1"),
            _event("page_view", session="s3"),
            _event("listing_view", listing_id=LISTING_A),
            _event("listing_post_start"),
            _event("post_start"),
            _event("listing_post_submit"),
            _event("listing_post_submit_success"),
            _event("listing_post_abandoned"),
        ]
        summary = summarize_day(date(2025, 3, 2), events)
        assert summary.dau == 1
        assert summary.visitors == 3
        assert summary.listing_views == 1
        assert summary.post_starts == 2
        assert summary.post_submits == 1
        assert summary.post_success == 1
        assert summary.post_abandoned == 1


class TestListingCounts:
    def test_views_and_impressions(self) -> None:
        events = [
            _event("listing_view", listing_id=LISTING_A),
            _event("listing_view", listing_id=LISTING_A),
            _event("listing_view", listing_id="not-a-uuid"),
            _event("listing_impression_batch", listing_ids=[LISTING_A, LISTING_B]),
            _event("listing_impression_batch", ids=[LISTING_B, 42]),
        ]
        assert listing_counts(events) == {LISTING_A: (2, 1), LISTING_B: (0, 2)}

    def test_ranking(self) -> None:
        ranked = rank_listings({LISTING_A: (2, 4), LISTING_B: (2, 10), "c": (5, 0)})
        assert [(t.listing_id, t.rank) for t in ranked] == [
            ("c", 1),
            (LISTING_B, 2),
            (LISTING_A, 3),
        ]
        assert ranked[0].ctr == 0.0
        assert ranked[2].ctr == 50.0

    def test_rank_limit(self) -> None:
        counts = {f"id-{i}": (i, 0) for i in range(20)}
        assert len(rank_listings(counts, limit=5)) == 5

    @given(
        st.integers(min_value=0, max_value=10_000), st.integers(min_value=0, max_value=10_000)
    )
    def test_ctr_never_negative(self, views: int, impressions: int) -> None:
        ctr = click_through_rate(views, impressions)
        assert ctr >= 0
        if impressions == 0:
            assert ctr == 0.0


class TestFilterCounts:
    def test_values_stringified(self) -> None:
        events = [
            _event("filter_apply", filters={"bedrooms": [2, 3], "neighborhood": "Midwood"}),
            _event("filter_apply", filters={"neighborhood": "Midwood"}),
            _event("filter_apply", filters="bad"),
            _event("page_view", filters={"ignored": True}),
        ]
        counts = filter_counts(events)
        assert counts == {("bedrooms", "[2, 3]"): 1, ("neighborhood", "Midwood"): 2}
        ranked = rank_filters(counts)
        assert [(f.filter_key, f.uses, f.rank) for f in ranked] == [
            ("neighborhood", 2, 1),
            ("bedrooms", 1, 2),
        ]
