"""
Tests for the Metrics Aggregator.

Run with: pytest tests/test_aggregator.py -v
"""

import itertools
import threading
from datetime import timedelta

import pytest

from src.metrics.aggregator import MetricsAggregator


@pytest.fixture
def clock(base_time):
    """Deterministic clock advancing one second per call."""
    ticks = itertools.count()
    return lambda: base_time + timedelta(seconds=next(ticks))


@pytest.fixture
def aggregator(clock) -> MetricsAggregator:
    return MetricsAggregator(max_history=5, max_events=10, top_k=2, clock=clock)


# =============================================================================
# TestRunningTotals
# =============================================================================


class TestRunningTotals:

    def test_single_snapshot(self, aggregator, snapshot_factory):
        """One snapshot sets every running total."""
        view = aggregator.ingest(
            snapshot_factory("a", events_triggered=4, session_duration=10.0, active_feature="search")
        )
        assert view.total_users == 1
        assert view.active_users == 1
        assert view.total_events == 4
        assert view.avg_session_duration == 10

    def test_replacing_snapshot_subtracts_previous(self, aggregator, snapshot_factory):
        """A user's new snapshot replaces, not adds to, the old one."""
        aggregator.ingest(snapshot_factory("a", events_triggered=4, session_duration=10.0))
        view = aggregator.ingest(
            snapshot_factory("a", minutes=1, events_triggered=6, session_duration=12.0, is_active=False)
        )
        assert view.total_users == 1
        assert view.active_users == 0
        assert view.total_events == 6
        assert view.avg_session_duration == 12

    def test_average_over_users(self, aggregator, snapshot_factory):
        """Session average is taken over current users."""
        aggregator.ingest(snapshot_factory("a", session_duration=10.0))
        view = aggregator.ingest(snapshot_factory("b", session_duration=15.0))
        assert view.avg_session_duration == round(12.5)

    def test_inconsistent_totals_rebuilt(self, aggregator, snapshot_factory):
        """Negative totals trigger a rebuild and skip the point."""
        aggregator.ingest(snapshot_factory("a", events_triggered=3))
        points_before = len(aggregator.time_series())
        aggregator._total_events = -100

        view = aggregator.ingest(snapshot_factory("b", events_triggered=2))

        assert view.total_events == 5
        assert len(view.time_series) == points_before


# =============================================================================
# TestTimeSeries
# =============================================================================


class TestTimeSeries:

    def test_unchanged_values_not_appended(self, aggregator, snapshot_factory):
        """Identical aggregate values are not appended twice."""
        aggregator.ingest(snapshot_factory("a", events_triggered=1))
        aggregator.ingest(snapshot_factory("a", minutes=1, events_triggered=1))
        assert len(aggregator.time_series()) == 1

    def test_changed_values_appended(self, aggregator, snapshot_factory):
        """A change in any aggregate value adds a point."""
        aggregator.ingest(snapshot_factory("a", events_triggered=1))
        aggregator.ingest(snapshot_factory("a", minutes=1, events_triggered=2))
        series = aggregator.time_series()
        assert [p.total_events for p in series] == [1, 2]
        assert series[0].timestamp < series[1].timestamp

    def test_ring_buffer_bounded(self, aggregator, snapshot_factory):
        """History keeps only the newest max_history points."""
        for i in range(8):
            aggregator.ingest(snapshot_factory("a", minutes=i, events_triggered=i + 1))
        series = aggregator.time_series()
        assert len(series) == 5
        assert series[-1].total_events == 8


# =============================================================================
# TestEventsAndFeatures
# =============================================================================


class TestEventsAndFeatures:

    def test_events_newest_first_and_bounded(self, aggregator, snapshot_factory):
        """Event log is newest first and capped."""
        for i in range(12):
            aggregator.ingest(snapshot_factory(f"u{i}", last_action="view"))

        events = aggregator.recent_events(limit=50)
        assert len(events) == 10
        assert events[0].user_id == "u11"
        assert events[0].action == "view"
        assert len(aggregator.recent_events(limit=3)) == 3

    def test_top_features(self, aggregator, snapshot_factory):
        """Top features rank by user count, missing features as Unknown."""
        aggregator.ingest(snapshot_factory("a", active_feature="search"))
        aggregator.ingest(snapshot_factory("b", active_feature="search"))
        aggregator.ingest(snapshot_factory("c", active_feature="cart"))
        aggregator.ingest(snapshot_factory("d"))

        top = aggregator.snapshot().top_features
        assert [(f.name, f.usage) for f in top] == [("search", 2), ("Unknown", 1)]

    def test_feature_usage_beyond_top_k(self, aggregator, snapshot_factory):
        """Asking for more than top_k recounts from the users."""
        aggregator.ingest(snapshot_factory("a", active_feature="search"))
        aggregator.ingest(snapshot_factory("b", active_feature="cart"))
        aggregator.ingest(snapshot_factory("c", active_feature="wishlist"))
        assert len(aggregator.feature_usage(3)) == 3

    def test_feature_moves_with_user(self, aggregator, snapshot_factory):
        """A user's feature change moves their count."""
        aggregator.ingest(snapshot_factory("a", active_feature="search"))
        aggregator.ingest(snapshot_factory("a", minutes=1, active_feature="cart"))
        assert [f.name for f in aggregator.feature_usage()] == ["cart"]


# =============================================================================
# TestFeatureTime
# =============================================================================


class TestFeatureTime:

    def test_page_view_and_click_totals(self, aggregator, snapshot_factory):
        """Page views and clicks are summed over the latest snapshot per user."""
        aggregator.ingest(snapshot_factory("a", page_views=3, click_count=7))
        aggregator.ingest(snapshot_factory("b", page_views=2, click_count=1))
        view = aggregator.ingest(snapshot_factory("a", minutes=1, page_views=5, click_count=9))

        assert view.total_page_views == 7
        assert view.total_clicks == 10

    def test_feature_stats_from_feature_time(self, aggregator, snapshot_factory):
        """Usage counts users reporting a feature; duration is average minutes."""
        aggregator.ingest(snapshot_factory("a", feature_time={"search": 120, "cart": 60}))
        aggregator.ingest(snapshot_factory("b", feature_time={"search": 240}))

        stats = {f.name: f for f in aggregator.feature_stats()}
        assert [f.name for f in aggregator.feature_stats()] == ["search", "cart"]
        assert stats["search"].total_usage == 2
        assert stats["search"].unique_users == 2
        assert stats["search"].avg_duration == 3.0
        assert stats["cart"].avg_duration == 1.0

    def test_feature_stats_follow_latest_snapshot(self, aggregator, snapshot_factory):
        """A newer snapshot replaces the user's earlier feature time."""
        aggregator.ingest(snapshot_factory("a", feature_time={"search": 600}))
        aggregator.ingest(snapshot_factory("a", minutes=1, feature_time={"wishlist": 30}))

        stats = aggregator.feature_stats()
        assert [(f.name, f.total_usage, f.avg_duration) for f in stats] == [("wishlist", 1, 0.5)]

    def test_feature_stats_in_view_dict(self, aggregator, snapshot_factory):
        """The serialized view carries page view, click and feature totals."""
        aggregator.ingest(
            snapshot_factory("a", page_views=4, click_count=2, feature_time={"search": 90})
        )
        metrics = aggregator.snapshot().to_dict()["aggregated_metrics"]

        assert metrics["total_page_views"] == 4
        assert metrics["total_clicks"] == 2
        assert metrics["feature_stats"] == [
            {"name": "search", "total_usage": 1, "unique_users": 1, "avg_duration": 1.5}
        ]

    def test_clear_drops_feature_time(self, aggregator, snapshot_factory):
        """Clearing resets the new totals along with the rest."""
        aggregator.ingest(snapshot_factory("a", page_views=4, feature_time={"search": 90}))
        aggregator.clear()
        view = aggregator.snapshot()
        assert view.total_page_views == 0
        assert view.feature_stats == ()


# =============================================================================
# TestViews
# =============================================================================


class TestViews:

    def test_view_is_immutable_snapshot(self, aggregator, snapshot_factory):
        """A view already handed out does not change on later writes."""
        aggregator.ingest(snapshot_factory("a"))
        view = aggregator.snapshot()
        aggregator.ingest(snapshot_factory("b"))

        assert view.total_users == 1
        assert aggregator.snapshot().total_users == 2

    def test_to_dict_shape(self, aggregator, snapshot_factory):
        """Serialized view has the dashboard keys."""
        aggregator.ingest(snapshot_factory("a", user_name="Ana"))
        data = aggregator.snapshot().to_dict()

        assert set(data) == {"aggregated_metrics", "user_metrics", "time_series",
                             "recent_events", "timestamp"}
        assert data["user_metrics"][0]["user_name"] == "Ana"
        assert data["recent_events"][0]["user_name"] == "Ana"

    def test_user_snapshot_and_counts(self, aggregator, snapshot_factory):
        """Per-user lookup and summary counts."""
        aggregator.ingest(snapshot_factory("a"))
        assert aggregator.user_snapshot("a").user_id == "a"
        assert aggregator.user_snapshot("z") is None
        assert aggregator.counts() == {"total_users": 1, "total_events": 1}

    def test_clear(self, aggregator, snapshot_factory):
        """Clearing empties users, totals and history."""
        aggregator.ingest(snapshot_factory("a", events_triggered=3))
        aggregator.clear()
        view = aggregator.snapshot()
        assert view.total_users == 0
        assert view.total_events == 0
        assert view.time_series == ()

    def test_concurrent_ingest_totals(self, snapshot_factory):
        """Concurrent writers lose no updates."""
        aggregator = MetricsAggregator()

        def feed(prefix):
            for i in range(50):
                aggregator.ingest(snapshot_factory(f"{prefix}{i}", events_triggered=1))

        threads = [threading.Thread(target=feed, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        view = aggregator.snapshot()
        assert view.total_users == 200
        assert view.total_events == 200
