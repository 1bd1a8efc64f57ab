"""
Tests for the Trend Analyzer and engagement series store.

Run with: pytest tests/test_trends.py -v
"""

from datetime import timedelta

import pytest

from src.outreach.config import TrendConfig
from src.outreach.errors import ValidationError
from src.outreach.models import DataPoint, PatternType, TrendDirection
from src.outreach.trends import EngagementSeriesStore, TrendAnalyzer, to_data_point


@pytest.fixture
def analyzer() -> TrendAnalyzer:
    return TrendAnalyzer(TrendConfig())


@pytest.fixture
def make_series(base_time):
    """Hourly series starting at the base time."""
    def _make(values):
        return [DataPoint(base_time + timedelta(hours=i), float(v)) for i, v in enumerate(values)]
    return _make


# =============================================================================
# TestAnalyze
# =============================================================================


class TestAnalyze:

    def test_detects_drop(self, analyzer, make_series):
        """A 70% fall against the baseline is a drop."""
        result = analyzer.analyze(make_series([100, 100, 100, 100, 30, 30, 30]))

        assert result.baseline == pytest.approx(100.0)
        assert result.recent_average == pytest.approx(30.0)
        assert result.drop_percentage == pytest.approx(70.0)
        assert result.has_dropped
        assert result.trend is TrendDirection.DECLINING
        assert result.data_points == 7
        assert not result.insufficient_data

    def test_short_baseline_sharp_fall(self, analyzer, make_series):
        """Baseline is the older half; a fall to ~35 from 100 is a 65% drop."""
        result = analyzer.analyze(make_series([100, 100, 40, 35, 30]))

        assert result.baseline == pytest.approx(100.0)
        assert result.recent_average == pytest.approx(35.0)
        assert result.drop_percentage == pytest.approx(65.0)
        assert result.has_dropped
        assert result.trend is TrendDirection.DECLINING
        assert PatternType.SUDDEN_DROP in {p.type for p in result.patterns}

    def test_strictly_increasing_series_is_improving(self, analyzer, make_series):
        """Rising engagement never counts as a drop."""
        result = analyzer.analyze(make_series([10, 20, 30, 40, 50]))

        assert not result.has_dropped
        assert result.drop_percentage < 0
        assert result.trend is TrendDirection.IMPROVING
        assert not result.insufficient_data

    def test_steady_series_has_no_drop(self, analyzer, make_series):
        """A flat series is stable with no patterns."""
        result = analyzer.analyze(make_series([50, 50, 50, 50]))
        assert not result.has_dropped
        assert result.drop_percentage == 0.0
        assert result.trend is TrendDirection.STABLE
        assert result.patterns == ()

    def test_drop_below_threshold_not_flagged(self, analyzer, make_series):
        """A 20% fall stays under the threshold."""
        result = analyzer.analyze(make_series([100, 100, 100, 80, 80, 80]))
        assert result.drop_percentage == pytest.approx(20.0)
        assert not result.has_dropped

    def test_insufficient_data(self, analyzer, make_series):
        """Fewer than three points are flagged, never dropped."""
        result = analyzer.analyze(make_series([90, 10]))
        assert result.insufficient_data
        assert not result.has_dropped
        assert result.data_points == 2

    def test_empty_series(self, analyzer):
        """An empty series has no last point."""
        result = analyzer.analyze([])
        assert result.insufficient_data
        assert result.last_point is None

    def test_zero_baseline_never_drops(self, analyzer, make_series):
        """A zero baseline cannot drop."""
        result = analyzer.analyze(make_series([0, 0, 5]))
        assert result.drop_percentage == 0.0
        assert not result.has_dropped

    def test_unsorted_input_is_ordered_by_time(self, analyzer, make_series):
        """Points are sorted before analysis."""
        points = make_series([100, 100, 100, 100, 30, 30, 30])
        result = analyzer.analyze(list(reversed(points)))
        assert result.has_dropped
        assert result.last_point == points[-1]

    def test_accepts_tuples_and_dicts(self, analyzer, base_time):
        """Tuples and dicts are accepted as points."""
        series = [
            (base_time, 10),
            {"timestamp": (base_time + timedelta(hours=1)).isoformat(), "value": 10},
            (base_time + timedelta(hours=2), 10),
        ]
        result = analyzer.analyze(series)
        assert result.data_points == 3
        assert result.baseline == pytest.approx(10.0)


# =============================================================================
# TestCalculateTrend
# =============================================================================


class TestCalculateTrend:

    def test_improving(self, analyzer, make_series):
        """A rising second half is improving."""
        assert analyzer.calculate_trend(make_series([10, 10, 20, 20])) is TrendDirection.IMPROVING

    def test_declining(self, analyzer, make_series):
        """A falling second half is declining."""
        assert analyzer.calculate_trend(make_series([20, 20, 10, 10])) is TrendDirection.DECLINING

    def test_small_change_is_stable(self, analyzer, make_series):
        """Changes under 10% are stable."""
        assert analyzer.calculate_trend(make_series([100, 100, 95, 95])) is TrendDirection.STABLE

    def test_single_point_is_stable(self, analyzer, make_series):
        """One point has no direction."""
        assert analyzer.calculate_trend(make_series([5])) is TrendDirection.STABLE

    def test_rise_from_zero_is_improving(self, analyzer, make_series):
        """Any rise from zero is improving."""
        assert analyzer.calculate_trend(make_series([0, 0, 5, 5])) is TrendDirection.IMPROVING


# =============================================================================
# TestDetectPatterns
# =============================================================================


class TestDetectPatterns:

    def test_sudden_drop(self, analyzer, make_series):
        """A single step down over 50% is a sudden drop."""
        points = make_series([100, 100, 30, 30])
        patterns = analyzer.detect_patterns(points)

        assert len(patterns) == 1
        assert patterns[0].type is PatternType.SUDDEN_DROP
        assert patterns[0].change == pytest.approx(-70.0)
        assert patterns[0].timestamp == points[2].timestamp

    def test_consecutive_decline(self, analyzer, make_series):
        """Three trailing declines are reported."""
        patterns = analyzer.detect_patterns(make_series([10, 9, 8, 7]))
        assert [p.type for p in patterns] == [PatternType.CONSECUTIVE_DECLINE]
        assert patterns[0].count == 3

    def test_interrupted_decline_not_reported(self, analyzer, make_series):
        """A flat step resets the decline run."""
        patterns = analyzer.detect_patterns(make_series([10, 9, 8, 8, 7]))
        assert patterns == []

    def test_steps_from_zero_are_skipped(self, analyzer, make_series):
        """Steps from zero are not compared."""
        assert analyzer.detect_patterns(make_series([0, 0, 0])) == []


# =============================================================================
# TestDataPoints
# =============================================================================


class TestDataPoints:

    def test_invalid_point_rejected(self):
        """A point without a timestamp is rejected."""
        with pytest.raises(ValidationError):
            to_data_point({"value": 3})

    def test_invalid_timestamp_rejected(self):
        """An unparseable timestamp is rejected."""
        with pytest.raises(ValidationError):
            to_data_point(("not a time", 3))

    def test_epoch_milliseconds(self):
        """Numeric timestamps are epoch milliseconds."""
        point = to_data_point((1_700_000_000_000, 4))
        assert point.timestamp.year == 2023
        assert point.value == 4.0


# =============================================================================
# TestEngagementSeriesStore
# =============================================================================


class TestEngagementSeriesStore:

    def test_record_returns_retained_count(self, base_time):
        """Recording returns the retained point count."""
        store = EngagementSeriesStore()
        assert store.record("u", 10, base_time) == 1
        assert store.record("u", 20, base_time + timedelta(hours=1)) == 2

    def test_expired_points_pruned(self, base_time):
        """Points past retention are pruned on write."""
        store = EngagementSeriesStore()
        store.record("u", 10, base_time)
        retained = store.record("u", 20, base_time + timedelta(days=31))

        assert retained == 1
        assert [p.value for p in store.series("u")] == [20.0]

    def test_series_kept_in_time_order(self, base_time):
        """Late points are slotted into time order."""
        store = EngagementSeriesStore()
        store.record("u", 2, base_time + timedelta(hours=1))
        store.record("u", 1, base_time)
        assert [p.value for p in store.series("u")] == [1.0, 2.0]

    def test_missing_user_rejected(self):
        """Recording needs a user id."""
        with pytest.raises(ValidationError):
            EngagementSeriesStore().record("", 5)

    def test_clear(self, base_time):
        """Clearing drops the user's series."""
        store = EngagementSeriesStore()
        store.record("u", 1, base_time)
        store.clear("u")
        assert store.series("u") == []
