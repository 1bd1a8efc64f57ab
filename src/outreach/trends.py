"""
Trend Analyzer: baseline-vs-recent drop detection and pattern finding
over per-user engagement time series.

Analysis functions are pure; EngagementSeriesStore keeps the bounded
per-user series the pipeline feeds them from.
"""

import logging
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import numpy as np

from .config import TrendConfig
from .errors import ValidationError
from .models import (
    DataPoint,
    Pattern,
    PatternType,
    TrendAnalysis,
    TrendDirection,
    parse_timestamp,
)

logger = logging.getLogger("reengage.outreach.trends")

SeriesInput = Iterable[DataPoint | tuple | dict[str, Any]]


def to_data_point(item: DataPoint | tuple | dict[str, Any]) -> DataPoint:
    """Normalize a DataPoint, ``(timestamp, value)`` tuple or mapping."""
    if isinstance(item, DataPoint):
        return item
    try:
        if isinstance(item, dict):
            return DataPoint(parse_timestamp(item["timestamp"]), float(item["value"]))
        timestamp, value = item
        return DataPoint(parse_timestamp(timestamp), float(value))
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid data point {item!r}: {e}") from e


def _sorted_points(series: SeriesInput) -> list[DataPoint]:
    return sorted((to_data_point(p) for p in series), key=lambda p: p.timestamp)


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return float(np.mean(values))


class TrendAnalyzer:
    """Stateless analyzer for engagement series."""

    def __init__(self, config: TrendConfig | None = None):
        self.config = config or TrendConfig()

    def analyze(self, series: SeriesInput) -> TrendAnalysis:
        """Compare the recent average against the older-half baseline.

        Args:
            series: Data points in any order.

        Returns:
            TrendAnalysis. Series shorter than ``minimum_data_points`` come
            back flagged ``insufficient_data`` with no drop.
        """
        points = _sorted_points(series)
        cfg = self.config

        if len(points) < cfg.minimum_data_points:
            return TrendAnalysis(
                baseline=0.0,
                recent_average=0.0,
                drop_percentage=0.0,
                has_dropped=False,
                trend=TrendDirection.STABLE,
                data_points=len(points),
                insufficient_data=True,
                last_point=points[-1] if points else None,
            )

        values = [p.value for p in points]
        baseline = _mean(values[: len(values) // 2])
        recent = _mean(values[-cfg.recent_window:])

        if baseline > 0:
            drop = (baseline - recent) / baseline
        else:
            drop = 0.0
        has_dropped = baseline > 0 and drop >= cfg.drop_threshold and recent < baseline

        return TrendAnalysis(
            baseline=baseline,
            recent_average=recent,
            drop_percentage=round(drop * 100, 4),
            has_dropped=has_dropped,
            trend=self.calculate_trend(points),
            data_points=len(points),
            patterns=tuple(self.detect_patterns(points)),
            last_point=points[-1],
        )

    def calculate_trend(self, series: SeriesInput) -> TrendDirection:
        """Classify direction by comparing first-half and second-half means."""
        values = [p.value for p in _sorted_points(series)]
        if len(values) < 2:
            return TrendDirection.STABLE

        half = len(values) // 2
        first = _mean(values[:half])
        second = _mean(values[half:])
        threshold = self.config.trend_change_threshold

        if first <= 0:
            return TrendDirection.IMPROVING if second > first else TrendDirection.STABLE

        change = (second - first) / first
        if change < -threshold:
            return TrendDirection.DECLINING
        if change > threshold:
            return TrendDirection.IMPROVING
        return TrendDirection.STABLE

    def detect_patterns(self, series: SeriesInput) -> list[Pattern]:
        """Find sudden drops and a trailing run of consecutive declines."""
        points = _sorted_points(series)
        cfg = self.config
        patterns: list[Pattern] = []

        for prev, cur in zip(points, points[1:]):
            if prev.value <= 0:
                continue
            change = (cur.value - prev.value) / prev.value
            if change < -cfg.sudden_drop_threshold:
                patterns.append(
                    Pattern(
                        type=PatternType.SUDDEN_DROP,
                        timestamp=cur.timestamp,
                        change=round(change * 100, 4),
                    )
                )

        # Only the trailing run counts; any non-decrease resets it
        declines = 0
        for prev, cur in zip(points, points[1:]):
            declines = declines + 1 if cur.value < prev.value else 0
        if declines >= cfg.consecutive_decline_steps:
            patterns.append(Pattern(type=PatternType.CONSECUTIVE_DECLINE, count=declines))

        return patterns


class EngagementSeriesStore:
    """Bounded per-user engagement series.

    Points older than the retention window, measured from the newest point
    in the series, are pruned on every write.
    """

    def __init__(self, config: TrendConfig | None = None):
        self.config = config or TrendConfig()
        self._series: dict[str, list[DataPoint]] = {}
        self._lock = threading.Lock()

    def record(
        self,
        user_id: str,
        value: float,
        timestamp: datetime | str | None = None,
    ) -> int:
        """Append a point and prune expired ones.

        Returns:
            Number of points retained for the user.
        """
        if not user_id:
            raise ValidationError("Engagement point is missing a user id")
        point = to_data_point(
            (timestamp if timestamp is not None else datetime.now().astimezone(), value)
        )

        with self._lock:
            points = self._series.setdefault(user_id, [])
            points.append(point)
            points.sort(key=lambda p: p.timestamp)
            cutoff = points[-1].timestamp - self.config.retention
            kept = [p for p in points if p.timestamp > cutoff]
            if len(kept) != len(points):
                logger.debug(f"{user_id}: pruned {len(points) - len(kept)} expired points")
            self._series[user_id] = kept
            return len(kept)

    def series(self, user_id: str) -> list[DataPoint]:
        with self._lock:
            return list(self._series.get(user_id, ()))

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._series.pop(user_id, None)
