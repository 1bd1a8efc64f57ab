"""
Metrics Aggregator: live, windowed view of storefront activity.

Keeps the latest snapshot per user with running totals updated on every
ingest, a deduplicated ring buffer of aggregate points, a newest-first
event log, top feature usage and per-feature time stats. Every write
publishes a fresh immutable AggregatedView; readers just pick up the
current one and never lock.
"""

import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.outreach.errors import AggregationInconsistency
from src.outreach.models import TelemetrySnapshot

logger = logging.getLogger("reengage.metrics")

UNKNOWN_FEATURE = "Unknown"


@dataclass(frozen=True)
class AggregatePoint:
    """One point of the dashboard time series."""
    timestamp: datetime
    active_users: int
    total_events: int
    avg_engagement: int

    def same_values(self, other: "AggregatePoint | None") -> bool:
        return (
            other is not None
            and self.active_users == other.active_users
            and self.total_events == other.total_events
            and self.avg_engagement == other.avg_engagement
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "active_users": self.active_users,
            "total_events": self.total_events,
            "avg_engagement": self.avg_engagement,
        }


@dataclass(frozen=True)
class StreamEvent:
    type: str
    user_id: str
    timestamp: datetime
    user_name: str | None = None
    feature: str | None = None
    action: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "timestamp": self.timestamp.isoformat(),
            "feature": self.feature,
            "action": self.action,
        }


@dataclass(frozen=True)
class FeatureUsage:
    name: str
    usage: int


@dataclass(frozen=True)
class FeatureStats:
    """Time spent in one feature across the latest user snapshots."""
    name: str
    total_usage: int      # snapshots reporting time in the feature
    unique_users: int
    total_seconds: float

    @property
    def avg_duration(self) -> float:
        """Average minutes per use, rounded to two places."""
        if not self.total_usage:
            return 0.0
        return round(self.total_seconds / self.total_usage / 60, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total_usage": self.total_usage,
            "unique_users": self.unique_users,
            "avg_duration": self.avg_duration,
        }


@dataclass(frozen=True)
class AggregatedView:
    """Immutable snapshot of the aggregator state at one instant."""

    total_users: int = 0
    active_users: int = 0
    total_events: int = 0
    total_page_views: int = 0
    total_clicks: int = 0
    avg_session_duration: int = 0
    top_features: tuple[FeatureUsage, ...] = ()
    feature_stats: tuple[FeatureStats, ...] = ()
    time_series: tuple[AggregatePoint, ...] = ()
    recent_events: tuple[StreamEvent, ...] = ()
    users: tuple[TelemetrySnapshot, ...] = ()
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self, max_events: int = 50) -> dict[str, Any]:
        return {
            "aggregated_metrics": {
                "total_users": self.total_users,
                "active_users": self.active_users,
                "total_events": self.total_events,
                "total_page_views": self.total_page_views,
                "total_clicks": self.total_clicks,
                "avg_session_duration": self.avg_session_duration,
                "top_features": [{"name": f.name, "usage": f.usage} for f in self.top_features],
                "feature_stats": [f.to_dict() for f in self.feature_stats],
            },
            "user_metrics": [u.to_dict() for u in self.users],
            "time_series": [p.to_dict() for p in self.time_series],
            "recent_events": [e.to_dict() for e in self.recent_events[:max_events]],
            "timestamp": self.generated_at.isoformat(),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricsAggregator:
    """Single-writer aggregate store with lock-free reads.

    Args:
        max_history: Aggregate points kept in the ring buffer.
        max_events: Events kept in the newest-first log.
        top_k: Number of features reported as top features.
        clock: Source of timestamps for points and events.
    """

    def __init__(
        self,
        max_history: int = 20,
        max_events: int = 100,
        top_k: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_history = max_history
        self.max_events = max_events
        self.top_k = top_k
        self._clock = clock

        self._write_lock = threading.Lock()
        self._latest: dict[str, TelemetrySnapshot] = {}
        self._history: deque[AggregatePoint] = deque(maxlen=max_history)
        self._events: deque[StreamEvent] = deque(maxlen=max_events)
        self._features: Counter = Counter()
        self._feature_uses: Counter = Counter()
        self._feature_seconds: Counter = Counter()
        self._active = 0
        self._total_events = 0
        self._total_page_views = 0
        self._total_clicks = 0
        self._total_session = 0.0
        self._view = AggregatedView(generated_at=clock())

    # =========================================================================
    # Writes
    # =========================================================================

    def ingest(self, snapshot: TelemetrySnapshot) -> AggregatedView:
        """Fold one snapshot into the aggregates and publish a new view."""
        now = self._clock()
        with self._write_lock:
            previous = self._latest.get(snapshot.user_id)
            if previous is not None:
                self._apply(previous, sign=-1)
            self._apply(snapshot, sign=1)
            self._latest[snapshot.user_id] = snapshot

            self._events.appendleft(
                StreamEvent(
                    type="user_activity",
                    user_id=snapshot.user_id,
                    user_name=snapshot.user_name,
                    timestamp=now,
                    feature=snapshot.active_feature,
                    action=snapshot.last_action,
                )
            )

            try:
                self._check_totals()
                self._append_point(now)
            except AggregationInconsistency as e:
                logger.error(f"{e}; dropping point and rebuilding totals")
                self._rebuild_totals()

            self._publish(now)
            view = self._view

        logger.debug(f"Ingested metrics for {snapshot.user_id}")
        return view

    def _apply(self, snapshot: TelemetrySnapshot, sign: int) -> None:
        self._active += sign * int(snapshot.is_active)
        self._total_events += sign * snapshot.events_triggered
        self._total_page_views += sign * snapshot.page_views
        self._total_clicks += sign * snapshot.click_count
        self._total_session += sign * snapshot.session_duration
        feature = snapshot.active_feature or UNKNOWN_FEATURE
        self._features[feature] += sign
        if self._features[feature] <= 0:
            del self._features[feature]
        for name, seconds in snapshot.feature_time.items():
            self._feature_uses[name] += sign
            self._feature_seconds[name] += sign * seconds
            if self._feature_uses[name] <= 0:
                del self._feature_uses[name]
                del self._feature_seconds[name]

    def _check_totals(self) -> None:
        counters = (self._active, self._total_events, self._total_page_views, self._total_clicks)
        if min(counters) < 0 or self._total_session < -1e-9:
            raise AggregationInconsistency(
                f"negative running totals (active={self._active}, "
                f"events={self._total_events}, page_views={self._total_page_views}, "
                f"clicks={self._total_clicks}, session={self._total_session:.2f})"
            )

    def _rebuild_totals(self) -> None:
        self._active = 0
        self._total_events = 0
        self._total_page_views = 0
        self._total_clicks = 0
        self._total_session = 0.0
        self._features = Counter()
        self._feature_uses = Counter()
        self._feature_seconds = Counter()
        for snapshot in self._latest.values():
            self._apply(snapshot, sign=1)

    def _avg_engagement(self) -> int:
        if not self._latest:
            return 0
        return round(self._total_session / len(self._latest))

    def _append_point(self, now: datetime) -> None:
        point = AggregatePoint(
            timestamp=now,
            active_users=self._active,
            total_events=self._total_events,
            avg_engagement=self._avg_engagement(),
        )
        last = self._history[-1] if self._history else None
        if not point.same_values(last):
            self._history.append(point)

    def _top_features(self, k: int) -> tuple[FeatureUsage, ...]:
        ranked = sorted(self._features.items(), key=lambda kv: (-kv[1], kv[0]))
        return tuple(FeatureUsage(name, count) for name, count in ranked[:k])

    def _feature_stats(self) -> tuple[FeatureStats, ...]:
        ranked = sorted(self._feature_uses.items(), key=lambda kv: (-kv[1], kv[0]))
        return tuple(
            FeatureStats(name, uses, uses, max(0.0, self._feature_seconds[name]))
            for name, uses in ranked
        )

    def _publish(self, now: datetime) -> None:
        self._view = AggregatedView(
            total_users=len(self._latest),
            active_users=self._active,
            total_events=self._total_events,
            total_page_views=self._total_page_views,
            total_clicks=self._total_clicks,
            avg_session_duration=self._avg_engagement(),
            top_features=self._top_features(self.top_k),
            feature_stats=self._feature_stats(),
            time_series=tuple(self._history),
            recent_events=tuple(self._events),
            users=tuple(self._latest.values()),
            generated_at=now,
        )

    def clear(self) -> None:
        """Drop all users, events and history."""
        with self._write_lock:
            self._latest.clear()
            self._history.clear()
            self._events.clear()
            self._rebuild_totals()
            self._publish(self._clock())
        logger.info("All metrics cleared")

    # =========================================================================
    # Reads (lock-free)
    # =========================================================================

    def snapshot(self) -> AggregatedView:
        return self._view

    def time_series(self) -> tuple[AggregatePoint, ...]:
        return self._view.time_series

    def recent_events(self, limit: int = 50) -> tuple[StreamEvent, ...]:
        return self._view.recent_events[:limit]

    def feature_usage(self, k: int | None = None) -> tuple[FeatureUsage, ...]:
        view = self._view
        if k is None or k <= len(view.top_features):
            return view.top_features[:k] if k is not None else view.top_features
        counts = Counter(u.active_feature or UNKNOWN_FEATURE for u in view.users)
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return tuple(FeatureUsage(name, count) for name, count in ranked[:k])

    def feature_stats(self) -> tuple[FeatureStats, ...]:
        """Per-feature time stats from featureTime, most used first."""
        return self._view.feature_stats

    def user_snapshot(self, user_id: str) -> TelemetrySnapshot | None:
        for user in self._view.users:
            if user.user_id == user_id:
                return user
        return None

    def counts(self) -> dict[str, int]:
        view = self._view
        return {"total_users": view.total_users, "total_events": len(view.recent_events)}
