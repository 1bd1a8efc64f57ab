"""
Streaming metrics for the live dashboard.

Usage:
    from src.metrics import MetricsAggregator

    aggregator = MetricsAggregator()
    aggregator.ingest(snapshot)
    view = aggregator.snapshot()
"""

from .aggregator import (
    AggregatedView,
    AggregatePoint,
    FeatureUsage,
    MetricsAggregator,
    StreamEvent,
)

__all__ = [
    "AggregatedView",
    "AggregatePoint",
    "FeatureUsage",
    "MetricsAggregator",
    "StreamEvent",
]
