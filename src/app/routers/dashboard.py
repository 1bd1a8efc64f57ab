"""Dashboard API endpoints (read-only)."""

import logging

from fastapi import APIRouter, Depends, Query

from src.metrics.aggregator import MetricsAggregator
from src.outreach.pipeline import OutreachPipeline

from ..dependencies import get_aggregator, get_pipeline
from ..schemas import (
    AggregatePoint,
    DashboardSnapshot,
    FeatureStats,
    FeatureUsage,
    OutreachStats,
    StreamEvent,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/snapshot", response_model=DashboardSnapshot)
async def get_snapshot(
    max_events: int = Query(50, ge=0, le=100),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> DashboardSnapshot:
    """Get the current aggregated metrics view."""
    return DashboardSnapshot(**aggregator.snapshot().to_dict(max_events=max_events))


@router.get("/timeseries", response_model=list[AggregatePoint])
async def get_timeseries(
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> list[AggregatePoint]:
    """Get the deduplicated aggregate time series, oldest first."""
    return [AggregatePoint(**p.to_dict()) for p in aggregator.time_series()]


@router.get("/events", response_model=list[StreamEvent])
async def get_events(
    limit: int = Query(50, ge=1, le=100),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> list[StreamEvent]:
    """Get recent activity events, newest first."""
    return [StreamEvent(**e.to_dict()) for e in aggregator.recent_events(limit)]


@router.get("/features", response_model=list[FeatureUsage])
async def get_features(
    k: int = Query(5, ge=1, le=50),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> list[FeatureUsage]:
    """Get the most used features across current user snapshots."""
    return [FeatureUsage.model_validate(f) for f in aggregator.feature_usage(k)]


@router.get("/features/stats", response_model=list[FeatureStats])
async def get_feature_stats(
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> list[FeatureStats]:
    """Get time spent per feature, most used first."""
    return [FeatureStats(**f.to_dict()) for f in aggregator.feature_stats()]


@router.get("/outreach", response_model=OutreachStats)
async def get_outreach_stats(
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> OutreachStats:
    """Get decision analytics and call statistics."""
    return OutreachStats(
        **pipeline.stats(),
        failed_dispatches=[f.to_dict() for f in pipeline.orchestrator.failed_dispatches()],
    )
