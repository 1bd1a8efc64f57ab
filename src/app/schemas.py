"""
Pydantic response and request models for the Reengage API.

Every endpoint has a typed schema. Enum-valued fields are exposed as
their string values.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Telemetry
# =============================================================================


class TelemetryAccepted(BaseModel):
    status: str = "accepted"
    user_id: str
    queued: bool


class SignalSet(BaseModel):
    user_id: str
    cart_abandoned_long: bool
    cart_item_removed: bool
    long_inactive: bool
    cart_removal_count: int
    engagement_score: int
    risk_level: str
    reasons: list[str]


class Decision(BaseModel):
    user_id: str
    should_call: bool
    confidence: int
    reasoning: str
    urgency: str
    source: str
    reason_code: str
    alternative_action: str | None = None
    decided_at: str


class Dispatch(BaseModel):
    user_id: str
    success: bool
    dispatch_id: str | None = None
    error: str | None = None
    rejected: bool = False
    pending: bool = False


class TrendPattern(BaseModel):
    type: str
    timestamp: str | None = None
    change: float | None = None
    count: int | None = None


class Trend(BaseModel):
    baseline: float
    recent_average: float
    drop_percentage: float
    has_dropped: bool
    trend: str
    data_points: int
    patterns: list[TrendPattern]
    insufficient_data: bool


class ProcessResponse(BaseModel):
    user_id: str
    signals: SignalSet
    decision: Decision
    trend: Trend | None = None
    dispatch: Dispatch | None = None


# =============================================================================
# Dashboard
# =============================================================================


class FeatureUsage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    usage: int


class FeatureStats(BaseModel):
    name: str
    total_usage: int
    unique_users: int
    avg_duration: float = Field(..., description="Average minutes per use")


class AggregatedMetrics(BaseModel):
    total_users: int
    active_users: int
    total_events: int
    total_page_views: int
    total_clicks: int
    avg_session_duration: int
    top_features: list[FeatureUsage]
    feature_stats: list[FeatureStats]


class AggregatePoint(BaseModel):
    timestamp: str
    active_users: int
    total_events: int
    avg_engagement: int


class StreamEvent(BaseModel):
    type: str
    user_id: str
    user_name: str | None = None
    timestamp: str
    feature: str | None = None
    action: str | None = None


class DashboardSnapshot(BaseModel):
    aggregated_metrics: AggregatedMetrics
    user_metrics: list[dict[str, Any]]
    time_series: list[AggregatePoint]
    recent_events: list[StreamEvent]
    timestamp: str


class OutreachStats(BaseModel):
    tracked_users: int
    phases: dict[str, int]
    decisions: dict[str, Any]
    calls: dict[str, Any]
    failed_dispatches: list[dict[str, Any]]


# =============================================================================
# Users
# =============================================================================


class UserState(BaseModel):
    user_id: str
    decision_state: dict[str, Any] | None = None
    cart_removal_count: int
    series_points: int
    call_record: dict[str, Any] | None = None


class EngagementPointRequest(BaseModel):
    value: float = Field(ge=0)
    timestamp: str | None = None


class EngagementPointResponse(BaseModel):
    user_id: str
    points: int


class UserCalls(BaseModel):
    user_id: str
    call_record: dict[str, Any] | None = None
    failed_dispatch: dict[str, Any] | None = None


# =============================================================================
# Admin
# =============================================================================


class IngestionStatus(BaseModel):
    running: bool
    queued: int
    backlog: int = Field(..., description="Snapshots waiting on a decision worker")
    accepted: int
    dropped: int
    processed: int
    invalid: int


class ClearResponse(BaseModel):
    user_id: str
    cleared: bool = True


# =============================================================================
# Calls
# =============================================================================


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    tracked: bool = Field(..., description="Whether the event was recorded")


class CallDetails(BaseModel):
    call_id: str
    status: dict[str, Any] | None = Field(None, description="Latest status seen through the webhook")
    call: dict[str, Any] | None = Field(None, description="Details from the telephony provider")
    error: str | None = None


# =============================================================================
# Health & Errors
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    ingestion_running: bool
    reasoning_configured: bool
    telephony_configured: bool
    call_history: str
    checks: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
