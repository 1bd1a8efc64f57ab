"""
Data model for the outreach pipeline.

Snapshots, signal sets, trend analyses, decisions, dispatch results and
call records. Snapshots, decisions and call records are immutable once
created; per-user running state lives in the detector and state stores.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import ValidationError


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DecisionSource(str, Enum):
    """Where an outreach decision came from."""
    REASONING_SERVICE = "reasoning-service"
    FALLBACK = "fallback"
    FORCED_OVERRIDE = "forced-override"
    POLICY = "policy"  # short-circuit: already called, or nothing to act on


class TrendDirection(str, Enum):
    DECLINING = "declining"
    STABLE = "stable"
    IMPROVING = "improving"


class PatternType(str, Enum):
    SUDDEN_DROP = "sudden_drop"
    CONSECUTIVE_DECLINE = "consecutive_decline"


# camelCase keys sent by the storefront tracker -> dataclass fields
_SNAPSHOT_ALIASES = {
    "userId": "user_id",
    "cartItems": "cart_items",
    "cartValue": "cart_value",
    "checkoutStarted": "checkout_started",
    "orderCompleted": "order_completed",
    "activeFeature": "active_feature",
    "lastAction": "last_action",
    "userName": "user_name",
    "lastCategory": "last_category",
    "isActive": "is_active",
    "sessionDuration": "session_duration",
    "eventsTriggered": "events_triggered",
    "pageViews": "page_views",
    "clickCount": "click_count",
    "featureTime": "feature_time",
}


def parse_timestamp(value: Any) -> datetime:
    """Coerce a timestamp into a timezone-aware datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings
    (including a trailing ``Z``) and numbers as epoch milliseconds.

    Raises:
        ValidationError: If the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise ValidationError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _feature_seconds(value: Any) -> dict[str, float]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"featureTime must be an object, got {type(value).__name__}")
    return {str(feature): float(seconds) for feature, seconds in value.items()}


@dataclass(frozen=True)
class TelemetrySnapshot:
    """One user's observable storefront state at a point in time."""

    user_id: str
    timestamp: datetime
    cart_items: int = 0
    cart_value: float = 0.0
    checkout_started: bool = False
    order_completed: bool = False
    active_feature: str | None = None
    last_action: str | None = None

    # Optional tracker fields
    user_name: str | None = None
    email: str | None = None
    phone: str | None = None
    last_category: str | None = None
    is_active: bool = True
    session_duration: float = 0.0  # minutes
    events_triggered: int = 0
    page_views: int = 0
    click_count: int = 0
    feature_time: dict[str, float] = field(default_factory=dict, hash=False)  # seconds per feature

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise ValidationError("Telemetry snapshot is missing a user id")
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))
        if self.cart_items < 0:
            raise ValidationError(
                f"{self.user_id}: cart_items must be >= 0, got {self.cart_items}"
            )
        if self.cart_value < 0:
            raise ValidationError(
                f"{self.user_id}: cart_value must be >= 0, got {self.cart_value}"
            )
        if self.events_triggered < 0 or self.session_duration < 0:
            raise ValidationError(
                f"{self.user_id}: session counters must be >= 0"
            )
        if self.page_views < 0 or self.click_count < 0:
            raise ValidationError(
                f"{self.user_id}: page_views and click_count must be >= 0"
            )
        for feature, seconds in self.feature_time.items():
            if not isinstance(feature, str) or seconds < 0:
                raise ValidationError(
                    f"{self.user_id}: invalid feature time {feature!r}: {seconds!r}"
                )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TelemetrySnapshot":
        """Build a snapshot from a tracker payload (camelCase or snake_case).

        Unknown keys are ignored. A missing timestamp defaults to now.

        Raises:
            ValidationError: If the payload is not a mapping or is malformed.
        """
        if not isinstance(payload, dict):
            raise ValidationError(
                f"Telemetry payload must be an object, got {type(payload).__name__}"
            )

        data = {_SNAPSHOT_ALIASES.get(k, k): v for k, v in payload.items()}
        if not data.get("user_id"):
            raise ValidationError("Telemetry snapshot is missing a user id")

        timestamp = data.get("timestamp")
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        try:
            return cls(
                user_id=str(data["user_id"]),
                timestamp=timestamp,
                cart_items=int(data.get("cart_items") or 0),
                cart_value=float(data.get("cart_value") or 0.0),
                checkout_started=_as_bool(data.get("checkout_started", False)),
                order_completed=_as_bool(data.get("order_completed", False)),
                active_feature=data.get("active_feature"),
                last_action=data.get("last_action"),
                user_name=data.get("user_name"),
                email=data.get("email"),
                phone=data.get("phone"),
                last_category=data.get("last_category"),
                is_active=_as_bool(data.get("is_active", True)),
                session_duration=float(data.get("session_duration") or 0.0),
                events_triggered=int(data.get("events_triggered") or 0),
                page_views=int(data.get("page_views") or 0),
                click_count=int(data.get("click_count") or 0),
                feature_time=_feature_seconds(data.get("feature_time")),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Malformed telemetry payload: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class BehaviorSignalSet:
    """Disengagement signals derived from one snapshot."""

    user_id: str
    cart_abandoned_long: bool = False
    cart_item_removed: bool = False
    long_inactive: bool = False
    cart_removal_count: int = 0
    engagement_score: int = 100
    risk_level: RiskLevel = RiskLevel.LOW
    reasons: list[str] = field(default_factory=list)

    @property
    def has_disengagement(self) -> bool:
        return self.cart_abandoned_long or self.cart_item_removed or self.long_inactive

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "cart_abandoned_long": self.cart_abandoned_long,
            "cart_item_removed": self.cart_item_removed,
            "long_inactive": self.long_inactive,
            "cart_removal_count": self.cart_removal_count,
            "engagement_score": self.engagement_score,
            "risk_level": self.risk_level.value,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class DataPoint:
    """A single (timestamp, value) entry of an engagement time series."""
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class Pattern:
    """A detected engagement pattern."""
    type: PatternType
    timestamp: datetime | None = None
    change: float | None = None     # percent change of the step
    count: int | None = None        # number of declining steps

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "change": self.change,
            "count": self.count,
        }


@dataclass(frozen=True)
class TrendAnalysis:
    """Result of analyzing one engagement series."""
    baseline: float
    recent_average: float
    drop_percentage: float          # percent, e.g. 65.0
    has_dropped: bool
    trend: TrendDirection
    data_points: int
    patterns: tuple[Pattern, ...] = ()
    insufficient_data: bool = False
    last_point: DataPoint | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseline": self.baseline,
            "recent_average": self.recent_average,
            "drop_percentage": self.drop_percentage,
            "has_dropped": self.has_dropped,
            "trend": self.trend.value,
            "data_points": self.data_points,
            "patterns": [p.to_dict() for p in self.patterns],
            "insufficient_data": self.insufficient_data,
        }


@dataclass(frozen=True)
class OutreachDecision:
    """Whether to call a user, and why.

    ``reasoning`` is free text for audit and display; code branches on
    ``should_call``, ``source`` and ``reason_code`` only.
    """

    user_id: str
    should_call: bool
    confidence: int
    reasoning: str
    urgency: Urgency
    source: DecisionSource
    reason_code: str
    alternative_action: str | None = None
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "should_call": self.should_call,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "urgency": self.urgency.value,
            "source": self.source.value,
            "reason_code": self.reason_code,
            "alternative_action": self.alternative_action,
            "decided_at": self.decided_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutreachDecision":
        return cls(
            user_id=data["user_id"],
            should_call=bool(data["should_call"]),
            confidence=int(data["confidence"]),
            reasoning=data.get("reasoning", ""),
            urgency=Urgency(data["urgency"]),
            source=DecisionSource(data["source"]),
            reason_code=data["reason_code"],
            alternative_action=data.get("alternative_action"),
            decided_at=parse_timestamp(data["decided_at"]),
        )


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one outreach dispatch attempt."""

    user_id: str
    success: bool
    dispatch_id: str | None = None
    error: str | None = None
    rejected: bool = False  # refused by policy before any external call
    pending: bool = False   # still running on the telephony worker when dispatch returned

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DispatchResult":
        return cls(
            user_id=data["user_id"],
            success=bool(data["success"]),
            dispatch_id=data.get("dispatch_id"),
            error=data.get("error"),
            rejected=bool(data.get("rejected", False)),
            pending=bool(data.get("pending", False)),
        )


@dataclass(frozen=True)
class CallRecord:
    """Immutable history entry for the single call placed to a user."""

    user_id: str
    created_at: datetime
    decision: OutreachDecision
    dispatch: DispatchResult
    destination: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "decision": self.decision.to_dict(),
            "dispatch": self.dispatch.to_dict(),
            "destination": self.destination,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CallRecord":
        return cls(
            user_id=data["user_id"],
            created_at=parse_timestamp(data["created_at"]),
            decision=OutreachDecision.from_dict(data["decision"]),
            dispatch=DispatchResult.from_dict(data["dispatch"]),
            destination=data.get("destination"),
        )
