"""
Configuration for the Reengage outreach system.

Centralizes detection thresholds, trend settings, decision policy,
collaborator credentials and pipeline sizing. Values come from dataclass
defaults, overridable through environment variables (python-dotenv).
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


@dataclass
class DetectorConfig:
    """Thresholds and score penalties for the signal detector."""

    cart_abandon_threshold: timedelta = timedelta(minutes=5)
    inactive_threshold: timedelta = timedelta(hours=24)

    # Penalties deducted from a starting score of 100
    cart_abandon_penalty: int = 60
    removal_penalties: tuple[int, int, int] = (20, 40, 70)  # tier 1, 2, 3+
    inactive_penalty: int = 50

    # Risk level cut-offs (score >= value)
    low_risk_score: int = 70
    medium_risk_score: int = 40
    high_risk_score: int = 20


@dataclass
class TrendConfig:
    """Settings for engagement trend analysis."""

    drop_threshold: float = 0.30
    minimum_data_points: int = 3
    recent_window: int = 3
    trend_change_threshold: float = 0.10
    sudden_drop_threshold: float = 0.50
    consecutive_decline_steps: int = 3
    retention: timedelta = timedelta(days=30)


@dataclass
class DecisionConfig:
    """Outreach decision policy."""

    forced_override_removals: int = 3
    abandonment_cart_value_threshold: float = 50.0
    removal_cart_value_threshold: float = 30.0
    fallback_confidence: int = 60
    forced_confidence: int = 100

    reasoning_timeout_seconds: float = 10.0
    reasoning_workers: int = 4
    max_recent_decisions: int = 200


@dataclass
class OutreachConfig:
    """Top-level configuration for the outreach pipeline."""

    detector: DetectorConfig = field(default_factory=DetectorConfig)
    trend: TrendConfig = field(default_factory=TrendConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)

    # Reasoning service (LLM)
    anthropic_api_key: str = ""
    model_name: str = "claude-sonnet-4-20250514"
    temperature: float = 0.3
    max_tokens: int = 1000

    # Telephony service
    vapi_api_key: str = ""
    vapi_phone_number_id: str = ""
    vapi_assistant_id: str = ""
    vapi_base_url: str = "https://api.vapi.ai"
    telephony_timeout_seconds: float = 15.0
    default_call_number: str = ""
    company_name: str = "our store"

    # Persistence
    database_url: str = ""

    # Metrics aggregator
    aggregator_max_history: int = 20
    aggregator_max_events: int = 100
    top_features: int = 5

    # Pipeline sizing
    pipeline_workers: int = 8
    # Snapshots accepted by workers but not yet evaluated, across all workers
    pipeline_backlog: int = 1_000
    lock_shards: int = 64
    ingestion_queue_size: int = 10_000

    @property
    def reasoning_configured(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def telephony_configured(self) -> bool:
        return bool(self.vapi_api_key and self.vapi_phone_number_id)


def get_outreach_config() -> OutreachConfig:
    """Load outreach config from environment variables."""
    detector = DetectorConfig(
        cart_abandon_threshold=timedelta(
            minutes=float(os.getenv("CART_ABANDON_THRESHOLD_MINUTES", "5"))
        ),
        inactive_threshold=timedelta(
            hours=float(os.getenv("INACTIVE_THRESHOLD_HOURS", "24"))
        ),
    )
    trend = TrendConfig(
        drop_threshold=float(os.getenv("ENGAGEMENT_DROP_THRESHOLD", "0.30")),
    )
    decision = DecisionConfig(
        reasoning_timeout_seconds=float(
            os.getenv("REASONING_TIMEOUT_SECONDS", "10")
        ),
    )
    return OutreachConfig(
        detector=detector,
        trend=trend,
        decision=decision,
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        model_name=os.getenv("REASONING_MODEL", "claude-sonnet-4-20250514"),
        vapi_api_key=os.getenv("VAPI_API_KEY", ""),
        vapi_phone_number_id=os.getenv("VAPI_PHONE_NUMBER_ID", ""),
        vapi_assistant_id=os.getenv("VAPI_ASSISTANT_ID", ""),
        default_call_number=os.getenv("DEFAULT_CALL_NUMBER", ""),
        company_name=os.getenv("COMPANY_NAME", "our store"),
        database_url=os.getenv("DATABASE_URL", ""),
        pipeline_backlog=int(os.getenv("PIPELINE_BACKLOG", "1000")),
    )
