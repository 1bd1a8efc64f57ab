"""
Outreach pipeline for Reengage, a storefront re-engagement system.

Detects disengagement in live storefront telemetry, tracks engagement
trends, decides whether a shopper gets a single proactive phone call and
dispatches that call through an external telephony service.

The assembled pipeline lives in ``src.outreach.pipeline`` (it also feeds
``src.metrics``, which depends on this package's models):

    from src.outreach.pipeline import build_pipeline

For CLI usage:
    python -m src.outreach.replay telemetry.jsonl   # Replay recorded telemetry
    python -m src.data.database init                # Create the call history table
"""

# Configuration
from .config import (
    DecisionConfig,
    DetectorConfig,
    OutreachConfig,
    TrendConfig,
    get_outreach_config,
)

# Errors
from .errors import (
    AggregationInconsistency,
    CollaboratorUnavailable,
    PolicyViolation,
    ReasoningResponseError,
    ReengageError,
    ValidationError,
)

# Data model
from .models import (
    BehaviorSignalSet,
    CallRecord,
    DataPoint,
    DecisionSource,
    DispatchResult,
    OutreachDecision,
    Pattern,
    PatternType,
    RiskLevel,
    TelemetrySnapshot,
    TrendAnalysis,
    TrendDirection,
    Urgency,
)

# Components
from .call_history import CallRecordStore, SqlCallRecordStore
from .decision import DecisionEngine, fallback_decision
from .orchestrator import OutreachOrchestrator
from .reasoning import AnthropicReasoningClient, ReasoningRequest, ReasoningResponse
from .signals import SignalDetector
from .state import DecisionStateStore, KeyedLocks, UserPhase
from .telephony import VapiTelephonyClient, build_call_script
from .trends import EngagementSeriesStore, TrendAnalyzer

__all__ = [
    # Config
    "DecisionConfig",
    "DetectorConfig",
    "OutreachConfig",
    "TrendConfig",
    "get_outreach_config",
    # Errors
    "AggregationInconsistency",
    "CollaboratorUnavailable",
    "PolicyViolation",
    "ReasoningResponseError",
    "ReengageError",
    "ValidationError",
    # Models
    "BehaviorSignalSet",
    "CallRecord",
    "DataPoint",
    "DecisionSource",
    "DispatchResult",
    "OutreachDecision",
    "Pattern",
    "PatternType",
    "RiskLevel",
    "TelemetrySnapshot",
    "TrendAnalysis",
    "TrendDirection",
    "Urgency",
    # Components
    "AnthropicReasoningClient",
    "CallRecordStore",
    "DecisionEngine",
    "DecisionStateStore",
    "EngagementSeriesStore",
    "KeyedLocks",
    "OutreachOrchestrator",
    "ReasoningRequest",
    "ReasoningResponse",
    "SignalDetector",
    "SqlCallRecordStore",
    "TrendAnalyzer",
    "UserPhase",
    "VapiTelephonyClient",
    "build_call_script",
    "fallback_decision",
]
