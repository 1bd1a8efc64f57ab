"""
Shared test fixtures for the Reengage test suite.

Provides a snapshot factory anchored at a fixed base time, stub
reasoning and telephony collaborators, and ready-made pipeline parts.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from src.outreach.call_history import CallRecordStore
from src.outreach.config import OutreachConfig
from src.outreach.models import TelemetrySnapshot, Urgency
from src.outreach.reasoning import ReasoningResponse
from src.outreach.telephony import TelephonyResponse

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Snapshot Fixtures
# =============================================================================


def make_snapshot(user_id: str = "user_1", minutes: float = 0, **fields) -> TelemetrySnapshot:
    """Build a snapshot ``minutes`` after BASE_TIME."""
    return TelemetrySnapshot(
        user_id=user_id,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def snapshot_factory():
    """Factory for snapshots at fixed offsets from BASE_TIME."""
    return make_snapshot


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def mock_reasoning():
    """Reasoning client that always recommends a medium-urgency call."""
    client = MagicMock()
    client.consult.return_value = ReasoningResponse(
        should_call=True,
        confidence=82,
        reasoning="Valuable cart left idle",
        urgency=Urgency.MEDIUM,
    )
    return client


@pytest.fixture
def declining_reasoning():
    """Reasoning client that always declines to call."""
    client = MagicMock()
    client.consult.return_value = ReasoningResponse(
        should_call=False,
        confidence=70,
        reasoning="Window shopping",
        urgency=Urgency.LOW,
        alternative_action="Send a reminder email",
    )
    return client


@pytest.fixture
def mock_telephony():
    """Telephony client whose calls always succeed."""
    client = MagicMock()
    client.place_call.return_value = TelephonyResponse(success=True, dispatch_id="call_123")
    return client


@pytest.fixture
def call_history() -> CallRecordStore:
    return CallRecordStore()


@pytest.fixture
def outreach_config() -> OutreachConfig:
    """Config with no external services and a default destination number."""
    return OutreachConfig(
        default_call_number="+15550000000",
        pipeline_workers=2,
        lock_shards=8,
    )
