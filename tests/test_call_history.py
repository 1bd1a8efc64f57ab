"""
Tests for the insert-once call history stores.

Run with: pytest tests/test_call_history.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.outreach.call_history import CallRecordStore, SqlCallRecordStore
from src.outreach.errors import PolicyViolation
from src.outreach.models import (
    CallRecord,
    DecisionSource,
    DispatchResult,
    OutreachDecision,
    Urgency,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(user_id: str, minutes: int = 0) -> CallRecord:
    decision = OutreachDecision(
        user_id=user_id,
        should_call=True,
        confidence=100,
        reasoning="forced",
        urgency=Urgency.HIGH,
        source=DecisionSource.FORCED_OVERRIDE,
        reason_code="forced_removal_override",
        decided_at=NOW,
    )
    return CallRecord(
        user_id=user_id,
        created_at=NOW + timedelta(minutes=minutes),
        decision=decision,
        dispatch=DispatchResult(user_id, True, dispatch_id=f"call_{user_id}"),
        destination="+15550000000",
    )


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, sqlite_engine):
    """Both store implementations must behave identically."""
    if request.param == "memory":
        return CallRecordStore()
    return SqlCallRecordStore(sqlite_engine)


class TestCallHistory:

    def test_insert_and_get(self, store):
        """Inserted records are readable by user id."""
        store.insert(_record("a"))

        record = store.get("a")
        assert record == _record("a")
        assert store.has("a")
        assert not store.has("b")
        assert store.get("b") is None

    def test_second_insert_rejected(self, store):
        """A second call record for the same user is refused."""
        store.insert(_record("a"))
        with pytest.raises(PolicyViolation):
            store.insert(_record("a", minutes=5))
        assert store.get("a").created_at == NOW
        assert len(store) == 1

    def test_all_ordered_by_creation(self, store):
        """Records list oldest first."""
        store.insert(_record("late", minutes=10))
        store.insert(_record("early", minutes=1))
        assert [r.user_id for r in store.all()] == ["early", "late"]

    def test_remove(self, store):
        """Removal reports whether a record existed."""
        store.insert(_record("a"))
        assert store.remove("a")
        assert not store.remove("a")
        assert not store.has("a")


class TestSqlCallRecordStore:

    def test_table_creation_is_idempotent(self, sqlite_engine):
        """Reopening a store keeps existing rows."""
        SqlCallRecordStore(sqlite_engine).insert(_record("a"))
        reopened = SqlCallRecordStore(sqlite_engine)
        assert reopened.has("a")

    def test_record_survives_round_trip_through_json(self, sqlite_engine):
        """Enums and nested results survive the JSON column."""
        store = SqlCallRecordStore(sqlite_engine)
        store.insert(_record("a"))
        record = store.get("a")

        assert record.decision.source is DecisionSource.FORCED_OVERRIDE
        assert record.dispatch.dispatch_id == "call_a"
        assert record.destination == "+15550000000"
