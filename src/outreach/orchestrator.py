"""
Outreach Orchestrator: turns a positive decision into one telephony call.

Dispatch is refused before any external call when the user already has
a call record or another dispatch for them is in flight. Successful
calls are written to the insert-once call history. Failed calls are kept
aside and are only re-attempted through an explicit ``retry``. Outcomes
are settled on the telephony worker, so a call that finishes after
``dispatch`` stops waiting is still recorded.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .call_history import CallHistory
from .config import OutreachConfig
from .errors import CollaboratorUnavailable, PolicyViolation
from .models import (
    BehaviorSignalSet,
    CallRecord,
    DispatchResult,
    OutreachDecision,
    TelemetrySnapshot,
    Urgency,
)
from .telephony import (
    MAX_REQUESTS_PER_CALL,
    TelephonyClient,
    TelephonyRequest,
    TelephonyResponse,
    build_call_script,
)

logger = logging.getLogger("reengage.outreach.orchestrator")

CALL_EVENT_TYPES = frozenset({"call-started", "call-ended", "transcript", "hang"})
MAX_TRACKED_CALLS = 1_000


@dataclass(frozen=True)
class FailedDispatch:
    snapshot: TelemetrySnapshot
    decision: OutreachDecision
    signals: BehaviorSignalSet | None
    result: DispatchResult
    failed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.snapshot.user_id,
            "failed_at": self.failed_at.isoformat(),
            "error": self.result.error,
            "decision": self.decision.to_dict(),
        }


class OutreachOrchestrator:
    """Dispatches outreach calls and owns the call history."""

    def __init__(
        self,
        telephony: TelephonyClient | None,
        call_history: CallHistory,
        config: OutreachConfig | None = None,
        workers: int = 4,
    ):
        self.telephony = telephony
        self.call_history = call_history
        self.config = config or OutreachConfig()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="telephony")
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._failed: dict[str, FailedDispatch] = {}
        self._call_events: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def dispatch(
        self,
        snapshot: TelemetrySnapshot,
        decision: OutreachDecision,
        signals: BehaviorSignalSet | None = None,
    ) -> DispatchResult:
        """Place the call for a positive decision.

        Returns:
            DispatchResult. ``rejected=True`` means nothing was sent because
            of the one-shot policy; ``success=False`` means the attempt failed.
            ``pending=True`` means the client outlived the deadline: the user
            stays in flight and the late outcome is recorded when it lands.
        """
        user_id = snapshot.user_id
        if not decision.should_call:
            return DispatchResult(user_id=user_id, success=False, rejected=True,
                                  error="decision does not call for outreach")

        with self._lock:
            try:
                if user_id in self._in_flight:
                    raise PolicyViolation(user_id, "dispatch already in flight")
                if self.call_history.has(user_id):
                    raise PolicyViolation(user_id)
            except PolicyViolation as e:
                logger.warning(f"Dispatch rejected: {e}")
                return DispatchResult(user_id=user_id, success=False, rejected=True, error=str(e))
            self._in_flight.add(user_id)

        destination = snapshot.phone or self.config.default_call_number or None
        try:
            future = self._executor.submit(
                self._place_and_settle, snapshot, decision, signals, destination
            )
        except RuntimeError:
            self._release(user_id)
            raise

        def _release_if_cancelled(f):
            # A future cancelled before it ran never reaches the worker's release
            if f.cancelled():
                self._release(user_id)

        future.add_done_callback(_release_if_cancelled)

        deadline = self.dispatch_deadline
        try:
            return future.result(timeout=deadline)
        except FuturesTimeout:
            logger.warning(
                f"Telephony for {user_id} still running after {deadline}s; "
                "the outcome is recorded when it finishes"
            )
            return DispatchResult(
                user_id, False, error=f"telephony timed out after {deadline}s", pending=True
            )

    @property
    def dispatch_deadline(self) -> float:
        """How long ``dispatch`` waits: the client's worst case of sequential requests."""
        return self.config.telephony_timeout_seconds * MAX_REQUESTS_PER_CALL

    def _release(self, user_id: str) -> None:
        with self._lock:
            self._in_flight.discard(user_id)

    def _place_and_settle(
        self,
        snapshot: TelemetrySnapshot,
        decision: OutreachDecision,
        signals: BehaviorSignalSet | None,
        destination: str | None,
    ) -> DispatchResult:
        """Runs on the telephony executor; the user stays in flight until it returns."""
        user_id = snapshot.user_id
        try:
            result = self._place(snapshot, decision, signals, destination)
            if result.success:
                record = CallRecord(
                    user_id=user_id,
                    created_at=datetime.now(timezone.utc),
                    decision=decision,
                    dispatch=result,
                    destination=destination,
                )
                try:
                    self.call_history.insert(record)
                except PolicyViolation as e:
                    logger.error(f"Call placed but history already had a record: {e}")
                with self._lock:
                    self._failed.pop(user_id, None)
            else:
                with self._lock:
                    self._failed[user_id] = FailedDispatch(
                        snapshot, decision, signals, result, datetime.now(timezone.utc)
                    )
                logger.error(f"Dispatch failed for {user_id}: {result.error}")
            return result
        finally:
            self._release(user_id)

    def _place(
        self,
        snapshot: TelemetrySnapshot,
        decision: OutreachDecision,
        signals: BehaviorSignalSet | None,
        destination: str | None,
    ) -> DispatchResult:
        user_id = snapshot.user_id
        if self.telephony is None:
            return DispatchResult(user_id, False, error="telephony not configured")
        if not destination:
            return DispatchResult(user_id, False, error="no destination number")

        removal_count = signals.cart_removal_count if signals else 0
        script = build_call_script(snapshot, decision, removal_count, self.config.company_name)
        request = TelephonyRequest(
            destination=destination,
            personalized_script=script.render(),
            first_message=script.greeting,
            customer_name=snapshot.user_name,
            metadata={
                "user_id": user_id,
                "email": snapshot.email,
                "cart_items": snapshot.cart_items,
                "cart_value": snapshot.cart_value,
                "urgency": decision.urgency.value,
                "decision_source": decision.source.value,
                "reason_code": decision.reason_code,
            },
        )

        try:
            response: TelephonyResponse = self.telephony.place_call(request)
        except CollaboratorUnavailable as e:
            return DispatchResult(user_id, False, error=e.detail)
        except Exception as e:
            logger.error(f"Unexpected telephony error for {user_id}: {e}")
            return DispatchResult(user_id, False, error="unexpected telephony error")

        return DispatchResult(
            user_id=user_id,
            success=response.success,
            dispatch_id=response.dispatch_id,
            error=response.error,
        )

    def retry(self, user_id: str) -> DispatchResult:
        """Re-dispatch a previously failed call. Only ever triggered explicitly."""
        with self._lock:
            failed = self._failed.pop(user_id, None)
        if failed is None:
            return DispatchResult(user_id=user_id, success=False, rejected=True,
                                  error="no failed dispatch to retry")
        logger.info(f"Retrying dispatch for {user_id}")
        result = self.dispatch(failed.snapshot, failed.decision, failed.signals)
        if result.rejected and not self.call_history.has(user_id):
            with self._lock:
                self._failed.setdefault(user_id, failed)
        return result

    def failed_dispatches(self) -> list[FailedDispatch]:
        with self._lock:
            return sorted(self._failed.values(), key=lambda f: f.failed_at)

    def forget(self, user_id: str) -> None:
        """Drop a user's call record and failed attempt. Testing only."""
        with self._lock:
            self._failed.pop(user_id, None)
        self.call_history.remove(user_id)

    def call_stats(self, recent: int = 10) -> dict[str, Any]:
        records = self.call_history.all()
        with self._lock:
            pending_failures = len(self._failed)
        return {
            "total_calls": len(records),
            "pending_failures": pending_failures,
            "calls_by_urgency": {
                u.value: sum(1 for r in records if r.decision.urgency is u) for u in Urgency
            },
            "calls_by_source": {
                source: sum(1 for r in records if r.decision.source.value == source)
                for source in sorted({r.decision.source.value for r in records})
            },
            "recent_calls": [
                {
                    "user_id": r.user_id,
                    "created_at": r.created_at.isoformat(),
                    "dispatch_id": r.dispatch.dispatch_id,
                    "destination": r.destination,
                    "urgency": r.decision.urgency.value,
                    "source": r.decision.source.value,
                }
                for r in records[-recent:]
            ],
        }

    # =========================================================================
    # Provider call events
    # =========================================================================

    def record_call_event(self, event_type: str, call: dict[str, Any]) -> dict[str, Any] | None:
        """Track a provider status event for a placed call.

        Returns:
            The updated status entry, or None for unknown event types or
            events without a call id.
        """
        call_id = call.get("id")
        if event_type not in CALL_EVENT_TYPES or not call_id:
            logger.info(f"Ignoring telephony event {event_type!r} (call id {call_id!r})")
            return None

        with self._lock:
            entry = self._call_events.pop(call_id, None) or {"call_id": call_id, "events": 0}
            entry["status"] = event_type
            entry["events"] += 1
            entry["updated_at"] = datetime.now(timezone.utc).isoformat()
            if call.get("duration") is not None:
                entry["duration_seconds"] = call["duration"]
            if call.get("transcript"):
                entry["has_transcript"] = True
            self._call_events[call_id] = entry
            while len(self._call_events) > MAX_TRACKED_CALLS:
                self._call_events.popitem(last=False)
            tracked = dict(entry)

        logger.info(f"Call {call_id}: {event_type}")
        return tracked

    def call_event(self, call_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._call_events.get(call_id)
            return dict(entry) if entry else None

    def lookup_call(self, call_id: str) -> dict[str, Any]:
        """Fetch call details from the telephony provider.

        Raises:
            CollaboratorUnavailable: If telephony is not configured or the lookup fails.
        """
        if self.telephony is None:
            raise CollaboratorUnavailable("telephony", "telephony not configured")
        return self.telephony.get_call(call_id)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
