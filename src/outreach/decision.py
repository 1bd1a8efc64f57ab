"""
Decision Engine: decides whether a disengaged user gets the one outreach call.

Order of evaluation for every observation:

    1. already called       -> no call, never consult
    2. 3+ cart removals     -> forced call, never consult
    3. no disengagement     -> no call, never consult
    4. consult reasoning    -> use its typed verdict
    5. reasoning failed     -> deterministic fallback rules

A positive decision moves the user to CALLED_ONCE before dispatch is
attempted, so a user can never receive two calls even when a dispatch
fails or two snapshots race.
"""

import logging
import threading
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from typing import Any

from .call_history import CallHistory
from .config import DecisionConfig
from .errors import CollaboratorUnavailable, ValidationError
from .models import (
    BehaviorSignalSet,
    DecisionSource,
    OutreachDecision,
    RiskLevel,
    TelemetrySnapshot,
    TrendAnalysis,
    Urgency,
)
from .reasoning import ReasoningClient, ReasoningRequest, ReasoningResponse
from .state import DecisionStateStore, KeyedLocks

logger = logging.getLogger("reengage.outreach.decision")

# Machine-readable reasons; code branches on these, never on free text
REASON_ALREADY_CALLED = "already_called"
REASON_NO_SIGNALS = "no_signals"
REASON_FORCED_REMOVAL = "forced_removal_override"
REASON_REASONING_CALL = "reasoning_recommended"
REASON_REASONING_NO_CALL = "reasoning_declined"
REASON_FALLBACK_CALL = "fallback_call"
REASON_FALLBACK_NO_CALL = "fallback_no_call"


def fallback_decision(
    snapshot: TelemetrySnapshot,
    signals: BehaviorSignalSet,
    config: DecisionConfig | None = None,
    detail: str = "reasoning service unavailable",
) -> OutreachDecision:
    """Deterministic rules used when the reasoning service cannot answer.

    Calls only on high-value abandonment, a removal from a meaningful cart,
    or long inactivity at critical risk.
    """
    config = config or DecisionConfig()
    should_call = (
        (signals.cart_abandoned_long
         and snapshot.cart_value > config.abandonment_cart_value_threshold)
        or (signals.cart_item_removed
            and snapshot.cart_value > config.removal_cart_value_threshold)
        or (signals.long_inactive and signals.risk_level is RiskLevel.CRITICAL)
    )
    return OutreachDecision(
        user_id=snapshot.user_id,
        should_call=should_call,
        confidence=config.fallback_confidence,
        reasoning=f"Fallback rules on cart value and risk level ({detail})",
        urgency=Urgency.HIGH if signals.risk_level is RiskLevel.CRITICAL else Urgency.MEDIUM,
        source=DecisionSource.FALLBACK,
        reason_code=REASON_FALLBACK_CALL if should_call else REASON_FALLBACK_NO_CALL,
        alternative_action=None if should_call else "Send follow-up email",
    )


class DecisionEngine:
    """Per-user state machine plus reasoning consultation.

    Args:
        reasoning_client: Collaborator consulted on ambiguous cases. None
            means every ambiguous case goes straight to the fallback rules.
        call_history: Store of placed calls, consulted for the one-shot rule.
        config: Decision policy.
        state_store: Per-user decision state. A fresh store by default.
        locks: Keyed locks shared with the pipeline, so a user's work is
            serialized end to end.
    """

    def __init__(
        self,
        reasoning_client: ReasoningClient | None,
        call_history: CallHistory,
        config: DecisionConfig | None = None,
        state_store: DecisionStateStore | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.reasoning_client = reasoning_client
        self.call_history = call_history
        self.config = config or DecisionConfig()
        self.states = state_store or DecisionStateStore()
        self.locks = locks or KeyedLocks()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.reasoning_workers,
            thread_name_prefix="reasoning",
        )

        self._stats_lock = threading.Lock()
        self._recent: deque[OutreachDecision] = deque(maxlen=self.config.max_recent_decisions)
        self._by_source: Counter = Counter()
        self._short_circuits: Counter = Counter()

    # =========================================================================
    # Decide
    # =========================================================================

    def decide(
        self,
        snapshot: TelemetrySnapshot,
        signals: BehaviorSignalSet,
        previous: TelemetrySnapshot | None = None,
        trend: TrendAnalysis | None = None,
    ) -> OutreachDecision:
        """Decide whether to call the snapshot's user.

        Never raises on collaborator failure; the worst outcome is a
        fallback decision.

        Raises:
            ValidationError: If the signals belong to another user.
        """
        user_id = snapshot.user_id
        if signals.user_id != user_id:
            raise ValidationError(
                f"Signals for {signals.user_id} passed with snapshot of {user_id}"
            )

        with self.locks.hold(user_id):
            state = self.states.get_or_create(user_id)
            state.observe(signals.has_disengagement)

            if state.called or self.call_history.has(user_id):
                state.mark_called(state.called_at or datetime.now(timezone.utc))
                decision = self._policy_decision(
                    user_id, REASON_ALREADY_CALLED, "User was already called once"
                )
            elif signals.cart_removal_count >= self.config.forced_override_removals:
                decision = self._forced_decision(snapshot, signals)
            elif not signals.has_disengagement:
                decision = self._policy_decision(
                    user_id, REASON_NO_SIGNALS, "No disengagement signals"
                )
            else:
                decision = self._consult(snapshot, signals, previous, trend)

            if decision.should_call:
                state.mark_called(decision.decided_at)
                logger.info(
                    f"{user_id}: call decided via {decision.source.value} "
                    f"(confidence={decision.confidence}, urgency={decision.urgency.value})"
                )
            state.last_decision = decision

        self._record(decision)
        return decision

    def _policy_decision(self, user_id: str, reason_code: str, reasoning: str) -> OutreachDecision:
        return OutreachDecision(
            user_id=user_id,
            should_call=False,
            confidence=100,
            reasoning=reasoning,
            urgency=Urgency.LOW,
            source=DecisionSource.POLICY,
            reason_code=reason_code,
        )

    def _forced_decision(
        self, snapshot: TelemetrySnapshot, signals: BehaviorSignalSet
    ) -> OutreachDecision:
        logger.warning(
            f"{snapshot.user_id}: {signals.cart_removal_count} cart removals, forcing call"
        )
        return OutreachDecision(
            user_id=snapshot.user_id,
            should_call=True,
            confidence=self.config.forced_confidence,
            reasoning=(
                f"User removed items from the cart {signals.cart_removal_count} times; "
                f"cart value ${snapshot.cart_value:.2f}"
            ),
            urgency=Urgency.HIGH,
            source=DecisionSource.FORCED_OVERRIDE,
            reason_code=REASON_FORCED_REMOVAL,
        )

    def _consult(
        self,
        snapshot: TelemetrySnapshot,
        signals: BehaviorSignalSet,
        previous: TelemetrySnapshot | None,
        trend: TrendAnalysis | None,
    ) -> OutreachDecision:
        """Ask the reasoning service, bounded by the configured timeout."""
        if self.reasoning_client is None:
            return fallback_decision(snapshot, signals, self.config, "reasoning not configured")

        request = ReasoningRequest(current=snapshot, signals=signals, previous=previous, trend=trend)
        timeout = self.config.reasoning_timeout_seconds
        future = self._executor.submit(self.reasoning_client.consult, request)

        try:
            response: ReasoningResponse = future.result(timeout=timeout)
        except FuturesTimeout:
            # A late answer is dropped when the worker finishes
            future.cancel()
            logger.warning(f"{snapshot.user_id}: reasoning timed out after {timeout}s")
            return fallback_decision(snapshot, signals, self.config, f"timed out after {timeout}s")
        except CollaboratorUnavailable as e:
            logger.warning(f"{snapshot.user_id}: {e}")
            return fallback_decision(snapshot, signals, self.config, e.detail)
        except Exception as e:
            logger.error(f"{snapshot.user_id}: unexpected reasoning error: {e}")
            return fallback_decision(snapshot, signals, self.config, "unexpected reasoning error")

        return OutreachDecision(
            user_id=snapshot.user_id,
            should_call=response.should_call,
            confidence=response.confidence,
            reasoning=response.reasoning,
            urgency=response.urgency,
            source=DecisionSource.REASONING_SERVICE,
            reason_code=REASON_REASONING_CALL if response.should_call else REASON_REASONING_NO_CALL,
            alternative_action=response.alternative_action,
        )

    # =========================================================================
    # Analytics and maintenance
    # =========================================================================

    def _record(self, decision: OutreachDecision) -> None:
        with self._stats_lock:
            if decision.source is DecisionSource.POLICY:
                self._short_circuits[decision.reason_code] += 1
            else:
                self._recent.append(decision)
                self._by_source[decision.source.value] += 1

    def decision_analytics(self, recent: int = 10) -> dict[str, Any]:
        """Summarize verdicts that went past the policy short-circuits."""
        with self._stats_lock:
            decisions = list(self._recent)
            by_source = dict(self._by_source)
            short_circuits = dict(self._short_circuits)

        total = len(decisions)
        recommendations = sum(1 for d in decisions if d.should_call)
        confidence = {
            "high": sum(1 for d in decisions if d.confidence >= 80),
            "medium": sum(1 for d in decisions if 60 <= d.confidence < 80),
            "low": sum(1 for d in decisions if d.confidence < 60),
        }
        urgency = {u.value: sum(1 for d in decisions if d.urgency is u) for u in Urgency}

        return {
            "total_decisions": total,
            "call_recommendations": recommendations,
            "call_recommendation_rate": round(recommendations / total * 100, 1) if total else 0.0,
            "by_source": by_source,
            "short_circuits": short_circuits,
            "confidence_distribution": confidence,
            "urgency_distribution": urgency,
            "recent_decisions": [
                {
                    "user_id": d.user_id,
                    "decided_at": d.decided_at.isoformat(),
                    "should_call": d.should_call,
                    "confidence": d.confidence,
                    "urgency": d.urgency.value,
                    "source": d.source.value,
                    "reasoning": d.reasoning[:100],
                }
                for d in decisions[-recent:]
            ],
        }

    def state_for(self, user_id: str) -> dict[str, Any] | None:
        state = self.states.get(user_id)
        if state is None:
            return None
        with self.locks.hold(user_id):
            return state.to_dict()

    def reset(self, user_id: str) -> bool:
        """Drop a user's decision state. Testing and demo use only."""
        with self.locks.hold(user_id):
            removed = self.states.remove(user_id)
        logger.info(f"Reset decision state for {user_id}")
        return removed

    def health_check(self) -> dict[str, Any]:
        """Ping the reasoning service, bounded by the reasoning timeout, and report totals."""
        if self.reasoning_client is None:
            reasoning: dict[str, Any] = {"status": "not_configured"}
        else:
            timeout = self.config.reasoning_timeout_seconds
            future = self._executor.submit(self.reasoning_client.health_check)
            try:
                reasoning = future.result(timeout=timeout)
            except FuturesTimeout:
                future.cancel()
                reasoning = {"status": "error", "error": f"timed out after {timeout}s"}

        return {
            "status": "degraded" if reasoning.get("status") == "error" else "healthy",
            "reasoning": reasoning,
            "tracked_users": len(self.states),
            "total_calls": len(self.call_history.all()),
        }

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
