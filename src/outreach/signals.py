"""
Signal Detector: derives disengagement signals from telemetry snapshots.

Three triggers are tracked per user:
- cart held without checkout for longer than the abandonment threshold
- items removed from the cart, escalating with every removal
- a long gap since the previous visit

Elapsed times are measured on snapshot timestamps, so replaying recorded
telemetry yields the same signals as live ingestion.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from .config import DetectorConfig
from .errors import ValidationError
from .models import BehaviorSignalSet, RiskLevel, TelemetrySnapshot

logger = logging.getLogger("reengage.outreach.signals")


@dataclass
class _UserSignalState:
    cart_started_at: datetime | None = None
    removal_count: int = 0
    last_snapshot: TelemetrySnapshot | None = None


def classify_risk(score: int, config: DetectorConfig | None = None) -> RiskLevel:
    """Map an engagement score to a risk level."""
    config = config or DetectorConfig()
    if score >= config.low_risk_score:
        return RiskLevel.LOW
    if score >= config.medium_risk_score:
        return RiskLevel.MEDIUM
    if score >= config.high_risk_score:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


class SignalDetector:
    """Keeps per-user running state and turns snapshots into signal sets.

    Calls for the same user must be serialized by the caller (the pipeline
    holds the user's lock); calls for different users may run concurrently.
    """

    def __init__(self, config: DetectorConfig | None = None):
        self.config = config or DetectorConfig()
        self._users: dict[str, _UserSignalState] = {}
        self._lock = threading.Lock()

    def _state(self, user_id: str) -> _UserSignalState:
        with self._lock:
            state = self._users.get(user_id)
            if state is None:
                state = _UserSignalState()
                self._users[user_id] = state
            return state

    def observe(
        self,
        snapshot: TelemetrySnapshot,
        previous: TelemetrySnapshot | None = None,
    ) -> BehaviorSignalSet:
        """Evaluate one snapshot against the user's running state.

        Args:
            snapshot: Current snapshot.
            previous: The user's prior snapshot. Defaults to the last snapshot
                this detector saw for the user.

        Returns:
            BehaviorSignalSet for this observation.

        Raises:
            ValidationError: If the snapshot has no user id or ``previous``
                belongs to another user.
        """
        if snapshot is None or not getattr(snapshot, "user_id", None):
            raise ValidationError("Telemetry snapshot is missing a user id")
        user_id = snapshot.user_id

        state = self._state(user_id)
        if previous is None:
            previous = state.last_snapshot
        elif previous.user_id != user_id:
            raise ValidationError(
                f"Previous snapshot belongs to {previous.user_id}, not {user_id}"
            )

        cfg = self.config
        signals = BehaviorSignalSet(user_id=user_id)
        score = 100

        # Cart held without checkout
        if snapshot.cart_items > 0 and not snapshot.checkout_started:
            if state.cart_started_at is None:
                state.cart_started_at = snapshot.timestamp
                logger.debug(f"Started cart timer for {user_id}")
            cart_age = snapshot.timestamp - state.cart_started_at
            if cart_age >= cfg.cart_abandon_threshold:
                signals.cart_abandoned_long = True
                score -= cfg.cart_abandon_penalty
                minutes = int(cart_age.total_seconds() // 60)
                signals.reasons.append(
                    f"Cart has {snapshot.cart_items} items (worth "
                    f"${snapshot.cart_value:.2f}) for {minutes} minutes without checkout"
                )
        else:
            state.cart_started_at = None

        # Cart removals; the counter only ever goes up
        if previous is not None and previous.cart_items > 0:
            if snapshot.cart_items < previous.cart_items:
                state.removal_count += 1
                tier = state.removal_count
                signals.cart_item_removed = True
                tier1, tier2, tier3 = cfg.removal_penalties
                if tier == 1:
                    score -= tier1
                elif tier == 2:
                    score -= tier2
                else:
                    score -= tier3
                removed = previous.cart_items - snapshot.cart_items
                signals.reasons.append(
                    f"REMOVAL #{tier}: Removed {removed} item(s) from cart "
                    f"(Previous: {previous.cart_items}, Now: {snapshot.cart_items})"
                )
        signals.cart_removal_count = state.removal_count

        # Long gap since the previous visit
        if previous is not None:
            gap = snapshot.timestamp - previous.timestamp
            if gap >= cfg.inactive_threshold:
                signals.long_inactive = True
                score -= cfg.inactive_penalty
                hours = int(gap.total_seconds() // 3600)
                signals.reasons.append(
                    f"User hasn't visited in {hours} hours"
                )

        signals.engagement_score = max(0, min(100, score))
        signals.risk_level = classify_risk(signals.engagement_score, cfg)
        state.last_snapshot = snapshot

        if signals.has_disengagement:
            logger.info(
                f"{user_id}: score={signals.engagement_score} "
                f"risk={signals.risk_level.value} reasons={len(signals.reasons)}"
            )
        return signals

    def removal_count(self, user_id: str) -> int:
        with self._lock:
            state = self._users.get(user_id)
        return state.removal_count if state else 0

    def last_snapshot(self, user_id: str) -> TelemetrySnapshot | None:
        with self._lock:
            state = self._users.get(user_id)
        return state.last_snapshot if state else None

    def reset(self, user_id: str) -> None:
        """Forget everything about a user. Intended for tests and demos."""
        with self._lock:
            self._users.pop(user_id, None)
        logger.info(f"Reset signal state for {user_id}")

    def tracked_users(self) -> list[str]:
        with self._lock:
            return list(self._users)
