"""
Keyed state for the outreach pipeline.

Per-user work is serialized through a fixed pool of re-entrant locks
sharded by user id, so unrelated users never contend on a single global
lock. The decision state machine for each user lives here as well:

    UNOBSERVED -> MONITORING -> ESCALATED(tier) -> CALLED_ONCE (terminal)
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterator

from .models import OutreachDecision

logger = logging.getLogger("reengage.outreach.state")


class KeyedLocks:
    """Fixed-size pool of re-entrant locks selected by key."""

    def __init__(self, shards: int = 64):
        if shards < 1:
            raise ValueError(f"shards must be >= 1, got {shards}")
        self._locks = [threading.RLock() for _ in range(shards)]

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, key: str) -> threading.RLock:
        return self._locks[hash(key) % len(self._locks)]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock guarding ``key`` for the duration of the block."""
        lock = self.lock_for(key)
        with lock:
            yield


class UserPhase(str, Enum):
    UNOBSERVED = "unobserved"
    MONITORING = "monitoring"
    ESCALATED = "escalated"
    CALLED_ONCE = "called_once"


@dataclass
class UserDecisionState:
    """Decision-engine state for one user. Mutated only under the user's lock."""

    user_id: str
    phase: UserPhase = UserPhase.UNOBSERVED
    tier: int = 0                   # observations that carried a disengagement signal
    observations: int = 0
    last_decision: OutreachDecision | None = None
    called_at: datetime | None = None

    @property
    def called(self) -> bool:
        return self.phase is UserPhase.CALLED_ONCE

    def observe(self, disengaged: bool) -> None:
        """Advance the state machine for one observation."""
        self.observations += 1
        if self.phase is UserPhase.CALLED_ONCE:
            return
        if disengaged:
            self.tier += 1
            self.phase = UserPhase.ESCALATED
        elif self.phase is UserPhase.UNOBSERVED:
            self.phase = UserPhase.MONITORING

    def mark_called(self, at: datetime) -> None:
        if self.phase is not UserPhase.CALLED_ONCE:
            self.phase = UserPhase.CALLED_ONCE
            self.called_at = at

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "phase": self.phase.value,
            "tier": self.tier,
            "observations": self.observations,
            "last_decision": self.last_decision.to_dict() if self.last_decision else None,
            "called_at": self.called_at.isoformat() if self.called_at else None,
        }


class DecisionStateStore:
    """Map of user id to UserDecisionState.

    The internal lock only guards the map itself. Callers serialize work on
    a single user's state through KeyedLocks.
    """

    def __init__(self):
        self._states: dict[str, UserDecisionState] = {}
        self._lock = threading.Lock()

    def get_or_create(self, user_id: str) -> UserDecisionState:
        with self._lock:
            state = self._states.get(user_id)
            if state is None:
                state = UserDecisionState(user_id=user_id)
                self._states[user_id] = state
            return state

    def get(self, user_id: str) -> UserDecisionState | None:
        with self._lock:
            return self._states.get(user_id)

    def remove(self, user_id: str) -> bool:
        with self._lock:
            return self._states.pop(user_id, None) is not None

    def phase_counts(self) -> dict[str, int]:
        with self._lock:
            states = list(self._states.values())
        counts = {phase.value: 0 for phase in UserPhase}
        for state in states:
            counts[state.phase.value] += 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
