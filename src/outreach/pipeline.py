"""
Outreach pipeline: wires detection, trends, decisions, dispatch and metrics.

    telemetry -> SignalDetector -> EngagementSeriesStore/TrendAnalyzer
              -> DecisionEngine -> OutreachOrchestrator -> telephony
    telemetry -> MetricsAggregator   (independent, never waits on decisions)

Each user id is pinned to one single-threaded worker, so a user's
snapshots are processed in arrival order while different users run in
parallel. The user's keyed lock is held from observation through the
decision and released before dispatch.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from src.data.database import get_engine
from src.metrics.aggregator import MetricsAggregator

from .call_history import CallHistory, CallRecordStore, SqlCallRecordStore
from .config import OutreachConfig, get_outreach_config
from .decision import DecisionEngine
from .errors import BacklogFull, ValidationError
from .models import (
    BehaviorSignalSet,
    DispatchResult,
    OutreachDecision,
    TelemetrySnapshot,
    TrendAnalysis,
)
from .orchestrator import OutreachOrchestrator
from .reasoning import AnthropicReasoningClient, ReasoningClient
from .signals import SignalDetector
from .state import DecisionStateStore, KeyedLocks
from .telephony import TelephonyClient, VapiTelephonyClient
from .trends import EngagementSeriesStore, TrendAnalyzer

logger = logging.getLogger("reengage.outreach.pipeline")


@dataclass(frozen=True)
class ProcessResult:
    """Everything the pipeline concluded about one snapshot."""

    snapshot: TelemetrySnapshot
    signals: BehaviorSignalSet
    decision: OutreachDecision
    trend: TrendAnalysis | None = None
    dispatch: DispatchResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.snapshot.user_id,
            "signals": self.signals.to_dict(),
            "decision": self.decision.to_dict(),
            "trend": self.trend.to_dict() if self.trend else None,
            "dispatch": self.dispatch.to_dict() if self.dispatch else None,
        }


def coerce_snapshot(payload: TelemetrySnapshot | dict[str, Any]) -> TelemetrySnapshot:
    if isinstance(payload, TelemetrySnapshot):
        return payload
    return TelemetrySnapshot.from_dict(payload)


class OutreachPipeline:
    """The assembled pipeline. Build one with ``build_pipeline``."""

    def __init__(
        self,
        config: OutreachConfig,
        detector: SignalDetector,
        analyzer: TrendAnalyzer,
        series: EngagementSeriesStore,
        engine: DecisionEngine,
        orchestrator: OutreachOrchestrator,
        aggregator: MetricsAggregator,
        locks: KeyedLocks,
    ):
        self.config = config
        self.detector = detector
        self.analyzer = analyzer
        self.series = series
        self.engine = engine
        self.orchestrator = orchestrator
        self.aggregator = aggregator
        self.locks = locks
        self._workers = [
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pipeline-{i}")
            for i in range(max(1, config.pipeline_workers))
        ]
        self._capacity = max(1, config.pipeline_backlog)
        self._slots = threading.BoundedSemaphore(self._capacity)
        self._backlog_lock = threading.Lock()
        self._backlog = 0

    def _worker_for(self, user_id: str) -> ThreadPoolExecutor:
        return self._workers[hash(user_id) % len(self._workers)]

    def ingest(
        self, payload: TelemetrySnapshot | dict[str, Any], timeout: float | None = None
    ) -> Future:
        """Feed metrics now and queue the decision work for the user's worker.

        Waits up to ``timeout`` seconds (forever when None) for a backlog
        slot. Metrics are only fed once a slot is held, so a rejected
        snapshot can be offered again without being counted twice.

        Raises:
            ValidationError: If the payload is malformed.
            BacklogFull: If no slot freed up within ``timeout``.
        """
        snapshot = coerce_snapshot(payload)
        if not self._slots.acquire(timeout=timeout):
            raise BacklogFull(f"{self._capacity} snapshots already waiting for a decision")
        with self._backlog_lock:
            self._backlog += 1
        try:
            self.aggregator.ingest(snapshot)
            future = self._worker_for(snapshot.user_id).submit(self._evaluate, snapshot)
        except Exception:
            self._release_slot()
            raise
        future.add_done_callback(self._settle)
        return future

    def _release_slot(self) -> None:
        with self._backlog_lock:
            self._backlog -= 1
        self._slots.release()

    def _settle(self, future: Future) -> None:
        self._release_slot()
        _log_failure(future)

    @property
    def backlog(self) -> int:
        """Snapshots handed to workers whose decision has not finished yet."""
        with self._backlog_lock:
            return self._backlog

    def process(self, payload: TelemetrySnapshot | dict[str, Any]) -> ProcessResult:
        """Run one snapshot through the whole pipeline synchronously.

        Raises:
            ValidationError: If the payload is malformed.
        """
        snapshot = coerce_snapshot(payload)
        self.aggregator.ingest(snapshot)
        return self._evaluate(snapshot)

    def _evaluate(self, snapshot: TelemetrySnapshot) -> ProcessResult:
        user_id = snapshot.user_id
        with self.locks.hold(user_id):
            previous = self.detector.last_snapshot(user_id)
            signals = self.detector.observe(snapshot, previous)
            self.series.record(user_id, signals.engagement_score, snapshot.timestamp)
            trend = self.analyzer.analyze(self.series.series(user_id))
            if trend.insufficient_data:
                trend = None
            decision = self.engine.decide(snapshot, signals, previous, trend)

        dispatch = None
        if decision.should_call:
            dispatch = self.orchestrator.dispatch(snapshot, decision, signals)
        return ProcessResult(snapshot, signals, decision, trend, dispatch)

    # =========================================================================
    # Inspection and maintenance
    # =========================================================================

    def user_state(self, user_id: str) -> dict[str, Any] | None:
        decision_state = self.engine.state_for(user_id)
        series = self.series.series(user_id)
        if decision_state is None and not series:
            return None
        record = self.orchestrator.call_history.get(user_id)
        return {
            "user_id": user_id,
            "decision_state": decision_state,
            "cart_removal_count": self.detector.removal_count(user_id),
            "series_points": len(series),
            "call_record": record.to_dict() if record else None,
        }

    def user_trend(self, user_id: str) -> TrendAnalysis:
        return self.analyzer.analyze(self.series.series(user_id))

    def record_engagement(self, user_id: str, value: float, timestamp: Any = None) -> int:
        """Append an externally measured engagement value to a user's series."""
        return self.series.record(user_id, value, timestamp)

    def clear_user(self, user_id: str) -> None:
        """Forget a user entirely, including their call record. Testing only."""
        with self.locks.hold(user_id):
            self.detector.reset(user_id)
            self.series.clear(user_id)
            self.engine.reset(user_id)
            self.orchestrator.forget(user_id)
        logger.warning(f"Cleared all state for {user_id}")

    def stats(self) -> dict[str, Any]:
        return {
            "tracked_users": len(self.detector.tracked_users()),
            "phases": self.engine.states.phase_counts(),
            "decisions": self.engine.decision_analytics(),
            "calls": self.orchestrator.call_stats(),
        }

    def shutdown(self, wait: bool = True) -> None:
        for worker in self._workers:
            worker.shutdown(wait=wait)
        self.engine.close()
        self.orchestrator.close()
        logger.info("Pipeline shut down")


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Snapshot processing failed: {error}")


# =============================================================================
# Ingestion loop
# =============================================================================


class IngestionLoop:
    """Background thread draining a bounded queue of raw telemetry payloads.

    Invalid payloads are counted and skipped. A full queue rejects new
    payloads instead of blocking the producer; the loop itself blocks while
    the pipeline backlog is full, so the queue is the only buffer that grows.
    """

    def __init__(self, pipeline: OutreachPipeline, maxsize: int = 10_000, poll_seconds: float = 0.2):
        self.pipeline = pipeline
        self.poll_seconds = poll_seconds
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._counts_lock = threading.Lock()
        self._counts = {"accepted": 0, "dropped": 0, "processed": 0, "invalid": 0}
        self._pending: set[Future] = set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _bump(self, key: str) -> None:
        with self._counts_lock:
            self._counts[key] += 1

    def enqueue(self, payload: dict[str, Any] | TelemetrySnapshot) -> bool:
        try:
            self._queue.put_nowait(payload)
        except queue.Full:
            self._bump("dropped")
            logger.warning("Ingestion queue full, dropping payload")
            return False
        self._bump("accepted")
        return True

    def start(self) -> bool:
        if self.running:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ingestion-loop", daemon=True)
        self._thread.start()
        logger.info("Ingestion loop started")
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        if not self.running:
            return False
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Ingestion loop stopped")
        return True

    def drain(self, timeout: float = 10.0) -> bool:
        """Wait until queued payloads are handed off and their decisions finish.

        Returns:
            True if everything finished within ``timeout``.
        """
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        with self._counts_lock:
            pending = list(self._pending)
        remaining = max(0.0, deadline - time.monotonic())
        _, not_done = wait(pending, timeout=remaining)
        return not self._queue.unfinished_tasks and not not_done

    def _forget(self, future: Future) -> None:
        with self._counts_lock:
            self._pending.discard(future)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                payload = self._queue.get(timeout=self.poll_seconds)
            except queue.Empty:
                continue
            try:
                self._hand_off(payload)
            finally:
                self._queue.task_done()

    def _hand_off(self, payload: dict[str, Any] | TelemetrySnapshot) -> None:
        # The payload is held while the workers are saturated, so the queue fills
        while True:
            try:
                future = self.pipeline.ingest(payload, timeout=self.poll_seconds)
            except ValidationError as e:
                self._bump("invalid")
                logger.warning(f"Skipping invalid telemetry: {e}")
                return
            except BacklogFull:
                if self._stop.is_set():
                    self._bump("dropped")
                    logger.warning("Ingestion stopped while workers were saturated, dropping payload")
                    return
                continue
            break

        with self._counts_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        self._bump("processed")

    def stats(self) -> dict[str, Any]:
        with self._counts_lock:
            counts = dict(self._counts)
        return {
            "running": self.running,
            "queued": self._queue.qsize(),
            "backlog": self.pipeline.backlog,
            **counts,
        }


# =============================================================================
# Factory
# =============================================================================


def build_call_history(config: OutreachConfig) -> CallHistory:
    if config.database_url:
        return SqlCallRecordStore(get_engine(config.database_url))
    return CallRecordStore()


def build_pipeline(
    config: OutreachConfig | None = None,
    reasoning_client: ReasoningClient | None = None,
    telephony: TelephonyClient | None = None,
    call_history: CallHistory | None = None,
    aggregator: MetricsAggregator | None = None,
) -> OutreachPipeline:
    """Assemble a pipeline from config, creating any collaborator not passed in.

    Unconfigured collaborators are left out: decisions fall back to the
    deterministic rules and dispatches report failure.
    """
    config = config or get_outreach_config()

    if reasoning_client is None and config.reasoning_configured:
        reasoning_client = AnthropicReasoningClient(config)
    if telephony is None and config.telephony_configured:
        telephony = VapiTelephonyClient(config)
    if call_history is None:
        call_history = build_call_history(config)

    locks = KeyedLocks(config.lock_shards)
    engine = DecisionEngine(
        reasoning_client,
        call_history,
        config=config.decision,
        state_store=DecisionStateStore(),
        locks=locks,
    )
    pipeline = OutreachPipeline(
        config=config,
        detector=SignalDetector(config.detector),
        analyzer=TrendAnalyzer(config.trend),
        series=EngagementSeriesStore(config.trend),
        engine=engine,
        orchestrator=OutreachOrchestrator(telephony, call_history, config),
        aggregator=aggregator or MetricsAggregator(
            max_history=config.aggregator_max_history,
            max_events=config.aggregator_max_events,
            top_k=config.top_features,
        ),
        locks=locks,
    )
    logger.info(
        f"Pipeline built (reasoning={'on' if reasoning_client else 'fallback'}, "
        f"telephony={'on' if telephony else 'off'}, "
        f"history={type(call_history).__name__})"
    )
    return pipeline
