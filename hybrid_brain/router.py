"""
Decision router.

Picks a decision source for each request under latency and cost budgets:

    cache -> reactive/urgent brain -> strategic remote -> hybrid -> brain

Nothing raised by the remote strategist, the memory or the models ever
escapes decide(); the brain (and, below it, a fixed safe action) is the
terminal path that always produces a DecisionResult.

An abandoned remote call keeps its worker until the strategist returns.
While all REMOTE_WORKERS are occupied the remote side is skipped without
spending budget, so hung calls cannot make every later request wait out
the full timeout.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .brain import LocalBrain
from .cache import TTLCache
from .config import BrainConfig
from .errors import RemoteError, RemoteFailure, RemoteTimeout, RemoteUnavailable
from .logging_config import get_logger
from .metrics import MetricsCollector
from .rate_limit import HourlyCallBudget
from .strategist import PRIORITY_CONFIDENCE, NullStrategist, RemoteStrategist, StrategistDecision
from .types import DecisionRequest, DecisionResult, DecisionSource, DecisionType, GameSnapshot, Priority

logger = get_logger(__name__)

BRAIN_WEIGHT = 0.7
REMOTE_WEIGHT = 0.3
REMOTE_WORKERS = 4


class DecisionRouter:
    """
    Routes decision requests between the local brain and a remote strategist.

    Example:
        >>> router = DecisionRouter(LocalBrain(WorldMemory()))
        >>> result = router.decide(DecisionRequest(type="reactive", urgency=0.9))
        >>> result.source
        <DecisionSource.BRAIN: 'brain'>
    """

    def __init__(
        self,
        brain: LocalBrain,
        strategist: Optional[RemoteStrategist] = None,
        config: Optional[BrainConfig] = None,
        clock: Callable[[], float] = time.time,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.config = config or BrainConfig()
        self.brain = brain
        self.strategist = strategist or NullStrategist()
        self.budget = HourlyCallBudget(self.config.remote_calls_per_hour, clock=clock)
        self.cache: TTLCache[DecisionResult] = TTLCache(self.config.decision_cache_ttl, clock=clock)
        self.metrics_collector = MetricsCollector()

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=REMOTE_WORKERS,
            thread_name_prefix="hybrid-brain-remote",
        )
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def decide(self, request: DecisionRequest) -> DecisionResult:
        """
        Choose the next action for a request.

        Always returns a DecisionResult; remote failures, model failures and
        budget exhaustion all route to the brain.
        """
        start = time.perf_counter()
        key = request.cache_key()

        cached = self.cache.get(key)
        if cached is not None:
            result = replace(
                cached,
                source=DecisionSource.CACHE,
                timestamp=time.time(),
                insights=dict(cached.insights),
            )
            self._record(result, start)
            return result

        try:
            result = self._route(request)
        except Exception:
            logger.exception("Routing failed, using brain")
            self.metrics_collector.record_error("router", "routing")
            result = self._brain_decision(request.snapshot)

        self.cache.set(key, result)
        self._record(result, start)
        return result

    def strategic_plan(self, objectives: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """
        Prioritized plan for a list of objectives ({name, priority, resources}).

        Uses the remote strategist when it is ready and budget remains,
        otherwise (or on any remote failure) a one-step-per-objective plan.
        """
        objectives = list(objectives)
        if self.remote_ready() and self.remote_worker_free() and self.budget.try_acquire():
            try:
                future = self._submit_remote(self.strategist.get_plan, objectives)
                steps = self._await_remote(future, self.config.remote_timeout)
                if steps:
                    return [step.model_dump(mode="json") for step in steps]
                logger.info("Remote plan was empty, using brain plan")
            except Exception as e:
                self._log_fallback("strategic_plan", e)
        return self.brain.strategic_plan(objectives)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route(self, request: DecisionRequest) -> DecisionResult:
        snapshot = request.snapshot

        # Urgent decisions never wait on a round-trip
        if request.type == DecisionType.REACTIVE or request.urgency > self.config.urgency_threshold:
            return self._brain_decision(snapshot)

        if (
            request.type == DecisionType.STRATEGIC
            and request.complexity > self.config.complexity_threshold
            and self.remote_ready()
            and self.remote_worker_free()
            and self.budget.try_acquire()
        ):
            return self._remote_decision(snapshot)

        if self._remote_usable() and self._brain_confidence(snapshot) < self.config.confidence_threshold:
            return self._hybrid_decision(snapshot)

        return self._brain_decision(snapshot)

    def _brain_decision(self, snapshot: GameSnapshot) -> DecisionResult:
        try:
            return self.brain.decide(snapshot)
        except Exception:
            logger.exception("Brain failed, using safe default")
            self.metrics_collector.record_error("brain", "decide")
            return DecisionResult(
                action="explore",
                priority=Priority.LOW,
                reasoning="Fallback: brain unavailable",
                confidence=0.5,
                source=DecisionSource.BRAIN,
            )

    def _brain_confidence(self, snapshot: GameSnapshot) -> float:
        try:
            return self.brain.dominant_need_confidence(snapshot)
        except Exception as e:
            logger.warning(f"Brain confidence unavailable: {e}")
            return 0.5

    def remote_ready(self) -> bool:
        try:
            return bool(self.strategist.is_ready())
        except Exception as e:
            logger.warning(f"Strategist readiness check failed: {e}")
            return False

    def _remote_usable(self) -> bool:
        return self.remote_ready() and self.remote_worker_free() and self.budget.has_budget()

    @property
    def remote_in_flight(self) -> int:
        """Remote calls still holding a worker, abandoned ones included."""
        with self._in_flight_lock:
            return self._in_flight

    def remote_worker_free(self) -> bool:
        return self.remote_in_flight < REMOTE_WORKERS

    def _submit_remote(self, fn: Callable[..., Any], *args: Any) -> Future:
        """
        Run a strategist call on the worker pool.

        Raises:
            RemoteUnavailable: every worker is still busy
        """
        with self._in_flight_lock:
            if self._in_flight >= REMOTE_WORKERS:
                raise RemoteUnavailable(f"all {REMOTE_WORKERS} remote workers busy")
            self._in_flight += 1
        try:
            future = self._executor.submit(fn, *args)
        except Exception:
            self._remote_done(None)
            raise
        future.add_done_callback(self._remote_done)
        return future

    def _remote_done(self, _future: Optional[Future]) -> None:
        with self._in_flight_lock:
            self._in_flight -= 1

    def _await_remote(self, future: Future, timeout: float) -> Any:
        """
        Wait for a remote future, abandoning it on timeout.

        Raises:
            RemoteTimeout: no answer within timeout
            RemoteFailure: the strategist raised
        """
        call_start = time.perf_counter()
        try:
            return future.result(timeout=max(0.0, timeout))
        except FutureTimeout:
            future.cancel()
            raise RemoteTimeout(timeout)
        except RemoteFailure:
            raise
        except Exception as e:
            raise RemoteError(f"{self.strategist.name}: {e}") from e
        finally:
            self.metrics_collector.record_latency(
                "remote_call", (time.perf_counter() - call_start) * 1000
            )

    def _remote_decision(self, snapshot: GameSnapshot) -> DecisionResult:
        """Remote answer, or the brain's if the call fails in any way."""
        try:
            future = self._submit_remote(self.strategist.get_decision, snapshot)
            decision = self._await_remote(future, self.config.remote_timeout)
        except Exception as e:
            self._log_fallback("decide", e)
            return self._brain_decision(snapshot)

        return DecisionResult(
            action=decision.action,
            priority=decision.priority,
            reasoning=decision.reasoning or f"Remote: {decision.action}",
            confidence=decision.estimated_confidence(),
            source=DecisionSource.AI,
        )

    def _hybrid_decision(self, snapshot: GameSnapshot) -> DecisionResult:
        """
        Ask remote and brain together and keep the better-scored action.

        Scores are brain confidence * 0.7 against the remote priority's
        static confidence * 0.3. The reported confidence is the larger raw
        confidence. A failed remote side yields the brain answer as-is.
        """
        if not self.budget.try_acquire():
            return self._brain_decision(snapshot)

        deadline = time.monotonic() + self.config.remote_timeout
        try:
            future = self._submit_remote(self.strategist.get_decision, snapshot)
        except Exception as e:
            self._log_fallback("hybrid", e)
            return self._brain_decision(snapshot)
        brain_result = self._brain_decision(snapshot)

        try:
            remote: StrategistDecision = self._await_remote(future, deadline - time.monotonic())
        except Exception as e:
            self._log_fallback("hybrid", e)
            return brain_result

        remote_confidence = PRIORITY_CONFIDENCE.get(remote.priority, 0.5)
        brain_score = brain_result.confidence * BRAIN_WEIGHT
        remote_score = remote_confidence * REMOTE_WEIGHT
        remote_wins = remote_score > brain_score

        return DecisionResult(
            action=remote.action if remote_wins else brain_result.action,
            priority=remote.priority if remote_wins else brain_result.priority,
            reasoning=(
                f"Hybrid: remote suggests {remote.action}, "
                f"brain has {brain_result.confidence:.2f} confidence"
            ),
            confidence=max(brain_result.confidence, remote.estimated_confidence()),
            source=DecisionSource.HYBRID,
            insights={
                "remote": remote.reasoning,
                "brain": brain_result.reasoning,
                "winner": "remote" if remote_wins else "brain",
            },
        )

    def _log_fallback(self, operation: str, error: Exception) -> None:
        if isinstance(error, RemoteUnavailable):
            error_type = "unavailable"
        elif isinstance(error, RemoteTimeout):
            error_type = "timeout"
        else:
            error_type = "error"
        self.metrics_collector.record_error("remote", error_type)
        self.metrics_collector.increment("remote_failures")
        logger.warning(f"Remote {operation} failed ({error_type}), falling back to brain: {error}")

    def _record(self, result: DecisionResult, start: float) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        self.metrics_collector.increment(result.source.value)
        self.metrics_collector.record_latency(result.source.value, latency_ms)
        logger.latency(
            "decide",
            latency_ms,
            subsystem="router",
            source=result.source.value,
            action=result.action,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def metrics(self) -> Dict[str, Any]:
        """Decision counts by source, latencies, budget and efficiency."""
        counts = {s.value: self.metrics_collector.get_counter(s.value) for s in DecisionSource}
        decided = counts["ai"] + counts["brain"] + counts["hybrid"]
        efficiency = 100.0 if decided == 0 else counts["brain"] / decided * 100

        return {
            "total_decisions": decided + counts["cache"],
            "ai_decisions": counts["ai"],
            "brain_decisions": counts["brain"],
            "hybrid_decisions": counts["hybrid"],
            "cache_hits": counts["cache"],
            "remote_failures": self.metrics_collector.get_counter("remote_failures"),
            "remote_in_flight": self.remote_in_flight,
            "avg_latency_ms": {
                name: round(self.metrics_collector.get_latency_stats(name).avg_ms, 3)
                for name in [s.value for s in DecisionSource] + ["remote_call"]
            },
            "remote_calls_used": self.budget.used,
            "remote_calls_remaining": self.budget.remaining,
            "remote_call_cap": self.budget.cap,
            "cache_size": len(self.cache),
            "efficiency": round(efficiency, 1),
        }

    def performance_report(self) -> str:
        m = self.metrics()
        lat = m["avg_latency_ms"]
        return "\n".join([
            "Decision Router Report:",
            f"Remote Decisions: {m['ai_decisions']}",
            f"Brain Decisions: {m['brain_decisions']}",
            f"Hybrid Decisions: {m['hybrid_decisions']}",
            f"Cache Hits: {m['cache_hits']}",
            f"Efficiency: {m['efficiency']:.1f}% local",
            f"Avg Latency: brain {lat['brain']:.1f}ms, remote {lat['remote_call']:.1f}ms",
            f"Remote Calls Remaining: {m['remote_calls_remaining']}/{m['remote_call_cap']} this hour",
        ])

    def close(self) -> None:
        """Abandon outstanding remote calls and release worker threads."""
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
