"""
HybridBrain: one agent's decision engine, fully wired.

Creates every component with its own state, injects them into each other,
loads persisted models and snapshots at start, and persists them on the
save cycle and at stop. Nothing here is a process-wide singleton; two
HybridBrain instances share no state.

Example:
    >>> brain = HybridBrain(BrainPresets.offline())
    >>> brain.start()
    >>> result = brain.decide({"type": "tactical", "complexity": 0.4, "snapshot": {"health": 0.8}})
    >>> brain.report_outcome(result.action, success=True, reward=4.0)
    >>> brain.stop()
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .brain import LocalBrain
from .config import BrainConfig
from .health import HealthChecker, SystemHealth, component_checks
from .inference.engine import InferenceEngine
from .learning.trainer import ContinuousLearner, TrainingReport
from .memory import WorldMemory
from .persistence import SnapshotStore
from .router import DecisionRouter
from .strategist import RemoteStrategist
from .types import DecisionRequest, DecisionResult, Position

logger = logging.getLogger(__name__)

MEMORY_SNAPSHOT = "memory"
LEARNER_SNAPSHOT = "learner"


class HybridBrain:
    """Facade over router, memory, inference engine and learner."""

    def __init__(
        self,
        config: Optional[BrainConfig] = None,
        strategist: Optional[RemoteStrategist] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or BrainConfig()

        self.memory = WorldMemory(clock=clock)
        self.engine = InferenceEngine(self.config, clock=clock)
        self.local_brain = LocalBrain(self.memory, self.engine)
        self.router = DecisionRouter(self.local_brain, strategist, self.config, clock=clock)
        self.store = SnapshotStore(self.config.state_dir)
        self.learner = ContinuousLearner(
            self.engine,
            self.memory,
            self.config,
            save_hook=self.save_state,
            clock=clock,
        )
        self.health_checker = HealthChecker()
        for name, check in component_checks(self).items():
            self.health_checker.add_check(name, check)

        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load model artifacts and state snapshots, keeping fresh state where absent."""
        if self.config.ml_enabled:
            loaded = self.engine.load_models()
            logger.info(f"Model load: {loaded}")

        memory_data = self.store.load(MEMORY_SNAPSHOT)
        if memory_data:
            try:
                self.memory.load_dict(memory_data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring unreadable memory snapshot: {e}")

        learner_data = self.store.load(LEARNER_SNAPSHOT)
        if learner_data:
            try:
                self.learner.restore(learner_data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring unreadable learner snapshot: {e}")

    def start(self, load: bool = True) -> None:
        if self._started:
            return
        if load:
            self.load()
        self.learner.start()
        self._started = True
        logger.info("Hybrid brain started")

    def stop(self) -> None:
        """Stop background work, apply queued events and persist everything."""
        if self._started:
            self.learner.stop()
            self._started = False
        else:
            self.learner.drain_outcomes()
        self.persist()
        self.router.close()
        logger.info("Hybrid brain stopped")

    def persist(self) -> None:
        self.learner.save()

    def save_state(self) -> None:
        self.store.save(MEMORY_SNAPSHOT, self.memory.to_dict())
        self.store.save(LEARNER_SNAPSHOT, self.learner.snapshot())

    def __enter__(self) -> "HybridBrain":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(self, request: Union[DecisionRequest, Mapping[str, Any]]) -> DecisionResult:
        """Route a decision and record it as a pending experience."""
        if not isinstance(request, DecisionRequest):
            request = DecisionRequest(**dict(request))

        result = self.router.decide(request)
        self.learner.record_decision(result.action, request.snapshot, result.confidence)
        return result

    def strategic_plan(self, objectives: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return self.router.strategic_plan(objectives)

    # ------------------------------------------------------------------
    # Outcome callbacks
    # ------------------------------------------------------------------

    def report_outcome(self, action: str, success: bool, reward: float = 0.0, duration: float = 0.0) -> bool:
        return self.learner.record_outcome(action, success, reward, duration)

    def report_resource(self, resource_type: str, quantity: float, position: Any = None) -> bool:
        """A resource was seen or gathered; remembered and forecast."""
        pos = Position.from_any(position)
        if pos is not None:
            self.memory.remember_resource(resource_type, pos, int(quantity))
        return self.learner.record_resource(resource_type, quantity, pos)

    def report_danger(self, position: Any, danger_type: str, severity: float = 1.0) -> None:
        self.memory.mark_danger(Position.from_any(position), danger_type, severity)

    def report_combat(self, actor_type: str, strategy: str, outcome: str, **details: Any) -> bool:
        return self.learner.record_combat(actor_type, strategy, outcome, **details)

    def report_path(
        self,
        start: Any,
        end: Any,
        duration_ms: float,
        distance: float,
        success: bool,
        obstacles: int = 0,
    ) -> bool:
        return self.learner.record_path(start, end, duration_ms, distance, success, obstacles)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def forecast(self, resource_type: str, minutes_ahead: float = 30.0) -> Dict[str, Any]:
        self.learner.drain_outcomes()
        forecast = self.learner.forecaster.predict(resource_type, minutes_ahead)
        forecast["optimal_locations"] = self.learner.forecaster.optimal_locations(resource_type)
        return forecast

    def best_strategy(self, actor_type: str) -> Dict[str, Any]:
        self.learner.drain_outcomes()
        strategy = self.learner.combat.best_strategy(actor_type)
        strategy["spawn_locations"] = self.learner.combat.predict_spawn_locations(actor_type)
        return strategy

    def optimal_route(self, start: Any, end: Any) -> Dict[str, Any]:
        self.learner.drain_outcomes()
        return self.learner.pathfinding.optimal_route(start, end)

    def train_now(self) -> Optional[TrainingReport]:
        """Apply queued events and run one training cycle immediately."""
        self.learner.drain_outcomes()
        return self.learner.train()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def metrics(self) -> Dict[str, Any]:
        return {
            "router": self.router.metrics(),
            "inference": self.engine.stats(),
            "learner": self.learner.stats(),
            "memory": self.memory.stats(),
            "persistence": self.store.stats(),
        }

    def performance_report(self) -> str:
        learner = self.learner.stats()
        inference = self.engine.stats()
        last = learner["last_training"]
        lines = [
            self.router.performance_report(),
            "",
            self.memory.report(),
            "",
            "Learning Report:",
            f"Experiences: {learner['experiences']} ({learner['completed_experiences']} completed)",
            f"Training Runs: {learner['training_runs']} (failures {learner['training_failures']})",
            f"Last Loss: {last['loss']:.4f}" if last else "Last Loss: n/a",
            f"Inference: {inference['total_inferences']} runs, "
            f"avg {inference['avg_latency_ms']:.2f}ms, "
            f"{inference['budget_misses']} over budget",
        ]
        return "\n".join(lines)

    def health(self) -> SystemHealth:
        return self.health_checker.run_all()
