"""
Continuous learner.

Owns the experience buffer and the three specialized sub-learners, applies
reported events in arrival order, and periodically retrains the action
model in the background without ever blocking decision routing.

Training is single-flight: a cycle that finds another one in progress
returns immediately. A cycle trains a private copy of the action network
and only publishes the new weights if it finishes cleanly, so a failed
cycle leaves the serving weights untouched.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import BrainConfig
from ..errors import TrainingFailure
from ..inference.engine import ACTION_TYPES, InferenceEngine, action_type_index
from ..inference.features import action_features
from ..inference.network import ACTION_NETWORK, FeedForwardNetwork
from ..memory import WorldMemory
from ..types import Position
from .combat import CombatStrategyLearner
from .events import EventChannel, EventKind, LearnerEvent
from .experience import Experience, ExperienceBuffer, Outcome
from .forecaster import ResourceForecaster
from .pathfinding import PathfindingLearner

logger = logging.getLogger(__name__)

LOOP_POLL_SECONDS = 1.0


@dataclass
class TrainingReport:
    """Result of one completed training cycle."""
    samples: int
    loss: float
    duration_ms: float
    trained_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "samples": self.samples,
            "loss": self.loss,
            "duration_ms": round(self.duration_ms, 2),
            "trained_at": self.trained_at,
        }


def build_labels(
    experiences: Sequence[Experience],
    failure_penalty: float = 0.01,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Turn completed experiences into (inputs, label distributions).

    Success puts all label mass on the taken action. Failure spreads
    1/|actions| everywhere, leaves failure_penalty on the taken action and
    renormalizes the row. Experiences whose action has no model class, or
    whose feature vector is not the action model's input width, are
    skipped.
    """
    n_actions = len(ACTION_TYPES)
    inputs: List[List[float]] = []
    labels: List[np.ndarray] = []

    for experience in experiences:
        if experience.outcome is None:
            continue
        if len(experience.features) != ACTION_NETWORK.input_size:
            logger.debug(f"Skipping {experience.action} experience with {len(experience.features)} features")
            continue
        idx = action_type_index(experience.action)
        if idx is None:
            continue

        label = np.zeros(n_actions, dtype=np.float32)
        if experience.outcome.success:
            label[idx] = 1.0
        else:
            label.fill(1.0 / n_actions)
            label[idx] = failure_penalty
        label /= label.sum()

        inputs.append(list(experience.features))
        labels.append(label)

    if not inputs:
        return (
            np.zeros((0, ACTION_NETWORK.input_size), dtype=np.float32),
            np.zeros((0, n_actions), dtype=np.float32),
        )
    return np.asarray(inputs, dtype=np.float32), np.stack(labels)


class ContinuousLearner:
    """
    Experience collection, event application and background retraining.

    Example:
        >>> learner = ContinuousLearner(engine, memory, BrainConfig(training_enabled=False))
        >>> learner.record_decision("mine", GameSnapshot())
        >>> learner.record_outcome("mine", success=True, reward=3.0)
        True
        >>> learner.drain_outcomes()
        1
    """

    def __init__(
        self,
        engine: InferenceEngine,
        memory: WorldMemory,
        config: Optional[BrainConfig] = None,
        channel: Optional[EventChannel] = None,
        save_hook: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or BrainConfig()
        self.engine = engine
        self.memory = memory
        self.channel = channel or EventChannel()
        self.save_hook = save_hook
        self._clock = clock

        self.buffer = ExperienceBuffer(self.config.experience_capacity, seed=self.config.seed)
        self.forecaster = ResourceForecaster()
        self.combat = CombatStrategyLearner()
        self.pathfinding = PathfindingLearner()

        self._trainee = FeedForwardNetwork(
            ACTION_NETWORK,
            seed=self.config.seed,
            learning_rate=self.config.learning_rate,
        )
        self._training_lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Stats
        self.training_runs = 0
        self.training_failures = 0
        self.training_skips = 0
        self.unmatched_outcomes = 0
        self.discarded_events = 0
        self.last_report: Optional[TrainingReport] = None
        self.last_save_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_decision(
        self,
        action: str,
        snapshot: Any,
        confidence: float = 0.5,
        timestamp: Optional[float] = None,
    ) -> Experience:
        """Store a routed decision as a pending experience."""
        experience = Experience(
            features=action_features(snapshot).tolist(),
            action=action,
            timestamp=self._clock() if timestamp is None else timestamp,
            confidence=confidence,
        )
        self.buffer.add(experience)
        return experience

    def record_outcome(self, action: str, success: bool, reward: float = 0.0, duration: float = 0.0) -> bool:
        """Queue an outcome report. Applied in order by drain_outcomes()."""
        return self.channel.put(
            EventKind.OUTCOME,
            {
                "action": action,
                "success": bool(success),
                "reward": float(reward),
                "duration": float(duration),
                "reported_at": self._clock(),
            },
        )

    def record_resource(
        self,
        resource_type: str,
        quantity: float,
        position: Any = None,
        timestamp: Optional[float] = None,
    ) -> bool:
        return self.channel.put(
            EventKind.RESOURCE,
            {
                "resource_type": resource_type,
                "quantity": quantity,
                "position": position,
                "timestamp": self._clock() if timestamp is None else timestamp,
            },
        )

    def record_combat(self, actor_type: str, strategy: str, outcome: str, **details: Any) -> bool:
        return self.channel.put(
            EventKind.COMBAT,
            {"actor_type": actor_type, "strategy": strategy, "outcome": outcome, **details},
        )

    def record_path(
        self,
        start: Any,
        end: Any,
        duration_ms: float,
        distance: float,
        success: bool,
        obstacles: int = 0,
    ) -> bool:
        """
        Queue a traversal report.

        Raises:
            ValueError: start or end is missing or not a position
        """
        try:
            start_pos, end_pos = Position.from_any(start), Position.from_any(end)
        except (TypeError, ValueError) as e:
            raise ValueError(f"bad path position: {e}") from e
        if start_pos is None or end_pos is None:
            raise ValueError("path events need both a start and an end position")
        return self.channel.put(
            EventKind.PATH,
            {
                "start": start_pos,
                "end": end_pos,
                "duration_ms": duration_ms,
                "distance": distance,
                "success": success,
                "obstacles": obstacles,
            },
        )

    # ------------------------------------------------------------------
    # Applying events
    # ------------------------------------------------------------------

    def drain_outcomes(self, max_items: Optional[int] = None) -> int:
        """
        Apply queued events in the order they were received.

        An event that fails to apply is logged and counted in
        discarded_events; the events behind it are still applied.

        Returns:
            Number of events applied
        """
        with self._drain_lock:
            applied = 0
            for event in self.channel.drain(max_items):
                try:
                    self._apply(event)
                    applied += 1
                except Exception as e:
                    self.discarded_events += 1
                    logger.warning(
                        f"Discarding {event.kind.value} event #{event.sequence}: {type(e).__name__}: {e}"
                    )
            return applied

    def _apply(self, event: LearnerEvent) -> None:
        p = event.payload
        if event.kind == EventKind.OUTCOME:
            outcome = Outcome(success=p["success"], reward=p["reward"], duration=p["duration"])
            filled = self.buffer.fill_outcome(p["action"], outcome, before=p.get("reported_at"))
            if filled is None:
                self.unmatched_outcomes += 1
                logger.debug(f"No pending decision for outcome of {p['action']}")
            self.memory.record_outcome(p["action"], p["success"], p["reward"])
        elif event.kind == EventKind.RESOURCE:
            self.forecaster.record(p["resource_type"], p["quantity"], p.get("position"), p.get("timestamp"))
        elif event.kind == EventKind.COMBAT:
            details = {k: v for k, v in p.items() if k not in ("actor_type", "strategy", "outcome")}
            self.combat.record(p["actor_type"], p["strategy"], p["outcome"], **details)
        elif event.kind == EventKind.PATH:
            self.pathfinding.record(
                p["start"], p["end"], p["duration_ms"], p["distance"], p["success"], p.get("obstacles", 0)
            )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    @property
    def training_in_flight(self) -> bool:
        return self._training_lock.locked()

    def train(self) -> Optional[TrainingReport]:
        """
        Run one training cycle for the action model.

        Returns None (without waiting) if a cycle is already running, if
        fewer than min_training_samples experiences are complete, or if the
        cycle failed.
        """
        if not self._training_lock.acquire(blocking=False):
            logger.debug("Training already in flight, skipping")
            return None

        try:
            completed = self.buffer.completed()
            if len(completed) < self.config.min_training_samples:
                self.training_skips += 1
                logger.debug(
                    f"Not enough completed experiences for training "
                    f"({len(completed)}/{self.config.min_training_samples})"
                )
                return None

            start = time.perf_counter()
            inputs, labels = build_labels(completed, self.config.failure_penalty)
            if len(inputs) == 0:
                raise TrainingFailure("no experiences map to a model action")

            self._trainee.set_weights(self.engine.get_weights(ACTION_NETWORK.name))
            loss = self._trainee.train(
                inputs,
                labels,
                epochs=self.config.training_epochs,
                batch_size=self.config.training_batch_size,
            )
            self.engine.swap_weights(ACTION_NETWORK.name, self._trainee.get_weights())

            report = TrainingReport(
                samples=len(inputs),
                loss=loss,
                duration_ms=(time.perf_counter() - start) * 1000,
                trained_at=self._clock(),
            )
            self.training_runs += 1
            self.last_report = report
            logger.info(f"Training cycle complete: {report.samples} samples, loss {loss:.4f}")
            return report

        except TrainingFailure as e:
            self.training_failures += 1
            logger.warning(f"Training cycle aborted, keeping previous weights: {e}")
            return None
        finally:
            self._training_lock.release()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Save models (and whatever the save hook persists)."""
        try:
            self.engine.save_models()
            if self.save_hook:
                self.save_hook()
            self.last_save_at = self._clock()
        except OSError as e:
            logger.error(f"Save failed: {e}")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "experiences": self.buffer.to_dict()["items"],
            "forecaster": self.forecaster.to_dict(),
            "combat": self.combat.to_dict(),
            "pathfinding": self.pathfinding.to_dict(),
            "stats": {
                "training_runs": self.training_runs,
                "training_failures": self.training_failures,
            },
        }

    def restore(self, data: Dict[str, Any]) -> None:
        saved = data.get("experiences", [])
        usable = [item for item in saved if len(item.get("features") or ()) == ACTION_NETWORK.input_size]
        if len(usable) < len(saved):
            logger.warning(
                f"Dropped {len(saved) - len(usable)} restored experiences "
                f"without {ACTION_NETWORK.input_size} features"
            )
        self.buffer.load(usable)
        self.forecaster.load(data.get("forecaster", {}))
        self.combat.load(data.get("combat", {}))
        self.pathfinding.load(data.get("pathfinding", {}))
        stats = data.get("stats", {})
        self.training_runs = int(stats.get("training_runs", 0))
        self.training_failures = int(stats.get("training_failures", 0))

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background drain/train/save loop (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="hybrid-brain-learner",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            f"Learner started (train every {self.config.training_interval:.0f}s, "
            f"save every {self.config.save_interval:.0f}s)"
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background loop and apply anything still queued."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.drain_outcomes()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        now = time.monotonic()
        next_train = now + self.config.training_interval
        next_save = now + self.config.save_interval
        poll = min(LOOP_POLL_SECONDS, self.config.training_interval)

        while not self._stop_event.wait(poll):
            try:
                self.drain_outcomes()
                now = time.monotonic()
                if self.config.training_enabled and now >= next_train:
                    self.train()
                    next_train = now + self.config.training_interval
                if now >= next_save:
                    self.save()
                    next_save = now + self.config.save_interval
            except Exception:
                logger.exception("Learner loop iteration failed")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        return {
            "experiences": len(self.buffer),
            "completed_experiences": len(self.buffer.completed()),
            "total_experiences": self.buffer.total_added,
            "training_runs": self.training_runs,
            "training_failures": self.training_failures,
            "training_skips": self.training_skips,
            "training_in_flight": self.training_in_flight,
            "last_training": self.last_report.to_dict() if self.last_report else None,
            "unmatched_outcomes": self.unmatched_outcomes,
            "discarded_events": self.discarded_events,
            "events": self.channel.stats(),
            "forecast_resources": self.forecaster.resource_types(),
            "combat_records": len(self.combat),
            "path_records": len(self.pathfinding),
            "running": self.running,
        }
