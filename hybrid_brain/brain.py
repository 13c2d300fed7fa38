"""
Local brain: every decision source available without a remote call.

Combines the world memory's needs/confidence model with the inference
engine. Always answers, and never blocks on I/O.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .inference.engine import InferenceEngine
from .memory import WorldMemory
from .metrics import LatencyStats
from .types import DecisionResult, DecisionSource, GameSnapshot, Priority

logger = logging.getLogger(__name__)

HIGH_PRIORITY_THRESHOLD = 0.7
PLAN_STEP_ESTIMATE = "5 minutes"


class LocalBrain:
    """
    Heuristic + learned decision maker.

    The dominant need (highest shortage-weighted resource priority) drives
    the answer: gather it if a location is known, explore otherwise. When
    nothing is needed the action model's top choice is used.
    """

    def __init__(self, memory: WorldMemory, engine: Optional[InferenceEngine] = None):
        self.memory = memory
        self.engine = engine
        self.latency = LatencyStats()

    def dominant_need_confidence(self, snapshot: GameSnapshot) -> float:
        """Confidence for the most needed resource in this snapshot."""
        self.memory.observe(snapshot)
        resource, _ = self.memory.most_needed_resource()
        return self.memory.confidence_for_resource(resource)

    def decide(self, snapshot: GameSnapshot) -> DecisionResult:
        start = time.perf_counter()
        self.memory.observe(snapshot)

        resource, need = self.memory.most_needed_resource()
        if resource is not None:
            nearest = self.memory.find_nearest(resource, origin=snapshot.position)
            result = DecisionResult(
                action=f"gather_{resource}" if nearest else "explore",
                priority=Priority.HIGH if need > HIGH_PRIORITY_THRESHOLD else Priority.MEDIUM,
                reasoning=f"Brain: {resource} needed (priority {need:.2f})",
                confidence=self.memory.confidence_for_resource(resource),
                source=DecisionSource.BRAIN,
            )
        else:
            result = self._model_decision(snapshot)

        self._add_risk_insight(result, snapshot)
        self.latency.record((time.perf_counter() - start) * 1000)
        return result

    def _model_decision(self, snapshot: GameSnapshot) -> DecisionResult:
        prediction = None
        if self.engine is not None:
            try:
                prediction = self.engine.predict_action(snapshot)
            except Exception as e:
                logger.warning(f"Action model failed, using heuristic: {e}")

        if prediction is None:
            return DecisionResult(
                action="explore",
                priority=Priority.LOW,
                reasoning="Brain: stock targets met, exploring",
                confidence=0.5,
                source=DecisionSource.BRAIN,
            )

        return DecisionResult(
            action=prediction.action,
            priority=Priority.MEDIUM,
            reasoning=f"Brain: model suggests {prediction.action} ({prediction.confidence:.2f})",
            confidence=prediction.confidence,
            source=DecisionSource.BRAIN,
        )

    def _add_risk_insight(self, result: DecisionResult, snapshot: GameSnapshot) -> None:
        action_type = result.action.split("_", 1)[0]
        risk = self.memory.assess_risk(action_type)
        result.insights["memory_risk"] = f"{risk:.2f}"

        if self.engine is None or not self.engine.enabled:
            return
        try:
            assessment = self.engine.assess_risk(action_type, snapshot)
        except Exception as e:
            logger.warning(f"Risk model failed: {e}")
            return
        result.insights["model_risk"] = assessment.level

    def strategic_plan(self, objectives: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """One step per objective, in the order given."""
        return [
            {
                "action": objective.get("name"),
                "priority": objective.get("priority") or Priority.MEDIUM.value,
                "resources_needed": list(objective.get("resources") or []),
                "estimated_time": PLAN_STEP_ESTIMATE,
            }
            for objective in objectives
        ]
