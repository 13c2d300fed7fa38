"""
Local inference engine.

Runs the three scoring networks (action, resource priority, risk) on the
decision path. Results are memoized for a short TTL, per-call latency is
measured against a soft budget, and a disabled engine degrades to neutral
answers instead of failing.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from ..cache import TTLCache
from ..config import BrainConfig
from ..errors import ModelLoadFailure
from ..metrics import LatencyStats
from .features import action_features, resource_features, risk_features
from .network import (
    ACTION_NETWORK,
    RESOURCE_NETWORK,
    RISK_NETWORK,
    FeedForwardNetwork,
    NetworkSpec,
)

logger = logging.getLogger(__name__)

ACTION_TYPES = (
    "mine",
    "farm",
    "build",
    "explore",
    "combat",
    "craft",
    "smelt",
    "rest",
    "gather",
    "trade",
)

INFERENCE_CACHE_MAX = 100
INFERENCE_CACHE_EVICT = 20

# Routed actions that don't share a prefix with an action type
ACTION_ALIASES = {
    "retreat": "rest",
    "heal": "rest",
    "eat": "rest",
    "attack": "combat",
    "fight": "combat",
}


def action_type_index(action: str) -> Optional[int]:
    """
    Index into ACTION_TYPES for a routed action name.

    "gather_wood" -> gather, "mine_stone" -> mine, "retreat" -> rest.
    Returns None for actions the action model has no class for.
    """
    name = action.lower()
    if name in ACTION_TYPES:
        return ACTION_TYPES.index(name)
    prefix = name.split("_", 1)[0]
    if prefix in ACTION_TYPES:
        return ACTION_TYPES.index(prefix)
    alias = ACTION_ALIASES.get(name)
    if alias is not None:
        return ACTION_TYPES.index(alias)
    return None


def risk_level(score: float) -> str:
    """Bucket a risk score: <0.3 low, <0.6 medium, <0.8 high, else critical."""
    if score < 0.3:
        return "low"
    if score < 0.6:
        return "medium"
    if score < 0.8:
        return "high"
    return "critical"


@dataclass
class ActionPrediction:
    """Best action plus the next three candidates."""
    action: str
    confidence: float
    alternatives: List[Dict[str, float]] = field(default_factory=list)
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "confidence": self.confidence,
            "alternatives": list(self.alternatives),
            "latency_ms": round(self.latency_ms, 3),
        }


@dataclass
class RiskAssessment:
    score: float
    level: str
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "level": self.level, "latency_ms": round(self.latency_ms, 3)}


def _canonical(value: Any) -> str:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, sort_keys=True, default=str)


class InferenceEngine:
    """
    Owner of the scoring networks.

    Example:
        >>> engine = InferenceEngine(BrainConfig(seed=1))
        >>> prediction = engine.predict_action(GameSnapshot())
        >>> prediction.action in ACTION_TYPES
        True
    """

    def __init__(
        self,
        config: Optional[BrainConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or BrainConfig()
        self.enabled = self.config.ml_enabled
        self.latency_budget_ms = self.config.latency_budget_ms

        seed = self.config.seed
        lr = self.config.learning_rate
        self.networks: Dict[str, FeedForwardNetwork] = {
            spec.name: FeedForwardNetwork(
                spec,
                seed=None if seed is None else seed + i,
                learning_rate=lr,
            )
            for i, spec in enumerate((ACTION_NETWORK, RESOURCE_NETWORK, RISK_NETWORK))
        }

        self._model_lock = threading.RLock()
        self._cache: TTLCache[Any] = TTLCache(
            ttl=self.config.inference_cache_ttl,
            max_entries=INFERENCE_CACHE_MAX,
            evict_count=INFERENCE_CACHE_EVICT,
            clock=clock,
        )
        self._stats_lock = threading.Lock()
        self._latency = LatencyStats()
        self.total_inferences = 0
        self.cache_hits = 0
        self.budget_misses = 0

    @property
    def action_network(self) -> FeedForwardNetwork:
        return self.networks[ACTION_NETWORK.name]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cached(self, key: str) -> Optional[Any]:
        value = self._cache.get(key)
        if value is not None:
            with self._stats_lock:
                self.cache_hits += 1
        return value

    def _run(self, spec: NetworkSpec, features: np.ndarray) -> tuple:
        """Forward one sample, returning (output, latency_ms)."""
        start = time.perf_counter()
        with self._model_lock:
            output = self.networks[spec.name].predict(features)
        latency_ms = (time.perf_counter() - start) * 1000

        with self._stats_lock:
            self.total_inferences += 1
            self._latency.record(latency_ms)
            if latency_ms > self.latency_budget_ms:
                self.budget_misses += 1
        if latency_ms > self.latency_budget_ms:
            logger.debug(f"{spec.name} took {latency_ms:.1f}ms (budget {self.latency_budget_ms:.0f}ms)")
        return output, latency_ms

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def predict_action(self, state: Any) -> Optional[ActionPrediction]:
        """
        Predict the best action type for a state.

        Args:
            state: GameSnapshot or snapshot dict

        Returns:
            ActionPrediction, or None when the engine is disabled
        """
        if not self.enabled:
            return None

        key = f"{ACTION_NETWORK.name}:{_canonical(state)}"
        cached = self._cached(key)
        if cached is not None:
            return cached

        probs, latency_ms = self._run(ACTION_NETWORK, action_features(state))
        order = np.argsort(-probs, kind="stable")
        best = int(order[0])
        prediction = ActionPrediction(
            action=ACTION_TYPES[best],
            confidence=float(probs[best]),
            alternatives=[
                {"action": ACTION_TYPES[int(i)], "confidence": float(probs[int(i)])}
                for i in order[1:4]
            ],
            latency_ms=latency_ms,
        )
        self._cache.set(key, prediction)
        return prediction

    def prioritize(self, resources: Sequence[Mapping[str, Any]], state: Any) -> List[Dict[str, Any]]:
        """
        Order candidate resources by learned priority, highest first.

        Each returned dict is a copy of the input with a "score" key added.
        A disabled engine returns the input order unchanged.
        """
        if not self.enabled:
            return [dict(r) for r in resources]

        scored = []
        for resource in resources:
            key = f"{RESOURCE_NETWORK.name}:{_canonical([resource, state])}"
            score = self._cached(key)
            if score is None:
                output, _ = self._run(RESOURCE_NETWORK, resource_features(resource, state))
                score = float(output[0])
                self._cache.set(key, score)
            item = dict(resource)
            item["score"] = score
            scored.append(item)

        scored.sort(key=lambda r: r["score"], reverse=True)
        return scored

    def assess_risk(self, action: Union[str, Mapping[str, Any], None], state: Any) -> RiskAssessment:
        """
        Score the risk of an action in a state.

        Returns RiskAssessment(0.5, "medium") when the engine is disabled.
        """
        if not self.enabled:
            return RiskAssessment(score=0.5, level="medium")

        if isinstance(action, str):
            action = {"type": action}

        key = f"{RISK_NETWORK.name}:{_canonical([action, state])}"
        cached = self._cached(key)
        if cached is not None:
            return cached

        output, latency_ms = self._run(RISK_NETWORK, risk_features(action, state))
        score = float(output[0])
        assessment = RiskAssessment(score=score, level=risk_level(score), latency_ms=latency_ms)
        self._cache.set(key, assessment)
        return assessment

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def get_weights(self, name: str) -> List[np.ndarray]:
        with self._model_lock:
            return self.networks[name].get_weights()

    def swap_weights(self, name: str, tensors: Sequence[np.ndarray]) -> None:
        """Publish new weights for a network and drop stale cached results."""
        with self._model_lock:
            self.networks[name].set_weights(tensors)
        self._cache.clear()

    def load_models(self, model_dir: Optional[str] = None) -> Dict[str, bool]:
        """
        Load persisted weights for every network.

        A network whose artifacts are missing or malformed keeps its fresh
        weights; the failure is logged, never raised.

        Returns:
            Map of network name -> loaded
        """
        model_dir = model_dir or self.config.model_dir
        loaded = {}
        with self._model_lock:
            for name, network in self.networks.items():
                try:
                    network.load(model_dir)
                    loaded[name] = True
                except ModelLoadFailure as e:
                    logger.warning(f"Using fresh {name}: {e.reason}")
                    loaded[name] = False
        self._cache.clear()
        return loaded

    def save_models(self, model_dir: Optional[str] = None) -> List[str]:
        """Persist every network. Returns the directories written."""
        model_dir = model_dir or self.config.model_dir
        with self._model_lock:
            paths = [network.save(model_dir) for network in self.networks.values()]
        logger.info(f"Saved {len(paths)} models to {model_dir}")
        return paths

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._cache.clear()

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            total = self.total_inferences
            hits = self.cache_hits
            avg = self._latency.avg_ms
            return {
                "enabled": self.enabled,
                "total_inferences": total,
                "cache_hits": hits,
                "cache_hit_rate": hits / (total + hits) if (total + hits) else 0.0,
                "cache_size": len(self._cache),
                "avg_latency_ms": round(avg, 3),
                "p95_latency_ms": round(self._latency.p95, 3),
                "latency_budget_ms": self.latency_budget_ms,
                "budget_misses": self.budget_misses,
                "target_met": avg <= self.latency_budget_ms,
            }
