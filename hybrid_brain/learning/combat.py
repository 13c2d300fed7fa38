"""
Combat strategy learning.

Tallies win/death/flee outcomes per (actor type, strategy) and recommends
the best-scoring strategy once a cell has enough samples.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..types import Position

STRATEGIES = ("melee", "kiting", "blocking", "sprint_hit", "bow")
BASELINE_STRATEGY = "melee"
COMBAT_OUTCOMES = ("win", "death", "flee")
MIN_STRATEGY_SAMPLES = 3
MIN_SPAWN_SAMPLES = 5
SPAWN_CELL = 32
MAX_COMBAT_HISTORY = 500


@dataclass
class StrategyScore:
    wins: int = 0
    losses: int = 0
    flees: int = 0

    @property
    def total(self) -> int:
        return self.wins + self.losses + self.flees

    @property
    def score(self) -> float:
        """winRate * 100 - lossRate * 50."""
        if self.total == 0:
            return 0.0
        return (self.wins / self.total) * 100 - (self.losses / self.total) * 50

    def to_dict(self) -> Dict[str, int]:
        return {"wins": self.wins, "losses": self.losses, "flees": self.flees}


@dataclass
class ActorPattern:
    """Rolling averages of observed attacker behaviour."""
    avg_attack_interval: float = 0.0
    avg_damage: float = 0.0
    observations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_attack_interval": self.avg_attack_interval,
            "avg_damage": self.avg_damage,
            "observations": self.observations,
        }


@dataclass
class CombatRecord:
    actor_type: str
    strategy: str
    outcome: str
    health_lost: float = 0.0
    damage_dealt: float = 0.0
    duration: float = 0.0
    position: Optional[Position] = None
    timestamp: float = field(default_factory=time.time)


class CombatStrategyLearner:
    """
    Per-actor strategy scorer.

    Example:
        >>> learner = CombatStrategyLearner()
        >>> learner.best_strategy("zombie")["strategy"]
        'melee'
    """

    def __init__(self, max_history: int = MAX_COMBAT_HISTORY):
        self._records: Deque[CombatRecord] = deque(maxlen=max_history)
        self._scores: Dict[Tuple[str, str], StrategyScore] = {}
        self._patterns: Dict[str, ActorPattern] = {}
        self._lock = threading.Lock()

    def record(
        self,
        actor_type: str,
        strategy: str,
        outcome: str,
        health_lost: float = 0.0,
        damage_dealt: float = 0.0,
        duration: float = 0.0,
        position: Any = None,
        behavior: Optional[Dict[str, float]] = None,
    ) -> None:
        """
        Record one fight.

        Args:
            outcome: "win", "death" or "flee"
            behavior: Optional observed {attack_interval, damage} of the actor

        Raises:
            ValueError: unknown outcome
        """
        if outcome not in COMBAT_OUTCOMES:
            raise ValueError(f"unknown combat outcome: {outcome!r}")

        with self._lock:
            self._records.append(
                CombatRecord(
                    actor_type=actor_type,
                    strategy=strategy,
                    outcome=outcome,
                    health_lost=health_lost,
                    damage_dealt=damage_dealt,
                    duration=duration,
                    position=Position.from_any(position),
                )
            )

            score = self._scores.setdefault((actor_type, strategy), StrategyScore())
            if outcome == "win":
                score.wins += 1
            elif outcome == "death":
                score.losses += 1
            else:
                score.flees += 1

            if behavior:
                self._learn_pattern(actor_type, behavior)

    def _learn_pattern(self, actor_type: str, behavior: Dict[str, float]) -> None:
        pattern = self._patterns.setdefault(actor_type, ActorPattern())
        pattern.observations += 1
        n = pattern.observations
        if behavior.get("attack_interval"):
            pattern.avg_attack_interval = (pattern.avg_attack_interval * (n - 1) + behavior["attack_interval"]) / n
        if behavior.get("damage"):
            pattern.avg_damage = (pattern.avg_damage * (n - 1) + behavior["damage"]) / n

    def best_strategy(self, actor_type: str) -> Dict[str, Any]:
        """Highest-scoring strategy with at least 3 samples, else the baseline."""
        best = BASELINE_STRATEGY
        best_score = float("-inf")

        with self._lock:
            for strategy in STRATEGIES:
                score = self._scores.get((actor_type, strategy))
                if score is None or score.total < MIN_STRATEGY_SAMPLES:
                    continue
                if score.score > best_score:
                    best_score = score.score
                    best = strategy
            pattern = self._patterns.get(actor_type)

        return {
            "strategy": best,
            "confidence": min(0.95, best_score / 100) if best_score > 0 else 0.5,
            "pattern": pattern.to_dict() if pattern else None,
        }

    def strategy_score(self, actor_type: str, strategy: str) -> Optional[StrategyScore]:
        with self._lock:
            return self._scores.get((actor_type, strategy))

    def predict_spawn_locations(self, actor_type: str) -> List[Dict[str, Any]]:
        """Most frequent 32-unit cells this actor was fought in (needs >= 5 fights)."""
        with self._lock:
            records = [r for r in self._records if r.actor_type == actor_type]
        if len(records) < MIN_SPAWN_SAMPLES:
            return []

        counts: Dict[Tuple[int, int], int] = {}
        for record in records:
            if record.position is None:
                continue
            cell = (int(record.position.x // SPAWN_CELL), int(record.position.z // SPAWN_CELL))
            counts[cell] = counts.get(cell, 0) + 1

        ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:5]
        return [
            {
                "position": {
                    "x": cx * SPAWN_CELL + SPAWN_CELL / 2,
                    "z": cz * SPAWN_CELL + SPAWN_CELL / 2,
                },
                "frequency": count / len(records),
            }
            for (cx, cz), count in ranked
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "scores": [
                    {"actor_type": a, "strategy": s, **score.to_dict()}
                    for (a, s), score in self._scores.items()
                ],
                "patterns": {a: p.to_dict() for a, p in self._patterns.items()},
            }

    def load(self, data: Dict[str, Any]) -> None:
        with self._lock:
            self._scores = {
                (row["actor_type"], row["strategy"]): StrategyScore(
                    wins=row.get("wins", 0),
                    losses=row.get("losses", 0),
                    flees=row.get("flees", 0),
                )
                for row in data.get("scores", [])
            }
            self._patterns = {
                actor: ActorPattern(**pattern)
                for actor, pattern in data.get("patterns", {}).items()
            }
