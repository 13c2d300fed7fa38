"""
Experience records and the bounded buffer that holds them.

Every routed decision becomes an Experience with no outcome. When the
execution side later reports how the action went, the outcome is
back-filled onto the most recent pending experience for that action.
"""
from __future__ import annotations

import random
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence


@dataclass
class Outcome:
    """How an action turned out."""
    success: bool
    reward: float = 0.0
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "reward": self.reward, "duration": self.duration}


@dataclass
class Experience:
    """
    One recorded (state, action, outcome) tuple.

    Attributes:
        features: Action-model feature vector at decision time
        action: Action name as routed (e.g. "gather_wood")
        timestamp: When the decision was recorded
        confidence: Confidence reported with the decision
        outcome: Filled in later; None while pending
    """
    features: List[float]
    action: str
    timestamp: float = field(default_factory=time.time)
    confidence: float = 0.5
    outcome: Optional[Outcome] = None

    @property
    def completed(self) -> bool:
        return self.outcome is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "features": [float(x) for x in self.features],
            "action": self.action,
            "timestamp": self.timestamp,
            "confidence": self.confidence,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experience":
        outcome = data.get("outcome")
        return cls(
            features=[float(x) for x in data["features"]],
            action=data["action"],
            timestamp=float(data.get("timestamp", 0.0)),
            confidence=float(data.get("confidence", 0.5)),
            outcome=Outcome(**outcome) if outcome else None,
        )


class ExperienceBuffer:
    """
    Fixed-capacity ring buffer of experiences (oldest evicted first).

    Example:
        >>> buffer = ExperienceBuffer(capacity=2)
        >>> buffer.add(Experience([0.0], "mine"))
        >>> buffer.fill_outcome("mine", Outcome(success=True, reward=5.0)).action
        'mine'
    """

    def __init__(self, capacity: int = 1000, seed: Optional[int] = None):
        self.capacity = max(1, capacity)
        self._items: Deque[Experience] = deque(maxlen=self.capacity)
        self._lock = threading.Lock()
        self._rng = random.Random(seed)
        self.total_added = 0
        self.total_filled = 0

    def add(self, experience: Experience) -> None:
        with self._lock:
            self._items.append(experience)
            self.total_added += 1

    def fill_outcome(
        self,
        action: str,
        outcome: Outcome,
        before: Optional[float] = None,
    ) -> Optional[Experience]:
        """
        Attach an outcome to the most recent pending experience for action.

        Args:
            action: Action name the outcome reports on
            outcome: What happened
            before: Ignore experiences recorded after this time

        Returns:
            The updated experience, or None if nothing was pending
        """
        with self._lock:
            for experience in reversed(self._items):
                if before is not None and experience.timestamp > before:
                    continue
                if experience.action == action and experience.outcome is None:
                    experience.outcome = outcome
                    self.total_filled += 1
                    return experience
        return None

    def completed(self) -> List[Experience]:
        """Experiences with an outcome, oldest first."""
        with self._lock:
            return [e for e in self._items if e.outcome is not None]

    def pending(self, action: Optional[str] = None) -> List[Experience]:
        with self._lock:
            return [
                e for e in self._items
                if e.outcome is None and (action is None or e.action == action)
            ]

    def sample(self, n: int, completed_only: bool = True) -> List[Experience]:
        """Random sample without replacement (all of them if n >= available)."""
        pool = self.completed() if completed_only else self.items()
        if n >= len(pool):
            return pool
        return self._rng.sample(pool, n)

    def items(self) -> List[Experience]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "capacity": self.capacity,
                "total_added": self.total_added,
                "total_filled": self.total_filled,
                "items": [e.to_dict() for e in self._items],
            }

    def load(self, items: Sequence[Dict[str, Any]]) -> None:
        """Replace contents with serialized experiences (newest kept)."""
        with self._lock:
            self._items.clear()
            self._items.extend(Experience.from_dict(item) for item in items)
