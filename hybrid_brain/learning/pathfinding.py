"""
Route efficiency learning.

Scores routes by coarse (origin chunk, destination chunk) key and tells
the navigator whether a previously used route is worth reusing.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from ..types import Position

ROUTE_CHUNK = 16
MIN_ROUTE_SAMPLES = 3
REUSE_SUCCESS_RATE = 0.8
CONFIDENCE_SATURATION = 20
MAX_PATH_HISTORY = 300


@dataclass
class RouteScore:
    successes: int = 0
    failures: int = 0
    total_duration: float = 0.0   # ms, successful runs only
    total_distance: float = 0.0   # blocks, successful runs only
    avg_efficiency: float = 0.0   # blocks per second

    @property
    def attempts(self) -> int:
        return self.successes + self.failures

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successes": self.successes,
            "failures": self.failures,
            "total_duration": self.total_duration,
            "total_distance": self.total_distance,
            "avg_efficiency": self.avg_efficiency,
        }


@dataclass
class PathRecord:
    route_key: str
    duration_ms: float
    distance: float
    success: bool
    obstacles: int = 0
    timestamp: float = field(default_factory=time.time)


def route_key(start: Position, end: Position) -> str:
    """'sx,sz-ex,ez' in 16-unit chunks."""
    return f"{start.chunk_key(ROUTE_CHUNK)}-{end.chunk_key(ROUTE_CHUNK)}"


class PathfindingLearner:
    """Per-route success and efficiency tracker."""

    def __init__(self, max_history: int = MAX_PATH_HISTORY):
        self._records: Deque[PathRecord] = deque(maxlen=max_history)
        self._routes: Dict[str, RouteScore] = {}
        self._lock = threading.Lock()

    def record(
        self,
        start: Any,
        end: Any,
        duration_ms: float,
        distance: float,
        success: bool,
        obstacles: int = 0,
    ) -> RouteScore:
        """Fold one completed (or failed) traversal into its route score."""
        key = route_key(Position.from_any(start), Position.from_any(end))
        with self._lock:
            self._records.append(
                PathRecord(
                    route_key=key,
                    duration_ms=float(duration_ms),
                    distance=float(distance),
                    success=bool(success),
                    obstacles=obstacles,
                )
            )
            score = self._routes.setdefault(key, RouteScore())
            if success:
                score.successes += 1
                score.total_duration += duration_ms
                score.total_distance += distance
                seconds = duration_ms / 1000.0
                efficiency = distance / seconds if seconds > 0 else 0.0
                score.avg_efficiency = (
                    score.avg_efficiency * (score.successes - 1) + efficiency
                ) / score.successes
            else:
                score.failures += 1
            return score

    def optimal_route(self, start: Any, end: Any) -> Dict[str, Any]:
        """Recommend use_cached or explore_new for this route."""
        key = route_key(Position.from_any(start), Position.from_any(end))
        with self._lock:
            score = self._routes.get(key)
            if score is None or score.attempts < MIN_ROUTE_SAMPLES:
                return {"recommendation": "default", "confidence": 0.5, "reason": "insufficient_data"}

            success_rate = score.success_rate
            return {
                "recommendation": "use_cached" if success_rate > REUSE_SUCCESS_RATE else "explore_new",
                "avg_duration": score.total_duration / score.successes if score.successes else None,
                "avg_efficiency": score.avg_efficiency,
                "success_rate": success_rate,
                "confidence": min(0.95, score.attempts / CONFIDENCE_SATURATION),
            }

    def route_score(self, key: str) -> Optional[RouteScore]:
        with self._lock:
            return self._routes.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {key: score.to_dict() for key, score in self._routes.items()}

    def load(self, data: Dict[str, Any]) -> None:
        with self._lock:
            self._routes = {key: RouteScore(**score) for key, score in data.items()}
