"""
Resource availability forecasting.

Keeps a bounded observation history per resource type and projects a
moving average forward along the first-half vs second-half trend.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from ..types import Position

MAX_RESOURCE_HISTORY = 500
MIN_FORECAST_SAMPLES = 10
RECENT_WINDOW = 20
TREND_THRESHOLD = 0.1
FORECAST_HORIZON_MINUTES = 30.0
MAX_FORECAST_CONFIDENCE = 0.9
REAL_DAY_SECONDS = 1200.0  # one simulated day of wall-clock time
LOCATION_CHUNK = 16


@dataclass
class ResourceObservation:
    quantity: float
    position: Optional[Position]
    timestamp: float
    time_of_day: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quantity": self.quantity,
            "position": self.position.to_dict() if self.position else None,
            "timestamp": self.timestamp,
            "time_of_day": self.time_of_day,
        }


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def trend_label(trend: float) -> str:
    if trend > TREND_THRESHOLD:
        return "increasing"
    if trend < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


class ResourceForecaster:
    """
    Per-resource time series with a simple trend forecast.

    Example:
        >>> forecaster = ResourceForecaster()
        >>> forecaster.predict("iron")["reason"]
        'insufficient_data'
    """

    def __init__(self, max_history: int = MAX_RESOURCE_HISTORY):
        self.max_history = max(1, max_history)
        self._history: Dict[str, Deque[ResourceObservation]] = {}
        self._lock = threading.Lock()

    def record(
        self,
        resource_type: str,
        quantity: float,
        position: Any = None,
        timestamp: Optional[float] = None,
    ) -> None:
        """Add one gathering observation (oldest dropped past max_history)."""
        timestamp = time.time() if timestamp is None else timestamp
        observation = ResourceObservation(
            quantity=float(quantity),
            position=Position.from_any(position),
            timestamp=timestamp,
            time_of_day=(timestamp % REAL_DAY_SECONDS) / REAL_DAY_SECONDS,
        )
        with self._lock:
            history = self._history.get(resource_type)
            if history is None:
                history = self._history[resource_type] = deque(maxlen=self.max_history)
            history.append(observation)

    def history(self, resource_type: str) -> List[ResourceObservation]:
        with self._lock:
            return list(self._history.get(resource_type, ()))

    def predict(self, resource_type: str, minutes_ahead: float = FORECAST_HORIZON_MINUTES) -> Dict[str, Any]:
        """
        Forecast the quantity per gathering minutes_ahead from now.

        Returns:
            {prediction, confidence, trend, history_samples}, or
            {prediction: None, confidence: 0, reason: "insufficient_data"}
            below 10 samples
        """
        quantities = [obs.quantity for obs in self.history(resource_type)]
        n = len(quantities)
        if n < MIN_FORECAST_SAMPLES:
            return {"prediction": None, "confidence": 0.0, "reason": "insufficient_data"}

        avg_quantity = _mean(quantities[-RECENT_WINDOW:])

        half = n // 2
        old_avg = _mean(quantities[:half])
        new_avg = _mean(quantities[-half:])
        if old_avg == 0:
            trend = 0.0 if new_avg == 0 else 1.0
        else:
            trend = (new_avg - old_avg) / old_avg

        prediction = avg_quantity * (1 + trend * (minutes_ahead / FORECAST_HORIZON_MINUTES))
        return {
            "prediction": max(0.0, prediction),
            "confidence": min(MAX_FORECAST_CONFIDENCE, n / self.max_history),
            "trend": trend_label(trend),
            "history_samples": n,
        }

    def optimal_locations(self, resource_type: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Chunk-sized cells ranked by average observed quantity."""
        cells: Dict[str, Dict[str, Any]] = {}
        for obs in self.history(resource_type):
            if obs.position is None:
                continue
            key = obs.position.chunk_key(LOCATION_CHUNK)
            cell = cells.get(key)
            if cell is None:
                cell = cells[key] = {
                    "position": obs.position.to_dict(),
                    "total_quantity": 0.0,
                    "observations": 0,
                }
            cell["total_quantity"] += obs.quantity
            cell["observations"] += 1

        ranked = []
        for cell in cells.values():
            cell["avg_quantity"] = cell["total_quantity"] / cell["observations"]
            ranked.append(cell)
        ranked.sort(key=lambda c: c["avg_quantity"], reverse=True)
        return ranked[:limit]

    def resource_types(self) -> List[str]:
        with self._lock:
            return sorted(self._history)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                rtype: [obs.to_dict() for obs in history]
                for rtype, history in self._history.items()
            }

    def load(self, data: Dict[str, Any]) -> None:
        with self._lock:
            self._history = {}
            for rtype, observations in data.items():
                history: Deque[ResourceObservation] = deque(maxlen=self.max_history)
                for obs in observations:
                    history.append(
                        ResourceObservation(
                            quantity=float(obs["quantity"]),
                            position=Position.from_any(obs.get("position")),
                            timestamp=float(obs["timestamp"]),
                            time_of_day=float(obs.get("time_of_day", 0.0)),
                        )
                    )
                self._history[rtype] = history
