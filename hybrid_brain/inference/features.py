"""
Feature extraction for the scoring networks.

Each extractor turns a snapshot (plus an optional candidate) into a fixed
length float32 vector in a documented order. Ratios are in [0, 1];
inventory counts are passed through raw.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import numpy as np

from ..types import GameSnapshot, clamp

ACTION_FEATURES = (
    "health",
    "food",
    "inventory_space",
    "has_tools",
    "nearby_threats",
    "time_of_day",
    "weather_clear",
    "in_danger",
    "wood",
    "stone",
    "coal",
    "iron",
    "diamond",
    "food_count",
    "has_base",
    "has_farm",
    "exploration_progress",
    "mining_depth",
    "distance_from_home",
    "tool_durability",
)

RESOURCE_FEATURES = (
    "distance",
    "quantity",
    "value",
    "health",
    "food",
    "inventory_space",
    "urgency_level",
    "accessibility",
    "danger",
    "matches_goal",
    "tool_available",
    "weather_safe",
    "time_of_day",
    "renewable",
    "essential",
)

RISK_FEATURES = (
    "health",
    "food",
    "nearby_threats",
    "distance_from_home",
    "requires_tools",
    "duration",
    "has_escape",
    "weather_dangerous",
    "time_of_day",
    "environmental_risk",
    "tool_durability",
    "has_backup",
)

MAX_THREATS = 10.0


def _flag(value: Any) -> float:
    return 1.0 if value else 0.0


def _threats(snapshot: GameSnapshot) -> float:
    return min(snapshot.nearby_threats / MAX_THREATS, 1.0)


def as_snapshot(state: Any) -> GameSnapshot:
    """Accept a GameSnapshot or a plain dict."""
    if isinstance(state, GameSnapshot):
        return state
    return GameSnapshot.from_dict(state)


def action_features(state: Any) -> np.ndarray:
    """20-wide vector in ACTION_FEATURES order."""
    s = as_snapshot(state)
    return np.array(
        [
            clamp(s.health),
            clamp(s.food),
            clamp(s.inventory_space),
            _flag(s.has_tools),
            _threats(s),
            s.time_fraction,
            _flag(s.weather_clear),
            _flag(s.in_danger),
            s.resource_count("wood"),
            s.resource_count("stone"),
            s.resource_count("coal"),
            s.resource_count("iron"),
            s.resource_count("diamond"),
            s.resource_count("food"),
            _flag(s.has_base),
            _flag(s.has_farm),
            clamp(s.exploration_progress),
            s.mining_depth,
            s.distance_from_home,
            clamp(s.tool_durability if s.tool_durability is not None else 1.0),
        ],
        dtype=np.float32,
    )


def resource_features(resource: Mapping[str, Any], state: Any) -> np.ndarray:
    """
    15-wide vector in RESOURCE_FEATURES order.

    resource keys: type, distance, quantity, value, accessibility, danger,
    renewable, essential. Missing quantity/value/accessibility default to 1.
    """
    s = as_snapshot(state)
    return np.array(
        [
            float(resource.get("distance", 0.0)),
            float(resource.get("quantity") or 1.0),
            float(resource.get("value") or 1.0),
            clamp(s.health),
            clamp(s.food),
            clamp(s.inventory_space),
            clamp(s.urgency_level),
            float(resource.get("accessibility") or 1.0),
            clamp(float(resource.get("danger", 0.0))),
            _flag(s.current_goal is not None and s.current_goal == resource.get("type")),
            _flag(s.tool_available),
            _flag(not s.weather_dangerous),
            s.time_fraction,
            _flag(resource.get("renewable")),
            _flag(resource.get("essential")),
        ],
        dtype=np.float32,
    )


def risk_features(action: Optional[Mapping[str, Any]], state: Any) -> np.ndarray:
    """
    12-wide vector in RISK_FEATURES order.

    action keys: requires_tools, duration, environmental_risk.
    """
    s = as_snapshot(state)
    action = action or {}
    return np.array(
        [
            clamp(s.health),
            clamp(s.food),
            _threats(s),
            s.distance_from_home,
            _flag(action.get("requires_tools")),
            float(action.get("duration", 0.0)),
            _flag(s.has_escape),
            _flag(s.weather_dangerous),
            s.time_fraction,
            clamp(float(action.get("environmental_risk", 0.0))),
            clamp(s.tool_durability if s.tool_durability is not None else 1.0),
            _flag(s.has_backup),
        ],
        dtype=np.float32,
    )


def describe(names, vector: np.ndarray) -> Dict[str, float]:
    """Pair a feature vector with its names (for logs and debugging)."""
    return {name: float(v) for name, v in zip(names, vector)}
