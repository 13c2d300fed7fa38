"""
Core data types shared by every component of the decision engine.

The router, memory, inference engine and learner all speak in terms of
these records. World observation lives outside this package; it hands us a
GameSnapshot and we hand back a DecisionResult.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional

# Ticks in one simulated day and the night window inside it
DAY_LENGTH_TICKS = 24000
NIGHT_START_TICKS = 13000
NIGHT_END_TICKS = 23000


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]. NaN collapses to low."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return low
    return max(low, min(high, float(value)))


class DecisionType(str, Enum):
    """How much deliberation a decision deserves."""
    REACTIVE = "reactive"
    TACTICAL = "tactical"
    STRATEGIC = "strategic"


class DecisionSource(str, Enum):
    """Which decision source produced a result."""
    CACHE = "cache"
    BRAIN = "brain"
    AI = "ai"
    HYBRID = "hybrid"


class Priority(str, Enum):
    """Priority attached to a chosen action."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class Position:
    """A point in world space."""
    x: float
    y: float
    z: float

    def distance_to(self, other: "Position") -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def chunk_key(self, size: int = 16) -> str:
        """Coarse horizontal grid cell containing this position."""
        return f"{math.floor(self.x / size)},{math.floor(self.z / size)}"

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_any(cls, value: Any) -> Optional["Position"]:
        """Build a position from a Position, a dict or an (x, y, z) sequence."""
        if value is None:
            return None
        if isinstance(value, Position):
            return value
        if isinstance(value, dict):
            return cls(
                x=float(value.get("x", 0.0)),
                y=float(value.get("y", 0.0)),
                z=float(value.get("z", 0.0)),
            )
        x, y, z = value
        return cls(float(x), float(y), float(z))


@dataclass
class GameSnapshot:
    """
    Read-only view of the agent and its surroundings at one tick.

    Ratios (health, food, inventory_space, tool_durability,
    exploration_progress) are in [0, 1]. time_of_day is raw ticks in
    [0, 24000). Counts are raw.
    """
    health: float = 1.0
    food: float = 1.0
    inventory_space: float = 1.0
    nearby_threats: int = 0
    time_of_day: int = 0
    tool_durability: float = 1.0
    position: Position = field(default_factory=lambda: Position(0.0, 64.0, 0.0))
    resources: Dict[str, int] = field(default_factory=dict)

    has_tools: bool = False
    tool_available: bool = False
    weather_clear: bool = True
    weather_dangerous: bool = False
    in_danger: bool = False
    has_base: bool = False
    has_farm: bool = False
    has_escape: bool = False
    has_backup: bool = False
    exploration_progress: float = 0.0
    mining_depth: float = 0.0
    distance_from_home: float = 0.0
    urgency_level: float = 0.0
    current_goal: Optional[str] = None

    @property
    def time_fraction(self) -> float:
        """Time of day normalized into [0, 1)."""
        return (self.time_of_day % DAY_LENGTH_TICKS) / DAY_LENGTH_TICKS

    @property
    def is_night(self) -> bool:
        return NIGHT_START_TICKS < (self.time_of_day % DAY_LENGTH_TICKS) < NIGHT_END_TICKS

    def resource_count(self, resource_type: str) -> int:
        return int(self.resources.get(resource_type, 0))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["position"] = self.position.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GameSnapshot":
        """Create from a dictionary, ignoring unknown keys."""
        if not data:
            return cls()
        kwargs = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "position" in kwargs:
            kwargs["position"] = Position.from_any(kwargs["position"]) or Position(0.0, 64.0, 0.0)
        if "resources" in kwargs:
            kwargs["resources"] = dict(kwargs["resources"] or {})
        return cls(**kwargs)


@dataclass
class DecisionRequest:
    """
    One decision to be made.

    Attributes:
        type: reactive, tactical or strategic
        complexity: How hard the decision is (clamped to [0, 1])
        urgency: How soon an answer is needed (clamped to [0, 1])
        snapshot: World/agent state at request time
    """
    type: DecisionType
    complexity: float = 0.0
    urgency: float = 0.0
    snapshot: GameSnapshot = field(default_factory=GameSnapshot)

    def __post_init__(self):
        self.type = DecisionType(self.type)
        self.complexity = clamp(self.complexity)
        self.urgency = clamp(self.urgency)
        if isinstance(self.snapshot, dict):
            self.snapshot = GameSnapshot.from_dict(self.snapshot)

    def cache_key(self) -> str:
        """Key shared by requests that should reuse the same answer."""
        complexity_bucket = min(9, math.floor(self.complexity * 10))
        urgency_decile = min(9, math.floor(self.urgency * 10))
        return f"{self.type.value}|{complexity_bucket}|{urgency_decile}"


@dataclass
class DecisionResult:
    """
    The chosen action plus its provenance.

    confidence is always clamped to [0, 1].
    """
    action: str
    priority: Priority = Priority.MEDIUM
    reasoning: str = ""
    confidence: float = 0.5
    source: DecisionSource = DecisionSource.BRAIN
    timestamp: float = field(default_factory=time.time)
    insights: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.priority = Priority(self.priority)
        self.source = DecisionSource(self.source)
        self.confidence = clamp(self.confidence)

    def content(self) -> Dict[str, Any]:
        """Everything except provenance fields (source, timestamp)."""
        return {
            "action": self.action,
            "priority": self.priority.value,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "insights": dict(self.insights),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.content()
        data["source"] = self.source.value
        data["timestamp"] = self.timestamp
        return data
