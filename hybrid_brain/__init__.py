"""
Hybrid Brain - decision engine for autonomous game agents.

Routes every decision between a fast local brain (world memory plus small
numpy scoring networks) and an optional rate-limited remote strategist,
and keeps the local models learning from reported outcomes.

Example:
    >>> from hybrid_brain import HybridBrain, BrainPresets
    >>> with HybridBrain(BrainPresets.offline()) as brain:
    ...     result = brain.decide({"type": "reactive", "urgency": 0.9})
"""

__version__ = "0.3.0"

from .config import BrainConfig, BrainPresets, load_config
from .core import HybridBrain
from .errors import (
    BrainError,
    ModelLoadFailure,
    RemoteError,
    RemoteFailure,
    RemoteTimeout,
    RemoteUnavailable,
    TrainingFailure,
)
from .router import DecisionRouter
from .strategist import (
    LlamaStrategist,
    NullStrategist,
    RemoteStrategist,
    StrategistDecision,
    TextModelStrategist,
    build_strategist,
)
from .types import (
    DecisionRequest,
    DecisionResult,
    DecisionSource,
    DecisionType,
    GameSnapshot,
    Position,
    Priority,
)

__all__ = [
    "__version__",

    # Engine
    "HybridBrain",
    "DecisionRouter",

    # Config
    "BrainConfig",
    "BrainPresets",
    "load_config",

    # Types
    "DecisionRequest",
    "DecisionResult",
    "DecisionSource",
    "DecisionType",
    "GameSnapshot",
    "Position",
    "Priority",

    # Strategists
    "RemoteStrategist",
    "NullStrategist",
    "TextModelStrategist",
    "LlamaStrategist",
    "StrategistDecision",
    "build_strategist",

    # Errors
    "BrainError",
    "RemoteFailure",
    "RemoteUnavailable",
    "RemoteTimeout",
    "RemoteError",
    "ModelLoadFailure",
    "TrainingFailure",
]
