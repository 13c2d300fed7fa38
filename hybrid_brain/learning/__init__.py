"""
Learning layer for the hybrid decision engine.

Everything here learns from outcomes reported after the fact:

- ExperienceBuffer: bounded (state, action, outcome) history with back-fill
- ContinuousLearner: applies reported events in order and retrains the
  action model in the background (single-flight)
- ResourceForecaster: per-resource availability trend
- CombatStrategyLearner: per-actor strategy win/loss scoring
- PathfindingLearner: per-route success rate and efficiency

Data flows one way into this package; the only thing it publishes back is
new action-model weights.
"""

from .experience import Experience, ExperienceBuffer, Outcome
from .events import DropPolicy, EventChannel, EventKind, LearnerEvent
from .forecaster import ResourceForecaster
from .combat import CombatStrategyLearner, StrategyScore, STRATEGIES
from .pathfinding import PathfindingLearner, RouteScore, route_key
from .trainer import ContinuousLearner, TrainingReport, build_labels

__all__ = [
    # Experience
    "Experience",
    "ExperienceBuffer",
    "Outcome",

    # Event channel
    "EventChannel",
    "EventKind",
    "LearnerEvent",
    "DropPolicy",

    # Sub-learners
    "ResourceForecaster",
    "CombatStrategyLearner",
    "StrategyScore",
    "STRATEGIES",
    "PathfindingLearner",
    "RouteScore",
    "route_key",

    # Trainer
    "ContinuousLearner",
    "TrainingReport",
    "build_labels",
]
