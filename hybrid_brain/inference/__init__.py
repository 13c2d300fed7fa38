"""
Local inference layer.

Three small fixed-shape networks score the decision path fast enough to
run every tick:

- action-predictor: snapshot -> distribution over ACTION_TYPES
- resource-prioritizer: (resource, snapshot) -> priority in [0, 1]
- risk-assessor: (action, snapshot) -> risk in [0, 1]
"""

from .network import (
    ACTION_NETWORK,
    RESOURCE_NETWORK,
    RISK_NETWORK,
    FeedForwardNetwork,
    NetworkSpec,
)
from .features import (
    ACTION_FEATURES,
    RESOURCE_FEATURES,
    RISK_FEATURES,
    action_features,
    resource_features,
    risk_features,
)
from .engine import (
    ACTION_TYPES,
    ActionPrediction,
    InferenceEngine,
    RiskAssessment,
    action_type_index,
    risk_level,
)

__all__ = [
    # Networks
    "FeedForwardNetwork",
    "NetworkSpec",
    "ACTION_NETWORK",
    "RESOURCE_NETWORK",
    "RISK_NETWORK",

    # Features
    "ACTION_FEATURES",
    "RESOURCE_FEATURES",
    "RISK_FEATURES",
    "action_features",
    "resource_features",
    "risk_features",

    # Engine
    "InferenceEngine",
    "ActionPrediction",
    "RiskAssessment",
    "ACTION_TYPES",
    "action_type_index",
    "risk_level",
]
