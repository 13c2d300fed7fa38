"""
Error taxonomy for the decision engine.

None of these ever escape DecisionRouter.decide(); they are raised at the
component boundaries and turned into fallbacks by the caller.
"""
from __future__ import annotations


class BrainError(Exception):
    """Base class for all decision engine errors."""


class RemoteFailure(BrainError):
    """The remote strategist could not produce a usable decision."""


class RemoteUnavailable(RemoteFailure):
    """Strategist not ready or call budget exhausted."""


class RemoteTimeout(RemoteFailure):
    """Strategist did not answer within its timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"remote strategist timed out after {timeout:.2f}s")
        self.timeout = timeout


class RemoteError(RemoteFailure):
    """Strategist raised, or answered with something that fails validation."""


class ModelLoadFailure(BrainError):
    """Persisted model artifacts are missing, corrupt or the wrong shape."""

    def __init__(self, model_name: str, reason: str):
        super().__init__(f"could not load {model_name}: {reason}")
        self.model_name = model_name
        self.reason = reason


class TrainingFailure(BrainError):
    """A training cycle was aborted; prior weights are kept."""
