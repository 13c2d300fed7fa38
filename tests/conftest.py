"""
Shared fixtures for hybrid_brain tests.
"""
import threading

import pytest

from hybrid_brain.config import BrainConfig, BrainPresets
from hybrid_brain.errors import RemoteError
from hybrid_brain.strategist import RemoteStrategist, StrategistDecision


class FakeClock:
    """Manually advanced clock for TTL and budget tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedStrategist(RemoteStrategist):
    """Strategist that answers with a fixed decision and counts calls."""

    name = "scripted"

    def __init__(self, action="build_shelter", priority="high", reasoning="scripted", ready=True):
        self.decision = StrategistDecision(action=action, priority=priority, reasoning=reasoning)
        self.ready = ready
        self.calls = 0
        self._lock = threading.Lock()

    def is_ready(self) -> bool:
        return self.ready

    def get_decision(self, snapshot):
        with self._lock:
            self.calls += 1
        return self.decision


class FailingStrategist(ScriptedStrategist):
    """Strategist whose every call raises."""

    name = "failing"

    def get_decision(self, snapshot):
        with self._lock:
            self.calls += 1
        raise RuntimeError("connection reset")

    def get_plan(self, objectives):
        with self._lock:
            self.calls += 1
        raise RemoteError("plan failed")


class SlowStrategist(ScriptedStrategist):
    """Strategist that blocks until released."""

    name = "slow"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = threading.Event()

    def get_decision(self, snapshot):
        with self._lock:
            self.calls += 1
        self.release.wait(5.0)
        return self.decision


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Deterministic config writing under tmp_path."""
    cfg = BrainPresets.deterministic_test()
    cfg.model_dir = str(tmp_path / "models")
    cfg.state_dir = str(tmp_path / "state")
    return cfg


@pytest.fixture
def offline_config(tmp_path):
    cfg = BrainConfig(
        remote_calls_per_hour=0,
        training_enabled=False,
        seed=7,
        model_dir=str(tmp_path / "models"),
        state_dir=str(tmp_path / "state"),
    )
    return cfg
