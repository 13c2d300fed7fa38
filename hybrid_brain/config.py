"""
Configuration for the hybrid decision engine.

Values can come from defaults, a JSON/YAML file or HYBRID_BRAIN_*
environment variables. Every value is clamped to a safe range on
construction, so a bad file never produces a broken engine.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "HYBRID_BRAIN_"


@dataclass
class BrainConfig:
    """
    Engine configuration.

    Attributes:
        remote_calls_per_hour: Hard ceiling on remote strategist calls
        remote_timeout: Seconds before a remote call is abandoned
        decision_cache_ttl: Router cache lifetime in seconds
        inference_cache_ttl: Inference result cache lifetime in seconds
        latency_budget_ms: Inference latency target, reported only
        training_interval: Seconds between training cycles
        save_interval: Seconds between model/state saves
        min_training_samples: Completed experiences needed to train
        experience_capacity: Experience ring buffer size
        training_epochs: Gradient epochs per training cycle
        training_batch_size: Minibatch size for training
        learning_rate: Optimizer step size
        failure_penalty: Label mass left on a failed action before renormalizing
        model_dir: Directory holding one subdirectory per model
        state_dir: Directory for memory/learner snapshots
        ml_enabled: Use the local scoring models
        training_enabled: Run the background training loop
        log_level: Root log level
        log_dir: Directory for rotating log files (None = console only)
    """
    # Router
    remote_calls_per_hour: int = 100
    remote_timeout: float = 5.0
    decision_cache_ttl: float = 300.0
    complexity_threshold: float = 0.7
    urgency_threshold: float = 0.8
    confidence_threshold: float = 0.6

    # Inference
    inference_cache_ttl: float = 60.0
    latency_budget_ms: float = 50.0

    # Learning
    training_interval: float = 300.0
    save_interval: float = 300.0
    min_training_samples: int = 50
    experience_capacity: int = 1000
    training_epochs: int = 5
    training_batch_size: int = 32
    learning_rate: float = 0.001
    failure_penalty: float = 0.01

    # Storage
    model_dir: str = "./models"
    state_dir: str = "./state"

    # Switches
    ml_enabled: bool = True
    training_enabled: bool = True
    seed: Optional[int] = None

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    def __post_init__(self):
        """Clamp every numeric parameter to a safe range."""
        self.remote_calls_per_hour = max(0, int(self.remote_calls_per_hour))
        self.remote_timeout = max(0.05, min(120.0, float(self.remote_timeout)))
        self.decision_cache_ttl = max(0.0, float(self.decision_cache_ttl))
        self.complexity_threshold = max(0.0, min(1.0, float(self.complexity_threshold)))
        self.urgency_threshold = max(0.0, min(1.0, float(self.urgency_threshold)))
        self.confidence_threshold = max(0.0, min(1.0, float(self.confidence_threshold)))
        self.inference_cache_ttl = max(0.0, float(self.inference_cache_ttl))
        self.latency_budget_ms = max(1.0, float(self.latency_budget_ms))
        self.training_interval = max(1.0, float(self.training_interval))
        self.save_interval = max(1.0, float(self.save_interval))
        self.min_training_samples = max(1, int(self.min_training_samples))
        self.experience_capacity = max(1, int(self.experience_capacity))
        self.training_epochs = max(1, min(100, int(self.training_epochs)))
        self.training_batch_size = max(1, int(self.training_batch_size))
        self.learning_rate = max(1e-6, min(1.0, float(self.learning_rate)))
        self.failure_penalty = max(0.0, min(1.0, float(self.failure_penalty)))
        self.log_level = str(self.log_level).upper()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BrainConfig":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["BrainConfig"] = None,
    ) -> "BrainConfig":
        """
        Overlay HYBRID_BRAIN_* environment variables onto a base config.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            base: Starting config (defaults to built-in defaults)

        Returns:
            New BrainConfig
        """
        environ = os.environ if environ is None else environ
        data = (base or cls()).to_dict()

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                data[f.name] = _coerce(raw, data[f.name], f.name)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}{f.name.upper()}={raw!r}")

        return cls.from_dict(data)

    def save(self, path: str) -> None:
        """Save config to a JSON or YAML file (by extension)."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.endswith((".yaml", ".yml")):
                yaml.safe_dump(self.to_dict(), f, sort_keys=True)
            else:
                json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> Optional["BrainConfig"]:
        """Load config from JSON or YAML file. Returns None if unreadable."""
        if not os.path.exists(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()

            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(content) or {}
            else:
                data = json.loads(content)

            return cls.from_dict(data)

        except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return None


def _coerce(raw: str, current: Any, name: str) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(raw)
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if current is None and name == "seed":
        return int(raw)
    if current is None and raw.strip() == "":
        return None
    return raw


class BrainPresets:
    """Pre-configured setups."""

    @staticmethod
    def default() -> BrainConfig:
        return BrainConfig()

    @staticmethod
    def offline() -> BrainConfig:
        """No remote calls at all; brain only."""
        return BrainConfig(remote_calls_per_hour=0)

    @staticmethod
    def deterministic_test(seed: int = 42) -> BrainConfig:
        """Seeded, no background training, short intervals."""
        return BrainConfig(
            seed=seed,
            training_enabled=False,
            remote_timeout=1.0,
        )


def load_config(path: Optional[str] = None) -> BrainConfig:
    """
    Resolve the effective configuration.

    File values (if a readable file is given) are applied first, then
    environment variables on top.
    """
    base = BrainConfig.load(path) if path else None
    return BrainConfig.from_env(base=base)
