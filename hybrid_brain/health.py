"""
Health reporting for a running engine.

``HealthChecker`` is a named registry of zero-argument callables returning
``HealthStatus``. ``component_checks`` builds the set registered by
``HybridBrain``: strategist readiness, remote budget, inference latency,
learner backlog and disk space.
"""
from __future__ import annotations

import importlib.metadata
import importlib.util
import logging
import os
import platform
import shutil
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

MIN_PYTHON = (3, 9)

# import name -> distribution name
CORE_MODULES = {"numpy": "numpy", "torch": "torch", "pydantic": "pydantic", "yaml": "pyyaml"}
EXTRA_MODULES = {"fastapi": "fastapi", "uvicorn": "uvicorn", "llama_cpp": "llama-cpp-python"}

Check = Callable[[], "HealthStatus"]


@dataclass
class HealthStatus:
    name: str
    healthy: bool
    message: str = ""
    latency_ms: float = 0.0
    details: Dict = field(default_factory=dict)

    def flatten(self) -> Dict:
        row = asdict(self)
        row["latency_ms"] = round(self.latency_ms, 2)
        row.update(row.pop("details"))
        return row


@dataclass
class SystemHealth:
    healthy: bool
    checks: List[HealthStatus]
    timestamp: str

    def to_dict(self) -> Dict:
        return {
            "healthy": self.healthy,
            "timestamp": self.timestamp,
            "checks": [status.flatten() for status in self.checks],
        }


def _installed_version(module: str, dist: str):
    if importlib.util.find_spec(module) is None:
        return None
    try:
        return importlib.metadata.version(dist)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def python_version_check() -> HealthStatus:
    current = sys.version_info[:3]
    return HealthStatus(
        "python_version",
        healthy=current >= MIN_PYTHON,
        message=f"{platform.python_implementation()} {'.'.join(map(str, current))}",
        details={"required": "%d.%d+" % MIN_PYTHON},
    )


def dependencies_check() -> HealthStatus:
    core = {dist: _installed_version(mod, dist) for mod, dist in CORE_MODULES.items()}
    missing = sorted(dist for dist, version in core.items() if version is None)
    return HealthStatus(
        "dependencies",
        healthy=not missing,
        message="Missing: " + ", ".join(missing) if missing else "OK",
        details={
            "core": core,
            "optional": {dist: _installed_version(mod, dist) for mod, dist in EXTRA_MODULES.items()},
        },
    )


class HealthChecker:
    """
    Runs registered checks, timing each one.

    A check that raises is reported as unhealthy with the exception text;
    asking for an unregistered name yields an unhealthy "Unknown check" status.
    """

    def __init__(self, include_defaults: bool = True):
        self._checks: Dict[str, Check] = {}
        if include_defaults:
            self.add_check("python_version", python_version_check)
            self.add_check("dependencies", dependencies_check)

    def add_check(self, name: str, check_fn: Check) -> None:
        self._checks[name] = check_fn

    def run_check(self, name: str) -> HealthStatus:
        check = self._checks.get(name)
        if check is None:
            return HealthStatus(name, False, f"Unknown check: {name}")

        started = time.perf_counter()
        try:
            status = check()
        except Exception as e:
            logger.warning(f"Health check {name} raised: {e}")
            status = HealthStatus(name, False, f"Check failed: {e}")
        status.latency_ms = (time.perf_counter() - started) * 1000
        return status

    def run_all(self) -> SystemHealth:
        results = [self.run_check(name) for name in list(self._checks)]
        return SystemHealth(
            healthy=all(status.healthy for status in results),
            checks=results,
            timestamp=datetime.now().isoformat(),
        )


def check_disk_space(path: str, min_free_gb: float = 0.1) -> HealthStatus:
    """Free space where models and snapshots are written."""
    target = path if os.path.exists(path) else os.getcwd()
    usage = shutil.disk_usage(target)
    free_gb = usage.free / (1024 ** 3)
    return HealthStatus(
        name="disk_space",
        healthy=free_gb > min_free_gb,
        message=f"{free_gb:.1f}GB free",
        details={"path": target, "free_gb": round(free_gb, 2)},
    )


def component_checks(brain: Any) -> Dict[str, Callable[[], HealthStatus]]:
    """
    Health checks for a wired HybridBrain.

    The strategist and budget checks never report unhealthy: the engine is
    designed to run on the brain alone.
    """
    def strategist() -> HealthStatus:
        ready = brain.router.remote_ready()
        return HealthStatus(
            name="strategist",
            healthy=True,
            message=f"{brain.router.strategist.name} {'ready' if ready else 'not ready'}",
            details={"ready": ready},
        )

    def budget() -> HealthStatus:
        stats = brain.router.budget.stats()
        return HealthStatus(
            name="remote_budget",
            healthy=True,
            message=f"{stats['remaining']}/{stats['cap']} remote calls left this hour",
            details={"remaining": stats["remaining"], "cap": stats["cap"]},
        )

    def inference() -> HealthStatus:
        stats = brain.engine.stats()
        return HealthStatus(
            name="inference",
            healthy=stats["target_met"],
            message=(
                f"avg {stats['avg_latency_ms']:.2f}ms "
                f"(budget {stats['latency_budget_ms']:.0f}ms)"
                if stats["enabled"] else "disabled"
            ),
            details={"enabled": stats["enabled"], "budget_misses": stats["budget_misses"]},
        )

    def learner() -> HealthStatus:
        stats = brain.learner.stats()
        events = stats["events"]
        healthy = events["current_size"] < events["maxsize"]
        return HealthStatus(
            name="learner",
            healthy=healthy,
            message=f"{stats['training_runs']} training runs, {events['current_size']} queued events",
            details={
                "running": stats["running"],
                "training_failures": stats["training_failures"],
                "dropped_events": events["drop_count"],
            },
        )

    def disk() -> HealthStatus:
        return check_disk_space(brain.config.model_dir)

    return {
        "strategist": strategist,
        "remote_budget": budget,
        "inference": inference,
        "learner": learner,
        "disk_space": disk,
    }
