"""
Per-component performance bookkeeping.

Each router, brain and inference engine owns its own collector; nothing here
is process-global. Latencies keep the last ``window`` samples per key so the
averages reflect recent behaviour rather than the whole session.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Deque, Dict, Iterator

logger = logging.getLogger(__name__)

WINDOW = 100


class LatencyStats:
    """Windowed latency samples plus lifetime count and extremes."""

    def __init__(self, max_samples: int = WINDOW):
        self._window: Deque[float] = deque(maxlen=max_samples)
        self.count = 0
        self.max_ms = 0.0
        self._min_ms = None

    def record(self, ms: float) -> None:
        self._window.append(ms)
        self.count += 1
        if ms > self.max_ms:
            self.max_ms = ms
        if self._min_ms is None or ms < self._min_ms:
            self._min_ms = ms

    @property
    def samples(self) -> int:
        return len(self._window)

    @property
    def avg_ms(self) -> float:
        n = len(self._window)
        return sum(self._window) / n if n else 0.0

    def percentile(self, p: float) -> float:
        """Nearest-rank percentile over the window; 0.0 when empty."""
        ordered = sorted(self._window)
        if not ordered:
            return 0.0
        rank = min(int(len(ordered) * p / 100), len(ordered) - 1)
        return ordered[rank]

    @property
    def p95(self) -> float:
        return self.percentile(95)

    def to_dict(self) -> Dict:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self._min_ms, 2) if self._min_ms is not None else 0,
            "max_ms": round(self.max_ms, 2),
            "p95_ms": round(self.p95, 2),
        }


@dataclass
class Stopwatch:
    """Handle yielded by :meth:`MetricsCollector.time_operation`."""
    started: float
    elapsed_ms: float = 0.0


class MetricsCollector:
    """
    Decision counters, error tallies and latency windows behind one lock.

    Error keys are ``"<subsystem>.<kind>"`` so ``summary()["errors"]`` reads
    like ``{"remote.timeout": 2}``.
    """

    def __init__(self, max_samples: int = WINDOW):
        self._lock = threading.Lock()
        self._window = max_samples
        self._created = time.monotonic()
        self._counts: Counter = Counter()
        self._errors: Counter = Counter()
        self._latency: Dict[str, LatencyStats] = {}

    def increment(self, counter: str, n: int = 1) -> int:
        with self._lock:
            self._counts[counter] += n
            return self._counts[counter]

    def get_counter(self, counter: str) -> int:
        with self._lock:
            return self._counts[counter]

    def record_error(self, subsystem: str, error_type: str = "unknown") -> None:
        key = f"{subsystem}.{error_type}"
        with self._lock:
            self._errors[key] += 1
        logger.debug(f"Error recorded: {key}")

    def get_total_errors(self) -> int:
        with self._lock:
            return sum(self._errors.values())

    def record_latency(self, operation: str, ms: float) -> None:
        with self._lock:
            if operation not in self._latency:
                self._latency[operation] = LatencyStats(self._window)
            self._latency[operation].record(ms)

    def get_latency_stats(self, operation: str) -> LatencyStats:
        """Stats for ``operation``; a fresh empty instance if never recorded."""
        with self._lock:
            return self._latency.get(operation) or LatencyStats(self._window)

    @contextmanager
    def time_operation(self, operation: str) -> Iterator[Stopwatch]:
        watch = Stopwatch(started=time.perf_counter())
        try:
            yield watch
        finally:
            watch.elapsed_ms = (time.perf_counter() - watch.started) * 1000
            self.record_latency(operation, watch.elapsed_ms)

    def summary(self) -> Dict:
        with self._lock:
            errors = dict(self._errors)
            return {
                "uptime_seconds": round(time.monotonic() - self._created, 1),
                "latencies": {op: s.to_dict() for op, s in self._latency.items()},
                "counters": dict(self._counts),
                "errors": errors,
                "totals": {"errors": sum(errors.values())},
            }

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._errors.clear()
            self._latency.clear()
            self._created = time.monotonic()
