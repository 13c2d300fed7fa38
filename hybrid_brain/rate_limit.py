"""
Remote-call budget.

The remote strategist is rate limited with a fixed number of calls per
wall-clock hour. The window resets when the clock crosses an hour
boundary, not one hour after the first call.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict

SECONDS_PER_HOUR = 3600


class HourlyCallBudget:
    """
    Thread-safe hourly call counter against a fixed cap.

    try_acquire() is the only way to spend budget; it checks and
    increments atomically, so concurrent decision flows can never
    overspend.

    Example:
        >>> budget = HourlyCallBudget(cap=2)
        >>> budget.try_acquire(), budget.try_acquire(), budget.try_acquire()
        (True, True, False)
    """

    def __init__(self, cap: int, clock: Callable[[], float] = time.time):
        self.cap = max(0, int(cap))
        self._clock = clock
        self._lock = threading.Lock()
        self._used = 0
        self._window = self._current_window()
        self._total_spent = 0
        self._total_denied = 0

    def _current_window(self) -> int:
        return int(self._clock() // SECONDS_PER_HOUR)

    def _roll(self) -> None:
        """Reset the counter if we have entered a new hour. Caller holds lock."""
        window = self._current_window()
        if window != self._window:
            self._window = window
            self._used = 0

    def try_acquire(self) -> bool:
        """
        Spend one call if any remain in the current hour.

        Returns:
            True if a call was debited, False if the budget is exhausted
        """
        with self._lock:
            self._roll()
            if self._used >= self.cap:
                self._total_denied += 1
                return False
            self._used += 1
            self._total_spent += 1
            return True

    def has_budget(self) -> bool:
        """Whether a call could be made right now (does not spend)."""
        with self._lock:
            self._roll()
            return self._used < self.cap

    @property
    def used(self) -> int:
        with self._lock:
            self._roll()
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll()
            return max(0, self.cap - self._used)

    def seconds_until_reset(self) -> float:
        now = self._clock()
        return (int(now // SECONDS_PER_HOUR) + 1) * SECONDS_PER_HOUR - now

    def reset(self) -> None:
        with self._lock:
            self._used = 0
            self._window = self._current_window()

    def stats(self) -> Dict:
        with self._lock:
            self._roll()
            return {
                "cap": self.cap,
                "used": self._used,
                "remaining": max(0, self.cap - self._used),
                "total_spent": self._total_spent,
                "total_denied": self._total_denied,
            }
