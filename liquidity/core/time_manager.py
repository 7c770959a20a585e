"""
TimeManager - lightweight time utilities for consistent timing across modules.

Services take a ``clock`` callable defaulting to :func:`now` so tests can
drive time explicitly.
"""

import time
from typing import Callable

Clock = Callable[[], float]


def now() -> float:
    """Return system time in seconds."""
    return time.time()


def monotonic() -> float:
    """Return a monotonic time in seconds, for measuring elapsed durations."""
    return time.perf_counter()


class ManualClock:
    """Clock whose value only moves when told to. Useful for deterministic runs."""

    def __init__(self, start: float = 0.0):
        self._value = float(start)

    def __call__(self) -> float:
        return self._value

    def advance(self, seconds: float) -> float:
        self._value += seconds
        return self._value
