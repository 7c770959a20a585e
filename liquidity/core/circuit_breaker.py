"""
Circuit Breaker
===============
Stops calling something that keeps failing, then tries it again after a
recovery timeout.

CLOSED    -> OPEN       after ``failure_threshold`` consecutive failures
OPEN      -> HALF_OPEN  once ``recovery_timeout`` has elapsed (on the next request)
HALF_OPEN -> CLOSED     after ``success_threshold`` successes
HALF_OPEN -> OPEN       on any failure

Breakers guard each engine in the scheduler and each data source in the
integrity engine. Time comes from an injectable clock.
"""

import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .logger import get_logger
from .time_manager import Clock, now

logger = get_logger(__name__)


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 3
    recovery_timeout: float = 60.0  # seconds
    success_threshold: int = 1
    name: str = "default"


@dataclass
class BreakerCounters:
    """Lifetime counters; the consecutive runs restart on entering HALF_OPEN."""
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None

    @property
    def total_requests(self) -> int:
        return self.successful_requests + self.failed_requests


class CircuitBreaker:

    def __init__(self, config: CircuitBreakerConfig, clock: Clock = now):
        self.config = config
        self.state = CircuitBreakerState.CLOSED
        self.counters = BreakerCounters()
        self._clock = clock
        self._opened_at: Optional[float] = None
        self._lock = threading.RLock()

    @property
    def consecutive_failures(self) -> int:
        return self.counters.consecutive_failures

    def _recovery_due(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.config.recovery_timeout

    def _transition(self, target: CircuitBreakerState) -> None:
        if target == self.state:
            return
        previous, self.state = self.state, target
        self.counters.state_changes += 1
        self._opened_at = self._clock() if target == CircuitBreakerState.OPEN else None
        if target == CircuitBreakerState.HALF_OPEN:
            self.counters.consecutive_failures = 0
            self.counters.consecutive_successes = 0

        logger.info("circuit_breaker.state_change", {
            "name": self.config.name,
            "from": previous.value,
            "to": target.value
        })

    def allow_request(self) -> bool:
        """Whether a call may proceed now. A refused call counts as rejected."""
        with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if not self._recovery_due():
                    self.counters.rejected_requests += 1
                    return False
                self._transition(CircuitBreakerState.HALF_OPEN)
            return True

    def record_success(self) -> None:
        with self._lock:
            c = self.counters
            c.successful_requests += 1
            c.consecutive_successes += 1
            c.consecutive_failures = 0
            c.last_success_time = self._clock()
            if self.state == CircuitBreakerState.HALF_OPEN and c.consecutive_successes >= self.config.success_threshold:
                self._transition(CircuitBreakerState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            c = self.counters
            c.failed_requests += 1
            c.consecutive_failures += 1
            c.consecutive_successes = 0
            c.last_failure_time = self._clock()
            if self.state == CircuitBreakerState.HALF_OPEN or (
                    self.state == CircuitBreakerState.CLOSED and c.consecutive_failures >= self.config.failure_threshold):
                self._transition(CircuitBreakerState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitBreakerState.CLOSED)
            self.counters.consecutive_failures = 0
            self.counters.consecutive_successes = 0

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            counters = asdict(self.counters)
            total = self.counters.total_requests
            counters["total_requests"] = total
            counters["success_rate_percent"] = round(100.0 * self.counters.successful_requests / total, 2) if total else 0.0
            return {
                "name": self.config.name,
                "state": self.state.value,
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "recovery_timeout": self.config.recovery_timeout,
                    "success_threshold": self.config.success_threshold,
                },
                "metrics": counters,
            }
