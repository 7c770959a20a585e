"""
Unit Tests for CircuitBreaker
=============================
"""

import pytest

from liquidity.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
)
from liquidity.core.time_manager import ManualClock


@pytest.fixture
def clock():
    return ManualClock(0.0)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60, name="test"), clock=clock)


def open_breaker(breaker):
    for _ in range(breaker.config.failure_threshold):
        breaker.record_failure()


class TestStateTransitions:

    def test_opens_after_consecutive_failures(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitBreakerState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitBreakerState.OPEN

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitBreakerState.CLOSED

    def test_rejects_while_open(self, breaker):
        open_breaker(breaker)

        assert breaker.allow_request() is False
        assert breaker.get_metrics()["metrics"]["rejected_requests"] == 1

    def test_half_open_after_recovery_timeout(self, breaker, clock):
        open_breaker(breaker)
        clock.advance(60)

        assert breaker.allow_request() is True
        assert breaker.state == CircuitBreakerState.HALF_OPEN

    def test_half_open_success_closes(self, breaker, clock):
        open_breaker(breaker)
        clock.advance(61)
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == CircuitBreakerState.CLOSED

    def test_half_open_failure_reopens(self, breaker, clock):
        open_breaker(breaker)
        clock.advance(61)
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state == CircuitBreakerState.OPEN
        assert breaker.allow_request() is False

    def test_reset(self, breaker):
        open_breaker(breaker)
        breaker.reset()

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.allow_request()

    def test_metrics(self, breaker):
        breaker.record_success()
        breaker.record_failure()

        metrics = breaker.get_metrics()

        assert metrics["name"] == "test"
        assert metrics["state"] == "closed"
        assert metrics["metrics"]["total_requests"] == 2
        assert metrics["metrics"]["success_rate_percent"] == 50.0
