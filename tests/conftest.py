"""
Shared fixtures for the liquidity engine test suite.

Time is driven by ManualClock everywhere so TTL, staleness and circuit
breaker behaviour are deterministic.
"""

import asyncio
from typing import Dict, Iterable, Optional, Sequence, Tuple

import pytest

from liquidity.core.time_manager import ManualClock
from liquidity.domain.models.engine import EngineConfig, EngineOutput, EngineSignal, PrimaryMetric
from liquidity.domain.models.indicators import IndicatorSeries, IndicatorSnapshot, SourceReading
from liquidity.domain.services.engine_registry import EngineRegistry
from liquidity.domain.services.engines.base_engine import BaseEngine
from liquidity.domain.services.result_cache import ResultCache
from liquidity.infrastructure.config.settings import (
    IntegritySettings,
    SchedulerSettings,
    ZScoreSettings,
)

DAY = 86400.0
START = 1_700_000_000.0


def make_series(indicator_id: str, values: Sequence[float], end_ts: float = START,
                step_seconds: float = DAY, source: str = "primary") -> IndicatorSeries:
    """Daily series whose last point sits at ``end_ts``."""
    n = len(values)
    return IndicatorSeries(
        indicator_id=indicator_id,
        source=source,
        points=[(end_ts - (n - 1 - i) * step_seconds, float(v)) for i, v in enumerate(values)],
    )


def make_readings(values: Iterable[Optional[float]], timestamp: float = START,
                  sources: Optional[Sequence[str]] = None) -> Tuple[SourceReading, ...]:
    """Readings in descending priority: the first value belongs to the primary source."""
    values = list(values)
    sources = sources or [f"source_{i}" for i in range(len(values))]
    return tuple(
        SourceReading(source=src, value=v, timestamp=timestamp, priority=len(values) - i)
        for i, (src, v) in enumerate(zip(sources, values))
    )


def make_snapshot(timestamp: float = START,
                  series: Optional[Dict[str, IndicatorSeries]] = None,
                  readings: Optional[Dict[str, Tuple[SourceReading, ...]]] = None) -> IndicatorSnapshot:
    return IndicatorSnapshot(timestamp=timestamp, series=series or {}, readings=readings or {})


def make_output(value: float = 1.0, confidence: float = 80.0,
                signal: EngineSignal = EngineSignal.NEUTRAL, **sub_metrics) -> EngineOutput:
    return EngineOutput(
        primary_metric=PrimaryMetric(value=value),
        signal=signal,
        confidence=confidence,
        sub_metrics=sub_metrics,
    )


class FakeEngine(BaseEngine):
    """
    Scriptable engine for registry and scheduler tests.

    ``behaviour`` is an EngineOutput to return, an exception to raise, or an
    async callable ``(snapshot, context) -> EngineOutput``. Every invocation
    records its context, and its start/end order in the shared ``log``.
    """

    def __init__(self, engine_id: str, dependencies: Sequence[str] = (), priority: int = 0,
                 behaviour=None, valid: bool = True, log: Optional[list] = None,
                 delay: float = 0.0, **config_kwargs):
        super().__init__(EngineConfig(
            id=engine_id,
            name=engine_id.title(),
            priority=priority,
            dependencies=list(dependencies),
            **config_kwargs
        ))
        self.behaviour = behaviour
        self.valid = valid
        self.delay = delay
        self.log = log if log is not None else []
        self.calls = 0
        self.contexts = []

    async def validate_data(self, snapshot):
        return self.valid

    async def calculate(self, snapshot, context=None):
        self.calls += 1
        self.contexts.append(context)
        self.log.append(("start", self.engine_id))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(self.behaviour, BaseException):
                raise self.behaviour
            if callable(self.behaviour):
                return await self.behaviour(snapshot, context)
            if self.behaviour is not None:
                return self.behaviour
            return make_output(value=float(self.calls))
        finally:
            self.log.append(("end", self.engine_id))


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def scheduler_settings():
    return SchedulerSettings(
        max_concurrent_engines=4,
        default_refresh_interval_seconds=5.0,
        circuit_breaker_threshold=3,
        circuit_breaker_reset_seconds=60.0,
        stale_after_seconds=300.0,
    )


@pytest.fixture
def integrity_settings():
    return IntegritySettings()


@pytest.fixture
def zscore_settings():
    return ZScoreSettings()


@pytest.fixture
def registry():
    return EngineRegistry()


@pytest.fixture
def cache(clock):
    return ResultCache(default_ttl_seconds=15.0, clock=clock)


@pytest.fixture
def snapshot():
    return make_snapshot(series={"WALCL": make_series("WALCL", [100.0, 101.0, 102.0])})
