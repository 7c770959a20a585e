"""
Snapshot Providers - in-process implementations of ISnapshotProvider
====================================================================

StaticSnapshotProvider serves a snapshot handed to it (tests, replays).

FixtureSnapshotProvider generates an explicitly labelled synthetic snapshot
(``is_fixture=True``) from an injectable seeded ``random.Random`` so every
run with the same seed yields the same data.
"""

import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ...core.logger import get_logger
from ...domain.interfaces.snapshot_provider import ISnapshotProvider
from ...domain.models.indicators import IndicatorPoint, IndicatorSeries, IndicatorSnapshot, SourceReading

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400.0
# 2024-01-01T00:00:00Z
DEFAULT_END_TIMESTAMP = 1704067200.0


class StaticSnapshotProvider(ISnapshotProvider):
    """Returns the snapshot it was given; ``update`` swaps it between cycles."""

    def __init__(self, snapshot: IndicatorSnapshot):
        self._snapshot = snapshot
        self.calls = 0

    def update(self, snapshot: IndicatorSnapshot) -> None:
        self._snapshot = snapshot

    async def get_snapshot(self) -> IndicatorSnapshot:
        self.calls += 1
        return self._snapshot


@dataclass(frozen=True)
class FixtureSeries:
    """Random-walk parameters of one synthetic indicator."""
    indicator_id: str
    start: float
    drift: float       # Per-step drift
    volatility: float  # Per-step stddev
    step_days: int = 1


DEFAULT_FIXTURE_SERIES = (
    FixtureSeries("WALCL", start=7500.0, drift=-1.5, volatility=12.0, step_days=1),
    FixtureSeries("WTREGEN", start=750.0, drift=0.2, volatility=15.0, step_days=1),
    FixtureSeries("RRPONTSYD", start=1500.0, drift=-1.0, volatility=20.0, step_days=1),
)

DEFAULT_SOURCES = ("fred", "treasury", "mirror")


class FixtureSnapshotProvider(ISnapshotProvider):
    """
    Deterministic synthetic snapshot.

    Each series is a seeded random walk of ``days`` points. Each indicator is
    also reported by every source in ``sources``: the first source reports
    the series value exactly, the others add small seeded noise.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        series: Sequence[FixtureSeries] = DEFAULT_FIXTURE_SERIES,
        sources: Sequence[str] = DEFAULT_SOURCES,
        days: int = 800,
        end_timestamp: float = DEFAULT_END_TIMESTAMP,
        source_noise: float = 0.0005
    ):
        if days < 1:
            raise ValueError("days must be at least 1")
        if not sources:
            raise ValueError("at least one source is required")

        self._rng = rng or random.Random(42)
        self._series_params = tuple(series)
        self._sources = tuple(sources)
        self._days = days
        self._end = end_timestamp
        self._noise = source_noise
        self._snapshot: Optional[IndicatorSnapshot] = None

    def _walk(self, params: FixtureSeries) -> IndicatorSeries:
        steps = max(1, self._days // params.step_days)
        start_ts = self._end - (steps - 1) * params.step_days * SECONDS_PER_DAY
        value = params.start
        points: List[IndicatorPoint] = []
        for i in range(steps):
            if i:
                value = max(0.0, value + params.drift + self._rng.gauss(0.0, params.volatility))
            points.append(IndicatorPoint(timestamp=start_ts + i * params.step_days * SECONDS_PER_DAY, value=round(value, 4)))
        return IndicatorSeries(
            indicator_id=params.indicator_id,
            source=self._sources[0],
            points=tuple(points),
            last_updated=self._end
        )

    def _readings(self, series: IndicatorSeries) -> tuple:
        current = series.current
        readings = []
        for rank, source in enumerate(self._sources):
            if rank == 0:
                value = current
            else:
                value = round(current * (1.0 + self._rng.uniform(-self._noise, self._noise)), 4)
            readings.append(SourceReading(
                source=source,
                value=value,
                timestamp=self._end,
                priority=len(self._sources) - rank
            ))
        return tuple(readings)

    def build(self) -> IndicatorSnapshot:
        series: Dict[str, IndicatorSeries] = {}
        readings: Dict[str, tuple] = {}
        for params in self._series_params:
            s = self._walk(params)
            series[params.indicator_id] = s
            readings[params.indicator_id] = self._readings(s)

        logger.info("fixture_provider.snapshot_built", {
            "indicators": sorted(series),
            "sources": list(self._sources),
            "points_per_series": {k: len(v) for k, v in series.items()},
            "end_timestamp": self._end
        })
        return IndicatorSnapshot(
            timestamp=self._end,
            series=series,
            readings=readings,
            is_fixture=True
        )

    async def get_snapshot(self) -> IndicatorSnapshot:
        # Built once: every cycle reads the same labelled fixture
        if self._snapshot is None:
            self._snapshot = self.build()
        return self._snapshot
