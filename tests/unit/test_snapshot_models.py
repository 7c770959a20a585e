"""
Unit Tests for indicator snapshot models and snapshot providers
===============================================================
"""

import random

import pytest
from pydantic import ValidationError

from conftest import DAY, START, make_readings, make_series, make_snapshot
from liquidity.domain.models.indicators import IndicatorSeries, SourceReading
from liquidity.infrastructure.adapters import FixtureSeries, FixtureSnapshotProvider, StaticSnapshotProvider


class TestIndicatorSeries:

    def test_tuple_points_are_coerced(self):
        series = IndicatorSeries(indicator_id="WALCL", points=[(1.0, 10.0), (2.0, 11.0)])

        assert series.values == [10.0, 11.0]
        assert series.timestamps == [1.0, 2.0]
        assert series.current == 11.0
        assert len(series) == 2

    def test_duplicate_timestamps_rejected(self):
        with pytest.raises(ValidationError):
            IndicatorSeries(indicator_id="WALCL", points=[(1.0, 10.0), (1.0, 11.0)])

    def test_descending_timestamps_rejected(self):
        with pytest.raises(ValidationError):
            IndicatorSeries(indicator_id="WALCL", points=[(2.0, 10.0), (1.0, 11.0)])

    def test_empty_series(self):
        series = IndicatorSeries(indicator_id="WALCL")

        assert series.current is None
        assert series.latest_timestamp is None

    def test_value_at_or_before(self):
        series = make_series("WALCL", [1.0, 2.0, 3.0])

        assert series.value_at_or_before(START) == 3.0
        assert series.value_at_or_before(START - DAY) == 2.0
        assert series.value_at_or_before(START - DAY / 2) == 2.0
        assert series.value_at_or_before(START - 10 * DAY) is None

    def test_last_updated_overrides_latest_timestamp(self):
        series = IndicatorSeries(indicator_id="WALCL", points=[(1.0, 10.0)], last_updated=5.0)

        assert series.latest_timestamp == 5.0


class TestSnapshot:

    def test_indicator_ids_union(self):
        snapshot = make_snapshot(
            series={"A": make_series("A", [1.0])},
            readings={"B": make_readings([2.0])}
        )

        assert snapshot.indicator_ids == ["A", "B"]
        assert snapshot.has("A") and snapshot.has("B")
        assert not snapshot.has("C")

    def test_current_value_prefers_series_then_priority(self):
        snapshot = make_snapshot(
            series={"A": make_series("A", [1.0, 5.0])},
            readings={"B": make_readings([20.0, 30.0])}
        )

        assert snapshot.current_value("A") == 5.0
        assert snapshot.current_value("B") == 20.0
        assert snapshot.current_value("C") is None

    def test_reading_completeness(self):
        assert SourceReading(source="a", value=None).completeness == 0.0
        assert SourceReading(source="a", value=1.0, expected_fields=4, present_fields=2).completeness == 0.5


class TestProviders:

    @pytest.mark.asyncio
    async def test_static_provider_update(self):
        first = make_snapshot()
        second = make_snapshot(timestamp=START + DAY)
        provider = StaticSnapshotProvider(first)

        assert await provider.get_snapshot() is first
        provider.update(second)
        assert await provider.get_snapshot() is second
        assert provider.calls == 2

    def test_fixture_is_deterministic_per_seed(self):
        a = FixtureSnapshotProvider(rng=random.Random(7), days=50).build()
        b = FixtureSnapshotProvider(rng=random.Random(7), days=50).build()
        c = FixtureSnapshotProvider(rng=random.Random(8), days=50).build()

        assert a == b
        assert a != c

    def test_fixture_shape(self):
        snapshot = FixtureSnapshotProvider(days=30).build()

        assert snapshot.is_fixture
        assert snapshot.indicator_ids == ["RRPONTSYD", "WALCL", "WTREGEN"]
        walcl = snapshot.get_series("WALCL")
        assert len(walcl) == 30
        readings = snapshot.get_readings("WALCL")
        assert [r.source for r in readings] == ["fred", "treasury", "mirror"]
        assert readings[0].value == walcl.current
        assert readings[0].priority > readings[1].priority

    def test_weekly_series_step(self):
        provider = FixtureSnapshotProvider(series=[FixtureSeries("W", start=1.0, drift=0.0, volatility=0.1, step_days=7)],
                                           days=70)

        series = provider.build().get_series("W")

        assert len(series) == 10
        assert series.timestamps[1] - series.timestamps[0] == 7 * DAY

    @pytest.mark.asyncio
    async def test_fixture_built_once(self):
        provider = FixtureSnapshotProvider(days=10)

        assert await provider.get_snapshot() is await provider.get_snapshot()

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            FixtureSnapshotProvider(days=0)
        with pytest.raises(ValueError):
            FixtureSnapshotProvider(sources=())
