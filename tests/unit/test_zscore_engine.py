"""
Unit Tests for ZScoreEngine
===========================
"""

import numpy as np
import pytest

from conftest import make_series, make_snapshot
from liquidity.domain.interfaces.engine import EngineContext
from liquidity.domain.models.engine import EngineSignal
from liquidity.domain.models.zscore import DEFAULT_WINDOWS, CompositeZScore, MarketRegime, ZScoreCalculation
from liquidity.domain.services.engines.regime import never_high_volatility
from liquidity.domain.services.engines.zscore import ZScoreEngine, make_config
from liquidity.domain.services.engines.zscore_calculator import ZScoreCalculator


def walk(n=800, seed=1, start=7500.0, scale=10.0):
    rng = np.random.RandomState(seed)
    return list(start + np.cumsum(rng.normal(0.0, scale, n)))


@pytest.fixture
def engine():
    return ZScoreEngine(calculator=ZScoreCalculator(volatility_detector=never_high_volatility))


@pytest.fixture
def history_snapshot():
    return make_snapshot(series={
        "WALCL": make_series("WALCL", walk(seed=1)),
        "RRPONTSYD": make_series("RRPONTSYD", walk(seed=2, start=1500.0, scale=20.0)),
    })


class TestConfig:

    def test_default_config(self):
        config = make_config()

        assert config.id == "zscore"
        assert config.dependencies == ("data-integrity",)
        assert config.requires_all_indicators

    def test_tracked_indicators_become_requirements(self):
        config = make_config(["WALCL"])

        assert config.required_indicators == frozenset({"WALCL"})
        assert not config.requires_all_indicators


class TestCalculate:

    @pytest.mark.asyncio
    async def test_scores_every_series(self, engine, history_snapshot):
        output = await engine.calculate(history_snapshot)

        assert not output.is_degraded
        assert set(output.sub_metrics["indicators"]) == {"RRPONTSYD", "WALCL"}
        assert output.sub_metrics["regime"] in {r.value for r in MarketRegime}
        assert 0.0 < output.confidence <= 100.0
        summary = output.sub_metrics["indicators"]["WALCL"]
        assert len(summary["windows"]) == 5
        assert summary["data_quality"]["valid_windows"] == 5

    @pytest.mark.asyncio
    async def test_deterministic(self, engine, history_snapshot):
        first = await engine.calculate(history_snapshot)
        second = await engine.calculate(history_snapshot)

        assert first == second

    @pytest.mark.asyncio
    async def test_tracked_indicators_only(self, history_snapshot):
        engine = ZScoreEngine(
            calculator=ZScoreCalculator(volatility_detector=never_high_volatility),
            tracked_indicators=["WALCL"]
        )

        output = await engine.calculate(history_snapshot)

        assert list(output.sub_metrics["indicators"]) == ["WALCL"]

    @pytest.mark.asyncio
    async def test_confidence_scaled_by_trust(self, engine, history_snapshot):
        trusted = await engine.calculate(history_snapshot, EngineContext(trust=1.0))
        doubted = await engine.calculate(history_snapshot, EngineContext(trust=0.5))

        assert doubted.confidence == pytest.approx(trusted.confidence * 0.5, abs=1e-3)
        assert doubted.primary_metric.value == trusted.primary_metric.value
        assert doubted.sub_metrics["trust"] == 0.5

    @pytest.mark.asyncio
    async def test_healed_value_replaces_latest_observation(self, engine, history_snapshot):
        raw = await engine.calculate(history_snapshot)
        latest = history_snapshot.get_series("WALCL").current
        context = EngineContext(consolidated_values={"WALCL": latest + 500.0})

        healed = await engine.calculate(history_snapshot, context)

        assert healed.sub_metrics["healed_indicators"] == ["WALCL"]
        assert healed.sub_metrics["indicators"]["WALCL"]["value"] > raw.sub_metrics["indicators"]["WALCL"]["value"]
        assert raw.sub_metrics["healed_indicators"] == []

    @pytest.mark.asyncio
    async def test_change_against_previous_day(self, engine, history_snapshot):
        output = await engine.calculate(history_snapshot)

        assert output.primary_metric.change_24h != 0.0

    @pytest.mark.asyncio
    async def test_insufficient_history_degrades(self, engine):
        snapshot = make_snapshot(series={"WALCL": make_series("WALCL", [1.0, 2.0, 3.0])})

        output = await engine.calculate(snapshot)

        assert output.is_degraded
        assert output.signal == EngineSignal.NEUTRAL
        assert output.confidence == 10.0

    @pytest.mark.asyncio
    async def test_validate_data(self, engine, history_snapshot):
        assert await engine.validate_data(history_snapshot)
        assert not await engine.validate_data(make_snapshot())


class TestSignal:

    def test_thresholds(self):
        assert ZScoreEngine.signal_for(2.5, {}) == EngineSignal.RISK_ON
        assert ZScoreEngine.signal_for(-2.5, {}) == EngineSignal.RISK_OFF
        assert ZScoreEngine.signal_for(0.5, {}) == EngineSignal.NEUTRAL

    def test_extreme_window_warns(self):
        window = DEFAULT_WINDOWS[0]
        extreme = ZScoreCalculation(window=window, value=1.0, mean=0.0, stddev=0.1, zscore=3.0,
                                    percentile=99.9, is_extreme=True, confidence=1.0, sample_size=28)
        composite = CompositeZScore(indicator_id="X", value=1.0, regime=MarketRegime.SPRING,
                                    confidence=0.8, components=(extreme,), timestamp=0.0)

        assert ZScoreEngine.signal_for(1.0, {"X": composite}) == EngineSignal.WARNING

    def test_aggregate_weights_by_confidence(self):
        def composite(value, confidence, regime):
            return CompositeZScore(indicator_id="X", value=value, regime=regime,
                                   confidence=confidence, components=(), timestamp=0.0)

        value, regime, confidence = ZScoreEngine.aggregate({
            "A": composite(2.0, 0.75, MarketRegime.SPRING),
            "B": composite(-2.0, 0.25, MarketRegime.WINTER),
        })

        assert value == pytest.approx(1.0)
        assert regime == MarketRegime.SPRING
        assert confidence == pytest.approx(0.5)
