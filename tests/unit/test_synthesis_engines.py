"""
Unit Tests for NetLiquidityEngine and AllocatorEngine
=====================================================
"""

import pytest

from conftest import make_output, make_readings, make_series, make_snapshot
from liquidity.domain.interfaces.engine import EngineContext
from liquidity.domain.models.engine import EngineSignal
from liquidity.domain.services.engines.allocator import AllocatorEngine
from liquidity.domain.services.engines.net_liquidity import NetLiquidityEngine


@pytest.fixture
def liquidity_snapshot():
    return make_snapshot(series={
        "WALCL": make_series("WALCL", [7000.0, 7100.0]),
        "WTREGEN": make_series("WTREGEN", [700.0, 700.0]),
        "RRPONTSYD": make_series("RRPONTSYD", [1000.0, 900.0]),
    })


def zscore_output(regime="SUMMER", confidence=80.0):
    return make_output(value=1.0, confidence=confidence, regime=regime)


class TestNetLiquidity:

    @pytest.mark.asyncio
    async def test_net_liquidity_and_change(self, liquidity_snapshot):
        output = await NetLiquidityEngine().calculate(liquidity_snapshot)

        assert output.primary_metric.value == 5500.0
        assert output.primary_metric.change_24h == 200.0
        assert output.primary_metric.change_percent == pytest.approx(200.0 / 5300.0 * 100.0, abs=1e-4)
        assert output.signal == EngineSignal.RISK_ON
        assert output.confidence == 90.0
        assert output.sub_metrics["previous"] == 5300.0

    @pytest.mark.asyncio
    async def test_contraction_is_risk_off(self):
        snapshot = make_snapshot(series={
            "WALCL": make_series("WALCL", [7000.0, 6900.0]),
            "WTREGEN": make_series("WTREGEN", [700.0, 750.0]),
            "RRPONTSYD": make_series("RRPONTSYD", [1000.0, 1000.0]),
        })

        output = await NetLiquidityEngine().calculate(snapshot)

        assert output.signal == EngineSignal.RISK_OFF

    @pytest.mark.asyncio
    async def test_uses_healed_values_and_trust(self, liquidity_snapshot):
        context = EngineContext(trust=0.5, consolidated_values={"WALCL": 7200.0})

        output = await NetLiquidityEngine().calculate(liquidity_snapshot, context)

        assert output.primary_metric.value == 5600.0
        assert output.sub_metrics["balance_sheet"] == 7200.0
        assert output.confidence == 45.0

    @pytest.mark.asyncio
    async def test_missing_component_degrades(self):
        snapshot = make_snapshot(series={
            "WALCL": make_series("WALCL", [7000.0]),
            "WTREGEN": make_series("WTREGEN", [700.0]),
        })
        engine = NetLiquidityEngine()

        assert await engine.validate_data(snapshot)
        output = await engine.calculate(snapshot)

        assert output.is_degraded
        assert "RRPONTSYD" in output.sub_metrics["reason"]

    @pytest.mark.asyncio
    async def test_readings_without_history(self):
        snapshot = make_snapshot(readings={
            "WALCL": make_readings([7000.0]),
            "WTREGEN": make_readings([700.0]),
            "RRPONTSYD": make_readings([1000.0]),
        })

        output = await NetLiquidityEngine().calculate(snapshot)

        assert output.primary_metric.value == 5300.0
        assert output.signal == EngineSignal.NEUTRAL
        assert output.confidence == 50.0
        assert output.sub_metrics["previous"] is None

    @pytest.mark.asyncio
    async def test_unrelated_snapshot_fails_validation(self):
        snapshot = make_snapshot(series={"OTHER": make_series("OTHER", [1.0])})

        assert not await NetLiquidityEngine().validate_data(snapshot)


class TestAllocator:

    @pytest.mark.asyncio
    async def test_regime_and_liquidity_tilt(self):
        context = EngineContext(dependency_outputs={
            "zscore": zscore_output("SUMMER"),
            "net-liquidity": make_output(signal=EngineSignal.RISK_ON),
        }, dependency_sources={"zscore": "fresh", "net-liquidity": "fresh"})

        output = await AllocatorEngine().calculate(make_snapshot(), context)

        assert output.primary_metric.value == pytest.approx(0.9)
        assert output.signal == EngineSignal.RISK_ON
        assert output.confidence == 80.0
        assert output.sub_metrics["liquidity_tilt"] == 0.1

    @pytest.mark.asyncio
    async def test_low_trust_shrinks_budget_toward_neutral(self):
        outputs = {"zscore": zscore_output("SUMMER")}

        half = await AllocatorEngine().calculate(make_snapshot(), EngineContext(dependency_outputs=outputs, trust=0.5))
        none = await AllocatorEngine().calculate(make_snapshot(), EngineContext(dependency_outputs=outputs, trust=0.0))

        assert half.primary_metric.value == pytest.approx(0.65)
        assert none.primary_metric.value == pytest.approx(0.5)
        assert none.signal == EngineSignal.NEUTRAL

    @pytest.mark.asyncio
    async def test_winter_is_risk_off(self):
        context = EngineContext(dependency_outputs={
            "zscore": zscore_output("WINTER"),
            "net-liquidity": make_output(signal=EngineSignal.RISK_OFF),
        })

        output = await AllocatorEngine().calculate(make_snapshot(), context)

        assert output.primary_metric.value == pytest.approx(0.1)
        assert output.signal == EngineSignal.RISK_OFF

    @pytest.mark.asyncio
    async def test_stale_inputs_reduce_confidence(self):
        context = EngineContext(
            dependency_outputs={"zscore": zscore_output("SPRING", confidence=80.0)},
            dependency_sources={"zscore": "last_known_good", "net-liquidity": "missing"}
        )

        output = await AllocatorEngine().calculate(make_snapshot(), context)

        assert output.sub_metrics["stale_inputs"] is True
        assert output.confidence == pytest.approx(64.0)
        assert output.sub_metrics["dependency_sources"] == {"zscore": "last_known_good", "net-liquidity": "missing"}

    @pytest.mark.asyncio
    async def test_missing_or_degraded_zscore(self):
        engine = AllocatorEngine()
        missing = await engine.calculate(make_snapshot(), EngineContext())
        degraded = await engine.calculate(make_snapshot(), EngineContext(
            dependency_outputs={"zscore": make_output(degraded=True)}
        ))

        assert missing.is_degraded
        assert degraded.is_degraded
        assert missing.signal == EngineSignal.NEUTRAL

    @pytest.mark.asyncio
    async def test_validate_data_always_true(self):
        assert await AllocatorEngine().validate_data(make_snapshot())
