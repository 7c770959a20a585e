"""
Allocator Engine
================
Turns the z-score regime (and optionally the net liquidity trend) into a
risk budget in [0, 1]. The budget shrinks toward neutral (0.5) as the
integrity trust signal drops.
"""

from typing import Optional, Sequence

from ...interfaces.engine import EngineContext
from ...models.engine import EngineConfig, EngineOutput, EngineSignal, PrimaryMetric
from ...models.indicators import IndicatorSnapshot
from ...models.zscore import MarketRegime
from .base_engine import BaseEngine

REGIME_BUDGET = {
    MarketRegime.SUMMER.value: 0.80,
    MarketRegime.SPRING.value: 0.65,
    MarketRegime.AUTUMN.value: 0.40,
    MarketRegime.WINTER.value: 0.20,
}
LIQUIDITY_TILT = 0.10
NEUTRAL_BUDGET = 0.5
RISK_ON_BUDGET = 0.6
RISK_OFF_BUDGET = 0.35


def make_config(dependencies: Sequence[str] = ("zscore", "net-liquidity")) -> EngineConfig:
    return EngineConfig(
        id="allocator",
        name="Risk Budget Allocator",
        category="synthesis",
        pillar=3,
        priority=50,
        refresh_interval_seconds=60.0,
        dependencies=list(dependencies),
        tags=["allocation", "synthesis"],
        estimated_duration_seconds=0.5,
    )


class AllocatorEngine(BaseEngine):
    """Risk budget from upstream engine outputs."""

    def __init__(self, config: Optional[EngineConfig] = None,
                 zscore_engine_id: str = "zscore", liquidity_engine_id: str = "net-liquidity"):
        super().__init__(config or make_config())
        self.zscore_engine_id = zscore_engine_id
        self.liquidity_engine_id = liquidity_engine_id

    async def validate_data(self, snapshot: IndicatorSnapshot) -> bool:
        # Consumes upstream outputs only
        return True

    async def calculate(self, snapshot: IndicatorSnapshot,
                        context: Optional[EngineContext] = None) -> EngineOutput:
        ctx = context or EngineContext()
        zscore = ctx.dependency(self.zscore_engine_id)
        if zscore is None or zscore.is_degraded:
            return self.neutral_output("no usable z-score output")

        regime = zscore.sub_metrics.get("regime")
        base = REGIME_BUDGET.get(regime, NEUTRAL_BUDGET)

        liquidity = ctx.dependency(self.liquidity_engine_id)
        tilt = 0.0
        if liquidity is not None and not liquidity.is_degraded:
            if liquidity.signal == EngineSignal.RISK_ON:
                tilt = LIQUIDITY_TILT
            elif liquidity.signal == EngineSignal.RISK_OFF:
                tilt = -LIQUIDITY_TILT

        raw_budget = min(max(base + tilt, 0.0), 1.0)
        budget = NEUTRAL_BUDGET + (raw_budget - NEUTRAL_BUDGET) * ctx.trust

        if budget >= RISK_ON_BUDGET:
            signal = EngineSignal.RISK_ON
        elif budget <= RISK_OFF_BUDGET:
            signal = EngineSignal.RISK_OFF
        else:
            signal = EngineSignal.NEUTRAL

        sources = {dep: ctx.dependency_sources.get(dep, "missing")
                   for dep in (self.zscore_engine_id, self.liquidity_engine_id)}
        stale_inputs = any(s == "last_known_good" for s in sources.values())
        upstream_confidence = zscore.confidence / 100.0
        if stale_inputs:
            upstream_confidence *= 0.8

        return EngineOutput(
            primary_metric=PrimaryMetric(value=round(budget, 6)),
            signal=signal,
            confidence=self.scale_confidence(upstream_confidence, None),
            analysis=f"Risk budget {budget:.0%} ({regime or 'unknown'} regime, trust {ctx.trust:.2f})",
            sub_metrics={
                "regime": regime,
                "base_budget": base,
                "liquidity_tilt": tilt,
                "trust": ctx.trust,
                "dependency_sources": sources,
                "stale_inputs": stale_inputs,
            }
        )
