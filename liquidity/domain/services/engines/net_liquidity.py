"""
Net Liquidity Engine
====================
Fed balance sheet minus Treasury General Account minus overnight reverse
repo: WALCL - WTREGEN - RRPONTSYD, all expected in the same unit.
"""

from typing import Dict, Optional

from ....core.logger import get_logger
from ...interfaces.engine import EngineContext
from ...models.engine import EngineConfig, EngineOutput, EngineSignal, PrimaryMetric
from ...models.indicators import IndicatorSnapshot
from .base_engine import BaseEngine
from .zscore_calculator import SECONDS_PER_DAY

logger = get_logger(__name__)

BALANCE_SHEET = "WALCL"
TREASURY_ACCOUNT = "WTREGEN"
REVERSE_REPO = "RRPONTSYD"
COMPONENTS = (BALANCE_SHEET, TREASURY_ACCOUNT, REVERSE_REPO)

# Percent change of net liquidity over the lookback that flips the signal
SIGNAL_THRESHOLD_PCT = 0.5

DEFAULT_CONFIG = EngineConfig(
    id="net-liquidity",
    name="Net Liquidity Gauge",
    category="core",
    pillar=1,
    priority=90,
    refresh_interval_seconds=60.0,
    required_indicators=list(COMPONENTS),
    dependencies=["data-integrity"],
    tags=["liquidity", "fed"],
    estimated_duration_seconds=1.0,
)


class NetLiquidityEngine(BaseEngine):
    """Computes net liquidity and its change over ``lookback_days``."""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG, lookback_days: float = 1.0):
        super().__init__(config)
        self.lookback_days = lookback_days

    def _previous(self, snapshot: IndicatorSnapshot) -> Optional[float]:
        values: Dict[str, float] = {}
        for indicator_id in COMPONENTS:
            series = snapshot.get_series(indicator_id)
            if series is None or not series.points:
                return None
            ts = series.points[-1].timestamp - self.lookback_days * SECONDS_PER_DAY
            value = series.value_at_or_before(ts)
            if value is None:
                return None
            values[indicator_id] = value
        return values[BALANCE_SHEET] - values[TREASURY_ACCOUNT] - values[REVERSE_REPO]

    async def calculate(self, snapshot: IndicatorSnapshot,
                        context: Optional[EngineContext] = None) -> EngineOutput:
        ctx = context or EngineContext()
        current = {indicator_id: ctx.value_for(snapshot, indicator_id) for indicator_id in COMPONENTS}
        missing = sorted(k for k, v in current.items() if v is None)
        if missing:
            return self.neutral_output(f"missing components: {', '.join(missing)}")

        net = current[BALANCE_SHEET] - current[TREASURY_ACCOUNT] - current[REVERSE_REPO]
        previous = self._previous(snapshot)

        change = net - previous if previous is not None else 0.0
        change_pct = change / abs(previous) * 100.0 if previous else 0.0

        if change_pct > SIGNAL_THRESHOLD_PCT:
            signal = EngineSignal.RISK_ON
        elif change_pct < -SIGNAL_THRESHOLD_PCT:
            signal = EngineSignal.RISK_OFF
        else:
            signal = EngineSignal.NEUTRAL

        # Without a prior reading the direction is unknown
        base_confidence = 0.9 if previous is not None else 0.5

        return EngineOutput(
            primary_metric=PrimaryMetric(
                value=round(net, 6),
                change_24h=round(change, 6),
                change_percent=round(change_pct, 4)
            ),
            signal=signal,
            confidence=self.scale_confidence(base_confidence, context),
            analysis=f"Net liquidity {net:,.1f} ({change_pct:+.2f}% over {self.lookback_days:g}d)",
            sub_metrics={
                "balance_sheet": current[BALANCE_SHEET],
                "treasury_account": current[TREASURY_ACCOUNT],
                "reverse_repo": current[REVERSE_REPO],
                "previous": previous,
            }
        )
