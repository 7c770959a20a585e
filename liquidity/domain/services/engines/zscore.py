"""
Z-Score Engine
==============
Runs the composite z-score calculator over the tracked indicators of a
snapshot and folds the per-indicator composites into one engine output.

Healed consensus values published by the integrity engine replace the
latest observation of the matching series before scoring.
"""

from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ....core.data_freshness import freshness_score, thresholds_from_seconds
from ....core.logger import get_logger
from ...interfaces.engine import EngineContext
from ...models.engine import EngineConfig, EngineOutput, EngineSignal, PrimaryMetric, WILDCARD
from ...models.indicators import IndicatorSeries, IndicatorSnapshot
from ...models.zscore import CompositeZScore, MarketRegime
from .base_engine import BaseEngine
from .zscore_calculator import SECONDS_PER_DAY, ZScoreCalculator

logger = get_logger(__name__)

BULLISH_THRESHOLD = 2.0
BEARISH_THRESHOLD = -2.0

# Daily/weekly macro series
SERIES_FRESHNESS = thresholds_from_seconds(2 * SECONDS_PER_DAY, 8 * SECONDS_PER_DAY, 30 * SECONDS_PER_DAY)

REGIME_ORDER = (MarketRegime.WINTER, MarketRegime.SPRING, MarketRegime.SUMMER, MarketRegime.AUTUMN)


def make_config(tracked_indicators: Optional[Sequence[str]] = None,
                dependencies: Sequence[str] = ("data-integrity",)) -> EngineConfig:
    return EngineConfig(
        id="zscore",
        name="Enhanced Z-Score Engine",
        category="foundation",
        pillar=1,
        priority=95,
        refresh_interval_seconds=300.0,
        required_indicators=list(tracked_indicators) if tracked_indicators else [WILDCARD],
        dependencies=list(dependencies),
        tags=["zscore", "statistics"],
        estimated_duration_seconds=2.0,
    )


class ZScoreEngine(BaseEngine):
    """Composite z-score across tracked indicators."""

    def __init__(self, calculator: Optional[ZScoreCalculator] = None,
                 tracked_indicators: Optional[Sequence[str]] = None,
                 config: Optional[EngineConfig] = None):
        super().__init__(config or make_config(tracked_indicators))
        self.calculator = calculator or ZScoreCalculator()
        self.tracked_indicators = list(tracked_indicators) if tracked_indicators else None

    def _history(self, series: IndicatorSeries, context: Optional[EngineContext],
                 end_ts: Optional[float] = None) -> Tuple[List[float], List[float], bool]:
        points = [p for p in series.points if end_ts is None or p.timestamp <= end_ts]
        timestamps = [p.timestamp for p in points]
        values = [p.value for p in points]

        healed = False
        if end_ts is None and context is not None and values:
            healed_value = context.consolidated_values.get(series.indicator_id)
            if healed_value is not None and healed_value != values[-1]:
                values[-1] = healed_value
                healed = True
        return timestamps, values, healed

    def score_indicators(self, snapshot: IndicatorSnapshot, context: Optional[EngineContext] = None,
                         end_ts: Optional[float] = None) -> Tuple[Dict[str, CompositeZScore], List[str]]:
        ids = self.tracked_indicators or sorted(snapshot.series)
        composites: Dict[str, CompositeZScore] = {}
        healed: List[str] = []

        for indicator_id in ids:
            series = snapshot.get_series(indicator_id)
            if series is None or len(series) == 0:
                continue
            timestamps, values, was_healed = self._history(series, context, end_ts)
            if not values:
                continue
            composite = self.calculator.calculate(
                indicator_id, timestamps, values,
                freshness=freshness_score(series.latest_timestamp, snapshot.timestamp, SERIES_FRESHNESS)
            )
            if composite is not None:
                composites[indicator_id] = composite
                if was_healed:
                    healed.append(indicator_id)
        return composites, healed

    @staticmethod
    def aggregate(composites: Dict[str, CompositeZScore]) -> Tuple[float, MarketRegime, float]:
        """Confidence-weighted value, confidence-weighted regime vote and mean confidence."""
        weight = sum(c.confidence for c in composites.values())
        if weight > 0:
            value = sum(c.value * c.confidence for c in composites.values()) / weight
        else:
            value = sum(c.value for c in composites.values()) / len(composites)

        votes: Counter = Counter()
        for c in composites.values():
            votes[c.regime] += c.confidence
        regime = max(REGIME_ORDER, key=lambda r: (votes.get(r, 0.0), -REGIME_ORDER.index(r)))

        confidence = sum(c.confidence for c in composites.values()) / len(composites)
        return value, regime, confidence

    @staticmethod
    def signal_for(value: float, composites: Dict[str, CompositeZScore]) -> EngineSignal:
        if value > BULLISH_THRESHOLD:
            return EngineSignal.RISK_ON
        if value < BEARISH_THRESHOLD:
            return EngineSignal.RISK_OFF
        if any(comp.is_extreme for c in composites.values() for comp in c.components):
            return EngineSignal.WARNING
        return EngineSignal.NEUTRAL

    async def calculate(self, snapshot: IndicatorSnapshot,
                        context: Optional[EngineContext] = None) -> EngineOutput:
        composites, healed = self.score_indicators(snapshot, context)
        if not composites:
            return self.neutral_output("no indicator has enough history for any window")

        value, regime, confidence = self.aggregate(composites)

        change = 0.0
        change_pct = 0.0
        latest_ts = max(c.timestamp for c in composites.values())
        previous, _ = self.score_indicators(snapshot, context, end_ts=latest_ts - SECONDS_PER_DAY)
        if previous:
            prev_value, _, _ = self.aggregate(previous)
            change = value - prev_value
            change_pct = change / abs(prev_value) * 100.0 if prev_value else 0.0

        signal = self.signal_for(value, composites)
        logger.debug("zscore_engine.calculated", {
            "indicators": sorted(composites),
            "composite": value,
            "regime": regime.value,
            "confidence": confidence,
            "healed": healed
        })

        return EngineOutput(
            primary_metric=PrimaryMetric(
                value=round(value, 6),
                change_24h=round(change, 6),
                change_percent=round(change_pct, 4)
            ),
            signal=signal,
            confidence=self.scale_confidence(confidence, context),
            analysis=(
                f"Composite z-score {value:+.2f} across {len(composites)} indicator(s), "
                f"regime {regime.value}"
            ),
            sub_metrics={
                "composite": round(value, 6),
                "regime": regime.value,
                "raw_confidence": round(confidence, 6),
                "trust": context.trust if context else 1.0,
                "healed_indicators": healed,
                "indicators": {k: self._summary(c) for k, c in sorted(composites.items())},
            }
        )

    @staticmethod
    def _summary(composite: CompositeZScore) -> Dict[str, Any]:
        distribution = composite.distribution
        return {
            "value": composite.value,
            "regime": composite.regime.value,
            "confidence": composite.confidence,
            "high_volatility": composite.high_volatility,
            "windows": [
                {
                    "period": c.window.period,
                    "zscore": c.zscore,
                    "percentile": c.percentile,
                    "is_extreme": c.is_extreme,
                    "confidence": c.confidence,
                    "zero_variance": c.zero_variance,
                }
                for c in composite.components
            ],
            "skewness": distribution.skewness if distribution else 0.0,
            "kurtosis": distribution.kurtosis if distribution else 0.0,
            "extremes": [
                {"timestamp": e.timestamp, "value": e.value, "zscore": e.zscore, "severity": e.severity.value}
                for e in (distribution.extremes if distribution else ())
            ],
            "histogram": [
                {"lower": b.lower, "upper": b.upper, "count": b.count, "is_current": b.is_current}
                for b in (distribution.histogram if distribution else ())
            ],
            "data_quality": {
                "completeness": composite.data_quality.completeness,
                "freshness": composite.data_quality.freshness,
                "outliers_removed": composite.data_quality.outliers_removed,
                "valid_windows": composite.data_quality.valid_windows,
                "total_windows": composite.data_quality.total_windows,
            } if composite.data_quality else {},
        }
