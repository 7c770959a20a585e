"""
Regime classification and volatility detection for the composite z-score.

Both are plain callables so a different classifier can be injected into the
calculator without touching the scoring code.
"""

from typing import Callable, Sequence

import numpy as np

from ...models.zscore import MarketRegime, ZScoreCalculation

RegimeClassifier = Callable[[float, Sequence[ZScoreCalculation]], MarketRegime]
VolatilityDetector = Callable[[np.ndarray], bool]

SHORT_TERM_PERIODS = ("4w", "12w")


def classify_regime(composite: float, components: Sequence[ZScoreCalculation]) -> MarketRegime:
    """
    Map a composite z-score and its components to a season.

    Strong positive readings with many extreme windows are SUMMER (SPRING
    when confidence is thin); strong negative ones WINTER (AUTUMN when
    thin). Moderate readings are SPRING/AUTUMN by sign, and the neutral band
    follows the short-term windows.
    """
    if not components:
        return MarketRegime.SPRING if composite > 0 else MarketRegime.AUTUMN

    extreme_share = sum(1 for c in components if c.is_extreme) / len(components)
    avg_confidence = sum(c.confidence for c in components) / len(components)

    if composite > 2 and extreme_share > 0.3:
        return MarketRegime.SUMMER if avg_confidence > 0.7 else MarketRegime.SPRING
    if composite < -1.5 and extreme_share > 0.4:
        return MarketRegime.WINTER if avg_confidence > 0.7 else MarketRegime.AUTUMN
    if composite > 0.5:
        return MarketRegime.SPRING
    if composite < -0.5:
        return MarketRegime.AUTUMN

    recent_trend = sum(c.zscore for c in components if c.window.period in SHORT_TERM_PERIODS)
    return MarketRegime.SPRING if recent_trend > 0 else MarketRegime.AUTUMN


def volatility_ratio_detector(ratio: float = 1.5, short_points: int = 28) -> VolatilityDetector:
    """
    Detector flagging high volatility when the stddev of recent changes is
    ``ratio`` times the stddev of changes over the whole history.
    """
    def detect(values: np.ndarray) -> bool:
        if values.size < short_points + 2:
            return False
        changes = np.diff(values)
        long_std = float(np.std(changes, ddof=1))
        short_std = float(np.std(changes[-short_points:], ddof=1))
        if long_std <= 0:
            return False
        return short_std / long_std >= ratio

    return detect


def never_high_volatility(values: np.ndarray) -> bool:
    return False
