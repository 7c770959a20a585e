"""
Composite Z-Score Calculator
============================

Pure, deterministic multi-window statistics over one indicator history.

For each window (4/12/26/52/104 weeks):
- trailing slice ending at the current observation
- IQR outlier filter, sample mean and Bessel-corrected stddev
- z = (current - mean) / stddev; near-zero stddev yields z = 0 with
  capped confidence
- percentile from the normal CDF, extremity when |z| > extreme_cutoff

The composite is the confidence-weighted sum of window z-scores. Regime is
classified from the raw composite, the season multiplier applied, and the
result clamped to [composite_min, composite_max].
"""

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ....infrastructure.config.settings import ZScoreSettings
from ...models.zscore import (
    DEFAULT_WINDOWS,
    HIGH_VOLATILITY_WINDOWS,
    CompositeZScore,
    DataQuality,
    DistributionAnalysis,
    ExtremeSeverity,
    ExtremeValue,
    HistogramBin,
    ZScoreCalculation,
    ZScoreWindow,
)
from .regime import RegimeClassifier, VolatilityDetector, classify_regime, volatility_ratio_detector

SECONDS_PER_DAY = 86400.0
IQR_MULTIPLIER = 1.5
MAX_MIN_POINTS = 20
MIN_POINTS_SHARE = 0.7


def normal_cdf(z: float) -> float:
    return 0.5 * (1.0 + math.erf(z / math.sqrt(2.0)))


def iqr_filter(values: np.ndarray) -> Tuple[np.ndarray, int]:
    """Drop values outside [Q1 - 1.5 IQR, Q3 + 1.5 IQR]; returns (kept, removed_count)."""
    if values.size < 4:
        return values, 0
    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    lower, upper = q1 - IQR_MULTIPLIER * iqr, q3 + IQR_MULTIPLIER * iqr
    kept = values[(values >= lower) & (values <= upper)]
    return kept, int(values.size - kept.size)


def min_points_for(window: ZScoreWindow) -> int:
    return max(2, int(min(MAX_MIN_POINTS, window.days * MIN_POINTS_SHARE)))


def sample_skewness(values: np.ndarray) -> float:
    n = values.size
    if n < 3:
        return 0.0
    std = float(np.std(values, ddof=1))
    if std <= 0:
        return 0.0
    m = float(np.mean(values))
    return float(n / ((n - 1) * (n - 2)) * np.sum(((values - m) / std) ** 3))


def sample_excess_kurtosis(values: np.ndarray) -> float:
    n = values.size
    if n < 4:
        return 0.0
    std = float(np.std(values, ddof=1))
    if std <= 0:
        return 0.0
    m = float(np.mean(values))
    fourth = float(np.sum(((values - m) / std) ** 4))
    return (n * (n + 1) / ((n - 1) * (n - 2) * (n - 3))) * fourth - 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))


class ZScoreCalculator:
    """Multi-window composite z-score with distribution analysis."""

    def __init__(
        self,
        settings: Optional[ZScoreSettings] = None,
        windows: Sequence[ZScoreWindow] = DEFAULT_WINDOWS,
        high_volatility_windows: Sequence[ZScoreWindow] = HIGH_VOLATILITY_WINDOWS,
        regime_classifier: RegimeClassifier = classify_regime,
        volatility_detector: Optional[VolatilityDetector] = None
    ):
        self.settings = settings or ZScoreSettings()
        for name, ws in (("windows", windows), ("high_volatility_windows", high_volatility_windows)):
            if abs(sum(w.weight for w in ws) - 1.0) > 1e-9:
                raise ValueError(f"{name} weights must sum to 1")
        self.windows = tuple(windows)
        self.high_volatility_windows = tuple(high_volatility_windows)
        self.regime_classifier = regime_classifier
        self.volatility_detector = volatility_detector or volatility_ratio_detector(self.settings.high_volatility_ratio)

    # ------------------------------------------------------------------
    # Per window
    # ------------------------------------------------------------------

    def calculate_window(self, timestamps: np.ndarray, values: np.ndarray,
                         window: ZScoreWindow) -> Tuple[Optional[ZScoreCalculation], int]:
        """
        Statistics for one window ending at the last observation.

        Returns:
            (calculation or None when the window lacks data, outliers removed)
        """
        if values.size == 0:
            return None, 0

        current = float(values[-1])
        start = timestamps[-1] - window.days * SECONDS_PER_DAY
        window_values = values[timestamps >= start]

        if window_values.size < min_points_for(window):
            return None, 0

        clean, removed = iqr_filter(window_values)
        if clean.size < 2:
            return None, removed

        mean = float(np.mean(clean))
        std = float(np.std(clean, ddof=1))
        confidence = min(clean.size / window.days * 0.7 + 0.3, 1.0)

        zero_variance = std < self.settings.stddev_epsilon
        if zero_variance:
            z = 0.0
            confidence = min(confidence, self.settings.zero_variance_confidence)
        else:
            z = (current - mean) / std

        return ZScoreCalculation(
            window=window,
            value=current,
            mean=mean,
            stddev=std,
            zscore=round(z, 6),
            percentile=round(normal_cdf(z) * 100.0, 4),
            is_extreme=abs(z) > self.settings.extreme_cutoff,
            confidence=round(confidence, 6),
            sample_size=int(clean.size),
            zero_variance=zero_variance
        ), removed

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    def calculate(self, indicator_id: str, timestamps: Sequence[float], values: Sequence[float],
                  freshness: float = 1.0) -> Optional[CompositeZScore]:
        """
        Composite z-score for one indicator history (time-ascending).

        Returns None when no window has enough data.
        """
        ts = np.asarray(timestamps, dtype=float)
        vals = np.asarray(values, dtype=float)
        if ts.size == 0 or ts.size != vals.size:
            return None

        high_volatility = bool(self.volatility_detector(vals))
        windows = self.high_volatility_windows if high_volatility else self.windows

        components: List[ZScoreCalculation] = []
        outliers = 0
        for window in windows:
            calc, removed = self.calculate_window(ts, vals, window)
            outliers += removed
            if calc is not None:
                components.append(calc)

        if not components:
            return None

        weight_total = sum(c.window.weight * c.confidence for c in components)
        if weight_total <= 0:
            return None
        raw = sum(c.zscore * c.window.weight * c.confidence for c in components) / weight_total

        regime = self.regime_classifier(raw, components)
        multiplier = self.settings.season_multipliers[regime.value]
        value = min(max(raw * multiplier, self.settings.composite_min), self.settings.composite_max)

        completeness = len(components) / len(windows)
        confidence = self.composite_confidence(components, completeness)

        return CompositeZScore(
            indicator_id=indicator_id,
            value=round(value, 6),
            regime=regime,
            confidence=round(confidence, 6),
            components=tuple(components),
            timestamp=float(ts[-1]),
            high_volatility=high_volatility,
            distribution=self.analyze_distribution(ts, vals),
            data_quality=DataQuality(
                completeness=round(completeness, 6),
                freshness=round(min(max(freshness, 0.0), 1.0), 6),
                outliers_removed=outliers,
                valid_windows=len(components),
                total_windows=len(windows)
            ),
            metadata={"raw_composite": round(raw, 6), "season_multiplier": multiplier}
        )

    @staticmethod
    def composite_confidence(components: Sequence[ZScoreCalculation], completeness: float) -> float:
        """
        Average window confidence scaled by completeness plus an agreement
        bonus that shrinks as the window z-scores disperse. Clamped to [0, 1].
        """
        if not components:
            return 0.0
        avg = sum(c.confidence for c in components) / len(components)
        zs = np.array([c.zscore for c in components], dtype=float)
        dispersion = float(np.std(zs)) if zs.size > 1 else 0.0
        agreement = 1.0 / (1.0 + dispersion)
        confidence = completeness * (0.8 * avg + 0.2 * agreement)
        return min(max(confidence, 0.0), 1.0)

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def analyze_distribution(self, timestamps: np.ndarray, values: np.ndarray) -> DistributionAnalysis:
        """Histogram centred on the current value, moments and top-N extremes."""
        current = float(values[-1])
        return DistributionAnalysis(
            histogram=self._histogram(values, current),
            skewness=round(sample_skewness(values), 6),
            kurtosis=round(sample_excess_kurtosis(values), 6),
            extremes=self._extremes(timestamps, values)
        )

    def _histogram(self, values: np.ndarray, current: float) -> Tuple[HistogramBin, ...]:
        bins = self.settings.histogram_bins
        span = float(max(np.max(values) - current, current - np.min(values)))
        if span <= 0:
            return (HistogramBin(lower=current, upper=current, count=int(values.size), is_current=True),)

        lower, upper = current - span, current + span
        counts, edges = np.histogram(values, bins=bins, range=(lower, upper))
        width = (upper - lower) / bins
        current_index = min(int((current - lower) / width), bins - 1)

        return tuple(
            HistogramBin(
                lower=float(edges[i]),
                upper=float(edges[i + 1]),
                count=int(counts[i]),
                is_current=(i == current_index)
            )
            for i in range(bins)
        )

    def _extremes(self, timestamps: np.ndarray, values: np.ndarray) -> Tuple[ExtremeValue, ...]:
        if values.size < 2:
            return ()
        std = float(np.std(values, ddof=1))
        if std < self.settings.stddev_epsilon:
            return ()
        mean = float(np.mean(values))
        zs = (values - mean) / std

        cutoff = self.settings.extreme_deviation_cutoff
        candidates = [
            (abs(float(z)), float(t), float(v), float(z))
            for t, v, z in zip(timestamps, values, zs)
            if abs(z) > cutoff
        ]
        candidates.sort(key=lambda c: (-c[0], c[1]))

        return tuple(
            ExtremeValue(
                timestamp=t,
                value=v,
                zscore=round(z, 6),
                severity=(
                    ExtremeSeverity.EXTREME if abs_z > 3
                    else ExtremeSeverity.SIGNIFICANT if abs_z > 2
                    else ExtremeSeverity.NOTABLE
                )
            )
            for abs_z, t, v, z in candidates[:self.settings.top_extremes]
        )
