"""
Z-Score Models - Multi-window composite scoring structures
==========================================================
Immutable value objects produced by the composite score calculator.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class MarketRegime(str, Enum):
    """Seasonal market classification derived from the composite score"""
    WINTER = "WINTER"
    SPRING = "SPRING"
    SUMMER = "SUMMER"
    AUTUMN = "AUTUMN"


class ExtremeSeverity(str, Enum):
    EXTREME = "extreme"
    SIGNIFICANT = "significant"
    NOTABLE = "notable"


@dataclass(frozen=True)
class ZScoreWindow:
    """Lookback window with its fixed composite weight."""
    period: str      # Label, e.g. "4w"
    days: int        # Trailing length in days
    weight: float


# Weights sum to 1
DEFAULT_WINDOWS: Tuple[ZScoreWindow, ...] = (
    ZScoreWindow("4w", 28, 0.15),
    ZScoreWindow("12w", 84, 0.25),
    ZScoreWindow("26w", 182, 0.35),
    ZScoreWindow("52w", 365, 0.20),
    ZScoreWindow("104w", 730, 0.05),
)

# Shifted toward the short end, used under a high-volatility regime
HIGH_VOLATILITY_WINDOWS: Tuple[ZScoreWindow, ...] = (
    ZScoreWindow("4w", 28, 0.35),
    ZScoreWindow("12w", 84, 0.25),
    ZScoreWindow("26w", 182, 0.20),
    ZScoreWindow("52w", 365, 0.15),
    ZScoreWindow("104w", 730, 0.05),
)


@dataclass(frozen=True)
class ZScoreCalculation:
    """Statistics of one indicator over one window."""
    window: ZScoreWindow
    value: float
    mean: float
    stddev: float
    zscore: float
    percentile: float      # 0-100
    is_extreme: bool
    confidence: float      # 0-1
    sample_size: int
    zero_variance: bool = False


@dataclass(frozen=True)
class HistogramBin:
    lower: float
    upper: float
    count: int
    is_current: bool = False


@dataclass(frozen=True)
class ExtremeValue:
    timestamp: float
    value: float
    zscore: float
    severity: ExtremeSeverity


@dataclass(frozen=True)
class DistributionAnalysis:
    histogram: Tuple[HistogramBin, ...]
    skewness: float
    kurtosis: float      # Excess kurtosis
    extremes: Tuple[ExtremeValue, ...]


@dataclass(frozen=True)
class DataQuality:
    completeness: float  # 0-1
    freshness: float     # 0-1
    outliers_removed: int
    valid_windows: int
    total_windows: int


@dataclass(frozen=True)
class CompositeZScore:
    """Weighted composite of per-window z-scores for one indicator."""
    indicator_id: str
    value: float
    regime: MarketRegime
    confidence: float    # Clamped to [0, 1]
    components: Tuple[ZScoreCalculation, ...]
    timestamp: float
    high_volatility: bool = False
    distribution: Optional[DistributionAnalysis] = None
    data_quality: Optional[DataQuality] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
