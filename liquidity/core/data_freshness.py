"""
Data Freshness
==============
Age classification for indicator observations and engine results.

Default bands (seconds since the data was produced):
    FRESH   < 30
    WARN    < 60
    STALE   < 300
    REJECT  otherwise

Macro series update daily or weekly, so the integrity engine passes much
wider thresholds built from IntegritySettings; the scheduler derives
per-engine thresholds from refresh intervals.

    status, age = check_data_freshness(result.completed_at, current_time=clock())
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .time_manager import now as _now


class FreshnessStatus(Enum):
    FRESH = "fresh"
    WARN = "warn"
    STALE = "stale"
    REJECT = "reject"


Thresholds = Dict[FreshnessStatus, float]

# Upper bound (exclusive) of each band; REJECT has none
FRESHNESS_THRESHOLDS: Thresholds = {
    FreshnessStatus.FRESH: 30,
    FreshnessStatus.WARN: 60,
    FreshnessStatus.STALE: 300,
}

_BANDS = (FreshnessStatus.FRESH, FreshnessStatus.WARN, FreshnessStatus.STALE)

# Score at the start and end of each decaying band
_SCORE_RANGE = {
    FreshnessStatus.WARN: (1.0, 0.5),
    FreshnessStatus.STALE: (0.5, 0.1),
}


def thresholds_from_seconds(fresh: float, warn: float, stale: float) -> Thresholds:
    """Threshold mapping from three ascending band limits."""
    if not (0 <= fresh <= warn <= stale):
        raise ValueError("freshness thresholds must satisfy 0 <= fresh <= warn <= stale")
    return dict(zip(_BANDS, (fresh, warn, stale)))


def check_data_freshness(
    data_timestamp: float,
    current_time: Optional[float] = None,
    thresholds: Optional[Thresholds] = None
) -> Tuple[FreshnessStatus, float]:
    """
    Classify an observation by age.

    A timestamp in the future (clock skew) is FRESH with age 0.

    Returns:
        (status, age_seconds)
    """
    reference = _now() if current_time is None else current_time
    age = reference - data_timestamp
    if age < 0:
        return FreshnessStatus.FRESH, 0.0

    limits = thresholds or FRESHNESS_THRESHOLDS
    for band in _BANDS:
        if age < limits[band]:
            return band, age
    return FreshnessStatus.REJECT, age


def freshness_score(
    data_timestamp: Optional[float],
    current_time: Optional[float] = None,
    thresholds: Optional[Thresholds] = None
) -> float:
    """
    Age mapped onto [0, 1]: 1.0 while FRESH, linear to 0.5 across WARN and
    to 0.1 across STALE, 0.0 when REJECT or when the timestamp is unknown.
    """
    if data_timestamp is None:
        return 0.0

    limits = thresholds or FRESHNESS_THRESHOLDS
    status, age = check_data_freshness(data_timestamp, current_time, limits)
    if status not in _SCORE_RANGE:
        return 1.0 if status == FreshnessStatus.FRESH else 0.0

    lower = limits[_BANDS[_BANDS.index(status) - 1]]
    upper = limits[status]
    start, end = _SCORE_RANGE[status]
    position = (age - lower) / max(upper - lower, 1e-9)
    return start - (start - end) * position


@dataclass
class FreshnessMetadata:
    """Staleness details exposed with a consumed engine result."""
    status: FreshnessStatus
    age_seconds: float
    source_timestamp: float
    processed_timestamp: float
    is_stale: bool = False

    @classmethod
    def from_timestamp(
        cls,
        source_timestamp: float,
        current_time: Optional[float] = None,
        thresholds: Optional[Thresholds] = None
    ) -> "FreshnessMetadata":
        processed = _now() if current_time is None else current_time
        status, age = check_data_freshness(source_timestamp, processed, thresholds)
        return cls(
            status=status,
            age_seconds=age,
            source_timestamp=source_timestamp,
            processed_timestamp=processed,
            is_stale=status in (FreshnessStatus.STALE, FreshnessStatus.REJECT)
        )

    def to_dict(self) -> Dict:
        return {
            "freshness_status": self.status.value,
            "data_age_seconds": round(self.age_seconds, 3),
            "source_timestamp": self.source_timestamp,
            "processed_timestamp": self.processed_timestamp,
            "is_stale": self.is_stale,
        }
