"""
Indicator Models - Snapshot data consumed by engines
====================================================
Pure data models for indicator series and the per-cycle snapshot.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Dict, List, Optional, Tuple


class IndicatorPoint(BaseModel):
    """Single observation of an indicator"""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(..., description="Observation time (epoch seconds)")
    value: float = Field(..., description="Observed value")


class IndicatorSeries(BaseModel):
    """
    Time-ordered history of one indicator from one source.

    Points are strictly ascending by timestamp; duplicate timestamps are
    rejected at construction.
    """

    model_config = ConfigDict(frozen=True)

    indicator_id: str = Field(..., min_length=1, description="Indicator identifier (e.g., WALCL)")
    source: str = Field(default="primary", description="Source tag (e.g., fred)")
    points: Tuple[IndicatorPoint, ...] = Field(default_factory=tuple)
    last_updated: Optional[float] = Field(None, description="When the source last refreshed this series (epoch seconds)")

    @field_validator('points', mode='before')
    @classmethod
    def coerce_points(cls, v):
        coerced = []
        for p in v or ():
            if isinstance(p, (tuple, list)) and len(p) == 2:
                coerced.append(IndicatorPoint(timestamp=p[0], value=p[1]))
            else:
                coerced.append(p)
        return tuple(coerced)

    @model_validator(mode='after')
    def validate_order(self):
        for prev, cur in zip(self.points, self.points[1:]):
            if cur.timestamp == prev.timestamp:
                raise ValueError(f"Duplicate timestamp {cur.timestamp} in series {self.indicator_id}")
            if cur.timestamp < prev.timestamp:
                raise ValueError(f"Series {self.indicator_id} is not time-ascending at {cur.timestamp}")
        return self

    @property
    def values(self) -> List[float]:
        return [p.value for p in self.points]

    @property
    def timestamps(self) -> List[float]:
        return [p.timestamp for p in self.points]

    @property
    def current(self) -> Optional[float]:
        """Most recent value, None when empty"""
        return self.points[-1].value if self.points else None

    @property
    def latest_timestamp(self) -> Optional[float]:
        if self.last_updated is not None:
            return self.last_updated
        return self.points[-1].timestamp if self.points else None

    def __len__(self) -> int:
        return len(self.points)

    def value_at_or_before(self, ts: float) -> Optional[float]:
        """Latest value observed at or before ``ts``"""
        result = None
        for p in self.points:
            if p.timestamp > ts:
                break
            result = p.value
        return result


class SourceReading(BaseModel):
    """Current value of a logical indicator as reported by a single source"""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., min_length=1)
    value: Optional[float] = Field(None, description="None when the source has no value this cycle")
    timestamp: Optional[float] = Field(None, description="When the source produced the value")
    priority: int = Field(default=0, description="Fallback order; higher is preferred")
    importance: float = Field(default=1.0, gt=0, description="Weight in the aggregate integrity score")
    expected_fields: int = Field(default=1, ge=1)
    present_fields: int = Field(default=1, ge=0)

    @property
    def completeness(self) -> float:
        if self.value is None:
            return 0.0
        return min(self.present_fields / self.expected_fields, 1.0)


class IndicatorSnapshot(BaseModel):
    """
    Keyed collection of indicator data read once per execution cycle.

    ``series`` maps indicator ids to their history; ``readings`` maps
    logical indicator ids to the per-source current values cross-checked by
    the data integrity validator. ``is_fixture`` labels synthetic data.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(..., description="Snapshot time (epoch seconds)")
    series: Dict[str, IndicatorSeries] = Field(default_factory=dict)
    readings: Dict[str, Tuple[SourceReading, ...]] = Field(default_factory=dict)
    is_fixture: bool = Field(default=False, description="True when produced by a deterministic fixture")

    @property
    def indicator_ids(self) -> List[str]:
        return sorted(set(self.series) | set(self.readings))

    def has(self, indicator_id: str) -> bool:
        return indicator_id in self.series or indicator_id in self.readings

    def get_series(self, indicator_id: str) -> Optional[IndicatorSeries]:
        return self.series.get(indicator_id)

    def get_readings(self, indicator_id: str) -> Tuple[SourceReading, ...]:
        return self.readings.get(indicator_id, ())

    def current_value(self, indicator_id: str) -> Optional[float]:
        """Latest value from the series, falling back to the highest-priority reading"""
        series = self.series.get(indicator_id)
        if series is not None and series.current is not None:
            return series.current
        readings = [r for r in self.get_readings(indicator_id) if r.value is not None]
        if readings:
            return max(readings, key=lambda r: r.priority).value
        return None
