"""
Base Engine
===========
Shared plumbing for concrete engines: configuration holding, default
validation and the degraded NEUTRAL output used when data is insufficient.
"""

from abc import abstractmethod
from typing import Any, Dict, Optional

from ....core.logger import get_logger
from ...interfaces.engine import EngineContext, IEngine
from ...models.engine import EngineConfig, EngineOutput, EngineSignal, PrimaryMetric
from ...models.indicators import IndicatorSnapshot

logger = get_logger(__name__)

DEGRADED_CONFIDENCE = 10.0


class BaseEngine(IEngine):
    """
    Base class for engines.

    Subclasses implement ``calculate``. ``validate_data`` accepts any snapshot
    carrying at least one of the required indicators (or any data at all for
    wildcard engines); thinner data is handled inside ``calculate`` by
    degrading, never by raising.
    """

    def __init__(self, config: EngineConfig):
        self._config = config

    @property
    def config(self) -> EngineConfig:
        return self._config

    async def validate_data(self, snapshot: IndicatorSnapshot) -> bool:
        if self._config.requires_all_indicators or not self._config.required_indicators:
            return bool(snapshot.series or snapshot.readings)
        return any(snapshot.has(indicator_id) for indicator_id in self._config.required_indicators)

    @abstractmethod
    async def calculate(self, snapshot: IndicatorSnapshot,
                        context: Optional[EngineContext] = None) -> EngineOutput:
        pass

    def neutral_output(self, reason: str, confidence: float = DEGRADED_CONFIDENCE,
                       sub_metrics: Optional[Dict[str, Any]] = None) -> EngineOutput:
        """Low-confidence NEUTRAL output for missing or insufficient data."""
        logger.debug("engine.degraded_output", {"engine_id": self.engine_id, "reason": reason})
        metrics = {"degraded": True, "reason": reason}
        metrics.update(sub_metrics or {})
        return EngineOutput(
            primary_metric=PrimaryMetric(),
            signal=EngineSignal.NEUTRAL,
            confidence=confidence,
            analysis=f"Insufficient data: {reason}",
            sub_metrics=metrics
        )

    @staticmethod
    def scale_confidence(confidence_0_1: float, context: Optional[EngineContext]) -> float:
        """Convert a [0, 1] confidence to [0, 100], weighted by the integrity trust signal."""
        trust = context.trust if context is not None else 1.0
        return round(min(max(confidence_0_1, 0.0), 1.0) * trust * 100.0, 4)
