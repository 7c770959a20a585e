"""
Engine Interfaces - Contract every computation unit implements
==============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..models.engine import EngineConfig, EngineOutput
from ..models.indicators import IndicatorSnapshot


@dataclass(frozen=True)
class EngineContext:
    """
    Everything besides the snapshot an engine may consume in one cycle.

    Attributes:
        dependency_outputs: Output per declared dependency (fresh or last-known-good).
            Dependencies with no output ever produced are absent.
        dependency_sources: 'fresh', 'last_known_good' or 'missing' per dependency
        trust: Integrity trust weight in [0, 1]; 1.0 when no integrity output exists
        consolidated_values: Healed cross-source consensus per indicator id
        cycle_id: Refresh cycle number (0 for out-of-band runs)
    """
    dependency_outputs: Dict[str, EngineOutput] = field(default_factory=dict)
    dependency_sources: Dict[str, str] = field(default_factory=dict)
    trust: float = 1.0
    consolidated_values: Dict[str, float] = field(default_factory=dict)
    cycle_id: int = 0

    def dependency(self, engine_id: str) -> Optional[EngineOutput]:
        return self.dependency_outputs.get(engine_id)

    def value_for(self, snapshot: IndicatorSnapshot, indicator_id: str) -> Optional[float]:
        """Healed consensus value when available, otherwise the snapshot's current value."""
        healed = self.consolidated_values.get(indicator_id)
        if healed is not None:
            return healed
        return snapshot.current_value(indicator_id)


class IEngine(ABC):
    """
    Interface for engines.

    Contract:
    - calculate() is deterministic for a fixed snapshot and context
    - calculate() never raises for missing or insufficient data; it returns a
      low-confidence NEUTRAL output instead
    - validate_data() returning False makes the scheduler skip calculate()
      for the cycle (a non-fatal validation failure)
    """

    @property
    @abstractmethod
    def config(self) -> EngineConfig:
        """Immutable configuration of this engine"""
        pass

    @property
    def engine_id(self) -> str:
        return self.config.id

    @abstractmethod
    async def validate_data(self, snapshot: IndicatorSnapshot) -> bool:
        """Return False when the snapshot cannot be used this cycle"""
        pass

    @abstractmethod
    async def calculate(self, snapshot: IndicatorSnapshot,
                        context: Optional[EngineContext] = None) -> EngineOutput:
        """Compute the engine output for one cycle"""
        pass


# Sub-metric keys through which the integrity engine publishes its trust signal
TRUST_SCORE_METRIC = "integrity_score"
CONSOLIDATED_VALUES_METRIC = "consolidated_values"
