"""
Snapshot Provider Interface - Port for indicator data
=====================================================
Pull-based: the scheduler reads one snapshot per execution cycle and is not
responsible for refreshing it.
"""

from abc import ABC, abstractmethod

from ..models.indicators import IndicatorSnapshot


class ISnapshotProvider(ABC):
    """Interface for indicator snapshot providers"""

    @abstractmethod
    async def get_snapshot(self) -> IndicatorSnapshot:
        """Return the current keyed collection of indicator data"""
        pass
