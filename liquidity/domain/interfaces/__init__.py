"""
Domain Interfaces - Ports for engines and data providers
========================================================
"""

from .engine import IEngine, EngineContext, TRUST_SCORE_METRIC, CONSOLIDATED_VALUES_METRIC
from .snapshot_provider import ISnapshotProvider

__all__ = ['IEngine', 'EngineContext', 'ISnapshotProvider', 'TRUST_SCORE_METRIC', 'CONSOLIDATED_VALUES_METRIC']
