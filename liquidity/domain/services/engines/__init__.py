"""
Engines - concrete computation units implementing IEngine.
"""

from .base_engine import BaseEngine
from .data_integrity import DataIntegrityEngine
from .zscore import ZScoreEngine
from .zscore_calculator import ZScoreCalculator
from .net_liquidity import NetLiquidityEngine
from .allocator import AllocatorEngine

__all__ = [
    'BaseEngine',
    'DataIntegrityEngine',
    'ZScoreEngine',
    'ZScoreCalculator',
    'NetLiquidityEngine',
    'AllocatorEngine',
]
