"""
Domain Services - registry, scheduler, cache and engines.
"""

from .engine_registry import EngineRegistry
from .engine_scheduler import EngineScheduler
from .result_cache import ResultCache

__all__ = ['EngineRegistry', 'EngineScheduler', 'ResultCache']
