"""
Core module for the liquidity engine system: logging, errors, events,
resilience and time helpers shared by every layer.
"""

from .exceptions import (
    EngineCoreError,
    ConfigurationError,
    DependencyCycleError,
    DuplicateEngineError,
    UnknownDependencyError,
    EngineNotFoundError,
    ValidationFailure,
    ComputationError,
    EngineTimeoutError,
    CircuitOpenError,
)
from .event_bus import EventBus, TOPICS
from .logger import get_logger, StructuredLogger

__all__ = [
    'EngineCoreError',
    'ConfigurationError',
    'DependencyCycleError',
    'DuplicateEngineError',
    'UnknownDependencyError',
    'EngineNotFoundError',
    'ValidationFailure',
    'ComputationError',
    'EngineTimeoutError',
    'CircuitOpenError',
    'EventBus',
    'TOPICS',
    'get_logger',
    'StructuredLogger',
]
