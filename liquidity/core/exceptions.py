"""
Core Exceptions - Liquidity Engine Core
=======================================
Centralized exception definitions for engine registration and execution.

Only ConfigurationError subclasses are meant to escape to the caller (they
are fatal at startup). Execution-time errors are caught per engine by the
scheduler and turned into failed ExecutionResults.
"""

from typing import Iterable, List, Optional


class EngineCoreError(Exception):
    """Base exception for the engine core."""
    pass


class ConfigurationError(EngineCoreError):
    """Raised when the engine configuration is invalid."""
    pass


class DependencyCycleError(ConfigurationError):
    """
    Raised when declared engine dependencies form a cycle.

    Attributes:
        engine_ids: Engines that could not be placed into a tier
    """
    def __init__(self, engine_ids: Iterable[str], message: str = None):
        self.engine_ids: List[str] = sorted(engine_ids)
        self.message = message or f"Circular dependency detected among engines: {', '.join(self.engine_ids)}"
        super().__init__(self.message)


class DuplicateEngineError(ConfigurationError):
    """Raised when an engine id is registered twice and replacement is not allowed."""
    def __init__(self, engine_id: str):
        self.engine_id = engine_id
        self.message = f"Engine already registered: {engine_id}"
        super().__init__(self.message)


class UnknownDependencyError(ConfigurationError):
    """Raised when an engine depends on an id that is not registered."""
    def __init__(self, engine_id: str, dependency_id: str):
        self.engine_id = engine_id
        self.dependency_id = dependency_id
        self.message = f"Engine {engine_id} depends on unknown engine {dependency_id}"
        super().__init__(self.message)


class EngineNotFoundError(EngineCoreError):
    """Raised when an operation names an engine that is not registered."""
    def __init__(self, engine_id: str):
        self.engine_id = engine_id
        self.message = f"Engine not found: {engine_id}"
        super().__init__(self.message)


class ValidationFailure(EngineCoreError):
    """
    Raised internally when an engine's validate_data() rejects the snapshot.

    Recovered locally: the engine is skipped for the cycle and consumers fall
    back to the last-known-good output.
    """
    def __init__(self, engine_id: str, reason: Optional[str] = None):
        self.engine_id = engine_id
        self.reason = reason or "validate_data returned False"
        self.message = f"Validation failed for engine {engine_id}: {self.reason}"
        super().__init__(self.message)


class ComputationError(EngineCoreError):
    """Wraps an exception raised while preparing or running an engine's calculate()."""
    def __init__(self, engine_id: str, cause: BaseException):
        self.engine_id = engine_id
        self.cause = cause
        self.message = f"Engine {engine_id} failed: {type(cause).__name__}: {cause}"
        super().__init__(self.message)


class EngineTimeoutError(EngineCoreError):
    """Raised when an engine exceeds its refresh interval."""
    def __init__(self, engine_id: str, timeout: float):
        self.engine_id = engine_id
        self.timeout = timeout
        self.message = f"Engine {engine_id} timed out after {timeout}s"
        super().__init__(self.message)


class CircuitOpenError(EngineCoreError):
    """Raised when an engine is short-circuited by its circuit breaker."""
    def __init__(self, engine_id: str):
        self.engine_id = engine_id
        self.message = f"Circuit breaker open for engine {engine_id}"
        super().__init__(self.message)
