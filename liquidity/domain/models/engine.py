"""
Engine Models - Configuration, outputs and execution results
============================================================
Pure data models shared by the registry, the scheduler and every engine.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from enum import Enum

WILDCARD = "*"


class EngineSignal(str, Enum):
    """Categorical risk read-out of an engine"""
    RISK_ON = "RISK_ON"
    RISK_OFF = "RISK_OFF"
    WARNING = "WARNING"
    NEUTRAL = "NEUTRAL"


class EngineState(str, Enum):
    """Per-engine state within a refresh cycle"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EngineState.SUCCEEDED, EngineState.FAILED)


class FailureKind(str, Enum):
    """Why an ExecutionResult is unsuccessful"""
    VALIDATION = "validation"
    COMPUTATION = "computation"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"


class EngineConfig(BaseModel):
    """
    Immutable engine configuration, created once at registration.

    ``required_indicators`` containing ``"*"`` means the engine consumes the
    whole snapshot.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique engine identifier")
    name: str = Field(..., description="Display name")
    category: str = Field(default="core", description="Grouping category (e.g., foundation, core, synthesis)")
    pillar: Optional[int] = Field(None, description="Dashboard pillar the engine belongs to")
    priority: int = Field(default=0, description="Tie-break inside a tier; higher runs first")
    refresh_interval_seconds: Optional[float] = Field(None, gt=0, description="Refresh interval, also the execution timeout")
    required_indicators: FrozenSet[str] = Field(default_factory=frozenset)
    dependencies: Tuple[str, ...] = Field(default_factory=tuple, description="Engine ids whose outputs this engine consumes")
    tags: FrozenSet[str] = Field(default_factory=frozenset)
    estimated_duration_seconds: float = Field(default=5.0, ge=0)

    @field_validator('dependencies', mode='before')
    @classmethod
    def dedupe_dependencies(cls, v):
        seen = []
        for dep in v or ():
            if dep not in seen:
                seen.append(dep)
        return tuple(seen)

    @property
    def requires_all_indicators(self) -> bool:
        return WILDCARD in self.required_indicators


class PrimaryMetric(BaseModel):
    """Headline number of an engine output"""
    value: float = Field(default=0.0)
    change_24h: float = Field(default=0.0, description="Absolute change over 24h")
    change_percent: float = Field(default=0.0, description="Percent change over 24h")


class EngineOutput(BaseModel):
    """Result produced by a successful calculate()"""

    primary_metric: PrimaryMetric = Field(default_factory=PrimaryMetric)
    signal: EngineSignal = Field(default=EngineSignal.NEUTRAL)
    confidence: float = Field(default=0.0, ge=0.0, le=100.0, description="Confidence (0-100)")
    analysis: str = Field(default="")
    sub_metrics: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_degraded(self) -> bool:
        return bool(self.sub_metrics.get("degraded"))


class ExecutionResult(BaseModel):
    """
    Terminal outcome of one engine execution.

    This value is the persistence boundary: storing it is a collaborator's
    concern, ``to_persistence_record`` gives the flat view they consume.
    """

    engine_id: str
    output: Optional[EngineOutput] = None
    success: bool
    elapsed_ms: float = Field(default=0.0, ge=0)
    completed_at: float = Field(..., description="Completion time (epoch seconds)")
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    dependency_sources: Dict[str, str] = Field(
        default_factory=dict,
        description="Per dependency id: 'fresh', 'last_known_good' or 'missing'"
    )

    def to_persistence_record(self) -> Dict[str, Any]:
        return {
            "engine_id": self.engine_id,
            "success": self.success,
            "signal": self.output.signal.value if self.output else None,
            "confidence": self.output.confidence if self.output else None,
            "computed_at": self.completed_at,
            "elapsed_ms": self.elapsed_ms,
            "error": self.error,
        }


class ExecutionStatus(BaseModel):
    """Aggregate execution counts for the display layer"""
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0


class EngineResultView(BaseModel):
    """Latest result as seen by consumers, with staleness information"""
    engine_id: str
    result: ExecutionResult
    output: Optional[EngineOutput] = Field(None, description="Latest output, last-known-good when the latest run failed")
    is_last_known_good: bool = False
    is_stale: bool = False
    age_seconds: float = 0.0
    freshness: Dict[str, Any] = Field(default_factory=dict)


class ExecutionPhase(BaseModel):
    """One tier of an execution plan"""
    phase: int
    engines: List[str]
    depends_on_phases: List[int] = Field(default_factory=list)
    estimated_duration_seconds: float = 0.0


class ExecutionPlan(BaseModel):
    """Tiered plan derived from declared dependencies"""
    phases: List[ExecutionPhase] = Field(default_factory=list)
    total_estimated_seconds: float = 0.0
    cyclic_engines: List[str] = Field(default_factory=list)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class SystemHealth(BaseModel):
    """Overall health derived from the latest results"""
    status: HealthStatus
    healthy_ratio: float = Field(ge=0.0, le=1.0)
    average_confidence: float = Field(ge=0.0, le=1.0)
    total_engines: int
    healthy_engines: int
    failed_engines: List[str] = Field(default_factory=list)
