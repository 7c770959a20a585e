"""
Integrity Models - Source validation and self-healing records
=============================================================
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from enum import Enum


class HealingActionKind(str, Enum):
    """Remediation ladder, least to most severe"""
    FALLBACK = "fallback"
    INTERPOLATION = "interpolation"
    CONSENSUS_OVERRIDE = "consensus_override"
    CIRCUIT_BREAKER = "circuit_breaker"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IntegrityStatus(str, Enum):
    OPTIMAL = "OPTIMAL"
    GOOD = "GOOD"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


class HealingAction(BaseModel):
    """A remediation applied to a source for one indicator"""
    kind: HealingActionKind
    source: str
    indicator_id: str
    severity: Severity
    timestamp: float
    raw_value: Optional[float] = None
    healed_value: Optional[float] = None
    description: str = ""


class ValidationRecord(BaseModel):
    """Per source, per indicator assessment for one cycle"""
    source_id: str
    indicator_id: str
    trust_score: float = Field(ge=0.0, le=1.0)
    completeness: float = Field(default=1.0, ge=0.0, le=1.0)
    freshness: float = Field(default=1.0, ge=0.0, le=1.0)
    deviation: Optional[float] = Field(None, description="Absolute deviation from consensus")
    deviation_ratio: Optional[float] = Field(None, description="Deviation divided by the anomaly tolerance")
    anomaly_count: int = Field(default=0, ge=0, description="Consecutive anomalous cycles")
    manipulation_signals: int = Field(default=0, ge=0)
    is_anomalous: bool = False
    is_manipulation: bool = False
    circuit_open: bool = False


class ConsensusResult(BaseModel):
    """
    Cross-source agreement for one logical indicator.

    ``consensus_value`` is the healed value consumed downstream;
    ``raw_value`` is what the highest-priority source reported, kept for audit.
    """
    indicator_id: str
    consensus_value: Optional[float] = None
    raw_value: Optional[float] = None
    method: str = "median"
    participating_sources: List[str] = Field(default_factory=list)
    excluded_sources: List[str] = Field(default_factory=list)
    agreement: float = Field(default=0.0, ge=0.0, le=1.0)
    healed: bool = False


class IntegrityReport(BaseModel):
    """Full output of the data integrity validator for one cycle"""
    integrity_score: float = Field(ge=0.0, le=100.0)
    consensus_level: float = Field(ge=0.0, le=100.0)
    manipulation_risk: float = Field(default=0.0, ge=0.0, le=1.0)
    system_status: IntegrityStatus
    active_sources: int = 0
    total_sources: int = 0
    consensus: Dict[str, ConsensusResult] = Field(default_factory=dict)
    records: List[ValidationRecord] = Field(default_factory=list)
    healing_actions: List[HealingAction] = Field(default_factory=list)

    @property
    def consolidated_values(self) -> Dict[str, Optional[float]]:
        return {k: v.consensus_value for k, v in self.consensus.items()}
