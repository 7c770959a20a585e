"""
Domain Models - Core Business Entities
======================================
Pure data models representing engine-system concepts.
"""

from .indicators import IndicatorPoint, IndicatorSeries, IndicatorSnapshot, SourceReading
from .engine import (
    WILDCARD, EngineSignal, EngineState, FailureKind, EngineConfig, PrimaryMetric,
    EngineOutput, ExecutionResult, ExecutionStatus, EngineResultView,
    ExecutionPhase, ExecutionPlan, HealthStatus, SystemHealth,
)
from .integrity import (
    HealingActionKind, Severity, IntegrityStatus, HealingAction,
    ValidationRecord, ConsensusResult, IntegrityReport,
)
from .zscore import (
    MarketRegime, ExtremeSeverity, ZScoreWindow, ZScoreCalculation, HistogramBin,
    ExtremeValue, DistributionAnalysis, DataQuality, CompositeZScore,
    DEFAULT_WINDOWS, HIGH_VOLATILITY_WINDOWS,
)

__all__ = [
    # Indicators
    'IndicatorPoint', 'IndicatorSeries', 'IndicatorSnapshot', 'SourceReading',
    # Engines
    'WILDCARD', 'EngineSignal', 'EngineState', 'FailureKind', 'EngineConfig', 'PrimaryMetric',
    'EngineOutput', 'ExecutionResult', 'ExecutionStatus', 'EngineResultView',
    'ExecutionPhase', 'ExecutionPlan', 'HealthStatus', 'SystemHealth',
    # Integrity
    'HealingActionKind', 'Severity', 'IntegrityStatus', 'HealingAction',
    'ValidationRecord', 'ConsensusResult', 'IntegrityReport',
    # Z-score
    'MarketRegime', 'ExtremeSeverity', 'ZScoreWindow', 'ZScoreCalculation', 'HistogramBin',
    'ExtremeValue', 'DistributionAnalysis', 'DataQuality', 'CompositeZScore',
    'DEFAULT_WINDOWS', 'HIGH_VOLATILITY_WINDOWS',
]
