"""
Unified Configuration Settings - Single Source of Truth
=======================================================
All engine-system configuration using Pydantic Settings.
Each section reads its own env prefix; AppSettings nests them and also
accepts ``SECTION__FIELD`` style variables and a ``.env`` file.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import Dict
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ConsensusMethod(str, Enum):
    """Cross-source consensus estimators"""
    MEDIAN = "median"
    TRIMMED_MEAN = "trimmed_mean"


# === SYSTEM CONFIGURATION ===

class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    file_enabled: bool = Field(default=False)
    console_enabled: bool = Field(default=True)
    structured_logging: bool = Field(default=True)
    log_dir: str = Field(default="logs")
    max_file_size_mb: int = Field(default=100)
    backup_count: int = Field(default=5)

    class Config:
        env_prefix = "LOG_"


# === ENGINE EXECUTION CONFIGURATION ===

class SchedulerSettings(BaseSettings):
    """Engine scheduler configuration"""
    max_concurrent_engines: int = Field(default=8, ge=1, description="Engines running at once inside a tier")
    default_refresh_interval_seconds: float = Field(default=30.0, gt=0, description="Refresh interval / timeout for engines that do not declare one")
    enable_circuit_breaker: bool = Field(default=True)
    circuit_breaker_threshold: int = Field(default=3, ge=1, description="Consecutive failures before an engine is short-circuited")
    circuit_breaker_reset_seconds: float = Field(default=60.0, ge=0)
    stale_after_seconds: float = Field(default=300.0, gt=0, description="Result age after which consumers see a staleness flag")
    event_max_retries: int = Field(default=0, ge=0, description="EventBus delivery retries per subscriber")

    class Config:
        env_prefix = "SCHEDULER_"


class CacheSettings(BaseSettings):
    """Result cache configuration"""
    default_ttl_seconds: float = Field(default=15.0, gt=0)
    max_entries: int = Field(default=15000, ge=1)
    sweep_interval_seconds: float = Field(default=0.0, ge=0, description="0 disables the periodic sweep")

    class Config:
        env_prefix = "CACHE_"


# === DATA INTEGRITY CONFIGURATION ===

class IntegritySettings(BaseSettings):
    """Data integrity validator configuration"""
    consensus_method: ConsensusMethod = Field(default=ConsensusMethod.MEDIAN)
    trim_ratio: float = Field(default=0.2, ge=0.0, lt=0.5, description="Fraction trimmed from each tail for trimmed_mean")
    anomaly_volatility_multiple: float = Field(default=3.0, gt=0)
    min_relative_tolerance: float = Field(default=0.005, ge=0, description="Deviation floor relative to consensus when history is flat")
    manipulation_consecutive_cycles: int = Field(default=2, ge=2)
    circuit_breaker_failures: int = Field(default=5, ge=1)
    circuit_breaker_cooldown_seconds: float = Field(default=300.0, ge=0)
    interpolation_decay: float = Field(default=0.9, gt=0, le=1.0, description="Weight kept by the last-known-good value per missed cycle")
    healing_history_size: int = Field(default=100, ge=1)
    volatility_lookback: int = Field(default=30, ge=2)

    # Macro data is daily/weekly: freshness thresholds in seconds
    freshness_fresh_seconds: float = Field(default=2 * 86400)
    freshness_warn_seconds: float = Field(default=8 * 86400)
    freshness_stale_seconds: float = Field(default=30 * 86400)

    @model_validator(mode='after')
    def validate_freshness_order(self):
        if not (self.freshness_fresh_seconds <= self.freshness_warn_seconds <= self.freshness_stale_seconds):
            raise ValueError("Integrity freshness thresholds must be ascending (fresh <= warn <= stale)")
        return self

    class Config:
        env_prefix = "INTEGRITY_"


# === COMPOSITE SCORE CONFIGURATION ===

class ZScoreSettings(BaseSettings):
    """Composite z-score calculator configuration"""
    extreme_cutoff: float = Field(default=2.5, gt=0)
    stddev_epsilon: float = Field(default=1e-9, gt=0)
    zero_variance_confidence: float = Field(default=0.3, ge=0, le=1.0, description="Confidence cap for windows with near-zero stddev")
    histogram_bins: int = Field(default=20, ge=2)
    top_extremes: int = Field(default=10, ge=1)
    extreme_deviation_cutoff: float = Field(default=1.5, gt=0)
    composite_min: float = Field(default=-4.0)
    composite_max: float = Field(default=10.0)
    high_volatility_ratio: float = Field(default=1.5, gt=0, description="Short/long stddev ratio that signals a high-volatility regime")
    season_multipliers: Dict[str, float] = Field(default_factory=lambda: {
        "WINTER": 0.85,
        "SPRING": 1.15,
        "SUMMER": 1.0,
        "AUTUMN": 0.95,
    })

    @field_validator('season_multipliers')
    @classmethod
    def validate_seasons(cls, v):
        missing = {"WINTER", "SPRING", "SUMMER", "AUTUMN"} - set(v)
        if missing:
            raise ValueError(f"season_multipliers missing seasons: {sorted(missing)}")
        return v

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.composite_min >= self.composite_max:
            raise ValueError("composite_min must be lower than composite_max")
        return self

    class Config:
        env_prefix = "ZSCORE_"


class AppSettings(BaseSettings):
    """Main application settings - Single Source of Truth"""

    app_name: str = Field(default="Liquidity Engine")
    version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    integrity: IntegritySettings = Field(default_factory=IntegritySettings)
    zscore: ZScoreSettings = Field(default_factory=ZScoreSettings)

    config_dir: str = Field(default="config")

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"  # Allows SCHEDULER__MAX_CONCURRENT_ENGINES=4
        case_sensitive = False
        extra = "ignore"
