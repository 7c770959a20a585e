"""
Data Integrity Engine
=====================

Dependency-free tier-0 engine that decides how far the snapshot can be
trusted before other engines consume it.

Per monitored indicator, every cycle:
1. Cross-source consensus (median or trimmed mean) over sources whose
   circuit breaker is closed
2. Per source scoring on completeness, freshness and deviation from
   consensus, where the tolerance is a multiple of recent volatility
3. Anomaly when the deviation exceeds that tolerance; a manipulation signal
   only once the anomaly persists for manipulation_consecutive_cycles
4. Remediation ladder for the primary (highest-priority) source:
   fallback -> interpolation -> consensus override -> circuit breaker

Healing is binding: ``consolidated_values`` in the output carries the healed
value that downstream engines consume; the primary source's raw value is
kept next to it for audit.
"""

import statistics
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from ....core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState
from ....core.data_freshness import freshness_score, thresholds_from_seconds
from ....core.event_bus import EventBus
from ....core.logger import get_logger
from ....core.time_manager import Clock, now
from ....infrastructure.config.settings import ConsensusMethod, IntegritySettings
from ...interfaces.engine import CONSOLIDATED_VALUES_METRIC, TRUST_SCORE_METRIC, EngineContext
from ...models.engine import EngineConfig, EngineOutput, EngineSignal, PrimaryMetric, WILDCARD
from ...models.indicators import IndicatorSnapshot, SourceReading
from ...models.integrity import (
    ConsensusResult,
    HealingAction,
    HealingActionKind,
    IntegrityReport,
    IntegrityStatus,
    Severity,
    ValidationRecord,
)
from .base_engine import BaseEngine

logger = get_logger(__name__)

HEALING_TOPIC = "integrity.healing_action"

# Aggregate score weights
AVAILABILITY_WEIGHT = 0.30
RELIABILITY_WEIGHT = 0.35
CONSENSUS_WEIGHT = 0.25
QUALITY_WEIGHT = 0.10
MANIPULATION_PENALTY = 0.20

MAD_TO_SIGMA = 1.4826
EPSILON = 1e-12

DEFAULT_CONFIG = EngineConfig(
    id="data-integrity",
    name="Data Integrity & Source Validation",
    category="foundation",
    pillar=1,
    priority=100,
    refresh_interval_seconds=30.0,
    required_indicators=[WILDCARD],
    tags=["integrity", "validation"],
    estimated_duration_seconds=1.0,
)


@dataclass
class _SourceState:
    """Cross-cycle memory for one (indicator, source) pair."""
    breaker: CircuitBreaker
    consecutive_anomalies: int = 0
    total_anomalies: int = 0
    manipulation_signals: int = 0


@dataclass
class _IndicatorState:
    last_good_value: Optional[float] = None
    missed_cycles: int = 0


def robust_consensus(values: Sequence[float], method: ConsensusMethod = ConsensusMethod.MEDIAN,
                     trim_ratio: float = 0.2) -> Optional[float]:
    """Median or symmetric trimmed mean; None for no values."""
    if not values:
        return None
    if method == ConsensusMethod.MEDIAN:
        return float(statistics.median(values))

    ordered = sorted(values)
    k = int(len(ordered) * trim_ratio)
    kept = ordered[k:len(ordered) - k] if len(ordered) - 2 * k > 0 else ordered
    return float(sum(kept) / len(kept))


def historical_volatility(values: Sequence[float], lookback: int) -> Optional[float]:
    """Sample stddev of consecutive changes over the trailing ``lookback`` values."""
    recent = list(values)[-(lookback + 1):]
    diffs = [b - a for a, b in zip(recent, recent[1:])]
    if len(diffs) < 2:
        return None
    return statistics.stdev(diffs)


class DataIntegrityEngine(BaseEngine):
    """Cross-source validation and self-healing engine."""

    def __init__(
        self,
        settings: Optional[IntegritySettings] = None,
        config: EngineConfig = DEFAULT_CONFIG,
        monitored_indicators: Optional[Sequence[str]] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = now
    ):
        super().__init__(config)
        self.settings = settings or IntegritySettings()
        self.monitored_indicators = list(monitored_indicators) if monitored_indicators else None
        self.event_bus = event_bus
        self._clock = clock
        self._thresholds = thresholds_from_seconds(
            self.settings.freshness_fresh_seconds,
            self.settings.freshness_warn_seconds,
            self.settings.freshness_stale_seconds,
        )

        self._sources: Dict[Tuple[str, str], _SourceState] = {}
        self._indicators: Dict[str, _IndicatorState] = {}
        self._history: Deque[HealingAction] = deque(maxlen=self.settings.healing_history_size)
        self._memo: Optional[Tuple[Any, EngineOutput]] = None
        self._last_report: Optional[IntegrityReport] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_healing_history(self) -> List[HealingAction]:
        return list(self._history)

    @property
    def last_report(self) -> Optional[IntegrityReport]:
        return self._last_report

    async def calculate(self, snapshot: IndicatorSnapshot,
                        context: Optional[EngineContext] = None) -> EngineOutput:
        fingerprint = self._fingerprint(snapshot)
        if self._memo is not None and self._memo[0] == fingerprint:
            return self._memo[1]

        readings_by_indicator = self._collect_readings(snapshot)
        if not readings_by_indicator:
            return self.neutral_output("no monitored indicators in snapshot")

        report, new_actions = self.validate_snapshot(snapshot, readings_by_indicator)
        output = self._build_output(report)

        for action in new_actions:
            self._announce_action(action)

        self._memo = (fingerprint, output)
        self._last_report = report

        logger.info("data_integrity.cycle_completed", {
            "integrity_score": report.integrity_score,
            "consensus_level": report.consensus_level,
            "system_status": report.system_status.value,
            "active_sources": report.active_sources,
            "total_sources": report.total_sources,
            "healing_actions": len(new_actions)
        })
        return output

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _collect_readings(self, snapshot: IndicatorSnapshot) -> Dict[str, Tuple[SourceReading, ...]]:
        ids = self.monitored_indicators or snapshot.indicator_ids
        collected: Dict[str, Tuple[SourceReading, ...]] = {}
        for indicator_id in ids:
            readings = snapshot.get_readings(indicator_id)
            if not readings:
                series = snapshot.get_series(indicator_id)
                if series is None:
                    continue
                # Single-source indicator: the series itself is the only reading
                readings = (SourceReading(
                    source=series.source,
                    value=series.current,
                    timestamp=series.latest_timestamp,
                ),)
            collected[indicator_id] = readings
        return collected

    def _state_for(self, indicator_id: str, source: str) -> _SourceState:
        key = (indicator_id, source)
        state = self._sources.get(key)
        if state is None:
            state = _SourceState(breaker=CircuitBreaker(CircuitBreakerConfig(
                name=f"source:{indicator_id}:{source}",
                failure_threshold=self.settings.circuit_breaker_failures,
                recovery_timeout=self.settings.circuit_breaker_cooldown_seconds,
            ), clock=self._clock))
            self._sources[key] = state
        return state

    def _tolerance(self, snapshot: IndicatorSnapshot, indicator_id: str,
                   values: Sequence[float], center: float) -> float:
        series = snapshot.get_series(indicator_id)
        volatility = None
        if series is not None:
            volatility = historical_volatility(series.values, self.settings.volatility_lookback)
        if volatility is None or volatility <= EPSILON:
            deviations = [abs(v - center) for v in values]
            volatility = MAD_TO_SIGMA * statistics.median(deviations) if deviations else 0.0

        floor = self.settings.min_relative_tolerance * abs(center)
        return max(self.settings.anomaly_volatility_multiple * volatility, floor, EPSILON)

    def validate_snapshot(
        self,
        snapshot: IndicatorSnapshot,
        readings_by_indicator: Dict[str, Tuple[SourceReading, ...]]
    ) -> Tuple[IntegrityReport, List[HealingAction]]:
        """Score every source, update cross-cycle state and apply remediation."""
        ts = snapshot.timestamp
        records: List[ValidationRecord] = []
        consensus: Dict[str, ConsensusResult] = {}
        actions: List[HealingAction] = []
        importance: Dict[Tuple[str, str], float] = {}

        for indicator_id, readings in readings_by_indicator.items():
            ordered = sorted(readings, key=lambda r: -r.priority)
            states = {r.source: self._state_for(indicator_id, r.source) for r in ordered}
            admitted = {
                r.source: (states[r.source].breaker.state == CircuitBreakerState.CLOSED
                           or states[r.source].breaker.allow_request())
                for r in ordered
            }

            valued = [r for r in ordered if r.value is not None and admitted[r.source]]
            center = robust_consensus([r.value for r in valued])
            tolerance = self._tolerance(snapshot, indicator_id, [r.value for r in valued], center) if valued else None

            anomalous = {
                r.source for r in valued
                if abs(r.value - center) > tolerance
            } if valued else set()
            healthy = [r for r in valued if r.source not in anomalous]
            value = robust_consensus(
                [r.value for r in healthy], self.settings.consensus_method, self.settings.trim_ratio
            )

            for reading in ordered:
                state = states[reading.source]
                importance[(indicator_id, reading.source)] = reading.importance
                record, opened = self._score_source(
                    indicator_id, reading, state, admitted[reading.source],
                    reading.source in anomalous, value, tolerance, ts
                )
                records.append(record)
                if opened:
                    actions.append(HealingAction(
                        kind=HealingActionKind.CIRCUIT_BREAKER,
                        source=reading.source,
                        indicator_id=indicator_id,
                        severity=Severity.CRITICAL,
                        timestamp=ts,
                        raw_value=reading.value,
                        description=f"Excluded for {self.settings.circuit_breaker_cooldown_seconds:.0f}s "
                                    f"after {self.settings.circuit_breaker_failures} failed cycles"
                    ))

            result, action = self._heal(indicator_id, ordered, admitted, anomalous, healthy, valued, value, ts)
            consensus[indicator_id] = result
            if action is not None:
                actions.append(action)

        for action in actions:
            self._history.append(action)
            logger.warning("data_integrity.healing_action", {
                "kind": action.kind.value,
                "source": action.source,
                "indicator_id": action.indicator_id,
                "severity": action.severity.value,
                "raw_value": action.raw_value,
                "healed_value": action.healed_value
            })

        report = self._aggregate(records, consensus, importance)
        return report, actions

    def _score_source(self, indicator_id: str, reading: SourceReading, state: _SourceState,
                      admitted: bool, is_anomalous: bool, consensus_value: Optional[float],
                      tolerance: Optional[float], ts: float) -> Tuple[ValidationRecord, bool]:
        completeness = reading.completeness
        freshness = freshness_score(reading.timestamp, ts, self._thresholds)

        deviation = None
        ratio = None
        if reading.value is not None and consensus_value is not None and tolerance:
            deviation = abs(reading.value - consensus_value)
            ratio = deviation / tolerance

        was_open = state.breaker.state == CircuitBreakerState.OPEN
        if admitted:
            if is_anomalous:
                state.consecutive_anomalies += 1
                state.total_anomalies += 1
            else:
                state.consecutive_anomalies = 0

            if reading.value is None or is_anomalous:
                state.breaker.record_failure()
            else:
                state.breaker.record_success()

        is_manipulation = state.consecutive_anomalies >= self.settings.manipulation_consecutive_cycles
        if admitted and is_manipulation:
            state.manipulation_signals += 1
            logger.warning("data_integrity.manipulation_signal", {
                "indicator_id": indicator_id,
                "source": reading.source,
                "consecutive_cycles": state.consecutive_anomalies,
                "deviation": deviation
            })

        opened = not was_open and state.breaker.state == CircuitBreakerState.OPEN
        circuit_open = state.breaker.state == CircuitBreakerState.OPEN

        if reading.value is None or not admitted:
            trust = 0.0
        else:
            if is_anomalous:
                deviation_score = 0.0
            elif ratio is None:
                deviation_score = 1.0
            else:
                deviation_score = max(0.0, 1.0 - ratio)
            trust = 0.3 * completeness + 0.3 * freshness + 0.4 * deviation_score

        record = ValidationRecord(
            source_id=reading.source,
            indicator_id=indicator_id,
            trust_score=round(min(max(trust, 0.0), 1.0), 6),
            completeness=completeness,
            freshness=round(min(max(freshness, 0.0), 1.0), 6),
            deviation=deviation,
            deviation_ratio=ratio,
            anomaly_count=state.consecutive_anomalies,
            manipulation_signals=state.manipulation_signals,
            is_anomalous=is_anomalous,
            is_manipulation=admitted and is_manipulation,
            circuit_open=circuit_open
        )
        return record, opened

    def _heal(self, indicator_id: str, ordered: List[SourceReading], admitted: Dict[str, bool],
              anomalous: set, healthy: List[SourceReading], valued: List[SourceReading],
              value: Optional[float], ts: float) -> Tuple[ConsensusResult, Optional[HealingAction]]:
        """Walk the remediation ladder for the primary source of one indicator."""
        state = self._indicators.setdefault(indicator_id, _IndicatorState())
        primary = ordered[0]
        raw_value = primary.value
        agreement = len(healthy) / len(valued) if valued else 0.0
        action: Optional[HealingAction] = None
        healed_value = value

        primary_ok = raw_value is not None and admitted[primary.source] and primary.source not in anomalous

        if not healthy:
            # Nothing trustworthy this cycle: decayed last-known-good
            state.missed_cycles += 1
            healed_value = state.last_good_value
            agreement = self.settings.interpolation_decay ** state.missed_cycles if healed_value is not None else 0.0
            if healed_value is not None:
                action = HealingAction(
                    kind=HealingActionKind.INTERPOLATION,
                    source=primary.source,
                    indicator_id=indicator_id,
                    severity=Severity.HIGH,
                    timestamp=ts,
                    raw_value=raw_value,
                    healed_value=healed_value,
                    description=f"No healthy source; last-known-good held for {state.missed_cycles} cycle(s)"
                )
        elif primary_ok:
            state.missed_cycles = 0
        elif raw_value is None or not admitted[primary.source]:
            fallback = healthy[0]
            state.missed_cycles = 0
            action = HealingAction(
                kind=HealingActionKind.FALLBACK,
                source=primary.source,
                indicator_id=indicator_id,
                severity=Severity.MEDIUM,
                timestamp=ts,
                raw_value=raw_value,
                healed_value=healed_value,
                description=f"Primary unavailable; fell back to {fallback.source}"
            )
        else:
            state.missed_cycles = 0
            manipulation = self._sources[(indicator_id, primary.source)].consecutive_anomalies >= \
                self.settings.manipulation_consecutive_cycles
            action = HealingAction(
                kind=HealingActionKind.CONSENSUS_OVERRIDE,
                source=primary.source,
                indicator_id=indicator_id,
                severity=Severity.HIGH if manipulation else Severity.MEDIUM,
                timestamp=ts,
                raw_value=raw_value,
                healed_value=healed_value,
                description="Primary deviates from consensus; consensus value used"
            )

        if healthy and healed_value is not None:
            state.last_good_value = healed_value

        result = ConsensusResult(
            indicator_id=indicator_id,
            consensus_value=healed_value,
            raw_value=raw_value,
            method=self.settings.consensus_method.value,
            participating_sources=[r.source for r in healthy],
            excluded_sources=[r.source for r in ordered if r not in healthy],
            agreement=round(min(max(agreement, 0.0), 1.0), 6),
            healed=action is not None
        )
        return result, action

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _aggregate(self, records: List[ValidationRecord], consensus: Dict[str, ConsensusResult],
                   importance: Dict[Tuple[str, str], float]) -> IntegrityReport:
        total_weight = sum(importance.values()) or 1.0

        def weighted(fn) -> float:
            return sum(importance[(r.indicator_id, r.source_id)] * fn(r) for r in records) / total_weight

        availability = weighted(lambda r: 1.0 if (r.completeness > 0 and not r.circuit_open) else 0.0)
        reliability = weighted(lambda r: r.trust_score)
        quality = weighted(lambda r: r.completeness * r.freshness)
        manipulation_risk = weighted(lambda r: 1.0 if r.is_manipulation else 0.0)
        agreement = (
            sum(c.agreement for c in consensus.values()) / len(consensus) if consensus else 0.0
        )

        score = 100.0 * (
            AVAILABILITY_WEIGHT * availability
            + RELIABILITY_WEIGHT * reliability
            + CONSENSUS_WEIGHT * agreement
            + QUALITY_WEIGHT * quality
            - MANIPULATION_PENALTY * manipulation_risk
        )
        score = round(min(max(score, 0.0), 100.0), 4)

        active = len({r.source_id for r in records if r.completeness > 0 and not r.circuit_open})
        total = len({r.source_id for r in records})

        return IntegrityReport(
            integrity_score=score,
            consensus_level=round(agreement * 100.0, 4),
            manipulation_risk=round(manipulation_risk, 6),
            system_status=self.system_status(score, active, total),
            active_sources=active,
            total_sources=total,
            consensus=consensus,
            records=records,
            healing_actions=list(self._history)
        )

    @staticmethod
    def system_status(score: float, active_sources: int, total_sources: int) -> IntegrityStatus:
        ratio = active_sources / total_sources if total_sources else 0.0
        if score >= 98 and ratio >= 1.0:
            return IntegrityStatus.OPTIMAL
        if score >= 90 and ratio >= 0.8:
            return IntegrityStatus.GOOD
        if score >= 75 and ratio >= 0.6:
            return IntegrityStatus.DEGRADED
        return IntegrityStatus.CRITICAL

    @staticmethod
    def signal_for(score: float, manipulation_risk: float) -> EngineSignal:
        """Fixed thresholds: >=95 clean is RISK_ON, <=70 or heavy manipulation is RISK_OFF."""
        if score >= 95 and manipulation_risk < 0.1:
            return EngineSignal.RISK_ON
        if score <= 70 or manipulation_risk > 0.3:
            return EngineSignal.RISK_OFF
        if score < 85:
            return EngineSignal.WARNING
        return EngineSignal.NEUTRAL

    def _build_output(self, report: IntegrityReport) -> EngineOutput:
        previous = self._last_report.integrity_score if self._last_report else report.integrity_score
        change = report.integrity_score - previous
        signal = self.signal_for(report.integrity_score, report.manipulation_risk)

        return EngineOutput(
            primary_metric=PrimaryMetric(
                value=report.integrity_score,
                change_24h=round(change, 4),
                change_percent=round(change / previous * 100.0, 4) if previous else 0.0
            ),
            signal=signal,
            confidence=report.consensus_level,
            analysis=(
                f"Integrity {report.integrity_score:.1f}/100 ({report.system_status.value}), "
                f"{report.active_sources}/{report.total_sources} sources active, "
                f"consensus {report.consensus_level:.1f}%"
            ),
            sub_metrics={
                TRUST_SCORE_METRIC: report.integrity_score,
                CONSOLIDATED_VALUES_METRIC: report.consolidated_values,
                "raw_values": {k: v.raw_value for k, v in report.consensus.items()},
                "consensus_level": report.consensus_level,
                "manipulation_risk": report.manipulation_risk,
                "system_status": report.system_status.value,
                "active_sources": report.active_sources,
                "total_sources": report.total_sources,
                "healing_actions": [a.model_dump(mode="json") for a in report.healing_actions],
                "records": [r.model_dump(mode="json") for r in report.records],
            }
        )

    @staticmethod
    def _fingerprint(snapshot: IndicatorSnapshot) -> Any:
        return (
            snapshot.timestamp,
            tuple(sorted(
                (indicator_id, tuple((r.source, r.value, r.timestamp) for r in readings))
                for indicator_id, readings in snapshot.readings.items()
            )),
            tuple(sorted(
                (indicator_id, len(series), series.current, series.latest_timestamp)
                for indicator_id, series in snapshot.series.items()
            )),
        )

    def _announce_action(self, action: HealingAction) -> None:
        # Background delivery keeps subscriber retries out of the engine's time box
        if self.event_bus is None:
            return
        self.event_bus.publish_nowait(HEALING_TOPIC, {
            "kind": action.kind.value,
            "source": action.source,
            "indicator_id": action.indicator_id,
            "severity": action.severity.value,
            "timestamp": action.timestamp
        })
