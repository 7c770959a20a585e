"""
Engine Scheduler
================

Runs registered engines tier by tier with per-engine failure isolation.

Execution model:
- Tiers run strictly in sequence; a tier starts only after every engine of
  the previous tier reached a terminal state
- Engines inside a tier run concurrently, capped by max_concurrent_engines
- Each engine is time-boxed to its refresh interval
- Exceptions, validation failures, timeouts and open circuits become failed
  ExecutionResults and never abort siblings or later tiers
- Downstream engines always run; a failed dependency is replaced by its
  last-known-good output, a dependency that never succeeded is absent
- cancel() stops scheduling further tiers while the in-flight tier drains
- engine.result and engine.circuit_opened are delivered in the background;
  engine.cycle_completed is published once they have all been delivered

Per-engine state: PENDING -> RUNNING -> {SUCCEEDED, FAILED}, reset to
PENDING at the start of the next cycle. A run requested while the engine is
RUNNING is coalesced into exactly one follow-up run.
"""

import asyncio
import math
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from ...core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState
from ...core.data_freshness import FreshnessMetadata, thresholds_from_seconds
from ...core.event_bus import EventBus
from ...core.exceptions import CircuitOpenError, ComputationError, EngineTimeoutError, ValidationFailure
from ...core.logger import get_logger
from ...core.time_manager import Clock, monotonic, now
from ...infrastructure.config.settings import SchedulerSettings
from ..interfaces.engine import (
    CONSOLIDATED_VALUES_METRIC,
    TRUST_SCORE_METRIC,
    EngineContext,
    IEngine,
)
from ..interfaces.snapshot_provider import ISnapshotProvider
from ..models.engine import (
    EngineConfig,
    EngineOutput,
    EngineResultView,
    EngineState,
    ExecutionResult,
    ExecutionStatus,
    FailureKind,
    HealthStatus,
    SystemHealth,
)
from ..models.indicators import IndicatorSnapshot
from .engine_registry import EngineRegistry
from .result_cache import ResultCache

logger = get_logger(__name__)

ResultCallback = Callable[[ExecutionResult], Any]

RESULT_TOPIC = "engine.result"
CYCLE_COMPLETED_TOPIC = "engine.cycle_completed"
CIRCUIT_OPENED_TOPIC = "engine.circuit_opened"


def result_cache_key(engine_id: str) -> str:
    return f"engine:{engine_id}"


def _as_number(value: Any) -> Optional[float]:
    """Finite float for int/float input (bool excluded), else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


class EngineScheduler:
    """
    Dependency-aware executor over an EngineRegistry.

    Usage:
        scheduler = EngineScheduler(registry, provider, cache, event_bus, settings.scheduler)
        results = await scheduler.execute_all()
        view = scheduler.get_latest_result("zscore")
    """

    def __init__(
        self,
        registry: EngineRegistry,
        provider: ISnapshotProvider,
        cache: ResultCache,
        event_bus: Optional[EventBus] = None,
        settings: Optional[SchedulerSettings] = None,
        trust_engine_id: Optional[str] = "data-integrity",
        clock: Clock = now
    ):
        self.registry = registry
        self.provider = provider
        self.cache = cache
        self.event_bus = event_bus
        self.settings = settings or SchedulerSettings()
        self.trust_engine_id = trust_engine_id
        self._clock = clock

        self._states: Dict[str, EngineState] = {}
        self._results: Dict[str, ExecutionResult] = {}
        self._last_good: Dict[str, ExecutionResult] = {}
        self._result_locks: Dict[str, asyncio.Lock] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._subscribers: Dict[str, List[ResultCallback]] = {}

        self._inflight: Dict[str, asyncio.Future] = {}
        self._pending_reruns: Dict[str, asyncio.Future] = {}

        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_engines)
        self._cycle_lock = asyncio.Lock()
        self._cycle_id = 0
        self._cancel_requested = False
        self._cycle_running = False

        logger.info("engine_scheduler.initialized", {
            "max_concurrent_engines": self.settings.max_concurrent_engines,
            "circuit_breaker_enabled": self.settings.enable_circuit_breaker,
            "trust_engine_id": trust_engine_id
        })

    # ========================================================================
    # EXECUTION API
    # ========================================================================

    async def execute_all(
        self,
        pillar: Optional[int] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None
    ) -> Dict[str, ExecutionResult]:
        """
        Run one refresh cycle over all (or the matching) engines.

        Filters narrow the engines that run; engines filtered out still feed
        their last known output to selected dependents.

        Returns:
            Terminal result per engine that ran this cycle
        """
        async with self._cycle_lock:
            self._cycle_id += 1
            cycle_id = self._cycle_id
            self._cancel_requested = False
            self._cycle_running = True
            started = monotonic()

            try:
                snapshot = await self.provider.get_snapshot()
                tiers = self._select_tiers(pillar, category, tags)

                for tier in tiers:
                    for engine_id in tier:
                        if engine_id not in self._inflight:
                            self._states[engine_id] = EngineState.PENDING

                logger.info("engine_scheduler.cycle_started", {
                    "cycle_id": cycle_id,
                    "tiers": tiers,
                    "snapshot_timestamp": snapshot.timestamp,
                    "fixture": snapshot.is_fixture
                })

                results: Dict[str, ExecutionResult] = {}
                cancelled = False

                for index, tier in enumerate(tiers):
                    if self._cancel_requested:
                        cancelled = True
                        logger.warning("engine_scheduler.cycle_cancelled", {
                            "cycle_id": cycle_id,
                            "completed_tiers": index,
                            "skipped_engines": [e for t in tiers[index:] for e in t]
                        })
                        break

                    logger.debug("engine_scheduler.tier_started", {
                        "cycle_id": cycle_id,
                        "tier": index,
                        "engines": tier
                    })
                    tier_results = await asyncio.gather(
                        *(self._request_run(engine_id, snapshot, cycle_id) for engine_id in tier)
                    )
                    results.update(zip(tier, tier_results))
            finally:
                self._cycle_running = False

            elapsed_ms = (monotonic() - started) * 1000.0
            failed = sorted(engine_id for engine_id, r in results.items() if not r.success)
            summary = {
                "cycle_id": cycle_id,
                "total": len(results),
                "succeeded": len(results) - len(failed),
                "failed": len(failed),
                "failed_engines": failed,
                "cancelled": cancelled,
                "tiers": tiers,
                "elapsed_ms": round(elapsed_ms, 3)
            }
            logger.info("engine_scheduler.cycle_completed", summary)
            await self._publish(CYCLE_COMPLETED_TOPIC, summary)
            return results

    async def execute_one(self, engine_id: str,
                          snapshot: Optional[IndicatorSnapshot] = None) -> ExecutionResult:
        """
        Run a single engine out of band.

        If the engine is running, the request is coalesced: it waits for the
        in-flight run and then triggers exactly one follow-up run shared by
        every request made in the meantime.

        Raises:
            EngineNotFoundError: Unknown engine id
        """
        self.registry.get_config(engine_id)
        if snapshot is None:
            snapshot = await self.provider.get_snapshot()
        return await self._request_run(engine_id, snapshot, cycle_id=0)

    def cancel(self) -> bool:
        """Stop scheduling further tiers of the running cycle. Returns False when idle."""
        if not self._cycle_running:
            return False
        self._cancel_requested = True
        logger.info("engine_scheduler.cancel_requested", {"cycle_id": self._cycle_id})
        return True

    @property
    def is_running(self) -> bool:
        return self._cycle_running

    @property
    def cycle_id(self) -> int:
        return self._cycle_id

    # ========================================================================
    # RUN COALESCING
    # ========================================================================

    async def _request_run(self, engine_id: str, snapshot: IndicatorSnapshot, cycle_id: int) -> ExecutionResult:
        pending = self._pending_reruns.get(engine_id)
        if pending is not None:
            logger.debug("engine_scheduler.run_coalesced", {"engine_id": engine_id, "into": "queued_rerun"})
            return await asyncio.shield(pending)

        inflight = self._inflight.get(engine_id)
        if inflight is None:
            return await self._start_run(engine_id, snapshot, cycle_id)

        logger.debug("engine_scheduler.run_coalesced", {"engine_id": engine_id, "into": "rerun_after_inflight"})
        rerun = asyncio.ensure_future(self._rerun_after(engine_id, inflight, snapshot, cycle_id))
        self._pending_reruns[engine_id] = rerun
        return await asyncio.shield(rerun)

    async def _rerun_after(self, engine_id: str, inflight: asyncio.Future,
                           snapshot: IndicatorSnapshot, cycle_id: int) -> ExecutionResult:
        try:
            await asyncio.wait([inflight])
        finally:
            self._pending_reruns.pop(engine_id, None)
        return await self._start_run(engine_id, snapshot, cycle_id)

    def _start_run(self, engine_id: str, snapshot: IndicatorSnapshot, cycle_id: int) -> Awaitable[ExecutionResult]:
        task = asyncio.ensure_future(self._run_engine(engine_id, snapshot, cycle_id))
        self._inflight[engine_id] = task

        def _clear(done: asyncio.Future) -> None:
            if self._inflight.get(engine_id) is done:
                del self._inflight[engine_id]

        task.add_done_callback(_clear)
        return asyncio.shield(task)

    # ========================================================================
    # SINGLE ENGINE EXECUTION
    # ========================================================================

    async def _run_engine(self, engine_id: str, snapshot: IndicatorSnapshot, cycle_id: int) -> ExecutionResult:
        config = self.registry.get_config(engine_id)
        engine = self.registry.get_engine(engine_id)
        breaker = self._breaker_for(config)

        async with self._semaphore:
            self._states[engine_id] = EngineState.RUNNING
            started = monotonic()
            context = EngineContext(cycle_id=cycle_id)
            output: Optional[EngineOutput] = None
            error: Optional[str] = None
            failure_kind: Optional[FailureKind] = None

            try:
                if breaker is not None and not breaker.allow_request():
                    failure_kind = FailureKind.CIRCUIT_OPEN
                    error = CircuitOpenError(engine_id).message
                else:
                    timeout = self._timeout_for(config)
                    try:
                        context = await self._build_context(config, cycle_id)
                        output = await asyncio.wait_for(self._invoke(engine, snapshot, context), timeout=timeout)
                    except ValidationFailure as e:
                        failure_kind = FailureKind.VALIDATION
                        error = e.message
                    except asyncio.TimeoutError:
                        failure_kind = FailureKind.TIMEOUT
                        error = EngineTimeoutError(engine_id, timeout).message
                    except Exception as e:
                        failure_kind = FailureKind.COMPUTATION
                        error = ComputationError(engine_id, e).message
                        logger.error("engine_scheduler.engine_failed", {
                            "engine_id": engine_id,
                            "cycle_id": cycle_id,
                            "error": str(e),
                            "error_type": type(e).__name__
                        }, exc_info=True)

                    if breaker is not None:
                        self._record_breaker(engine_id, breaker, failure_kind)
            except asyncio.CancelledError:
                self._states[engine_id] = EngineState.PENDING
                raise

            result = ExecutionResult(
                engine_id=engine_id,
                output=output,
                success=failure_kind is None,
                elapsed_ms=(monotonic() - started) * 1000.0,
                completed_at=self._clock(),
                error=error,
                failure_kind=failure_kind,
                dependency_sources=dict(context.dependency_sources)
            )

        await self._record_result(config, result)
        return result

    async def _invoke(self, engine: IEngine, snapshot: IndicatorSnapshot, context: EngineContext) -> EngineOutput:
        if not await engine.validate_data(snapshot):
            raise ValidationFailure(engine.engine_id)
        output = await engine.calculate(snapshot, context)
        if not isinstance(output, EngineOutput):
            raise TypeError(f"calculate() returned {type(output).__name__}, expected EngineOutput")
        return output

    def _timeout_for(self, config: EngineConfig) -> float:
        return config.refresh_interval_seconds or self.settings.default_refresh_interval_seconds

    async def _record_result(self, config: EngineConfig, result: ExecutionResult) -> None:
        engine_id = config.id
        async with self._result_lock(engine_id):
            self._results[engine_id] = result
            if result.success:
                self._last_good[engine_id] = result
                await self.cache.set(result_cache_key(engine_id), result.output,
                                     ttl_seconds=self._timeout_for(config))
            self._states[engine_id] = EngineState.SUCCEEDED if result.success else EngineState.FAILED

        log = logger.info if result.success else logger.warning
        log("engine_scheduler.engine_completed", {
            "engine_id": engine_id,
            "success": result.success,
            "failure_kind": result.failure_kind.value if result.failure_kind else None,
            "elapsed_ms": round(result.elapsed_ms, 3),
            "signal": result.output.signal.value if result.output else None
        })

        self._announce(RESULT_TOPIC, {
            "engine_id": engine_id,
            "success": result.success,
            "signal": result.output.signal.value if result.output else None,
            "confidence": result.output.confidence if result.output else None,
            "elapsed_ms": result.elapsed_ms,
            "error": result.error,
            "completed_at": result.completed_at
        })
        await self._notify_subscribers(engine_id, result)

    def _result_lock(self, engine_id: str) -> asyncio.Lock:
        lock = self._result_locks.get(engine_id)
        if lock is None:
            lock = asyncio.Lock()
            self._result_locks[engine_id] = lock
        return lock

    # ========================================================================
    # CONTEXT / DEPENDENCIES
    # ========================================================================

    async def _resolve_output(self, engine_id: str) -> Tuple[Optional[EngineOutput], str]:
        """Fresh cached output, else last-known-good, else missing."""
        latest = self._results.get(engine_id)
        if latest is not None and latest.success:
            lookup = await self.cache.lookup(result_cache_key(engine_id))
            if lookup.hit:
                return lookup.value, "fresh"

        last_good = self._last_good.get(engine_id)
        if last_good is not None:
            return last_good.output, "last_known_good"
        return None, "missing"

    async def _build_context(self, config: EngineConfig, cycle_id: int) -> EngineContext:
        outputs: Dict[str, EngineOutput] = {}
        sources: Dict[str, str] = {}

        for dep in config.dependencies:
            output, source = await self._resolve_output(dep)
            sources[dep] = source
            if output is not None:
                outputs[dep] = output
            if source != "fresh":
                logger.debug("engine_scheduler.dependency_fallback", {
                    "engine_id": config.id,
                    "dependency": dep,
                    "source": source
                })

        trust = 1.0
        consolidated: Dict[str, float] = {}
        if self.trust_engine_id and self.trust_engine_id != config.id and self.trust_engine_id in self.registry:
            trust_output = outputs.get(self.trust_engine_id)
            if trust_output is None:
                trust_output, _ = await self._resolve_output(self.trust_engine_id)
            if trust_output is not None:
                trust = self._parse_trust(trust_output.sub_metrics.get(TRUST_SCORE_METRIC))
                consolidated = self._parse_consolidated(trust_output.sub_metrics.get(CONSOLIDATED_VALUES_METRIC))

        return EngineContext(
            dependency_outputs=outputs,
            dependency_sources=sources,
            trust=trust,
            consolidated_values=consolidated,
            cycle_id=cycle_id
        )

    def _parse_trust(self, score: Any) -> float:
        if score is None:
            return 1.0
        value = _as_number(score)
        if value is None:
            logger.warning("engine_scheduler.malformed_trust_score", {
                "trust_engine_id": self.trust_engine_id,
                "value": repr(score)
            })
            return 1.0
        return min(max(value / 100.0, 0.0), 1.0)

    def _parse_consolidated(self, values: Any) -> Dict[str, float]:
        if not values:
            return {}
        if not isinstance(values, dict):
            logger.warning("engine_scheduler.malformed_consolidated_values", {
                "trust_engine_id": self.trust_engine_id,
                "type": type(values).__name__
            })
            return {}

        consolidated: Dict[str, float] = {}
        skipped: List[str] = []
        for indicator_id, raw in values.items():
            if raw is None:
                continue
            value = _as_number(raw)
            if value is None:
                skipped.append(str(indicator_id))
            else:
                consolidated[str(indicator_id)] = value

        if skipped:
            logger.warning("engine_scheduler.malformed_consolidated_values", {
                "trust_engine_id": self.trust_engine_id,
                "skipped_indicators": skipped
            })
        return consolidated

    def _select_tiers(self, pillar: Optional[int], category: Optional[str],
                      tags: Optional[Iterable[str]]) -> List[List[str]]:
        tiers = self.registry.compute_execution_tiers()
        if pillar is None and category is None and not tags:
            return tiers

        wanted_tags = set(tags or ())

        def matches(engine_id: str) -> bool:
            config = self.registry.get_config(engine_id)
            if pillar is not None and config.pillar != pillar:
                return False
            if category is not None and config.category != category:
                return False
            if wanted_tags and not (wanted_tags & config.tags):
                return False
            return True

        filtered = [[e for e in tier if matches(e)] for tier in tiers]
        return [tier for tier in filtered if tier]

    # ========================================================================
    # CIRCUIT BREAKERS
    # ========================================================================

    def _breaker_for(self, config: EngineConfig) -> Optional[CircuitBreaker]:
        if not self.settings.enable_circuit_breaker:
            return None
        breaker = self._breakers.get(config.id)
        if breaker is None:
            breaker = CircuitBreaker(CircuitBreakerConfig(
                name=f"engine:{config.id}",
                failure_threshold=self.settings.circuit_breaker_threshold,
                recovery_timeout=self.settings.circuit_breaker_reset_seconds,
            ), clock=self._clock)
            self._breakers[config.id] = breaker
        return breaker

    def _record_breaker(self, engine_id: str, breaker: CircuitBreaker,
                        failure_kind: Optional[FailureKind]) -> None:
        if failure_kind is None:
            breaker.record_success()
            return
        if failure_kind == FailureKind.VALIDATION:
            return

        was_open = breaker.state == CircuitBreakerState.OPEN
        breaker.record_failure()
        if breaker.state == CircuitBreakerState.OPEN and not was_open:
            self._announce(CIRCUIT_OPENED_TOPIC, {
                "engine_id": engine_id,
                "consecutive_failures": breaker.consecutive_failures
            })

    def reset_circuit(self, engine_id: str) -> None:
        breaker = self._breakers.get(engine_id)
        if breaker is not None:
            breaker.reset()

    def get_circuit_metrics(self) -> Dict[str, Dict[str, Any]]:
        return {engine_id: breaker.get_metrics() for engine_id, breaker in self._breakers.items()}

    # ========================================================================
    # STATUS / CONSUMPTION API
    # ========================================================================

    def get_state(self, engine_id: str) -> EngineState:
        self.registry.get_config(engine_id)
        return self._states.get(engine_id, EngineState.PENDING)

    def get_execution_status(self) -> ExecutionStatus:
        counts = {state: 0 for state in EngineState}
        for engine_id in self.registry.engine_ids:
            counts[self._states.get(engine_id, EngineState.PENDING)] += 1

        return ExecutionStatus(
            total=len(self.registry),
            pending=counts[EngineState.PENDING],
            running=counts[EngineState.RUNNING],
            completed=counts[EngineState.SUCCEEDED],
            failed=counts[EngineState.FAILED]
        )

    def get_all_results(self) -> Dict[str, ExecutionResult]:
        return dict(self._results)

    def get_latest_result(self, engine_id: str) -> Optional[EngineResultView]:
        """
        Latest result for display.

        When the latest run failed, the last-known-good output is returned
        with ``is_last_known_good`` and ``is_stale`` set instead of blanking.
        """
        config = self.registry.get_config(engine_id)
        result = self._results.get(engine_id)
        if result is None:
            return None

        if result.success:
            source = result
        else:
            source = self._last_good.get(engine_id)

        is_last_known_good = not result.success and source is not None
        reference = source or result

        stale_after = self.settings.stale_after_seconds
        refresh = self._timeout_for(config)
        warn = min(2 * refresh, stale_after)
        freshness = FreshnessMetadata.from_timestamp(
            reference.completed_at,
            current_time=self._clock(),
            thresholds=thresholds_from_seconds(min(refresh, warn), warn, stale_after)
        )

        return EngineResultView(
            engine_id=engine_id,
            result=result,
            output=source.output if source else None,
            is_last_known_good=is_last_known_good,
            is_stale=is_last_known_good or freshness.is_stale,
            age_seconds=freshness.age_seconds,
            freshness=freshness.to_dict()
        )

    def get_system_health(self) -> SystemHealth:
        """
        Healthy when >= 80% of engines succeeded with >= 0.7 mean confidence,
        degraded at >= 50% / >= 0.4, critical otherwise.
        """
        total = len(self.registry)
        healthy: List[ExecutionResult] = []
        failed: List[str] = []
        for engine_id in self.registry.engine_ids:
            result = self._results.get(engine_id)
            if result is not None and result.success:
                healthy.append(result)
            else:
                failed.append(engine_id)

        ratio = len(healthy) / total if total else 0.0
        confidence = (
            sum(r.output.confidence for r in healthy) / (100.0 * len(healthy)) if healthy else 0.0
        )

        if ratio >= 0.8 and confidence >= 0.7:
            status = HealthStatus.HEALTHY
        elif ratio >= 0.5 and confidence >= 0.4:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.CRITICAL

        return SystemHealth(
            status=status,
            healthy_ratio=ratio,
            average_confidence=confidence,
            total_engines=total,
            healthy_engines=len(healthy),
            failed_engines=failed
        )

    # ========================================================================
    # SUBSCRIPTIONS
    # ========================================================================

    def subscribe(self, engine_id: str, callback: ResultCallback) -> Callable[[], None]:
        """
        Call ``callback(result)`` after every terminal result of ``engine_id``.

        Returns:
            Callable that removes the subscription
        """
        self._subscribers.setdefault(engine_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(engine_id)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[engine_id]

        return unsubscribe

    async def _notify_subscribers(self, engine_id: str, result: ExecutionResult) -> None:
        for callback in list(self._subscribers.get(engine_id, ())):
            try:
                outcome = callback(result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.error("engine_scheduler.subscriber_failed", {
                    "engine_id": engine_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    def _announce(self, topic: str, data: Dict[str, Any]) -> None:
        # Delivery runs in the background; bus subscribers never hold up an engine or a tier
        if self.event_bus is not None:
            self.event_bus.publish_nowait(topic, data)

    async def _publish(self, topic: str, data: Dict[str, Any]) -> None:
        """Publish after every announcement made so far has been delivered."""
        if self.event_bus is not None:
            await self.event_bus.drain()
            await self.event_bus.publish(topic, data)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def unregister_engine(self, engine_id: str) -> None:
        """Remove an engine from the registry together with its results and cache entry."""
        dependents = self.registry.dependents_of(engine_id)
        self.registry.unregister(engine_id)
        if dependents:
            logger.warning("engine_scheduler.orphaned_dependents", {
                "engine_id": engine_id,
                "dependents": dependents
            })
        self._states.pop(engine_id, None)
        self._results.pop(engine_id, None)
        self._last_good.pop(engine_id, None)
        self._breakers.pop(engine_id, None)
        self._subscribers.pop(engine_id, None)
        self._result_locks.pop(engine_id, None)
        await self.cache.invalidate(result_cache_key(engine_id))
