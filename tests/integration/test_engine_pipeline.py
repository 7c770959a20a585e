"""
Integration Tests - full engine pipeline
========================================

Runs the scheduler end to end: an integrity stage whose trust feeds a
score stage that feeds an allocation stage, then the container-assembled
system over the deterministic fixture snapshot.
"""

import pytest

from conftest import FakeEngine, make_output
from liquidity.core.event_bus import EventBus
from liquidity.core.logger import get_logger
from liquidity.core.time_manager import ManualClock
from liquidity.domain.models.engine import EngineSignal
from liquidity.domain.services.engine_scheduler import EngineScheduler
from liquidity.infrastructure.adapters.static_snapshot_provider import (
    DEFAULT_END_TIMESTAMP,
    FixtureSnapshotProvider,
    StaticSnapshotProvider,
)
from liquidity.infrastructure.config.settings import AppSettings
from liquidity.infrastructure.container import Container


class TestLastKnownGoodPipeline:

    @pytest.mark.asyncio
    async def test_failed_trust_stage_does_not_blank_dependents(self, registry, cache, snapshot,
                                                                scheduler_settings, clock):
        integrity = FakeEngine("data-integrity", priority=100,
                               behaviour=make_output(value=80.0, integrity_score=80.0,
                                                     consolidated_values={"WALCL": 105.0}))
        scorer = FakeEngine("zscore", dependencies=["data-integrity"])
        allocator = FakeEngine("allocator", dependencies=["zscore"])
        for engine in (integrity, scorer, allocator):
            registry.register(engine)

        event_bus = EventBus(max_retries=0, base_backoff=0.0)
        cycles = []
        await event_bus.subscribe("engine.cycle_completed", cycles.append)
        scheduler = EngineScheduler(registry, StaticSnapshotProvider(snapshot), cache,
                                    event_bus=event_bus, settings=scheduler_settings, clock=clock)

        first = await scheduler.execute_all()

        assert all(r.success for r in first.values())
        assert scorer.contexts[0].trust == pytest.approx(0.8)
        assert scorer.contexts[0].consolidated_values == {"WALCL": 105.0}
        assert scorer.contexts[0].dependency_sources == {"data-integrity": "fresh"}

        integrity.behaviour = RuntimeError("all sources down")
        clock.advance(1.0)
        second = await scheduler.execute_all()

        assert not second["data-integrity"].success
        assert second["zscore"].success
        assert second["allocator"].success
        assert scorer.contexts[1].dependency_sources == {"data-integrity": "last_known_good"}
        assert scorer.contexts[1].trust == pytest.approx(0.8)
        assert allocator.contexts[1].trust == pytest.approx(0.8)

        status = scheduler.get_execution_status()
        assert status.failed == 1
        assert status.completed == 2

        view = scheduler.get_latest_result("data-integrity")
        assert view.is_last_known_good
        assert view.is_stale
        assert view.output.sub_metrics["integrity_score"] == 80.0

        assert [c["cycle_id"] for c in cycles] == [1, 2]
        assert cycles[1]["failed_engines"] == ["data-integrity"]


class TestContainerPipeline:

    @pytest.mark.asyncio
    async def test_default_engines_over_fixture(self):
        clock = ManualClock(DEFAULT_END_TIMESTAMP)
        container = Container(
            AppSettings(),
            EventBus(max_retries=0, base_backoff=0.0),
            get_logger("liquidity"),
            provider=FixtureSnapshotProvider(days=800),
            clock=clock
        )
        scheduler = container.create_engine_scheduler()
        registry = container.register_default_engines()
        await container.start()

        try:
            assert registry.compute_execution_tiers() == [
                ["data-integrity"],
                ["zscore", "net-liquidity"],
                ["allocator"],
            ]

            results = await scheduler.execute_all()

            assert set(results) == {"data-integrity", "zscore", "net-liquidity", "allocator"}
            assert all(r.success for r in results.values()), {k: r.error for k, r in results.items()}
            assert all(scheduler.get_state(engine_id).is_terminal for engine_id in results)

            integrity = results["data-integrity"].output
            assert integrity.sub_metrics["integrity_score"] > 50.0
            assert set(integrity.sub_metrics["consolidated_values"]) == {"RRPONTSYD", "WALCL", "WTREGEN"}

            zscore = results["zscore"].output
            assert not zscore.is_degraded
            assert 0.0 < zscore.sub_metrics["trust"] <= 1.0

            allocation = results["allocator"].output
            assert 0.0 <= allocation.primary_metric.value <= 1.0
            assert allocation.signal in set(EngineSignal)
            assert results["allocator"].dependency_sources == {"zscore": "fresh", "net-liquidity": "fresh"}

            assert scheduler.get_system_health().healthy_engines == 4
        finally:
            await container.shutdown()

    @pytest.mark.asyncio
    async def test_same_fixture_same_results(self):
        async def run_once():
            clock = ManualClock(DEFAULT_END_TIMESTAMP)
            container = Container(AppSettings(), EventBus(max_retries=0, base_backoff=0.0),
                                  get_logger("liquidity"), provider=FixtureSnapshotProvider(days=400),
                                  clock=clock)
            scheduler = container.create_engine_scheduler()
            container.register_default_engines()
            try:
                results = await scheduler.execute_all()
            finally:
                await container.shutdown()
            return {k: (r.output.primary_metric.value, r.output.signal, r.output.confidence)
                    for k, r in results.items()}

        assert await run_once() == await run_once()
