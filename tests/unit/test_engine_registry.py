"""
Unit Tests for EngineRegistry
=============================

Tier computation, deterministic ordering inside a tier, replacement,
cycle handling and the strict startup validation.
"""

from unittest.mock import patch

import pytest

from conftest import FakeEngine
from liquidity.core.exceptions import (
    DependencyCycleError,
    DuplicateEngineError,
    EngineNotFoundError,
    UnknownDependencyError,
)
from liquidity.domain.services import engine_registry


class TestRegistration:

    def test_register_and_lookup(self, registry):
        engine = FakeEngine("a")
        config = registry.register(engine)

        assert config.id == "a"
        assert "a" in registry
        assert len(registry) == 1
        assert registry.get_engine("a") is engine
        assert registry.get_config("a").name == "A"

    def test_unknown_engine_raises(self, registry):
        with pytest.raises(EngineNotFoundError):
            registry.get_config("missing")
        with pytest.raises(EngineNotFoundError):
            registry.unregister("missing")

    def test_list_configs_in_registration_order(self, registry):
        for engine_id in ("c", "a", "b"):
            registry.register(FakeEngine(engine_id))

        assert [c.id for c in registry.list_configs()] == ["c", "a", "b"]
        assert registry.engine_ids == ["c", "a", "b"]

    def test_replace_keeps_order_and_warns(self, registry):
        registry.register(FakeEngine("a"))
        registry.register(FakeEngine("b"))
        replacement = FakeEngine("a", priority=5)

        with patch.object(engine_registry, "logger") as mock_logger:
            registry.register(replacement)

            mock_logger.warning.assert_called_once()
            assert mock_logger.warning.call_args[0][0] == "engine_registry.engine_replaced"

        assert registry.engine_ids == ["a", "b"]
        assert registry.get_engine("a") is replacement
        assert len(registry) == 2

    def test_replace_disallowed(self, registry):
        registry.register(FakeEngine("a"))

        with pytest.raises(DuplicateEngineError):
            registry.register(FakeEngine("a"), allow_replace=False)

    def test_unregister_invalidates_tiers(self, registry):
        registry.register(FakeEngine("a"))
        registry.register(FakeEngine("b", dependencies=["a"]))
        assert registry.compute_execution_tiers() == [["a"], ["b"]]

        registry.unregister("a")

        assert registry.compute_execution_tiers() == [["b"]]


class TestExecutionTiers:

    def test_chain_produces_one_engine_per_tier(self, registry):
        registry.register(FakeEngine("allocator", dependencies=["zscore"]))
        registry.register(FakeEngine("zscore", dependencies=["integrity"]))
        registry.register(FakeEngine("integrity"))

        assert registry.compute_execution_tiers() == [["integrity"], ["zscore"], ["allocator"]]

    def test_independent_engines_share_a_tier(self, registry):
        registry.register(FakeEngine("root"))
        registry.register(FakeEngine("left", dependencies=["root"]))
        registry.register(FakeEngine("right", dependencies=["root"]))
        registry.register(FakeEngine("join", dependencies=["left", "right"]))

        assert registry.compute_execution_tiers() == [["root"], ["left", "right"], ["join"]]

    def test_priority_then_registration_order_inside_tier(self, registry):
        registry.register(FakeEngine("low", priority=1))
        registry.register(FakeEngine("first_tie", priority=5))
        registry.register(FakeEngine("high", priority=10))
        registry.register(FakeEngine("second_tie", priority=5))

        assert registry.compute_execution_tiers() == [["high", "first_tie", "second_tie", "low"]]

    def test_unknown_dependency_ignored_for_tiers(self, registry):
        registry.register(FakeEngine("a", dependencies=["ghost"]))

        assert registry.compute_execution_tiers() == [["a"]]

    def test_tiers_are_copies(self, registry):
        registry.register(FakeEngine("a"))
        tiers = registry.compute_execution_tiers()
        tiers[0].append("mutated")

        assert registry.compute_execution_tiers() == [["a"]]

    def test_every_engine_placed_after_its_dependencies(self, registry):
        registry.register(FakeEngine("e", dependencies=["c", "d"]))
        registry.register(FakeEngine("d", dependencies=["a"]))
        registry.register(FakeEngine("c", dependencies=["b"]))
        registry.register(FakeEngine("b", dependencies=["a"]))
        registry.register(FakeEngine("a"))

        tiers = registry.compute_execution_tiers()
        tier_of = {e: i for i, tier in enumerate(tiers) for e in tier}
        for config in registry.list_configs():
            for dep in config.dependencies:
                assert tier_of[dep] < tier_of[config.id]

    def test_dependents_of(self, registry):
        registry.register(FakeEngine("a"))
        registry.register(FakeEngine("b", dependencies=["a"]))
        registry.register(FakeEngine("c", dependencies=["a"]))

        assert registry.dependents_of("a") == ["b", "c"]
        assert registry.dependents_of("b") == []


class TestCycles:

    def test_cycle_goes_to_final_tier_and_is_logged(self, registry):
        registry.register(FakeEngine("ok"))
        registry.register(FakeEngine("x", dependencies=["y"]))
        registry.register(FakeEngine("y", dependencies=["x"]))

        with patch.object(engine_registry, "logger") as mock_logger:
            tiers = registry.compute_execution_tiers()

            mock_logger.error.assert_called_once()
            assert mock_logger.error.call_args[0][0] == "engine_registry.dependency_cycle"

        assert tiers == [["ok"], ["x", "y"]]
        assert registry.cyclic_engines == ["x", "y"]

    def test_validate_raises_on_cycle(self, registry):
        registry.register(FakeEngine("x", dependencies=["y"]))
        registry.register(FakeEngine("y", dependencies=["x"]))

        with pytest.raises(DependencyCycleError) as exc_info:
            registry.validate()

        assert exc_info.value.engine_ids == ["x", "y"]

    def test_validate_raises_on_unknown_dependency(self, registry):
        registry.register(FakeEngine("a", dependencies=["ghost"]))

        with pytest.raises(UnknownDependencyError) as exc_info:
            registry.validate()

        assert exc_info.value.dependency_id == "ghost"

    def test_validate_passes_for_acyclic_graph(self, registry):
        registry.register(FakeEngine("a"))
        registry.register(FakeEngine("b", dependencies=["a"]))

        registry.validate()


class TestExecutionPlan:

    def test_plan_phases_and_durations(self, registry):
        registry.register(FakeEngine("a", estimated_duration_seconds=2.0))
        registry.register(FakeEngine("b", estimated_duration_seconds=1.0))
        registry.register(FakeEngine("c", dependencies=["a", "b"], estimated_duration_seconds=3.0))

        plan = registry.create_execution_plan()

        assert [p.engines for p in plan.phases] == [["a", "b"], ["c"]]
        assert plan.phases[0].estimated_duration_seconds == 2.0
        assert plan.phases[1].depends_on_phases == [0]
        assert plan.total_estimated_seconds == 5.0
        assert plan.cyclic_engines == []
