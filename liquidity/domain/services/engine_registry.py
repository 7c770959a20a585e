"""
Engine Registry
===============

Holds the id -> (config, engine) map and derives execution tiers solely
from declared dependencies.

Tiers are the topological levels of the dependency graph: tier N holds
every engine whose dependencies all sit in tiers < N. Inside a tier, engines
are ordered by descending priority, then registration order.

Cycles never block scheduling: the engines that cannot be placed are
reported (logged, and raised by ``validate()``) and put into a best-effort
final tier.

The registry is an explicit object created once by the composition root and
passed by reference; there is no module-level instance.
"""

from typing import Dict, List, Optional, Set, Tuple

from ...core.exceptions import (
    DependencyCycleError,
    DuplicateEngineError,
    EngineNotFoundError,
    UnknownDependencyError,
)
from ...core.logger import get_logger
from ..interfaces.engine import IEngine
from ..models.engine import EngineConfig, ExecutionPhase, ExecutionPlan

logger = get_logger(__name__)


class _Registration:
    __slots__ = ("config", "engine", "order")

    def __init__(self, config: EngineConfig, engine: IEngine, order: int):
        self.config = config
        self.engine = engine
        self.order = order


class EngineRegistry:
    """Registry of engines and their dependency graph."""

    def __init__(self):
        self._entries: Dict[str, _Registration] = {}
        self._next_order = 0
        self._tiers: Optional[List[List[str]]] = None
        self._cyclic: List[str] = []

    # ------------------------------------------------------------------
    # Registration API
    # ------------------------------------------------------------------

    def register(self, engine: IEngine, allow_replace: bool = True) -> EngineConfig:
        """
        Insert or replace an engine.

        Replacing keeps the original registration order and logs a warning.

        Raises:
            DuplicateEngineError: If the id exists and allow_replace is False
        """
        config = engine.config
        existing = self._entries.get(config.id)

        if existing is not None:
            if not allow_replace:
                raise DuplicateEngineError(config.id)
            logger.warning("engine_registry.engine_replaced", {
                "engine_id": config.id,
                "previous_name": existing.config.name,
                "new_name": config.name
            })
            self._entries[config.id] = _Registration(config, engine, existing.order)
        else:
            self._entries[config.id] = _Registration(config, engine, self._next_order)
            self._next_order += 1
            logger.info("engine_registry.engine_registered", {
                "engine_id": config.id,
                "dependencies": list(config.dependencies),
                "priority": config.priority
            })

        self._invalidate()
        return config

    def unregister(self, engine_id: str) -> None:
        if engine_id not in self._entries:
            raise EngineNotFoundError(engine_id)
        del self._entries[engine_id]
        self._invalidate()
        logger.info("engine_registry.engine_unregistered", {"engine_id": engine_id})

    def list_configs(self) -> List[EngineConfig]:
        """All configurations in registration order"""
        return [r.config for r in self._ordered()]

    def get_config(self, engine_id: str) -> EngineConfig:
        return self._get(engine_id).config

    def get_engine(self, engine_id: str) -> IEngine:
        return self._get(engine_id).engine

    @property
    def engine_ids(self) -> List[str]:
        return [r.config.id for r in self._ordered()]

    def __contains__(self, engine_id: str) -> bool:
        return engine_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _get(self, engine_id: str) -> _Registration:
        entry = self._entries.get(engine_id)
        if entry is None:
            raise EngineNotFoundError(engine_id)
        return entry

    def _ordered(self) -> List[_Registration]:
        return sorted(self._entries.values(), key=lambda r: r.order)

    def _invalidate(self) -> None:
        self._tiers = None
        self._cyclic = []

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------

    def _sort_key(self, engine_id: str) -> Tuple[int, int]:
        entry = self._entries[engine_id]
        return (-entry.config.priority, entry.order)

    def _known_dependencies(self, engine_id: str) -> List[str]:
        return [d for d in self._entries[engine_id].config.dependencies if d in self._entries]

    def dependents_of(self, engine_id: str) -> List[str]:
        """Engines that directly depend on ``engine_id``"""
        return [r.config.id for r in self._ordered() if engine_id in r.config.dependencies]

    def compute_execution_tiers(self) -> List[List[str]]:
        """
        Group engines into tiers of the dependency graph.

        Unknown dependency ids are ignored here (see ``validate()``).
        Engines on or behind a cycle go into one best-effort final tier.
        """
        if self._tiers is not None:
            return [list(t) for t in self._tiers]

        remaining: Set[str] = set(self._entries)
        scheduled: Set[str] = set()
        tiers: List[List[str]] = []

        while remaining:
            ready = [
                engine_id for engine_id in remaining
                if all(dep in scheduled for dep in self._known_dependencies(engine_id))
            ]
            if not ready:
                break
            ready.sort(key=self._sort_key)
            tiers.append(ready)
            scheduled.update(ready)
            remaining.difference_update(ready)

        cyclic = sorted(remaining, key=self._sort_key)
        if cyclic:
            logger.error("engine_registry.dependency_cycle", {
                "engines": cyclic,
                "placement": "best_effort_final_tier"
            })
            tiers.append(cyclic)

        self._tiers = tiers
        self._cyclic = cyclic
        return [list(t) for t in tiers]

    @property
    def cyclic_engines(self) -> List[str]:
        self.compute_execution_tiers()
        return list(self._cyclic)

    def validate(self) -> None:
        """
        Strict startup check of the dependency configuration.

        Raises:
            UnknownDependencyError: An engine depends on an unregistered id
            DependencyCycleError: Declared dependencies form a cycle
        """
        for entry in self._ordered():
            for dep in entry.config.dependencies:
                if dep not in self._entries:
                    raise UnknownDependencyError(entry.config.id, dep)

        cyclic = self.cyclic_engines
        if cyclic:
            raise DependencyCycleError(cyclic)

    def create_execution_plan(self) -> ExecutionPlan:
        """Phased plan with dependencies between phases and estimated durations"""
        tiers = self.compute_execution_tiers()
        phase_of = {engine_id: index for index, tier in enumerate(tiers) for engine_id in tier}

        phases = []
        for index, tier in enumerate(tiers):
            depends_on = sorted({
                phase_of[dep]
                for engine_id in tier
                for dep in self._known_dependencies(engine_id)
                if phase_of[dep] != index
            })
            duration = max(
                (self._entries[e].config.estimated_duration_seconds for e in tier),
                default=0.0
            )
            phases.append(ExecutionPhase(
                phase=index,
                engines=tier,
                depends_on_phases=depends_on,
                estimated_duration_seconds=duration
            ))

        return ExecutionPlan(
            phases=phases,
            total_estimated_seconds=sum(p.estimated_duration_seconds for p in phases),
            cyclic_engines=self.cyclic_engines
        )
