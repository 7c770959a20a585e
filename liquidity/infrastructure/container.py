"""
Dependency Injection Container - Composition Root Pattern
========================================================
Assembles the engine system from AppSettings.

RULES:
- NO global access (no get_container() function)
- NO business logic (only object assembly)
- Constructor injection only
- Created once at application startup
"""

from typing import Any, Callable, Dict, Optional

from ..core.event_bus import EventBus
from ..core.logger import StructuredLogger
from ..core.time_manager import Clock, now
from ..domain.interfaces.snapshot_provider import ISnapshotProvider
from ..domain.services.engine_registry import EngineRegistry
from ..domain.services.engine_scheduler import EngineScheduler
from ..domain.services.engines.allocator import AllocatorEngine
from ..domain.services.engines.data_integrity import DataIntegrityEngine
from ..domain.services.engines.net_liquidity import NetLiquidityEngine
from ..domain.services.engines.zscore import ZScoreEngine
from ..domain.services.engines.zscore_calculator import ZScoreCalculator
from ..domain.services.result_cache import ResultCache
from .adapters.static_snapshot_provider import FixtureSnapshotProvider
from .config.settings import AppSettings


class Container:
    """
    Composition root for the engine system.

    Usage:
        container = Container(settings, EventBus(), get_logger("liquidity"))
        scheduler = container.create_engine_scheduler()
        container.register_default_engines()
        await container.start()
        results = await scheduler.execute_all()
        await container.shutdown()
    """

    def __init__(self, settings: AppSettings, event_bus: EventBus, logger: StructuredLogger,
                 provider: Optional[ISnapshotProvider] = None, clock: Clock = now):
        """
        Args:
            settings: Application settings (single source of truth)
            event_bus: Central notification hub
            logger: Structured logger instance
            provider: Snapshot provider; defaults to the labelled fixture provider
            clock: Time source shared by cache, scheduler and engines
        """
        self.settings = settings
        self.event_bus = event_bus
        self.logger = logger
        self.clock = clock
        self._provider = provider
        self._singletons: Dict[str, Any] = {}

        self.logger.info("container.init_completed", {
            "app_name": settings.app_name,
            "version": settings.version,
            "custom_provider": provider is not None
        })

    def _singleton(self, name: str, factory: Callable[[], Any]) -> Any:
        service = self._singletons.get(name)
        if service is None:
            service = factory()
            if service is None:
                raise RuntimeError(f"Factory returned None for service: {name}")
            self._singletons[name] = service
            self.logger.debug("container.service_created", {"service": name})
        return service

    def create_snapshot_provider(self) -> ISnapshotProvider:
        return self._singleton("snapshot_provider", lambda: self._provider or FixtureSnapshotProvider())

    def create_result_cache(self) -> ResultCache:
        cache_settings = self.settings.cache
        return self._singleton("result_cache", lambda: ResultCache(
            default_ttl_seconds=cache_settings.default_ttl_seconds,
            max_entries=cache_settings.max_entries,
            sweep_interval_seconds=cache_settings.sweep_interval_seconds,
            clock=self.clock
        ))

    def create_engine_registry(self) -> EngineRegistry:
        return self._singleton("engine_registry", EngineRegistry)

    def create_engine_scheduler(self) -> EngineScheduler:
        return self._singleton("engine_scheduler", lambda: EngineScheduler(
            registry=self.create_engine_registry(),
            provider=self.create_snapshot_provider(),
            cache=self.create_result_cache(),
            event_bus=self.event_bus,
            settings=self.settings.scheduler,
            clock=self.clock
        ))

    def create_zscore_calculator(self) -> ZScoreCalculator:
        return self._singleton("zscore_calculator", lambda: ZScoreCalculator(self.settings.zscore))

    def register_default_engines(self) -> EngineRegistry:
        """
        Register the built-in engines and run the strict dependency check.

        Raises:
            ConfigurationError: Dependency cycle or unknown dependency
        """
        registry = self.create_engine_registry()
        registry.register(DataIntegrityEngine(
            settings=self.settings.integrity,
            event_bus=self.event_bus,
            clock=self.clock
        ))
        registry.register(ZScoreEngine(calculator=self.create_zscore_calculator()))
        registry.register(NetLiquidityEngine())
        registry.register(AllocatorEngine())
        registry.validate()

        self.logger.info("container.engines_registered", {
            "engines": registry.engine_ids,
            "tiers": registry.compute_execution_tiers()
        })
        return registry

    async def start(self) -> None:
        await self.create_result_cache().start()

    async def shutdown(self) -> None:
        cache = self._singletons.get("result_cache")
        if cache is not None:
            await cache.stop()
        await self.event_bus.shutdown()
        self.logger.info("container.shutdown_completed", {"services": sorted(self._singletons)})
