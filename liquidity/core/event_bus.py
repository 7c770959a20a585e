"""
Event Bus
=========
Central asynchronous event bus for in-process notifications.

Used by the scheduler to announce per-engine results and the once-per-cycle
"cycle completed" notification polled or subscribed to by the display layer.

Error Isolation: a failing subscriber never affects other subscribers or the
publisher. Failed deliveries are retried with exponential backoff.

publish() awaits delivery; publish_nowait() hands it to a background task so
the caller is never held up by slow or retrying subscribers. drain() waits for
those tasks and shutdown() drains before dropping subscriptions.
"""

import asyncio
from typing import Callable, Any, Dict, List, Optional, Set

from .logger import get_logger

logger = get_logger(__name__)


# Event Topics
TOPICS = {
    "engine.result": {
        "description": "An engine reached a terminal state (success or failure)",
        "data_structure": {
            "engine_id": "str",
            "success": "bool",
            "signal": "str (RISK_ON/RISK_OFF/WARNING/NEUTRAL, optional)",
            "confidence": "float (0-100, optional)",
            "elapsed_ms": "float",
            "error": "str (optional)",
            "completed_at": "float (epoch s)"
        }
    },
    "engine.cycle_completed": {
        "description": "execute_all() finished; emitted exactly once per cycle",
        "data_structure": {
            "cycle_id": "int",
            "total": "int",
            "succeeded": "int",
            "failed": "int",
            "cancelled": "bool",
            "tiers": "list[list[str]]",
            "elapsed_ms": "float"
        }
    },
    "integrity.healing_action": {
        "description": "Data integrity validator applied a remediation",
        "data_structure": {
            "kind": "str (fallback/interpolation/consensus_override/circuit_breaker)",
            "source": "str",
            "indicator_id": "str",
            "severity": "str",
            "timestamp": "float (epoch s)"
        }
    },
    "engine.circuit_opened": {
        "description": "An engine's circuit breaker opened after repeated failures",
        "data_structure": {
            "engine_id": "str",
            "consecutive_failures": "int"
        }
    }
}


Handler = Callable[[Dict[str, Any]], Any]


def _check_topic(topic: str) -> None:
    if not isinstance(topic, str) or not topic:
        raise ValueError("Topic must be a non-empty string")


class EventBus:
    """
    In-process async pub/sub.

    Handlers may be plain functions or coroutine functions. Each handler gets
    ``max_retries`` extra attempts with exponential backoff starting at
    ``base_backoff`` seconds; a handler that still fails is logged and
    skipped. Delivery order follows subscription order.
    """

    def __init__(self, max_retries: int = 3, base_backoff: float = 1.0):
        self._handlers: Dict[str, List[Handler]] = {}
        self._max_retries = max_retries
        self._base_backoff = base_backoff
        self._closed = False
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

        logger.info("event_bus.initialized", {
            "max_retries": max_retries,
            "base_backoff": base_backoff
        })

    async def subscribe(self, topic: str, handler: Handler) -> None:
        """
        Raises:
            ValueError: Empty topic or non-callable handler
        """
        _check_topic(topic)
        if not callable(handler):
            raise ValueError("Handler must be callable")

        async with self._lock:
            handlers = self._handlers.setdefault(topic, [])
            handlers.append(handler)
            count = len(handlers)

        logger.debug("event_bus.subscribed", {"topic": topic, "subscribers": count})

    async def unsubscribe(self, topic: str, handler: Handler) -> None:
        async with self._lock:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(topic, None)

    async def publish(self, topic: str, data: Dict[str, Any]) -> None:
        """
        Deliver ``data`` to every handler of ``topic``, one after another.

        Raises:
            ValueError: Empty topic or non-dict payload
        """
        if not self._accepts(topic, data):
            return
        await self._dispatch(topic, data)

    def publish_nowait(self, topic: str, data: Dict[str, Any]) -> Optional[asyncio.Task]:
        """
        Schedule delivery of ``data`` on a background task and return at once.

        Must be called from a running event loop. The task is tracked until
        it finishes; ``drain()`` waits for every outstanding delivery.

        Raises:
            ValueError: Empty topic or non-dict payload
        """
        if not self._accepts(topic, data):
            return None

        task = asyncio.get_running_loop().create_task(self._dispatch(topic, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every delivery scheduled by publish_nowait() has finished."""
        while self._pending:
            await asyncio.gather(*tuple(self._pending))

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)

    def _accepts(self, topic: str, data: Dict[str, Any]) -> bool:
        _check_topic(topic)
        if not isinstance(data, dict):
            raise ValueError("Data must be a dictionary")

        if self._closed:
            logger.warning("event_bus.publish_blocked", {"topic": topic})
            return False
        return True

    async def _dispatch(self, topic: str, data: Dict[str, Any]) -> None:
        async with self._lock:
            handlers = tuple(self._handlers.get(topic, ()))

        for handler in handlers:
            await self._deliver(topic, handler, data)

    async def _deliver(self, topic: str, handler: Handler, data: Dict[str, Any]) -> None:
        for attempt in range(1, self._max_retries + 2):
            try:
                outcome = handler(data)
                if asyncio.iscoroutine(outcome):
                    await outcome
                return
            except Exception as e:
                if attempt > self._max_retries:
                    logger.error("event_bus.delivery_failed", {
                        "topic": topic,
                        "attempts": attempt,
                        "error": str(e),
                        "error_type": type(e).__name__
                    })
                    return

                delay = self._base_backoff * 2 ** (attempt - 1)
                logger.warning("event_bus.delivery_retry", {
                    "topic": topic,
                    "attempt": attempt,
                    "backoff_seconds": delay
                })
                if delay > 0:
                    await asyncio.sleep(delay)

    async def list_topics(self) -> Dict[str, int]:
        """Subscriber count per topic."""
        async with self._lock:
            return {topic: len(handlers) for topic, handlers in self._handlers.items()}

    async def health_check(self) -> Dict[str, Any]:
        topics = await self.list_topics()
        return {
            "healthy": not self._closed,
            "active_subscribers": sum(topics.values()),
            "total_topics": len(topics),
            "pending_deliveries": len(self._pending),
            "shutdown_requested": self._closed,
        }

    async def shutdown(self) -> None:
        """Finish scheduled deliveries, then drop every subscription; later publishes are ignored."""
        self._closed = True
        await self.drain()
        async with self._lock:
            cleared = sum(len(h) for h in self._handlers.values())
            self._handlers.clear()

        logger.info("event_bus.shutdown", {"cleared_subscribers": cleared})
