"""
Event System for Vauban Relay

Synchronous in-process pub/sub used to announce completed writes to
read-path subscribers (cache invalidation, SSE streams).

The bus is constructed explicitly and passed to whoever needs it; there is
no module-level instance.
"""

import asyncio
import inspect
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from ..models.events import EventName

logger = structlog.get_logger(__name__)


# Handlers receive the payload dict. An awaitable result is scheduled on the
# running loop and not awaited by emit().
EventHandler = Callable[[dict[str, Any]], Any]

DEFAULT_MAX_LISTENERS = 100


@dataclass
class EventMetrics:
    """Metrics for event system monitoring."""

    events_emitted: int = 0
    events_delivered: int = 0
    events_failed: int = 0
    emissions_without_listeners: int = 0
    avg_delivery_time_ms: float = 0.0
    delivery_times: list[float] = field(default_factory=list)

    def record_delivery(self, duration_ms: float) -> None:
        """Record a delivery time."""
        self.delivery_times.append(duration_ms)
        # Keep only last 1000 samples
        if len(self.delivery_times) > 1000:
            self.delivery_times = self.delivery_times[-1000:]
        self.avg_delivery_time_ms = sum(self.delivery_times) / len(self.delivery_times)


class EventBus:
    """
    Process-local event bus.

    Features:
    - Delivery in registration order, synchronously within emit()
    - A raising handler is logged and counted; later handlers still run
    - No persistence, no replay: handlers registered after an emission
      never see it
    - Listener-leak warning above ``max_listeners`` per event name
    """

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS):
        self._handlers: dict[EventName, list[EventHandler]] = defaultdict(list)
        self._max_listeners = max_listeners
        self._metrics = EventMetrics()
        self._pending: set[asyncio.Task] = set()

    # =========================================================================
    # Subscription Management
    # =========================================================================

    def on(self, name: EventName | str, handler: EventHandler) -> None:
        """Register ``handler`` for ``name``. Registering twice delivers twice."""
        event_name = EventName(name)
        handlers = self._handlers[event_name]
        handlers.append(handler)

        if len(handlers) > self._max_listeners:
            logger.warning(
                "event_listener_limit_exceeded",
                event_name=event_name.value,
                listeners=len(handlers),
                max_listeners=self._max_listeners,
            )
        logger.debug("event_handler_registered", event_name=event_name.value)

    def off(self, name: EventName | str, handler: EventHandler) -> bool:
        """
        Remove one registration of ``handler`` for ``name``.

        The most recent matching registration is removed, so a handler added
        twice needs two calls to go away.

        Returns:
            True if a registration was removed, False if none matched
        """
        event_name = EventName(name)
        handlers = self._handlers.get(event_name)
        if not handlers:
            return False

        for index in range(len(handlers) - 1, -1, -1):
            if handlers[index] == handler:
                del handlers[index]
                if not handlers:
                    del self._handlers[event_name]
                logger.debug("event_handler_removed", event_name=event_name.value)
                return True
        return False

    def listener_count(self, name: EventName | str | None = None) -> int:
        if name is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(EventName(name), ()))

    # =========================================================================
    # Emission
    # =========================================================================

    def emit(self, name: EventName | str, payload: dict[str, Any]) -> int:
        """
        Deliver ``payload`` to every handler currently registered for ``name``.

        Handlers run synchronously in registration order. The handler list is
        snapshotted first, so handlers that subscribe or unsubscribe during
        delivery affect only later emissions.

        Returns:
            Number of handlers that completed without raising
        """
        event_name = EventName(name)
        handlers = list(self._handlers.get(event_name, ()))
        self._metrics.events_emitted += 1

        if not handlers:
            self._metrics.emissions_without_listeners += 1
            logger.debug("event_emitted_without_listeners", event_name=event_name.value)
            return 0

        delivered = 0
        for handler in handlers:
            start = time.perf_counter()
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._schedule(event_name, result)
            except Exception as e:
                self._metrics.events_failed += 1
                logger.error(
                    "event_handler_failed",
                    event_name=event_name.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )
                continue
            delivered += 1
            self._metrics.events_delivered += 1
            self._metrics.record_delivery((time.perf_counter() - start) * 1000)

        logger.debug(
            "event_emitted",
            event_name=event_name.value,
            handlers=len(handlers),
            delivered=delivered,
        )
        return delivered

    def _schedule(self, event_name: EventName, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("event_handler_coroutine_dropped", event_name=event_name.value)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run_async_handler(event_name, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_async_handler(self, event_name: EventName, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            self._metrics.events_failed += 1
            logger.error(
                "event_handler_failed",
                event_name=event_name.value,
                error=str(e),
                exc_info=True,
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def destroy(self) -> None:
        """Remove every registration. Used for process or test teardown."""
        count = self.listener_count()
        self._handlers.clear()
        for task in self._pending:
            task.cancel()
        self._pending.clear()
        logger.info("event_bus_destroyed", handlers_removed=count)

    def get_metrics(self) -> dict[str, Any]:
        """Get event system metrics."""
        return {
            "events_emitted": self._metrics.events_emitted,
            "events_delivered": self._metrics.events_delivered,
            "events_failed": self._metrics.events_failed,
            "emissions_without_listeners": self._metrics.emissions_without_listeners,
            "avg_delivery_time_ms": round(self._metrics.avg_delivery_time_ms, 3),
            "listeners": {name.value: len(h) for name, h in self._handlers.items()},
        }
