"""
In-process listener registration for engine events.

Delivery order: synchronous handlers run immediately on the emitting task, in
subscription order. Coroutine handlers are scheduled as tasks on the running
event loop and complete later. A failing handler is logged and never affects
other handlers or the emitter.
"""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Handler = Callable[..., Any]


class EventType(str, Enum):
    """Events published by the monitoring components."""

    HEALTH_UPDATED = "health_updated"
    ALERT_TRIGGERED = "alert_triggered"
    ALERT_UPDATED = "alert_updated"
    ALERT_CLEARED = "alert_cleared"
    ISSUE_DETECTED = "issue_detected"
    ISSUE_RESOLVED = "issue_resolved"
    DEVICE_DISCOVERED = "device_discovered"
    SCAN_PROGRESS = "scan_progress"
    SCAN_COMPLETE = "scan_complete"
    NOTIFICATION = "notification"
    CRITICAL_ISSUE = "critical_issue"


class EventBus:
    """Observer registry shared by the sampler, detector and scanner."""

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task[Any]] = set()
        self.logger = logger.bind(component="event_bus")

    def subscribe(self, event: EventType, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def unsubscribe(self, event: EventType, handler: Handler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            pass

    def handler_count(self, event: EventType) -> int:
        return len(self._handlers[event])

    def emit(self, event: EventType, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                if inspect.iscoroutinefunction(handler):
                    self._schedule(event, handler(*args))
                else:
                    handler(*args)
            except Exception as e:
                self.logger.error("event_handler_failed", event_type=event.value, error=str(e))

    def _schedule(self, event: EventType, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self.logger.warning("async_handler_without_loop", event_type=event.value)
            return

        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finish(event, t))

    def _finish(self, event: EventType, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(
                "event_handler_failed", event_type=event.value, error=str(task.exception())
            )

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
