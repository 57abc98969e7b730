"""Typed in-process event bus.

Decouples producers (availability tracker, daemon callbacks, reconciliation
engine) from consumers (reconciliation engine, invoice owner, status views).
Subscribers register for an event class and receive every published instance
of that class or a subclass.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class EventBus:
    """Publish/subscribe by event type.

    Example:
        bus = EventBus()
        bus.subscribe(ChainNotification, engine.handle_event)
        await bus.publish(ChainNotification(crypto_code="XMR", block_hash="abc"))
    """

    _subscribers: dict[type, list[Callable]] = field(default_factory=dict)
    _background_tasks: set[asyncio.Task[Any]] = field(default_factory=set)

    def subscribe(self, event_type: type, handler: Callable) -> None:
        """Subscribe a sync or async handler to an event class."""
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event_type.__name__}")

    def unsubscribe(self, event_type: type, handler: Callable) -> None:
        handlers = self._subscribers.get(event_type)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._subscribers[event_type]

    def _handlers_for(self, event: Any) -> list[Callable]:
        matching: list[Callable] = []
        for event_type, handlers in self._subscribers.items():
            if isinstance(event, event_type):
                matching.extend(handlers)
        return matching

    async def publish(self, event: Any, fire_and_forget: bool = True) -> None:
        """Deliver an event to every matching subscriber.

        Args:
            event: Event instance
            fire_and_forget: Run handlers in a tracked background task (default)
                instead of awaiting them
        """
        handlers = self._handlers_for(event)
        if not handlers:
            logger.debug(f"No subscribers for {type(event).__name__}")
            return

        if fire_and_forget:
            self._schedule_background(self._execute_handlers(event, handlers))
        else:
            await self._execute_handlers(event, handlers)

    def publish_nowait(self, event: Any) -> None:
        """Publish from synchronous code running inside the event loop."""
        handlers = self._handlers_for(event)
        if handlers:
            self._schedule_background(self._execute_handlers(event, handlers))

    async def _execute_handlers(self, event: Any, handlers: list[Callable]) -> None:
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)} failed for {type(event).__name__}: {e}",
                    exc_info=True,
                )

    def _schedule_background(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_task_done)

    def _on_background_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        try:
            task.result()
        except Exception:
            logger.exception("Event bus background task failed")

    async def wait_for_background_tasks(self, timeout: Optional[float] = None) -> None:
        """Wait for currently tracked background tasks, including ones they spawn."""
        while self._background_tasks:
            pending = list(self._background_tasks)
            await asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True), timeout=timeout)

    async def cancel_background_tasks(self) -> None:
        """Best-effort cancellation of in-flight handlers at shutdown."""
        pending = list(self._background_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def clear_subscribers(self) -> None:
        self._subscribers.clear()
