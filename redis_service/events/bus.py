"""
Publish/subscribe channel for lifecycle and transport events.

The bus is an explicit object owned by whoever builds the ConnectionRegistry;
there is no module-level instance. Handlers are invoked in subscription order.
Synchronous handlers run inline; coroutine handlers are scheduled as tasks
that ``drain()`` waits for. A failing handler is logged and never prevents
the remaining handlers from receiving the event.

Usage:
    bus = EventBus()
    unsubscribe = bus.subscribe(EventType.CONNECTION_ESTABLISHED, on_ready)
    bus.subscribe("cache:error", on_cache_error)
    bus.subscribe(AGGREGATE_TOPIC, lambda event: print(event.to_dict()))
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable

from redis_service.config.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], "None | Awaitable[None]"]


def _topic_key(topic: str | Enum) -> str:
    # subscribe_all handlers always receive the plain string topic
    return topic.value if isinstance(topic, Enum) else topic


class EventBus:
    """
    Topic-based publish/subscribe bus.

    Topics are plain strings; ``EventType`` and ``TransportSignal`` members
    are accepted wherever a topic is expected. Wildcard subscribers registered
    with ``subscribe_all`` receive ``(topic, payload)`` for every publication.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._wildcard: list[Callable[[str, Any], Any]] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, topic: str | Enum, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for one topic.

        Returns:
            A callable that removes the subscription. Calling it twice is harmless.
        """
        key = _topic_key(topic)
        self._handlers.setdefault(key, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[key]

        return unsubscribe

    def subscribe_all(self, handler: Callable[[str, Any], Any]) -> Callable[[], None]:
        """Register a handler that receives ``(topic, payload)`` for every topic."""
        self._wildcard.append(handler)

        def unsubscribe() -> None:
            if handler in self._wildcard:
                self._wildcard.remove(handler)

        return unsubscribe

    def publish(self, topic: str | Enum, payload: Any = None) -> int:
        """
        Deliver a payload to every handler subscribed to the topic.

        Returns:
            Number of handlers invoked (topic and wildcard subscribers).
        """
        key = _topic_key(topic)
        # Snapshot so handlers may (un)subscribe while being called
        handlers = list(self._handlers.get(key, ()))
        wildcard = list(self._wildcard)

        for handler in handlers:
            self._invoke(key, handler, (payload,))
        for handler in wildcard:
            self._invoke(key, handler, (key, payload))

        return len(handlers) + len(wildcard)

    def _invoke(self, topic: str, handler: Callable[..., Any], args: tuple) -> None:
        try:
            result = handler(*args)
        except Exception as e:
            logger.error(
                "Event handler failed",
                topic=topic,
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(e),
                exc_info=True,
            )
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(lambda t: self._on_task_done(topic, t))

    def _on_task_done(self, topic: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Async event handler failed",
                topic=topic,
                error=str(error),
            )

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def listener_count(self, topic: str | Enum) -> int:
        """Number of handlers subscribed to a specific topic."""
        return len(self._handlers.get(_topic_key(topic), ()))

    def clear(self) -> None:
        """Remove every subscription."""
        self._handlers.clear()
        self._wildcard.clear()
