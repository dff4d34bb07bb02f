"""EventRouter — topic routing for SillyAgents events.

The router is the bus the runtime actually runs on.  The Reconciler
registers itself for the inbound session topic, observers register for the
outbound loop and cycle topics, and everything no route claims falls
through to the NDJSON log.

Topics are compared literally; a handler receives only events emitted on
the exact topic it registered for.

Usage::

    router = EventRouter(fallback=LogEventBus(events_path))
    router.add_route(TOPIC_SESSIONS, reconciler.handle_event)
    router.add_route(TOPIC_LOOPS, dashboard.on_loop_state)
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Union

from sillyagents.events.bus import EventBus
from sillyagents.logging import get_logger

log = get_logger(__name__)

# Async or sync callable that accepts (topic, event_dict)
EventHandler = Callable[[str, dict[str, Any]], Union[Awaitable[None], None]]


class EventRouter(EventBus):
    """Routes each emitted event to every handler registered for its topic.

    Handlers run inline, in registration order, before ``emit`` returns, so a
    producer that awaits ``emit`` knows its notification has been handled.
    Route registration is expected at startup; the router does not lock
    route mutations.
    """

    def __init__(self, fallback: EventBus | None = None) -> None:
        """
        Args:
            fallback: Receives events that no registered route claimed.
        """
        self._routes: list[tuple[str, EventHandler]] = []
        self._fallback = fallback

    # ---------------------------------------------------------------------------
    # Route management
    # ---------------------------------------------------------------------------

    def add_route(self, topic: str, handler: EventHandler) -> None:
        """Register *handler* for events emitted on *topic*."""
        self._routes.append((topic, handler))
        log.debug("event_route_added", topic=topic, handler=getattr(handler, "__qualname__", repr(handler)))

    def remove_route(self, topic: str, handler: EventHandler) -> None:
        """Unregister the first matching (topic, handler) pair."""
        for i, (t, h) in enumerate(self._routes):
            if t == topic and h == handler:
                self._routes.pop(i)
                log.debug("event_route_removed", topic=topic)
                return

    @property
    def route_count(self) -> int:
        return len(self._routes)

    # ---------------------------------------------------------------------------
    # EventBus implementation
    # ---------------------------------------------------------------------------

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        """Dispatch *event* to all handlers registered for *topic*.

        Errors in individual handlers are caught and logged; they never
        propagate to the caller.
        """
        self._stamp(topic, event)

        matched = False
        for route_topic, handler in list(self._routes):
            if route_topic != topic:
                continue
            matched = True
            try:
                result = handler(topic, event)
                if hasattr(result, "__await__"):
                    await result  # type: ignore[misc]
            except Exception as exc:
                log.error("event_route_handler_error", topic=topic, error=str(exc))

        if self._fallback is not None and not matched:
            try:
                await self._fallback.emit(topic, event)
            except Exception as exc:
                log.error("event_route_fallback_error", topic=topic, error=str(exc))
