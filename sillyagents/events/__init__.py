"""Event streaming layer — notification bus for the subroutine runtime.

Inbound notifications (``config-changed``, ``session-created``) reach the
Reconciler through an EventRouter route; outbound notifications
(``loop-state``, ``cycle-completed``) go to whoever is listening and, by
default, to an NDJSON log.

Quick start::

    from sillyagents.events import EventRouter, LogEventBus, TOPIC_LOOPS

    bus = EventRouter(fallback=LogEventBus(Path("~/.sillyagents/events.ndjson")))
    await bus.emit(TOPIC_LOOPS, {"event": "loop-state", "session_id": "s1", "running": True})
"""

from sillyagents.events.bus import (
    EVENT_CONFIG_CHANGED,
    EVENT_CYCLE_COMPLETED,
    EVENT_LOOP_STATE,
    EVENT_SESSION_CREATED,
    TOPIC_CYCLES,
    TOPIC_LOOPS,
    TOPIC_SESSIONS,
    EventBus,
    LogEventBus,
    NullEventBus,
)
from sillyagents.events.models import RuntimeEvent
from sillyagents.events.router import EventRouter

__all__ = [
    # Interface
    "EventBus",
    # Implementations
    "NullEventBus",
    "LogEventBus",
    "EventRouter",
    "RuntimeEvent",
    # Topic constants
    "TOPIC_SESSIONS",
    "TOPIC_LOOPS",
    "TOPIC_CYCLES",
    # Event names
    "EVENT_CONFIG_CHANGED",
    "EVENT_SESSION_CREATED",
    "EVENT_LOOP_STATE",
    "EVENT_CYCLE_COMPLETED",
]
