"""Event streaming infrastructure — EventBus protocol and implementations.

The EventBus carries every notification that crosses the runtime boundary:

  inbound   config-changed / session-created  (presentation layer → Reconciler)
  outbound  loop-state / cycle-completed      (LoopRegistry / runtime → observers)

Architecture::

  API / CLI  ──emit("sillyagents.sessions")──►┌─────────────┐──► Reconciler
  LoopRegistry ──emit("sillyagents.loops")───►│ EventRouter │──► LogEventBus (NDJSON)
  Runtime   ──emit("sillyagents.cycles")─────►└─────────────┘──► API observers

Swap the backend by injecting a different EventBus implementation:
  - NullEventBus  → default (no-op, zero overhead)
  - LogEventBus   → NDJSON append-only file
  - EventRouter   → pattern-based routing to in-process handlers (router.py)

Standard topic names (use the constants below for consistency):
  TOPIC_SESSIONS = "sillyagents.sessions" — config-changed, session-created
  TOPIC_LOOPS    = "sillyagents.loops"    — loop-state {session_id, running}
  TOPIC_CYCLES   = "sillyagents.cycles"   — cycle-completed summaries
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from sillyagents.logging import get_logger

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Standard topic and event-name constants
# ---------------------------------------------------------------------------

TOPIC_SESSIONS = "sillyagents.sessions"
TOPIC_LOOPS = "sillyagents.loops"
TOPIC_CYCLES = "sillyagents.cycles"

EVENT_CONFIG_CHANGED = "config-changed"
EVENT_SESSION_CREATED = "session-created"
EVENT_LOOP_STATE = "loop-state"
EVENT_CYCLE_COMPLETED = "cycle-completed"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EventBus(ABC):
    """Abstract event bus.  All implementations must be safe for concurrent async use.

    An event is a plain dict.  The bus adds a ``_topic`` key and a
    ``_timestamp`` (Unix epoch float) before forwarding to the backend.
    Consumers must not depend on field ordering.
    """

    @abstractmethod
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        """Publish *event* to *topic*.

        This method must not raise — failures are logged and swallowed so that
        a backend outage never propagates into a loop tick.
        """

    def _stamp(self, topic: str, event: dict[str, Any]) -> dict[str, Any]:
        """Add metadata fields to *event* in-place and return it."""
        event.setdefault("_topic", topic)
        event.setdefault("_timestamp", time.time())
        return event


# ---------------------------------------------------------------------------
# NullEventBus
# ---------------------------------------------------------------------------


class NullEventBus(EventBus):
    """Discards all events.  Used when no event streaming is configured."""

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        pass


# ---------------------------------------------------------------------------
# LogEventBus
# ---------------------------------------------------------------------------


class LogEventBus(EventBus):
    """Writes events as NDJSON to a file — one line per event, append-only.

    Usage::

        bus = LogEventBus(Path("~/.sillyagents/events.ndjson"))
        await bus.emit(TOPIC_LOOPS, {"event": "loop-state", "session_id": "s1", "running": True})
    """

    def __init__(self, log_file: Path | None = None) -> None:
        self._file = log_file.expanduser() if log_file else None
        self._lock = asyncio.Lock()

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        log.debug("event_bus_emit", topic=topic, event_type=event.get("event"))
        if self._file is None:
            return
        line = json.dumps(event, default=str) + "\n"
        async with self._lock:
            try:
                self._file.parent.mkdir(parents=True, exist_ok=True)
                with self._file.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as exc:
                log.error("event_bus_write_failed", topic=topic, error=str(exc))
