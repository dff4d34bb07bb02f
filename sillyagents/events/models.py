"""Structured event envelope for SillyAgents notifications.

The bus itself moves plain dicts.  ``RuntimeEvent`` is the typed helper the
runtime uses to build them so that every notification carries the same
envelope fields:

``event``        — semantic type, e.g. ``"loop-state"``
``source``       — producing component (``"loop_registry"``, ``"api"`` ...)
``session_id``   — the automated session the event is about
``correlation_id`` — groups the events of one cycle (the cycle id)

Payload keys are flattened into the dict so consumers can read
``event["running"]`` directly.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RuntimeEvent:
    """Envelope for one notification on the event bus.

    Example::

        event = RuntimeEvent(
            type=EVENT_LOOP_STATE,
            topic=TOPIC_LOOPS,
            source="loop_registry",
            session_id="chat-1",
            payload={"running": True},
        )
        await bus.emit(event.topic, event.to_dict())
    """

    type: str
    topic: str
    source: str = ""
    session_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    # ---------------------------------------------------------------------------
    # Serialisation
    # ---------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dict compatible with ``EventBus.emit()``."""
        d: dict[str, Any] = {
            "_event_id": self.id,
            "_topic": self.topic,
            "_timestamp": self.timestamp,
            "event": self.type,
            "source": self.source,
            **self.payload,
        }
        if self.session_id is not None:
            d["session_id"] = self.session_id
        if self.correlation_id is not None:
            d["_correlation_id"] = self.correlation_id
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RuntimeEvent":
        """Reconstruct from a plain event dict delivered by the bus."""
        payload = {
            k: v
            for k, v in d.items()
            if not k.startswith("_") and k not in ("event", "source", "session_id")
        }
        return cls(
            type=d.get("event", ""),
            topic=d.get("_topic", ""),
            source=d.get("source", ""),
            session_id=d.get("session_id"),
            payload=payload,
            correlation_id=d.get("_correlation_id"),
            id=d.get("_event_id", str(uuid.uuid4())),
            timestamp=d.get("_timestamp", time.time()),
        )

    def __repr__(self) -> str:
        return (
            f"RuntimeEvent(type={self.type!r}, topic={self.topic!r}, "
            f"session_id={self.session_id!r}, source={self.source!r})"
        )
