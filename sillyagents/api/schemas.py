"""API layer — Request and response schemas.

These are the external API contracts.  They are intentionally separate from
the runtime dataclasses; config dicts use the persisted camelCase keys.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CreateSubroutineRequest(BaseModel):
    """POST /subroutines — create a running subroutine."""

    name: str = Field(min_length=1, description="Display name of the new session.")
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Overrides applied on top of the default config (camelCase keys).",
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LoopStatus(BaseModel):
    session_id: str
    interval: float
    is_generating: bool
    started_at: float
    ticks: int = 0
    fires: int = 0
    skipped: int = 0
    failures: int = 0
    last_tick_at: float | None = None
    last_fired_at: float | None = None
    last_error: str | None = None


class SubroutineSummary(BaseModel):
    session_id: str
    name: str
    trigger_type: str
    interval_seconds: int
    running: bool = Field(description="Persisted intent.")
    active: bool = Field(description="Whether a loop is currently armed in this daemon.")
    color: str


class SubroutineDetail(BaseModel):
    session_id: str
    name: str
    config: dict[str, Any]
    loop: LoopStatus | None = None
    created_at: float
    updated_at: float


class TurnResponse(BaseModel):
    role: str
    kind: str
    name: str
    is_user: bool
    body: str
    send_date: float
    tool_name: str | None = None
    tool_call_id: str | None = None
    is_error: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)


class TranscriptResponse(BaseModel):
    session_id: str
    turns: list[TurnResponse]
    count: int


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    uptime_seconds: float
    active_loops: int = Field(default=0, description="Loops currently armed.")
    in_flight_cycles: int = Field(default=0, description="Ticks that have not finished yet.")
    timestamp: float = Field(default_factory=time.time)


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: Any | None = None
    request_id: str | None = None
