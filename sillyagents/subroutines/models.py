"""Subroutine runtime data models.

Persisted state is plain dataclasses serialised to JSON so that it can live
in a session's metadata block without an ORM.

Key classes
-----------
TriggerType       — policy deciding whether a tick fires a cycle
SubroutineConfig  — per-session automation config (persisted, camelCase keys)
GenerationOptions — flags forwarded untouched to the generation service
Turn / Transcript — conversation entries appended by the orchestrator
ToolCall          — one tool-call request carried by a generation result
GenerationResult  — what one generation call returned
ToolResult        — output or error of one tool invocation
LoopHealth        — per-loop counters (runtime only)
LoopState         — per-loop runtime state owned by the LoopRegistry
CycleResult       — outcome of one heartbeat cycle
SessionInfo       — listing entry returned by the session store

Config keys quick-reference (``metadata["sillyagents"]``)
---------------------------------------------------------
isSubroutine        bool   — absent/false means "not a subroutine"
triggerType         str    — "time" | "tool" | "api"
intervalSeconds     int    — polling cadence, floored at 5 s
toolName            str    — tool polled by the "tool" trigger
toolCondition       str    — substring that must appear in the tool result
apiUrl              str    — URL polled by the "api" trigger
autoQueue           bool   — re-prompt when the model called no tool
autoQueuePrompt     str    — body of the continuation turn
heartbeatMessage    str    — body of the heartbeat turn
useSummary / useLorebooks / useExampleMessages — forwarded to generation
color               str    — presentation only
running             bool   — declared intent the registry converges to
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

CONFIG_METADATA_KEY = "sillyagents"

MIN_INTERVAL_SECONDS = 5
DEFAULT_INTERVAL_SECONDS = 300
DEFAULT_HEARTBEAT_MESSAGE = "[heartbeat]"
DEFAULT_AUTO_QUEUE_PROMPT = "Continue or call the finish tool if done."
DEFAULT_COLOR = "#4a90d9"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TriggerType(str, Enum):
    """Policy that decides, per tick, whether a cycle fires."""

    TIME = "time"
    TOOL = "tool"
    API = "api"


class TurnRole(str, Enum):
    INCOMING = "incoming"   # user-equivalent input (heartbeat, continuation)
    OUTGOING = "outgoing"   # model output, written by the generation service
    TOOL = "tool"


class TurnKind(str, Enum):
    HEARTBEAT = "heartbeat"
    TOOL_RESULT = "tool_result"
    CONTINUATION = "continuation"
    MESSAGE = "message"


# ---------------------------------------------------------------------------
# Coercion helpers (metadata is user-editable JSON)
# ---------------------------------------------------------------------------


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})


def _as_bool(value: Any, default: bool) -> bool:
    """Accept real bools, 0/1 and the usual string spellings; else *default*."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return default


def _as_str(value: Any, default: str = "") -> str:
    return default if value is None else str(value)


def _parse_trigger_type(value: Any) -> TriggerType | str:
    """Return the enum member, or the raw string for unknown kinds."""
    try:
        return TriggerType(value)
    except ValueError:
        return _as_str(value)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass
class GenerationOptions:
    """Context flags the generation service interprets; the runtime does not."""

    use_summary: bool = False
    use_lorebooks: bool = True
    use_example_messages: bool = True

    def to_dict(self) -> dict[str, bool]:
        return {
            "useSummary": self.use_summary,
            "useLorebooks": self.use_lorebooks,
            "useExampleMessages": self.use_example_messages,
        }


# (python attribute, persisted key)
_CONFIG_KEYS: tuple[tuple[str, str], ...] = (
    ("is_subroutine", "isSubroutine"),
    ("trigger_type", "triggerType"),
    ("interval_seconds", "intervalSeconds"),
    ("tool_name", "toolName"),
    ("tool_condition", "toolCondition"),
    ("api_url", "apiUrl"),
    ("auto_queue", "autoQueue"),
    ("auto_queue_prompt", "autoQueuePrompt"),
    ("heartbeat_message", "heartbeatMessage"),
    ("use_summary", "useSummary"),
    ("use_lorebooks", "useLorebooks"),
    ("use_example_messages", "useExampleMessages"),
    ("color", "color"),
    ("running", "running"),
)

_KEY_BY_ATTR = dict(_CONFIG_KEYS)
_ATTR_BY_KEY = {key: attr for attr, key in _CONFIG_KEYS}


@dataclass
class SubroutineConfig:
    """Automation config of one session.

    ``running`` is the declared intent; the LoopRegistry converges to it.
    ``trigger_type`` keeps unknown persisted values as raw strings so the
    evaluator can fail closed on them instead of the load failing.
    """

    is_subroutine: bool = True
    trigger_type: TriggerType | str = TriggerType.TIME
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    tool_name: str = ""
    tool_condition: str = ""
    api_url: str = ""
    auto_queue: bool = False
    auto_queue_prompt: str = DEFAULT_AUTO_QUEUE_PROMPT
    heartbeat_message: str = DEFAULT_HEARTBEAT_MESSAGE
    use_summary: bool = False
    use_lorebooks: bool = True
    use_example_messages: bool = True
    color: str = DEFAULT_COLOR
    running: bool = False

    # ---------------------------------------------------------------------------
    # Business logic
    # ---------------------------------------------------------------------------

    def effective_interval(self, minimum: float = MIN_INTERVAL_SECONDS) -> float:
        """Polling interval in seconds with the floor applied."""
        return float(max(self.interval_seconds, minimum))

    def generation_options(self) -> GenerationOptions:
        return GenerationOptions(
            use_summary=self.use_summary,
            use_lorebooks=self.use_lorebooks,
            use_example_messages=self.use_example_messages,
        )

    def validate(self) -> list[str]:
        """Return human-readable problems; empty when the config is usable."""
        problems: list[str] = []
        if not isinstance(self.trigger_type, TriggerType):
            problems.append(f"unknown triggerType {self.trigger_type!r}")
        elif self.trigger_type == TriggerType.TOOL and not self.tool_name:
            problems.append("toolName is required for the tool trigger")
        elif self.trigger_type == TriggerType.API and not self.api_url:
            problems.append("apiUrl is required for the api trigger")
        if self.interval_seconds <= 0:
            problems.append("intervalSeconds must be positive")
        return problems

    @property
    def trigger_label(self) -> str:
        if isinstance(self.trigger_type, TriggerType):
            return self.trigger_type.value
        return str(self.trigger_type)

    # ---------------------------------------------------------------------------
    # Serialisation
    # ---------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        d = {key: getattr(self, attr) for attr, key in _CONFIG_KEYS}
        d["triggerType"] = self.trigger_label
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SubroutineConfig":
        """Build a config from its persisted form, filling gaps with defaults."""
        base = cls()
        return cls(
            is_subroutine=_as_bool(d.get("isSubroutine"), base.is_subroutine),
            trigger_type=_parse_trigger_type(d.get("triggerType", base.trigger_label)),
            interval_seconds=_as_int(d.get("intervalSeconds"), base.interval_seconds),
            tool_name=_as_str(d.get("toolName")),
            tool_condition=_as_str(d.get("toolCondition")),
            api_url=_as_str(d.get("apiUrl")),
            auto_queue=_as_bool(d.get("autoQueue"), base.auto_queue),
            auto_queue_prompt=_as_str(d.get("autoQueuePrompt"), base.auto_queue_prompt),
            heartbeat_message=_as_str(d.get("heartbeatMessage"), base.heartbeat_message),
            use_summary=_as_bool(d.get("useSummary"), base.use_summary),
            use_lorebooks=_as_bool(d.get("useLorebooks"), base.use_lorebooks),
            use_example_messages=_as_bool(d.get("useExampleMessages"), base.use_example_messages),
            color=_as_str(d.get("color"), base.color),
            running=_as_bool(d.get("running"), base.running),
        )

    def with_changes(self, changes: dict[str, Any]) -> "SubroutineConfig":
        """Return a copy with *changes* applied.

        Keys may be Python attribute names or persisted camelCase keys.
        Unknown keys raise ``KeyError``.
        """
        merged = self.to_dict()
        for key, value in changes.items():
            if key in _ATTR_BY_KEY:
                merged[key] = value
            elif key in _KEY_BY_ATTR:
                merged[_KEY_BY_ATTR[key]] = value
            else:
                raise KeyError(f"Unknown subroutine config field: {key}")
        return SubroutineConfig.from_dict(merged)


def default_config(**overrides: Any) -> SubroutineConfig:
    """Config written when a new subroutine is created."""
    return dataclasses.replace(SubroutineConfig(), **overrides)


def config_from_metadata(metadata: dict[str, Any] | None) -> SubroutineConfig | None:
    """Extract the subroutine config from a session metadata block.

    Returns None when the block is absent, malformed, or not flagged as a
    subroutine.
    """
    if not isinstance(metadata, dict):
        return None
    block = metadata.get(CONFIG_METADATA_KEY)
    if not isinstance(block, dict):
        return None
    config = SubroutineConfig.from_dict(block)
    return config if config.is_subroutine else None


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


@dataclass
class Turn:
    """One transcript entry."""

    role: TurnRole
    body: str
    kind: TurnKind = TurnKind.MESSAGE
    name: str = ""
    is_user: bool = False
    send_date: float = field(default_factory=time.time)
    tool_name: str | None = None
    tool_call_id: str | None = None
    is_error: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def heartbeat(cls, body: str, sender: str) -> "Turn":
        return cls(
            role=TurnRole.INCOMING,
            kind=TurnKind.HEARTBEAT,
            body=body,
            name=sender,
            is_user=True,
        )

    @classmethod
    def continuation(cls, body: str, sender: str) -> "Turn":
        return cls(
            role=TurnRole.INCOMING,
            kind=TurnKind.CONTINUATION,
            body=body,
            name=sender,
            is_user=True,
        )

    @classmethod
    def tool_result(cls, call: "ToolCall", result: "ToolResult") -> "Turn":
        return cls(
            role=TurnRole.TOOL,
            kind=TurnKind.TOOL_RESULT,
            body=result.as_text(),
            name=call.name,
            tool_name=call.name,
            tool_call_id=call.call_id,
            is_error=result.is_error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "kind": self.kind.value,
            "name": self.name,
            "is_user": self.is_user,
            "body": self.body,
            "send_date": self.send_date,
            "tool_name": self.tool_name,
            "tool_call_id": self.tool_call_id,
            "is_error": self.is_error,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Turn":
        return cls(
            role=TurnRole(d.get("role", TurnRole.OUTGOING.value)),
            kind=TurnKind(d.get("kind", TurnKind.MESSAGE.value)),
            body=_as_str(d.get("body")),
            name=_as_str(d.get("name")),
            is_user=bool(d.get("is_user", False)),
            send_date=float(d.get("send_date") or time.time()),
            tool_name=d.get("tool_name"),
            tool_call_id=d.get("tool_call_id"),
            is_error=bool(d.get("is_error", False)),
            extra=dict(d.get("extra") or {}),
        )


@dataclass
class Transcript:
    session_id: str
    turns: list[Turn] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.turns)

    @property
    def last(self) -> Turn | None:
        return self.turns[-1] if self.turns else None


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ToolCall":
        """Accept both flat and OpenAI-style ``{"function": {...}}`` shapes."""
        fn = d.get("function") if isinstance(d.get("function"), dict) else d
        arguments = fn.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                arguments = {"input": arguments}
        if not isinstance(arguments, dict):
            arguments = {"input": arguments}
        return cls(name=_as_str(fn.get("name")), arguments=arguments, call_id=d.get("id"))


@dataclass
class GenerationResult:
    tool_calls: list[ToolCall] = field(default_factory=list)
    text: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "GenerationResult":
        calls = d.get("tool_calls") or d.get("toolCalls") or []
        return cls(
            tool_calls=[ToolCall.from_dict(c) for c in calls if isinstance(c, dict)],
            text=_as_str(d.get("text")),
        )


@dataclass
class ToolResult:
    """Output of one tool invocation; ``error`` set means the call failed."""

    output: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(error=error)

    def as_text(self) -> str:
        """String form used for transcript turns and condition matching."""
        if self.error is not None:
            return self.error
        if self.output is None:
            return ""
        if isinstance(self.output, str):
            return self.output
        if isinstance(self.output, (dict, list)):
            return json.dumps(self.output, default=str)
        return str(self.output)


# ---------------------------------------------------------------------------
# Runtime-only loop state
# ---------------------------------------------------------------------------


@dataclass
class LoopHealth:
    """Operational counters of one loop — never persisted."""

    ticks: int = 0
    fires: int = 0
    skipped: int = 0
    failures: int = 0
    last_tick_at: float | None = None
    last_fired_at: float | None = None
    last_error: str | None = None

    def record_tick(self) -> None:
        self.ticks += 1
        self.last_tick_at = time.time()

    def record_skip(self) -> None:
        self.skipped += 1

    def record_fire(self) -> None:
        self.fires += 1
        self.last_fired_at = time.time()

    def record_fail(self, error: str) -> None:
        self.failures += 1
        self.last_error = error


@dataclass
class LoopState:
    """Per-session runtime state.  Owned exclusively by the LoopRegistry."""

    session_id: str
    interval: float
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None
    is_generating: bool = False
    # True while is_generating belongs to a cycle started by a replaced loop
    guard_inherited: bool = False
    started_at: float = field(default_factory=time.time)
    health: LoopHealth = field(default_factory=LoopHealth)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "interval": self.interval,
            "is_generating": self.is_generating,
            "started_at": self.started_at,
            "ticks": self.health.ticks,
            "fires": self.health.fires,
            "skipped": self.health.skipped,
            "failures": self.health.failures,
            "last_tick_at": self.health.last_tick_at,
            "last_fired_at": self.health.last_fired_at,
            "last_error": self.health.last_error,
        }


@dataclass
class CycleResult:
    """What one heartbeat cycle did.  ``error`` is None when it completed."""

    session_id: str
    cycle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    generations: int = 0
    tool_calls: list[str] = field(default_factory=list)
    turns_appended: int = 0
    continued: bool = False
    error: str | None = None
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def duration_ms(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return (end - self.started_at) * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "cycle_id": self.cycle_id,
            "generations": self.generations,
            "tool_calls": list(self.tool_calls),
            "turns_appended": self.turns_appended,
            "continued": self.continued,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
        }


# ---------------------------------------------------------------------------
# Session listing
# ---------------------------------------------------------------------------


@dataclass
class SessionInfo:
    session_id: str
    name: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def config(self) -> SubroutineConfig | None:
        return config_from_metadata(self.metadata)
