"""Shared pytest fixtures for the sillyagents test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio

from sillyagents.config import Settings, override_settings
from sillyagents.events.bus import EventBus
from sillyagents.subroutines.collaborators import Generator, ToolInvoker
from sillyagents.subroutines.models import (
    GenerationOptions,
    GenerationResult,
    SubroutineConfig,
    ToolCall,
    ToolResult,
    default_config,
)
from sillyagents.subroutines.store import InMemorySessionStore, SQLiteSessionStore


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedGenerator(Generator):
    """Returns queued results in order, then empty results."""

    def __init__(self, *results: GenerationResult | Exception) -> None:
        self.results: list[GenerationResult | Exception] = list(results)
        self.calls: list[tuple[str, GenerationOptions]] = []

    async def generate(self, session_id: str, options: GenerationOptions) -> GenerationResult:
        self.calls.append((session_id, options))
        if not self.results:
            return GenerationResult()
        nxt = self.results.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class RecordingToolInvoker(ToolInvoker):
    """Answers from a name → result mapping; an Exception value is raised."""

    def __init__(self, responses: dict[str, ToolResult | Exception] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        self.calls.append((name, arguments))
        response = self.responses.get(name, ToolResult(output="ok"))
        if isinstance(response, Exception):
            raise response
        return response


class RecordingEventBus(EventBus):
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        self.events.append((topic, event))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for _, e in self.events if e.get("event") == event_type]


def tool_calls(*names: str) -> GenerationResult:
    return GenerationResult(
        tool_calls=[ToolCall(name=n, call_id=f"call_{i}") for i, n in enumerate(names)]
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    settings = Settings(
        store={"db_path": str(tmp_path / "sessions.db")},
        events={"log_file": None},
        logging={"level": "debug", "format": "console"},
        runtime={"resync_interval_seconds": 0, "settle_delay_seconds": 0},
    )
    override_settings(settings)
    return settings


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteSessionStore, None]:
    s = SQLiteSessionStore(tmp_path / "sessions.db")
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def tool_invoker() -> RecordingToolInvoker:
    return RecordingToolInvoker()


@pytest.fixture
def bus() -> RecordingEventBus:
    return RecordingEventBus()


async def make_subroutine(
    store: InMemorySessionStore | SQLiteSessionStore,
    name: str = "worker",
    **overrides: Any,
) -> tuple[str, SubroutineConfig]:
    """Create a session holding a subroutine config (running by default)."""
    overrides.setdefault("running", True)
    config = default_config(**overrides)
    session = await store.create_session(name)
    await store.set_config(session.session_id, config)
    return session.session_id, config
