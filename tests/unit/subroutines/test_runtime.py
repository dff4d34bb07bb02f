"""Unit tests — subroutines/runtime.py (SubroutineRuntime)."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio

from conftest import RecordingToolInvoker, ScriptedGenerator, make_subroutine, tool_calls
from sillyagents.config import RuntimeConfig
from sillyagents.events.bus import TOPIC_CYCLES, TOPIC_LOOPS
from sillyagents.events.router import EventRouter
from sillyagents.exceptions import ConfigurationError, SessionNotFoundError
from sillyagents.subroutines.models import TriggerType
from sillyagents.subroutines.runtime import SubroutineRuntime
from sillyagents.subroutines.store import InMemorySessionStore


def _runtime_config(**overrides: Any) -> RuntimeConfig:
    values: dict[str, Any] = {
        "resync_interval_seconds": 0,
        "settle_delay_seconds": 0,
        "shutdown_grace_seconds": 1,
    }
    values.update(overrides)
    return RuntimeConfig(**values)


@pytest_asyncio.fixture
async def runtime(
    store: InMemorySessionStore,
    generator: ScriptedGenerator,
    tool_invoker: RecordingToolInvoker,
) -> AsyncGenerator[SubroutineRuntime, None]:
    rt = SubroutineRuntime(store, generator, tool_invoker, config=_runtime_config())
    await rt.start()
    yield rt
    await rt.stop()


class Collector:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def __call__(self, topic: str, event: dict[str, Any]) -> None:
        self.events.append(event)


@pytest.mark.unit
class TestLifecycle:
    async def test_start_resumes_running_subroutines(
        self,
        store: InMemorySessionStore,
        generator: ScriptedGenerator,
        tool_invoker: RecordingToolInvoker,
    ) -> None:
        running, _ = await make_subroutine(store, "running")
        await make_subroutine(store, "idle", running=False)
        rt = SubroutineRuntime(store, generator, tool_invoker, config=_runtime_config())

        await rt.start()
        try:
            assert rt.started is True
            assert rt.registry.active_sessions() == [running]
        finally:
            await rt.stop()

        assert rt.started is False
        assert rt.registry.active_sessions() == []

    async def test_start_and_stop_are_idempotent(self, runtime: SubroutineRuntime) -> None:
        await runtime.start()
        assert runtime.bus.route_count == 1
        await runtime.stop()
        await runtime.stop()
        assert runtime.bus.route_count == 0

    async def test_resync_sweep_picks_up_external_edits(
        self,
        store: InMemorySessionStore,
        generator: ScriptedGenerator,
        tool_invoker: RecordingToolInvoker,
    ) -> None:
        rt = SubroutineRuntime(
            store, generator, tool_invoker, config=_runtime_config(resync_interval_seconds=0.02)
        )
        await rt.start()
        try:
            # Written behind the runtime's back: no notification is emitted.
            sid, _ = await make_subroutine(store)
            for _ in range(100):
                if rt.registry.is_running(sid):
                    break
                await asyncio.sleep(0.02)
            assert rt.registry.is_running(sid)
        finally:
            await rt.stop()


@pytest.mark.unit
class TestCreate:
    async def test_create_starts_loop(
        self, runtime: SubroutineRuntime, store: InMemorySessionStore
    ) -> None:
        session = await runtime.create_subroutine("watcher")

        config = session.config
        assert config is not None and config.running is True
        assert session.name == "watcher"
        assert runtime.registry.is_running(session.session_id)

    async def test_create_with_overrides(self, runtime: SubroutineRuntime) -> None:
        session = await runtime.create_subroutine(
            "inbox", trigger_type="tool", toolName="inbox", intervalSeconds=60
        )
        config = await runtime.get_config(session.session_id)
        assert config.trigger_type == TriggerType.TOOL
        assert config.tool_name == "inbox"
        state = runtime.registry.get_state(session.session_id)
        assert state is not None and state.interval == 60.0

    async def test_create_with_unknown_field(
        self, runtime: SubroutineRuntime, store: InMemorySessionStore
    ) -> None:
        with pytest.raises(ConfigurationError):
            await runtime.create_subroutine("bad", bogus=True)
        assert await store.list_sessions() == []

    async def test_create_stopped(self, runtime: SubroutineRuntime) -> None:
        session = await runtime.create_subroutine("later", running=False)
        assert not runtime.registry.is_running(session.session_id)

    async def test_incomplete_config_is_stored(self, runtime: SubroutineRuntime) -> None:
        session = await runtime.create_subroutine("no tool", triggerType="tool")
        config = await runtime.get_config(session.session_id)
        assert config.validate()
        assert runtime.registry.is_running(session.session_id)


@pytest.mark.unit
class TestUpdate:
    async def test_get_config_unknown(self, runtime: SubroutineRuntime) -> None:
        with pytest.raises(SessionNotFoundError):
            await runtime.get_config("ghost")

    async def test_get_config_plain_session(
        self, runtime: SubroutineRuntime, store: InMemorySessionStore
    ) -> None:
        session = await store.create_session("chat")
        with pytest.raises(SessionNotFoundError):
            await runtime.get_config(session.session_id)

    async def test_interval_change_restarts_loop(self, runtime: SubroutineRuntime) -> None:
        session = await runtime.create_subroutine("watcher", interval_seconds=60)
        sid = session.session_id

        updated = await runtime.update_config(sid, intervalSeconds=120)

        assert updated.interval_seconds == 120
        state = runtime.registry.get_state(sid)
        assert state is not None and state.interval == 120.0

    async def test_update_unknown_field(self, runtime: SubroutineRuntime) -> None:
        session = await runtime.create_subroutine("watcher")
        with pytest.raises(ConfigurationError):
            await runtime.update_config(session.session_id, nope=1)

    async def test_set_running(self, runtime: SubroutineRuntime) -> None:
        session = await runtime.create_subroutine("watcher")
        sid = session.session_id

        await runtime.set_running(sid, False)
        assert not runtime.registry.is_running(sid)
        assert (await runtime.get_config(sid)).running is False

        await runtime.set_running(sid, True)
        assert runtime.registry.is_running(sid)

    async def test_loop_state_events_reach_observers(self, runtime: SubroutineRuntime) -> None:
        observer = Collector()
        runtime.bus.add_route(TOPIC_LOOPS, observer)

        session = await runtime.create_subroutine("watcher")
        await runtime.set_running(session.session_id, False)

        assert [e["running"] for e in observer.events] == [True, False]


@pytest.mark.unit
class TestDelete:
    async def test_delete_keeps_session(
        self, runtime: SubroutineRuntime, store: InMemorySessionStore
    ) -> None:
        session = await runtime.create_subroutine("watcher")
        sid = session.session_id

        await runtime.delete_subroutine(sid)

        assert not runtime.registry.is_running(sid)
        assert await store.get_config(sid) is None
        assert await store.get_session(sid) is not None

    async def test_delete_with_session(
        self, runtime: SubroutineRuntime, store: InMemorySessionStore
    ) -> None:
        session = await runtime.create_subroutine("watcher")
        await runtime.delete_subroutine(session.session_id, delete_session=True)
        assert await store.get_session(session.session_id) is None

    async def test_delete_unknown(self, runtime: SubroutineRuntime) -> None:
        with pytest.raises(SessionNotFoundError):
            await runtime.delete_subroutine("ghost")


@pytest.mark.unit
class TestCycleCompletion:
    async def test_cycle_completed_event(
        self, runtime: SubroutineRuntime, generator: ScriptedGenerator
    ) -> None:
        observer = Collector()
        runtime.bus.add_route(TOPIC_CYCLES, observer)
        session = await runtime.create_subroutine("watcher")

        await runtime.registry.on_tick(session.session_id)

        assert len(observer.events) == 1
        event = observer.events[0]
        assert event["event"] == "cycle-completed"
        assert event["session_id"] == session.session_id
        assert event["generations"] == 1

    async def test_finish_tool_stops_subroutine(
        self, runtime: SubroutineRuntime, generator: ScriptedGenerator
    ) -> None:
        session = await runtime.create_subroutine("watcher")
        sid = session.session_id
        generator.results.append(tool_calls("finish"))

        await runtime.registry.on_tick(sid)

        assert (await runtime.get_config(sid)).running is False
        assert not runtime.registry.is_running(sid)

    async def test_other_tools_keep_running(
        self, runtime: SubroutineRuntime, generator: ScriptedGenerator
    ) -> None:
        session = await runtime.create_subroutine("watcher")
        generator.results.append(tool_calls("search"))

        await runtime.registry.on_tick(session.session_id)

        assert runtime.registry.is_running(session.session_id)

    async def test_finish_tool_disabled(
        self,
        store: InMemorySessionStore,
        generator: ScriptedGenerator,
        tool_invoker: RecordingToolInvoker,
    ) -> None:
        rt = SubroutineRuntime(
            store, generator, tool_invoker, config=_runtime_config(finish_tool_name="")
        )
        await rt.start()
        try:
            session = await rt.create_subroutine("watcher")
            generator.results.append(tool_calls("finish"))
            await rt.registry.on_tick(session.session_id)
            assert rt.registry.is_running(session.session_id)
        finally:
            await rt.stop()

    async def test_shared_router(
        self,
        store: InMemorySessionStore,
        generator: ScriptedGenerator,
        tool_invoker: RecordingToolInvoker,
    ) -> None:
        router = EventRouter()
        rt = SubroutineRuntime(
            store, generator, tool_invoker, event_bus=router, config=_runtime_config()
        )
        assert rt.bus is router
