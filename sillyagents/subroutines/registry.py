"""LoopRegistry — owns the session → LoopState map and the tick handler.

Every running subroutine has exactly one LoopState, keyed by session id.
A loop is one asyncio task that sleeps on its stop event with
``timeout=interval``; each timeout dispatches ``on_tick`` as a separate
tracked task so the cadence holds while a long cycle is in flight.

Tick handling::

    timer fires
        ↓
    on_tick(session_id)
        ↓
    is_generating?  ── yes ──► drop the tick (counted as skipped)
        ↓ no
    is_generating = True
        ↓
    re-read config ── missing / running=False ──► stop_loop()
        ↓
    TriggerEvaluator.evaluate(config) ── False ──► done
        ↓ True
    GenerationOrchestrator.run_cycle()
        ↓
    on_cycle_complete hook (optional)
        ↓
    is_generating = False   (always)

Nothing raised inside a tick escapes it.  ``stop_loop`` only cancels the
timer; a cycle already running is left to finish.

Map mutations (start / stop / restart) are serialised by an asyncio.Lock.
Loop-state notifications are emitted after the lock is released so that a
bus handler may call back into the registry.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from sillyagents.events.bus import EVENT_LOOP_STATE, TOPIC_LOOPS, EventBus, NullEventBus
from sillyagents.events.models import RuntimeEvent
from sillyagents.exceptions import SessionStoreError
from sillyagents.logging import clear_session_context, get_logger
from sillyagents.subroutines.models import (
    MIN_INTERVAL_SECONDS,
    CycleResult,
    LoopState,
    SubroutineConfig,
)
from sillyagents.subroutines.orchestrator import GenerationOrchestrator
from sillyagents.subroutines.store import SessionStore
from sillyagents.subroutines.triggers import TriggerEvaluator

log = get_logger(__name__)

CycleHook = Callable[[str, SubroutineConfig, CycleResult], Awaitable[None]]


class LoopRegistry:
    """Starts, stops and ticks the per-session loops.

    Usage::

        registry = LoopRegistry(store, orchestrator, evaluator, event_bus=bus)
        await registry.resume_all()
        await registry.start_loop("chat-1")
        await registry.restart_loop("chat-1")
        await registry.stop_loop("chat-1")
        await registry.shutdown(grace_seconds=30)
    """

    def __init__(
        self,
        store: SessionStore,
        orchestrator: GenerationOrchestrator,
        evaluator: TriggerEvaluator,
        event_bus: EventBus | None = None,
        min_interval_seconds: float = MIN_INTERVAL_SECONDS,
        on_cycle_complete: CycleHook | None = None,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._evaluator = evaluator
        self._bus = event_bus or NullEventBus()
        self._min_interval = min_interval_seconds
        self._on_cycle_complete = on_cycle_complete

        # session_id → LoopState
        self._loops: dict[str, LoopState] = {}
        # in-flight tick tasks, drained on shutdown
        self._ticks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    # ---------------------------------------------------------------------------
    # Introspection
    # ---------------------------------------------------------------------------

    def is_running(self, session_id: str) -> bool:
        return session_id in self._loops

    def get_state(self, session_id: str) -> LoopState | None:
        return self._loops.get(session_id)

    def active_sessions(self) -> list[str]:
        return list(self._loops)

    @property
    def min_interval(self) -> float:
        return self._min_interval

    @property
    def in_flight(self) -> int:
        """Number of tick tasks that have not finished yet."""
        return sum(1 for t in self._ticks if not t.done())

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """JSON-ready status of every active loop."""
        return {sid: state.to_dict() for sid, state in self._loops.items()}

    # ---------------------------------------------------------------------------
    # Loop control
    # ---------------------------------------------------------------------------

    async def start_loop(self, session_id: str) -> bool:
        """Arm a loop for *session_id*.  Returns False if none was started."""
        async with self._lock:
            started = await self._arm(session_id)
        if started:
            await self._emit_loop_state(session_id, running=True)
        return started

    async def stop_loop(self, session_id: str) -> bool:
        """Disarm the loop of *session_id*.  Returns False if none was active."""
        async with self._lock:
            state = await self._disarm(session_id)
        if state is None:
            return False
        await self._emit_loop_state(session_id, running=False)
        return True

    async def restart_loop(self, session_id: str) -> bool:
        """Stop and re-arm an active loop so it picks up a new interval.

        No-op (returns False) when the session has no active loop.
        """
        async with self._lock:
            previous = await self._disarm(session_id)
            if previous is None:
                return False
            started = await self._arm(session_id, previous=previous)
        await self._emit_loop_state(session_id, running=False)
        if started:
            await self._emit_loop_state(session_id, running=True)
        return started

    async def resume_all(self) -> int:
        """Start a loop for every persisted config with ``running=True``.

        A session that cannot be resumed is logged and skipped; the others
        still start.
        """
        started = 0
        failed = 0
        for session in await self._store.list_sessions():
            try:
                config = session.config
                if config is None or not config.running:
                    continue
                if await self.start_loop(session.session_id):
                    started += 1
            except Exception as exc:
                failed += 1
                log.error(
                    "loop_resume_failed",
                    session_id=session.session_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
        log.info("loops_resumed", started=started, failed=failed)
        return started

    async def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Stop every loop, then wait up to *grace_seconds* for in-flight ticks."""
        for session_id in list(self._loops):
            await self.stop_loop(session_id)

        pending = [t for t in self._ticks if not t.done()]
        if not pending:
            return
        log.info("loop_registry_draining", in_flight=len(pending), grace_seconds=grace_seconds)
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        if still_running:
            log.warning("loop_registry_cancelling_ticks", count=len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    # ---------------------------------------------------------------------------
    # Tick
    # ---------------------------------------------------------------------------

    async def on_tick(self, session_id: str) -> None:
        """Handle one timer expiry for *session_id*."""
        state = self._loops.get(session_id)
        if state is None:
            log.warning("tick_without_loop", session_id=session_id)
            return

        state.health.record_tick()
        if state.is_generating:
            state.health.record_skip()
            log.debug("tick_skipped_in_flight", session_id=session_id)
            return
        state.is_generating = True

        try:
            await self._tick(session_id, state)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            state.health.record_fail(str(exc))
            log.error(
                "tick_failed",
                session_id=session_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            self._release_guard(session_id, state)
            clear_session_context()

    async def _tick(self, session_id: str, state: LoopState) -> None:
        try:
            config = await self._store.get_config(session_id)
        except SessionStoreError as exc:
            state.health.record_fail(str(exc))
            log.error("tick_config_read_failed", session_id=session_id, error=str(exc))
            return

        if config is None:
            log.warning("tick_config_missing", session_id=session_id)
            await self.stop_loop(session_id)
            return
        if not config.running:
            log.info("tick_found_stopped_config", session_id=session_id)
            await self.stop_loop(session_id)
            return

        if not await self._evaluator.evaluate(config):
            log.debug("trigger_not_fired", session_id=session_id, trigger=config.trigger_label)
            return

        state.health.record_fire()
        result = await self._orchestrator.run_cycle(session_id, config)
        if not result.succeeded:
            state.health.record_fail(result.error or "cycle failed")

        if self._on_cycle_complete is not None:
            await self._on_cycle_complete(session_id, config, result)

    def _release_guard(self, session_id: str, state: LoopState) -> None:
        state.is_generating = False
        # A restart during this cycle handed the guard to the new LoopState.
        current = self._loops.get(session_id)
        if current is not None and current is not state and current.guard_inherited:
            current.is_generating = False
            current.guard_inherited = False

    # ---------------------------------------------------------------------------
    # Internal (callers hold self._lock)
    # ---------------------------------------------------------------------------

    async def _arm(self, session_id: str, previous: LoopState | None = None) -> bool:
        if session_id in self._loops:
            log.debug("loop_already_running", session_id=session_id)
            return False
        try:
            config = await self._store.get_config(session_id)
        except (SessionStoreError, ValueError) as exc:
            log.error("loop_start_config_read_failed", session_id=session_id, error=str(exc))
            return False
        if config is None:
            log.warning("loop_start_without_config", session_id=session_id)
            return False

        state = LoopState(
            session_id=session_id,
            interval=config.effective_interval(self._min_interval),
        )
        if previous is not None and previous.is_generating:
            state.is_generating = True
            state.guard_inherited = True
        state.task = asyncio.create_task(
            self._run_loop(state), name=f"subroutine_loop_{session_id}"
        )
        self._loops[session_id] = state
        log.info(
            "loop_started",
            session_id=session_id,
            interval=state.interval,
            trigger=config.trigger_label,
        )
        return True

    async def _disarm(self, session_id: str) -> LoopState | None:
        state = self._loops.pop(session_id, None)
        if state is None:
            return None
        state.stop_event.set()
        if state.task is not None and not state.task.done():
            state.task.cancel()
            try:
                await state.task
            except asyncio.CancelledError:
                pass
        state.task = None
        log.info("loop_stopped", session_id=session_id)
        return state

    async def _run_loop(self, state: LoopState) -> None:
        """Timer: one dispatch per elapsed interval until the stop event is set."""
        while not state.stop_event.is_set():
            try:
                await asyncio.wait_for(state.stop_event.wait(), timeout=state.interval)
                return
            except asyncio.TimeoutError:
                pass
            task = asyncio.create_task(
                self.on_tick(state.session_id), name=f"subroutine_tick_{state.session_id}"
            )
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    async def _emit_loop_state(self, session_id: str, running: bool) -> None:
        event = RuntimeEvent(
            type=EVENT_LOOP_STATE,
            topic=TOPIC_LOOPS,
            source="loop_registry",
            session_id=session_id,
            payload={"running": running},
        )
        await self._bus.emit(TOPIC_LOOPS, event.to_dict())
