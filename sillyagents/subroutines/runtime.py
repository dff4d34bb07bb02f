"""SubroutineRuntime — composition root of the subroutine runtime.

SubroutineRuntime wires the TriggerEvaluator, GenerationOrchestrator,
LoopRegistry and Reconciler around the injected collaborators and gives
them an explicit lifecycle:

1. ``start()``  attaches the Reconciler to the event router, resumes every
   persisted ``running=True`` loop and starts the periodic resync sweep.
2. ``stop()``   cancels the sweep and drains in-flight cycles for a bounded
   grace period.

It also hosts the caller-side operations that edit configs and notify the
Reconciler (create / update / start / stop / delete), and the finish-tool
convention: a cycle that executed the configured finish tool flips the
subroutine to ``running=False``.

Startup in server.py::

    runtime = SubroutineRuntime(
        store=store,
        generator=HttpGenerator(settings.generation.base_url),
        tool_invoker=HttpToolInvoker(settings.tools.base_url),
        event_bus=EventRouter(fallback=LogEventBus(settings.events.log_file)),
        config=settings.runtime,
    )
    await runtime.start()
    app.state.runtime = runtime
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from sillyagents.config import RuntimeConfig
from sillyagents.events.bus import (
    EVENT_CONFIG_CHANGED,
    EVENT_CYCLE_COMPLETED,
    EVENT_SESSION_CREATED,
    TOPIC_CYCLES,
    TOPIC_SESSIONS,
)
from sillyagents.events.models import RuntimeEvent
from sillyagents.events.router import EventRouter
from sillyagents.exceptions import (
    ConfigurationError,
    SessionNotFoundError,
    SillyAgentsError,
)
from sillyagents.logging import get_logger
from sillyagents.subroutines.collaborators import Generator, ToolInvoker
from sillyagents.subroutines.models import (
    CycleResult,
    SessionInfo,
    SubroutineConfig,
    default_config,
)
from sillyagents.subroutines.orchestrator import GenerationOrchestrator
from sillyagents.subroutines.reconciler import Reconciler
from sillyagents.subroutines.registry import LoopRegistry
from sillyagents.subroutines.store import SessionStore
from sillyagents.subroutines.triggers import TriggerEvaluator

log = get_logger(__name__)


class SubroutineRuntime:
    """Long-lived runtime object (same lifetime as the daemon).

    Must be started with ``await runtime.start()`` and stopped with
    ``await runtime.stop()``.
    """

    def __init__(
        self,
        store: SessionStore,
        generator: Generator,
        tool_invoker: ToolInvoker,
        event_bus: EventRouter | None = None,
        config: RuntimeConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or RuntimeConfig()
        self.store = store
        self.bus = event_bus or EventRouter()

        self.evaluator = TriggerEvaluator(
            tool_invoker,
            http_client=http_client,
            timeout=self._config.trigger_timeout_seconds,
        )
        self.orchestrator = GenerationOrchestrator(
            store, generator, tool_invoker, user_name=self._config.user_name
        )
        self.registry = LoopRegistry(
            store,
            self.orchestrator,
            self.evaluator,
            event_bus=self.bus,
            min_interval_seconds=self._config.min_interval_seconds,
            on_cycle_complete=self._on_cycle_complete,
        )
        self.reconciler = Reconciler(
            store,
            self.registry,
            settle_delay_seconds=self._config.settle_delay_seconds,
            settle_attempts=self._config.settle_attempts,
        )

        self._resync_task: asyncio.Task[None] | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        self.reconciler.attach(self.bus)
        resumed = await self.registry.resume_all()

        if self._config.resync_interval_seconds > 0:
            self._resync_task = asyncio.create_task(
                self._resync_loop(), name="subroutine_resync"
            )
        log.info(
            "subroutine_runtime_started",
            resumed=resumed,
            resync_interval=self._config.resync_interval_seconds,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False

        if self._resync_task and not self._resync_task.done():
            self._resync_task.cancel()
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass
        self._resync_task = None

        self.reconciler.detach(self.bus)
        await self.registry.shutdown(self._config.shutdown_grace_seconds)
        await self.evaluator.aclose()
        log.info("subroutine_runtime_stopped")

    # ---------------------------------------------------------------------------
    # Subroutine management
    # ---------------------------------------------------------------------------

    async def create_subroutine(self, name: str, /, **overrides: Any) -> SessionInfo:
        """Create a session flagged as a running subroutine.

        *overrides* may use attribute names (``interval_seconds``) or
        persisted keys (``intervalSeconds``).
        """
        config = self._apply(default_config(running=True), overrides, name)
        session = await self.store.create_session(name)
        await self.store.set_config(session.session_id, config)
        log.info(
            "subroutine_created",
            session_id=session.session_id,
            name=name,
            trigger=config.trigger_label,
        )
        await self._emit(TOPIC_SESSIONS, EVENT_SESSION_CREATED, session.session_id)
        created = await self.store.get_session(session.session_id)
        return created or session

    async def get_config(self, session_id: str) -> SubroutineConfig:
        """Return the config of *session_id*.

        Raises:
            SessionNotFoundError: No such session, or it is not a subroutine.
        """
        config = await self.store.get_config(session_id)
        if config is None:
            raise SessionNotFoundError(session_id)
        return config

    async def update_config(self, session_id: str, /, **changes: Any) -> SubroutineConfig:
        """Read-modify-write the config, then notify the Reconciler."""
        current = await self.get_config(session_id)
        updated = self._apply(current, changes, session_id)
        await self.store.set_config(session_id, updated)
        log.info("subroutine_config_updated", session_id=session_id, fields=sorted(changes))
        await self._emit(TOPIC_SESSIONS, EVENT_CONFIG_CHANGED, session_id)
        return updated

    async def set_running(self, session_id: str, running: bool) -> SubroutineConfig:
        return await self.update_config(session_id, running=running)

    async def delete_subroutine(self, session_id: str, delete_session: bool = False) -> None:
        """Remove the config block (the loop stops via the Reconciler).

        With *delete_session* the session and its transcript go as well.
        """
        await self.get_config(session_id)
        await self.store.set_config(session_id, None)
        await self._emit(TOPIC_SESSIONS, EVENT_CONFIG_CHANGED, session_id)
        if delete_session:
            await self.store.delete_session(session_id)
        log.info("subroutine_deleted", session_id=session_id, session_deleted=delete_session)

    # ---------------------------------------------------------------------------
    # Internal
    # ---------------------------------------------------------------------------

    @staticmethod
    def _apply(
        base: SubroutineConfig, changes: dict[str, Any], subject: str
    ) -> SubroutineConfig:
        try:
            config = base.with_changes(changes)
        except KeyError as exc:
            raise ConfigurationError(subject, [str(exc.args[0])]) from exc
        problems = config.validate()
        if problems:
            # Stored as-is; the evaluator fails closed on incomplete configs.
            log.warning("subroutine_config_incomplete", subject=subject, problems=problems)
        return config

    async def _on_cycle_complete(
        self, session_id: str, config: SubroutineConfig, result: CycleResult
    ) -> None:
        await self._emit(TOPIC_CYCLES, EVENT_CYCLE_COMPLETED, session_id, result.to_dict())

        finish = self._config.finish_tool_name
        if not finish or finish not in result.tool_calls:
            return
        log.info("finish_tool_called", session_id=session_id, tool=finish)
        try:
            await self.set_running(session_id, False)
        except SillyAgentsError as exc:
            log.error("finish_tool_stop_failed", session_id=session_id, error=exc.message)

    async def _emit(
        self,
        topic: str,
        event_type: str,
        session_id: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        event = RuntimeEvent(
            type=event_type,
            topic=topic,
            source="runtime",
            session_id=session_id,
            payload=payload or {},
        )
        await self.bus.emit(topic, event.to_dict())

    async def _resync_loop(self) -> None:
        """Periodically converge loops to configs edited outside this process."""
        while True:
            try:
                await asyncio.sleep(self._config.resync_interval_seconds)
                await self.reconciler.resync()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error("subroutine_resync_error", error=str(exc))
