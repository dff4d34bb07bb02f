"""Reconciler — converges the LoopRegistry to the persisted ``running`` flags.

Inbound notifications on ``sillyagents.sessions``:

    config-changed   {session_id}  → on_config_changed()
    session-created  {session_id}  → on_session_created()

Decision table for a config change:

    config missing or running=False  → stop_loop
    running=True, no active loop     → start_loop
    running=True, loop active        → restart_loop (picks up interval edits)
"""

from __future__ import annotations

import asyncio
from typing import Any

from sillyagents.events.bus import EVENT_CONFIG_CHANGED, EVENT_SESSION_CREATED, TOPIC_SESSIONS
from sillyagents.events.router import EventRouter
from sillyagents.exceptions import SessionStoreError
from sillyagents.logging import get_logger
from sillyagents.subroutines.registry import LoopRegistry
from sillyagents.subroutines.store import SessionStore

log = get_logger(__name__)


class Reconciler:
    def __init__(
        self,
        store: SessionStore,
        registry: LoopRegistry,
        settle_delay_seconds: float = 0.1,
        settle_attempts: int = 3,
    ) -> None:
        self._store = store
        self._registry = registry
        self._settle_delay = settle_delay_seconds
        self._settle_attempts = max(1, settle_attempts)

    def attach(self, router: EventRouter) -> None:
        router.add_route(TOPIC_SESSIONS, self.handle_event)

    def detach(self, router: EventRouter) -> None:
        router.remove_route(TOPIC_SESSIONS, self.handle_event)

    async def handle_event(self, topic: str, event: dict[str, Any]) -> None:
        """Dispatch one inbound notification by its ``event`` field."""
        session_id = event.get("session_id")
        if not session_id:
            log.warning("reconcile_event_without_session", topic=topic, event_type=event.get("event"))
            return
        event_type = event.get("event")
        if event_type == EVENT_CONFIG_CHANGED:
            await self.on_config_changed(session_id)
        elif event_type == EVENT_SESSION_CREATED:
            await self.on_session_created(session_id)
        else:
            log.debug("reconcile_event_ignored", topic=topic, event_type=event_type)

    # ---------------------------------------------------------------------------
    # Handlers
    # ---------------------------------------------------------------------------

    async def on_config_changed(self, session_id: str) -> None:
        try:
            config = await self._store.get_config(session_id)
        except SessionStoreError as exc:
            log.error("reconcile_config_read_failed", session_id=session_id, error=str(exc))
            return

        if config is None or not config.running:
            await self._registry.stop_loop(session_id)
        elif self._registry.is_running(session_id):
            await self._registry.restart_loop(session_id)
        else:
            await self._registry.start_loop(session_id)

    async def on_session_created(self, session_id: str) -> None:
        """Start the loop of a new session once its config is visible.

        The creator may still be writing the config when the notification
        arrives, so reads are retried with a doubling delay.
        """
        delay = self._settle_delay
        for attempt in range(1, self._settle_attempts + 1):
            await asyncio.sleep(delay)
            try:
                config = await self._store.get_config(session_id)
            except SessionStoreError as exc:
                log.error("reconcile_config_read_failed", session_id=session_id, error=str(exc))
                return
            if config is not None:
                if config.running:
                    await self._registry.start_loop(session_id)
                return
            log.debug("reconcile_config_not_visible", session_id=session_id, attempt=attempt)
            delay *= 2
        log.info("reconcile_session_not_subroutine", session_id=session_id)

    async def resync(self) -> None:
        """Reconcile every known session once, plus any orphaned loop."""
        sessions = await self._store.list_sessions()
        known = {s.session_id for s in sessions}
        for session in sessions:
            config = session.config
            running = config is not None and config.running
            state = self._registry.get_state(session.session_id)
            if running and state is None:
                await self._registry.start_loop(session.session_id)
            elif not running and state is not None:
                await self._registry.stop_loop(session.session_id)
            elif (
                state is not None
                and config is not None
                and state.interval != config.effective_interval(self._registry.min_interval)
            ):
                await self._registry.restart_loop(session.session_id)
        for session_id in self._registry.active_sessions():
            if session_id not in known:
                await self._registry.stop_loop(session_id)
