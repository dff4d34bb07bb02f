"""API layer — FastAPI application factory.

``create_app()`` is the single entry point for building the FastAPI app.
All dependencies are wired here so that tests can override them by
calling ``create_app()`` with custom objects.
"""

from __future__ import annotations

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sillyagents import __version__
from sillyagents.api.middleware import (
    AccessLogMiddleware,
    RequestIDMiddleware,
    build_error_handler,
)
from sillyagents.api.routes import health, subroutines
from sillyagents.config import Settings, get_settings
from sillyagents.events.bus import EventBus, LogEventBus, NullEventBus
from sillyagents.events.router import EventRouter
from sillyagents.exceptions import SillyAgentsError
from sillyagents.logging import configure_logging, get_logger
from sillyagents.subroutines.collaborators import (
    Generator,
    HttpGenerator,
    HttpToolInvoker,
    ToolInvoker,
    UnconfiguredGenerator,
    UnconfiguredToolInvoker,
)
from sillyagents.subroutines.runtime import SubroutineRuntime
from sillyagents.subroutines.store import SessionStore, SQLiteSessionStore

log = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    generator: Generator | None = None,
    tool_invoker: ToolInvoker | None = None,
    store: SessionStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings:     Optional settings override (used in tests).
        generator:    Generation collaborator; defaults to ``HttpGenerator``
                      when ``generation.base_url`` is set.
        tool_invoker: Tool collaborator; defaults to ``HttpToolInvoker`` when
                      ``tools.base_url`` is set.
        store:        Ready-to-use session store; defaults to SQLite at
                      ``store.db_path`` (opened on startup, closed on shutdown).
        http_client:  Client used by the Api trigger.

    Returns:
        A fully configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

    app = FastAPI(
        title="SillyAgents",
        description="Control daemon for self-driving chat sessions (subroutines).",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.runtime = None

    # Middleware (order matters: outermost applied last)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost", "http://127.0.0.1"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(SillyAgentsError, build_error_handler())  # type: ignore[arg-type]

    # Routers
    app.include_router(health.router)
    app.include_router(subroutines.router)

    # Startup / shutdown lifecycle
    @app.on_event("startup")
    async def startup() -> None:
        log.info("daemon_starting", version=__version__)

        session_store = store
        if session_store is None:
            session_store = SQLiteSessionStore(settings.store.db_path)
            await session_store.init()
            app.state.owned_store = session_store

        gen = generator
        if gen is None:
            if settings.generation.base_url:
                gen = HttpGenerator(
                    settings.generation.base_url, timeout=settings.generation.timeout_seconds
                )
            else:
                log.warning("generation_service_not_configured")
                gen = UnconfiguredGenerator()
            app.state.owned_generator = gen

        tools = tool_invoker
        if tools is None:
            if settings.tools.base_url:
                tools = HttpToolInvoker(
                    settings.tools.base_url, timeout=settings.tools.timeout_seconds
                )
            else:
                log.warning("tool_service_not_configured")
                tools = UnconfiguredToolInvoker()
            app.state.owned_tool_invoker = tools

        # Inbound notifications reach the Reconciler; everything else is logged.
        fallback: EventBus = (
            LogEventBus(settings.events.log_file) if settings.events.log_file else NullEventBus()
        )
        event_bus = EventRouter(fallback=fallback)

        runtime = SubroutineRuntime(
            store=session_store,
            generator=gen,
            tool_invoker=tools,
            event_bus=event_bus,
            config=settings.runtime,
            http_client=http_client,
        )
        await runtime.start()
        app.state.runtime = runtime
        log.info(
            "daemon_started",
            host=settings.server.host,
            port=settings.server.port,
            active_loops=len(runtime.registry.active_sessions()),
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("daemon_stopping")
        if app.state.runtime is not None:
            await app.state.runtime.stop()
            app.state.runtime = None
        if getattr(app.state, "owned_generator", None) is not None:
            await app.state.owned_generator.aclose()
        if getattr(app.state, "owned_tool_invoker", None) is not None:
            await app.state.owned_tool_invoker.aclose()
        if getattr(app.state, "owned_store", None) is not None:
            await app.state.owned_store.close()

    return app
