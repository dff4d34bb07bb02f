"""GET /health — daemon health with live loop counts."""

from __future__ import annotations

import time

from fastapi import APIRouter

from sillyagents import __version__
from sillyagents.api.dependencies import RuntimeDep
from sillyagents.api.schemas import HealthResponse

router = APIRouter(tags=["health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Daemon health check")
async def health(runtime: RuntimeDep) -> HealthResponse:
    return HealthResponse(
        status="ok" if runtime.started else "starting",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        active_loops=len(runtime.registry.active_sessions()),
        in_flight_cycles=runtime.registry.in_flight,
    )
