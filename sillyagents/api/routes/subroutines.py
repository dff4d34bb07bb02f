"""API routes for subroutine management.

REST endpoints::

    GET    /subroutines                       — list subroutines + loop state
    POST   /subroutines                       — create a running subroutine
    GET    /subroutines/{session_id}          — config + live loop snapshot
    PATCH  /subroutines/{session_id}          — partial config update
    PUT    /subroutines/{session_id}/start    — set running=true
    PUT    /subroutines/{session_id}/stop     — set running=false
    DELETE /subroutines/{session_id}          — remove the subroutine config
    GET    /subroutines/{session_id}/transcript — transcript turns

Every edit goes through the runtime, which persists the config and emits
``config-changed``; the loop follows through the Reconciler.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query

from sillyagents.api.dependencies import AuthDep, RuntimeDep
from sillyagents.api.schemas import (
    CreateSubroutineRequest,
    LoopStatus,
    SubroutineDetail,
    SubroutineSummary,
    TranscriptResponse,
    TurnResponse,
)
from sillyagents.exceptions import SessionNotFoundError
from sillyagents.subroutines.runtime import SubroutineRuntime

router = APIRouter(prefix="/subroutines", tags=["subroutines"])


async def _detail(runtime: SubroutineRuntime, session_id: str) -> SubroutineDetail:
    session = await runtime.store.get_session(session_id)
    config = session.config if session is not None else None
    if session is None or config is None:
        raise SessionNotFoundError(session_id)
    state = runtime.registry.get_state(session_id)
    return SubroutineDetail(
        session_id=session.session_id,
        name=session.name,
        config=config.to_dict(),
        loop=LoopStatus(**state.to_dict()) if state is not None else None,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=list[SubroutineSummary])
async def list_subroutines(runtime: RuntimeDep, _auth: AuthDep) -> list[SubroutineSummary]:
    """List every session flagged as a subroutine."""
    results = []
    for session in await runtime.store.list_sessions():
        config = session.config
        if config is None:
            continue
        results.append(
            SubroutineSummary(
                session_id=session.session_id,
                name=session.name,
                trigger_type=config.trigger_label,
                interval_seconds=config.interval_seconds,
                running=config.running,
                active=runtime.registry.is_running(session.session_id),
                color=config.color,
            )
        )
    return results


@router.post("", status_code=201, response_model=SubroutineDetail)
async def create_subroutine(
    body: CreateSubroutineRequest,
    runtime: RuntimeDep,
    _auth: AuthDep,
) -> SubroutineDetail:
    """Create a session with the default config (running) plus overrides."""
    session = await runtime.create_subroutine(body.name, **body.config)
    return await _detail(runtime, session.session_id)


@router.get("/{session_id}", response_model=SubroutineDetail)
async def get_subroutine(session_id: str, runtime: RuntimeDep, _auth: AuthDep) -> SubroutineDetail:
    return await _detail(runtime, session_id)


@router.patch("/{session_id}", response_model=SubroutineDetail)
async def update_subroutine(
    session_id: str,
    runtime: RuntimeDep,
    _auth: AuthDep,
    changes: dict[str, Any] = Body(..., description="Config fields to change (camelCase keys)."),
) -> SubroutineDetail:
    """Apply a partial config update and notify the Reconciler."""
    await runtime.update_config(session_id, **changes)
    return await _detail(runtime, session_id)


@router.put("/{session_id}/start", response_model=SubroutineDetail)
async def start_subroutine(session_id: str, runtime: RuntimeDep, _auth: AuthDep) -> SubroutineDetail:
    await runtime.set_running(session_id, True)
    return await _detail(runtime, session_id)


@router.put("/{session_id}/stop", response_model=SubroutineDetail)
async def stop_subroutine(session_id: str, runtime: RuntimeDep, _auth: AuthDep) -> SubroutineDetail:
    await runtime.set_running(session_id, False)
    return await _detail(runtime, session_id)


@router.delete("/{session_id}", status_code=204, response_model=None)
async def delete_subroutine(
    session_id: str,
    runtime: RuntimeDep,
    _auth: AuthDep,
    delete_session: bool = False,
) -> None:
    """Remove the subroutine config; ``delete_session=true`` also drops the session."""
    await runtime.delete_subroutine(session_id, delete_session=delete_session)


@router.get("/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    session_id: str,
    runtime: RuntimeDep,
    _auth: AuthDep,
    limit: int | None = Query(None, ge=1),
) -> TranscriptResponse:
    """Return the transcript, optionally only the last *limit* turns."""
    transcript = await runtime.store.load_transcript(session_id)
    turns = transcript.turns[-limit:] if limit else transcript.turns
    return TranscriptResponse(
        session_id=session_id,
        turns=[TurnResponse(**t.to_dict()) for t in turns],
        count=len(transcript),
    )
