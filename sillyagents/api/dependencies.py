"""API layer — FastAPI dependency injection.

The runtime and the settings are created once at startup and injected via
FastAPI's dependency system.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from sillyagents.config import Settings
from sillyagents.subroutines.runtime import SubroutineRuntime

HEADER_API_TOKEN = "X-SillyAgents-Token"


def get_runtime(request: Request) -> SubroutineRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subroutine runtime is not running.",
        )
    return runtime  # type: ignore[no-any-return]


def get_config(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


async def verify_api_token(
    request: Request,
    x_sillyagents_token: Annotated[str | None, Header(alias=HEADER_API_TOKEN)] = None,
) -> None:
    """Verify the API token if one is configured."""
    settings: Settings = request.app.state.settings
    expected = settings.server.api_token

    if expected is None:
        return  # No auth configured: local-only mode.

    if x_sillyagents_token != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Shorthand type aliases for route signatures.
RuntimeDep = Annotated[SubroutineRuntime, Depends(get_runtime)]
ConfigDep = Annotated[Settings, Depends(get_config)]
AuthDep = Annotated[None, Depends(verify_api_token)]
