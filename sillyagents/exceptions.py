"""SillyAgents — Exception hierarchy.

All exceptions raised by the runtime inherit from SillyAgentsError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    SillyAgentsError
    ├── ConfigurationError
    ├── SessionStoreError
    │   └── SessionNotFoundError
    └── CollaboratorError
        ├── GenerationError
        └── ToolInvocationError

None of these ever escape a loop tick: the registry and the orchestrator
catch them at the boundary of the cycle they occur in.
"""

from __future__ import annotations

from typing import Any


class SillyAgentsError(Exception):
    """Base exception for all SillyAgents errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(SillyAgentsError):
    """A subroutine config is missing fields its trigger type requires."""

    def __init__(self, session_id: str, problems: list[str]) -> None:
        super().__init__(
            f"Invalid subroutine config for '{session_id}': {'; '.join(problems)}",
            context={"session_id": session_id, "problems": problems},
        )
        self.session_id = session_id
        self.problems = problems


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class SessionStoreError(SillyAgentsError):
    """Loading or persisting session data failed."""


class SessionNotFoundError(SessionStoreError):
    """No session with the given identifier exists."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session '{session_id}' not found",
            context={"session_id": session_id},
        )
        self.session_id = session_id


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class CollaboratorError(SillyAgentsError):
    """Base for failures reported by the generation or tool services."""


class GenerationError(CollaboratorError):
    """The generation collaborator failed to produce a result."""

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(
            f"Generation failed for session '{session_id}': {reason}",
            context={"session_id": session_id, "reason": reason},
        )
        self.session_id = session_id
        self.reason = reason


class ToolInvocationError(CollaboratorError):
    """A tool could not be reached or its response could not be decoded."""

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(
            f"Tool '{tool_name}' failed: {reason}",
            context={"tool_name": tool_name, "reason": reason},
        )
        self.tool_name = tool_name
        self.reason = reason
