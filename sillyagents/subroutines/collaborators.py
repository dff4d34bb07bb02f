"""Generation and tool-invocation contracts, plus their HTTP adapters.

The runtime does not build prompts or know tool schemas.  It hands a
session id and the forwarded generation flags to a ``Generator`` and gets
back any tool calls the model made; it hands a tool name and arguments to a
``ToolInvoker`` and gets back a ``ToolResult``.

HTTP wire formats
-----------------
Generation::

    POST {base_url}/generate
    {"session_id": "...", "options": {"useSummary": false, ...}}
    → {"text": "...", "tool_calls": [{"name": "...", "arguments": {...}, "id": "..."}]}

``arguments`` may also arrive as a JSON-encoded string.

Tool invocation::

    POST {base_url}/tools/{name}/invoke
    {"arguments": {...}}
    → {"result": <any>}   or   {"error": "..."}

A non-2xx status is an error result.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from sillyagents.exceptions import GenerationError, ToolInvocationError
from sillyagents.logging import get_logger
from sillyagents.subroutines.models import GenerationOptions, GenerationResult, ToolResult

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class Generator(ABC):
    """Runs one model generation over a session's current transcript."""

    @abstractmethod
    async def generate(self, session_id: str, options: GenerationOptions) -> GenerationResult:
        """Generate and return the tool calls the model requested (may be none).

        Raises:
            GenerationError: The service failed to produce a result.
        """

    async def aclose(self) -> None:
        """Release resources.  No-op by default."""


class ToolInvoker(ABC):
    """Executes a named tool."""

    @abstractmethod
    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run *name* with *arguments*.

        Tool-level failures come back as ``ToolResult(error=...)``.  Transport
        failures may raise ``ToolInvocationError``.
        """

    async def aclose(self) -> None:
        """Release resources.  No-op by default."""


# ---------------------------------------------------------------------------
# Unconfigured placeholders
# ---------------------------------------------------------------------------


class UnconfiguredGenerator(Generator):
    """Used when no generation service is configured: every call fails."""

    async def generate(self, session_id: str, options: GenerationOptions) -> GenerationResult:
        raise GenerationError(session_id, "no generation service configured")


class UnconfiguredToolInvoker(ToolInvoker):
    """Used when no tool service is configured: every call is an error result."""

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        return ToolResult.failure(f"Tool '{name}' unavailable: no tool service configured")


# ---------------------------------------------------------------------------
# HTTP adapters
# ---------------------------------------------------------------------------


class _HttpAdapter:
    """Shared client ownership for the HTTP adapters.

    A caller-supplied client is borrowed and never closed here; otherwise one
    client is created on first use and closed by ``aclose()``.
    """

    def __init__(self, base_url: str, timeout: float, client: httpx.AsyncClient | None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class HttpGenerator(_HttpAdapter, Generator):
    """Delegates generation to an external HTTP service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, timeout, client)

    async def generate(self, session_id: str, options: GenerationOptions) -> GenerationResult:
        url = f"{self._base_url}/generate"
        try:
            response = await self._get_client().post(
                url,
                json={"session_id": session_id, "options": options.to_dict()},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise GenerationError(session_id, f"timed out after {self._timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise GenerationError(
                session_id, f"HTTP {exc.response.status_code} from {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(session_id, f"request failed: {exc}") from exc
        except ValueError as exc:
            raise GenerationError(session_id, f"invalid JSON response: {exc}") from exc

        if not isinstance(body, dict):
            raise GenerationError(session_id, "response body is not a JSON object")
        result = GenerationResult.from_dict(body)
        log.debug(
            "generation_completed",
            session_id=session_id,
            tool_calls=[c.name for c in result.tool_calls],
        )
        return result


class HttpToolInvoker(_HttpAdapter, ToolInvoker):
    """Delegates tool execution to an external HTTP service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, timeout, client)

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        url = f"{self._base_url}/tools/{name}/invoke"
        try:
            response = await self._get_client().post(
                url, json={"arguments": arguments}, timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            raise ToolInvocationError(name, f"timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ToolInvocationError(name, f"request failed: {exc}") from exc

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if not response.is_success:
            detail = body.get("error") if isinstance(body, dict) else body
            return ToolResult.failure(f"HTTP {response.status_code}: {detail or response.reason_phrase}")
        if isinstance(body, dict):
            if body.get("error") is not None:
                return ToolResult.failure(str(body["error"]))
            if "result" in body:
                return ToolResult(output=body["result"])
        return ToolResult(output=body)
