"""TriggerEvaluator — decides, per tick, whether a subroutine cycle fires.

Policies
--------
time  Always fires.  No external call.
tool  Invokes ``toolName`` with no arguments and fires when the result text
      contains ``toolCondition`` (case-sensitive; an empty condition matches
      any successful result).  An error result does not fire.
api   GETs ``apiUrl`` and fires unless the trimmed, lower-cased body is one
      of the empty sentinels ``"" null none [] {}``.  A non-2xx status does
      not fire.

The evaluator fails closed: missing fields, unknown kinds, collaborator
errors and timeouts all yield ``False`` with a log entry.  It never raises
apart from task cancellation.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import httpx

from sillyagents.logging import get_logger
from sillyagents.subroutines.collaborators import ToolInvoker
from sillyagents.subroutines.models import SubroutineConfig, TriggerType

log = get_logger(__name__)

API_EMPTY_SENTINELS = frozenset({"", "null", "none", "[]", "{}"})


def api_body_has_content(body: str) -> bool:
    """True when an Api trigger response body counts as "something to do"."""
    return body.strip().lower() not in API_EMPTY_SENTINELS


class TriggerEvaluator:
    """Evaluates the trigger policy of a subroutine config.

    Usage::

        evaluator = TriggerEvaluator(tool_invoker, timeout=10.0)
        if await evaluator.evaluate(config):
            ...
    """

    def __init__(
        self,
        tool_invoker: ToolInvoker,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._tools = tool_invoker
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout = timeout
        self._policies: dict[TriggerType, Callable[[SubroutineConfig], Awaitable[bool]]] = {
            TriggerType.TIME: self._check_time,
            TriggerType.TOOL: self._check_tool,
            TriggerType.API: self._check_api,
        }

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    async def evaluate(self, config: SubroutineConfig) -> bool:
        policy = (
            self._policies.get(config.trigger_type)
            if isinstance(config.trigger_type, TriggerType)
            else None
        )
        if policy is None:
            log.warning("trigger_type_unknown", trigger_type=config.trigger_label)
            return False
        return await policy(config)

    # ---------------------------------------------------------------------------
    # Policies
    # ---------------------------------------------------------------------------

    async def _check_time(self, config: SubroutineConfig) -> bool:
        return True

    async def _check_tool(self, config: SubroutineConfig) -> bool:
        if not config.tool_name:
            log.warning("trigger_tool_name_missing")
            return False
        try:
            result = await asyncio.wait_for(
                self._tools.invoke(config.tool_name, {}), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            log.warning("trigger_tool_timeout", tool=config.tool_name, timeout=self._timeout)
            return False
        except Exception as exc:
            log.error("trigger_tool_failed", tool=config.tool_name, error=str(exc))
            return False

        if result.is_error:
            log.debug("trigger_tool_error_result", tool=config.tool_name, error=result.error)
            return False
        fired = config.tool_condition in result.as_text()
        log.debug("trigger_tool_evaluated", tool=config.tool_name, fired=fired)
        return fired

    async def _check_api(self, config: SubroutineConfig) -> bool:
        if not config.api_url:
            log.warning("trigger_api_url_missing")
            return False
        if self._http is None:
            self._http = httpx.AsyncClient(follow_redirects=True)
        try:
            response = await asyncio.wait_for(
                self._http.get(config.api_url, timeout=self._timeout),
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.text
        except (asyncio.TimeoutError, httpx.TimeoutException):
            log.warning("trigger_api_timeout", url=config.api_url, timeout=self._timeout)
            return False
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            log.error("trigger_api_failed", url=config.api_url, error=str(exc))
            return False

        fired = api_body_has_content(body)
        log.debug("trigger_api_evaluated", url=config.api_url, fired=fired)
        return fired
