"""Generation orchestrator — runs one heartbeat cycle of a subroutine.

A cycle:
  1. Load the transcript (fails the cycle if the session is gone)
  2. Append + persist the heartbeat turn
  3. Generate
  4. If the model requested tools:
     a. invoke each tool in order (a failure becomes an error result)
     b. append + persist one tool turn per call
     c. generate again; that result is the final result
  5. If ``autoQueue`` is set and the final result requested no tools:
     append + persist the continuation turn and generate once more
     (that generation's result is not inspected)

Every append is awaited before the next step, so the transcript order
matches the order of events.  The orchestrator never changes
``config.running``; stopping a subroutine is the caller's decision.
"""

from __future__ import annotations

import time

from sillyagents.logging import bind_session_context, get_logger
from sillyagents.subroutines.collaborators import Generator, ToolInvoker
from sillyagents.subroutines.models import (
    DEFAULT_AUTO_QUEUE_PROMPT,
    DEFAULT_HEARTBEAT_MESSAGE,
    CycleResult,
    GenerationOptions,
    GenerationResult,
    SubroutineConfig,
    ToolCall,
    ToolResult,
    Turn,
)
from sillyagents.subroutines.store import SessionStore

log = get_logger(__name__)


class GenerationOrchestrator:
    """Drives the heartbeat → generate → tools → regenerate cycle."""

    def __init__(
        self,
        store: SessionStore,
        generator: Generator,
        tool_invoker: ToolInvoker,
        user_name: str = "User",
    ) -> None:
        self._store = store
        self._generator = generator
        self._tools = tool_invoker
        self._user_name = user_name

    async def run_cycle(self, session_id: str, config: SubroutineConfig) -> CycleResult:
        """Run one cycle.  Never raises; failures are recorded on the result."""
        result = CycleResult(session_id=session_id)
        bind_session_context(session_id=session_id, cycle_id=result.cycle_id)
        log.info("cycle_started", trigger=config.trigger_label)
        try:
            await self._run(session_id, config, result)
        except Exception as exc:
            result.error = str(exc)
            log.error("cycle_failed", error=str(exc), error_type=type(exc).__name__)
        finally:
            result.finished_at = time.time()

        if result.succeeded:
            log.info(
                "cycle_completed",
                generations=result.generations,
                tool_calls=result.tool_calls,
                continued=result.continued,
                duration_ms=round(result.duration_ms, 1),
            )
        return result

    # ---------------------------------------------------------------------------
    # Steps
    # ---------------------------------------------------------------------------

    async def _run(self, session_id: str, config: SubroutineConfig, result: CycleResult) -> None:
        await self._store.load_transcript(session_id)

        heartbeat = Turn.heartbeat(
            config.heartbeat_message or DEFAULT_HEARTBEAT_MESSAGE, self._user_name
        )
        await self._append(session_id, heartbeat, result)

        options = config.generation_options()
        final = await self._generate(session_id, options, result)

        if final.has_tool_calls:
            for call in final.tool_calls:
                tool_result = await self._invoke(call)
                result.tool_calls.append(call.name)
                await self._append(session_id, Turn.tool_result(call, tool_result), result)
            final = await self._generate(session_id, options, result)

        if config.auto_queue and not final.has_tool_calls:
            continuation = Turn.continuation(
                config.auto_queue_prompt or DEFAULT_AUTO_QUEUE_PROMPT, self._user_name
            )
            await self._append(session_id, continuation, result)
            result.continued = True
            await self._generate(session_id, options, result)

    async def _append(self, session_id: str, turn: Turn, result: CycleResult) -> None:
        await self._store.append_and_save(session_id, turn)
        result.turns_appended += 1

    async def _generate(
        self, session_id: str, options: GenerationOptions, result: CycleResult
    ) -> GenerationResult:
        generated = await self._generator.generate(session_id, options)
        result.generations += 1
        return generated

    async def _invoke(self, call: ToolCall) -> ToolResult:
        try:
            return await self._tools.invoke(call.name, call.arguments)
        except Exception as exc:
            log.warning("cycle_tool_failed", tool=call.name, error=str(exc))
            return ToolResult.failure(f"Error: {exc}")
