"""SillyAgents — subroutine trigger and loop runtime.

A subroutine is a session that drives itself: on a timer, a trigger policy
decides whether to inject a heartbeat, run a generation, execute the tool
calls the model requested and generate again.  Loops survive restarts
through the persisted ``running`` flag.

Package structure
-----------------
subroutines/
  models.py        — SubroutineConfig, Turn, LoopState, CycleResult, ...
  store.py         — SessionStore contract, SQLite and in-memory stores
  collaborators.py — Generator / ToolInvoker contracts and HTTP adapters
  triggers.py      — TriggerEvaluator (time / tool / api policies)
  orchestrator.py  — GenerationOrchestrator (one heartbeat cycle)
  registry.py      — LoopRegistry (session → loop map, tick handler)
  reconciler.py    — Reconciler (config-changed / session-created)
  runtime.py       — SubroutineRuntime (composition root)
"""

from sillyagents.subroutines.collaborators import (
    Generator,
    HttpGenerator,
    HttpToolInvoker,
    ToolInvoker,
)
from sillyagents.subroutines.models import (
    CycleResult,
    GenerationOptions,
    GenerationResult,
    LoopHealth,
    LoopState,
    SessionInfo,
    SubroutineConfig,
    ToolCall,
    ToolResult,
    Transcript,
    TriggerType,
    Turn,
    default_config,
)
from sillyagents.subroutines.orchestrator import GenerationOrchestrator
from sillyagents.subroutines.reconciler import Reconciler
from sillyagents.subroutines.registry import LoopRegistry
from sillyagents.subroutines.runtime import SubroutineRuntime
from sillyagents.subroutines.store import InMemorySessionStore, SessionStore, SQLiteSessionStore
from sillyagents.subroutines.triggers import TriggerEvaluator

__all__ = [
    "CycleResult",
    "GenerationOptions",
    "GenerationResult",
    "LoopHealth",
    "LoopState",
    "SessionInfo",
    "SubroutineConfig",
    "ToolCall",
    "ToolResult",
    "Transcript",
    "TriggerType",
    "Turn",
    "default_config",
    "Generator",
    "ToolInvoker",
    "HttpGenerator",
    "HttpToolInvoker",
    "SessionStore",
    "InMemorySessionStore",
    "SQLiteSessionStore",
    "TriggerEvaluator",
    "GenerationOrchestrator",
    "LoopRegistry",
    "Reconciler",
    "SubroutineRuntime",
]
