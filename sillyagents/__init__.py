"""SillyAgents — self-driving chat sessions ("subroutines").

A subroutine is a session that keeps itself going: on a schedule, a trigger
policy decides whether to inject a heartbeat turn, run a generation,
execute any tool calls the model made and generate again.

Layers (bottom to top):
    1. Runtime   — trigger evaluator, generation orchestrator, loop registry,
                   reconciler (``sillyagents.subroutines``)
    2. Events    — notification bus and router (``sillyagents.events``)
    3. API/CLI   — FastAPI control daemon and typer CLI
"""

__version__ = "0.1.0"
__author__ = "SillyAgents Contributors"

__all__ = ["__version__"]
