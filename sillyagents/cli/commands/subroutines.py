"""CLI — Subroutine management commands.

All commands talk to a running daemon over its HTTP API.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

app = typer.Typer(help="Create, inspect, start and stop subroutines.")
console = Console()

_TOKEN_HEADER = "X-SillyAgents-Token"


def _client(host: str, port: int, token: str | None = None) -> "httpx.Client":
    import httpx

    headers = {_TOKEN_HEADER: token} if token else {}
    return httpx.Client(base_url=f"http://{host}:{port}", timeout=30.0, headers=headers)


def _request(
    method: str,
    path: str,
    host: str,
    port: int,
    token: str | None,
    **kwargs: Any,
) -> Any:
    """Send one request; print the error and exit 1 on failure."""
    try:
        with _client(host, port, token) as client:
            resp = getattr(client, method)(path, **kwargs)
            resp.raise_for_status()
            if resp.status_code == 204:
                return None
            return resp.json()
    except Exception as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)


def _parse_assignment(raw: str) -> tuple[str, Any]:
    """``key=value`` → (key, value); the value is JSON-decoded when possible."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"Expected key=value, got {raw!r}")
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def _print_detail(data: dict[str, Any]) -> None:
    table = Table(title=f"Subroutine {data['session_id']} — {data['name']}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in data["config"].items():
        table.add_row(key, str(value))
    loop = data.get("loop")
    if loop:
        table.add_row("loop.interval", str(loop["interval"]))
        table.add_row("loop.ticks", str(loop["ticks"]))
        table.add_row("loop.fires", str(loop["fires"]))
        table.add_row("loop.last_error", str(loop.get("last_error")))
    else:
        table.add_row("loop", "[dim]inactive[/dim]")
    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("list")
def list_subroutines(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
) -> None:
    """List every subroutine and whether its loop is active."""
    data = _request("get", "/subroutines", host, port, token)

    table = Table(title="Subroutines")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Trigger")
    table.add_column("Interval")
    table.add_column("Running")
    table.add_column("Loop")
    for item in data:
        table.add_row(
            item["session_id"],
            item["name"],
            item["trigger_type"],
            f"{item['interval_seconds']}s",
            "yes" if item["running"] else "no",
            "[green]active[/green]" if item["active"] else "[dim]idle[/dim]",
        )
    console.print(table)


@app.command("create")
def create_subroutine(
    name: str = typer.Argument(help="Display name of the new subroutine."),
    trigger: str = typer.Option("time", help="Trigger type: time, tool or api."),
    interval: int | None = typer.Option(None, help="Polling interval in seconds (min 5)."),
    tool_name: str | None = typer.Option(None, help="Tool polled by the tool trigger."),
    tool_condition: str | None = typer.Option(None, help="Substring the tool result must contain."),
    api_url: str | None = typer.Option(None, help="URL polled by the api trigger."),
    auto_queue: bool = typer.Option(False, "--auto-queue", help="Re-prompt when no tool was called."),
    heartbeat: str | None = typer.Option(None, help="Heartbeat message body."),
    stopped: bool = typer.Option(False, "--stopped", help="Create with running=false."),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
) -> None:
    """Create a subroutine (running unless --stopped)."""
    config: dict[str, Any] = {"triggerType": trigger, "autoQueue": auto_queue}
    optional = {
        "intervalSeconds": interval,
        "toolName": tool_name,
        "toolCondition": tool_condition,
        "apiUrl": api_url,
        "heartbeatMessage": heartbeat,
    }
    config.update({k: v for k, v in optional.items() if v is not None})
    if stopped:
        config["running"] = False

    data = _request(
        "post", "/subroutines", host, port, token, json={"name": name, "config": config}
    )
    console.print(f"[green]Subroutine created:[/green] {data['session_id']}")


@app.command("show")
def show_subroutine(
    session_id: str = typer.Argument(),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """Show the config and live loop state of a subroutine."""
    data = _request("get", f"/subroutines/{session_id}", host, port, token)
    if json_output:
        console.print(Syntax(json.dumps(data, indent=2), "json"))
        return
    _print_detail(data)


@app.command("start")
def start_subroutine(
    session_id: str = typer.Argument(),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
) -> None:
    """Set running=true."""
    _request("put", f"/subroutines/{session_id}/start", host, port, token)
    console.print(f"[green]Started:[/green] {session_id}")


@app.command("stop")
def stop_subroutine(
    session_id: str = typer.Argument(),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
) -> None:
    """Set running=false."""
    _request("put", f"/subroutines/{session_id}/stop", host, port, token)
    console.print(f"[yellow]Stopped:[/yellow] {session_id}")


@app.command("set")
def set_fields(
    session_id: str = typer.Argument(),
    assignments: list[str] = typer.Argument(help="Config fields as key=value (camelCase keys)."),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
) -> None:
    """Change config fields, e.g. ``set <id> intervalSeconds=60 autoQueue=true``."""
    changes = dict(_parse_assignment(a) for a in assignments)
    data = _request("patch", f"/subroutines/{session_id}", host, port, token, json=changes)
    _print_detail(data)


@app.command("delete")
def delete_subroutine(
    session_id: str = typer.Argument(),
    purge: bool = typer.Option(False, "--purge", help="Also delete the session and its transcript."),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    token: str | None = typer.Option(None, envvar="SILLYAGENTS_TOKEN"),
) -> None:
    """Remove the subroutine config (the loop stops)."""
    _request(
        "delete",
        f"/subroutines/{session_id}",
        host,
        port,
        token,
        params={"delete_session": str(purge).lower()},
    )
    console.print(f"[green]Deleted:[/green] {session_id}")
