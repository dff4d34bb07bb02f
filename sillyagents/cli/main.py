"""SillyAgents CLI — Entry point.

Usage:
    sillyagents daemon start
    sillyagents daemon status
    sillyagents subroutines list
    sillyagents subroutines create <name> [--trigger tool --tool-name inbox]
    sillyagents subroutines show <id>
    sillyagents subroutines start <id>
    sillyagents subroutines stop <id>
    sillyagents subroutines set <id> intervalSeconds=60
    sillyagents subroutines delete <id>
"""

from __future__ import annotations

import typer

from sillyagents.cli.commands import daemon, subroutines

app = typer.Typer(
    name="sillyagents",
    help="SillyAgents — self-driving chat sessions.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

app.add_typer(daemon.app, name="daemon")
app.add_typer(subroutines.app, name="subroutines")


@app.callback()
def main_callback() -> None:
    pass


if __name__ == "__main__":
    app()
