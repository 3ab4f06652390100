"""Huddle CLI application - main entry point."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.traceback import install

from huddle import __version__
from huddle.annotations import parse_tool_calls, render_message
from huddle.exceptions import HuddleError
from huddle.store import CONVERSATIONS, ConversationKind, queries
from huddle.turn import TurnState

from .commands import commands_app
from .helpers import get_error_console, load_cli_config, open_workspace
from .scheduled import schedule_app
from .tools import tools_app

install(show_locals=False, width=None, word_wrap=True)

app = typer.Typer(
    name="huddle",
    help="Agent participants for team chat workspaces",
    no_args_is_help=True,
)

console = Console()


@app.command()
def version():
    """Show version information."""
    console.print(f"huddle version {__version__}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from config)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Run the HTTP API server."""
    from huddle.server import HuddleServer

    config = load_cli_config(config_path)
    http = config.http.model_copy(update={k: v for k, v in {"host": host, "port": port}.items() if v is not None})

    async def _serve():
        from huddle.store import JsonFileStore
        from huddle.workspace import Workspace

        from .helpers import create_service

        # The server's lifespan starts and closes the workspace
        workspace = Workspace(config, JsonFileStore(config.store_path), create_service(config))
        server = HuddleServer(workspace, http)
        await server.start()

    console.print(f"[cyan]Serving on http://{http.host}:{http.port}[/cyan]")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@app.command()
def ask(
    prompt: str = typer.Argument(help="Message to send"),
    user: str = typer.Option("me", "--user", "-u", help="Username to send as"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Chat with this named agent"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Continue an existing agent session"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Ask an agent and print its reply.

    Without --agent or --session a new session with the generic agent is started.
    """
    config = load_cli_config(config_path)
    stderr_console = get_error_console()

    async def _run():
        async with open_workspace(config) as workspace:
            participant = await queries.ensure_participant(workspace.store, user)
            if session:
                conversation_id = session
            elif agent:
                conversation_id = (await workspace.agent_session_for(participant.id, agent)).id
            else:
                conversation_id = (await workspace.create_session(participant.id)).id
            result = await workspace.ask(conversation_id, participant.id, prompt)
            return conversation_id, result

    try:
        conversation_id, result = asyncio.run(_run())
    except HuddleError as e:
        stderr_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if result is None:
        stderr_console.print("[red]That conversation is not an agent session[/red]")
        raise typer.Exit(1)
    if result.state is TurnState.FAILED:
        stderr_console.print(f"[red]Agent reply failed: {result.error}[/red]")
        raise typer.Exit(1)

    if result.content:
        tool_calls, _ = parse_tool_calls(result.content)
        for entry in tool_calls:
            mark = "[green]✓[/green]" if entry.success else "[red]✗[/red]"
            console.print(f"{mark} [dim]{entry.name}[/dim]")
        console.print(Markdown(render_message(result.content)))
    else:
        console.print("[dim]No reply[/dim]")
    console.print(f"\n[dim]Session: {conversation_id}[/dim]")


@app.command()
def channels(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """List channels in the workspace."""
    config = load_cli_config(config_path)

    async def _run():
        async with open_workspace(config) as workspace:
            rows = await workspace.store.select(
                CONVERSATIONS, where={"kind": ConversationKind.CHANNEL.value}, order_by="name"
            )
            return [(row, len(await queries.member_ids(workspace.store, row["id"]))) for row in rows]

    results = asyncio.run(_run())
    if not results:
        console.print("[yellow]No channels[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan", border_style="dim")
    table.add_column("Channel", style="bold")
    table.add_column("Members", justify="right")
    table.add_column("ID", style="dim")
    for row, members in results:
        table.add_row(f"#{row['name']}", str(members), row["id"])
    console.print(table)


app.add_typer(tools_app, name="tools")
app.add_typer(commands_app, name="commands")
app.add_typer(schedule_app, name="schedule")


def main():
    app()


if __name__ == "__main__":
    main()
