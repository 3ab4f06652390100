"""Tool inspection and invocation commands."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from huddle.store import queries
from huddle.tools import ToolContext, dispatch

from .helpers import get_error_console, load_cli_config, open_workspace

console = Console()

tools_app = typer.Typer(help="Inspect and run workspace tools")


@tools_app.command("list")
def tools_list():
    """List all available tools."""
    from huddle.tools import _tools

    if not _tools:
        console.print("[yellow]No tools registered[/yellow]")
        return

    # Group tools by module
    categorized = {}
    for tool_name, tool_info in _tools.items():
        module = tool_info.func.__module__.split(".")[-1]
        categorized.setdefault(module, []).append((tool_name, tool_info.description))

    total_count = 0
    for cat in sorted(categorized):
        tools = sorted(categorized[cat])
        total_count += len(tools)

        console.print(f"\n[cyan]{cat.upper()}[/cyan] ({len(tools)} tool{'s' if len(tools) != 1 else ''})")
        console.print("[dim]" + "─" * 60 + "[/dim]")

        for tool_name, description in tools:
            console.print(f"  [bold]{tool_name}[/bold]")
            console.print(f"    {description}")

    console.print(f"\n[dim]Total: {total_count} tool{'s' if total_count != 1 else ''}[/dim]")


@tools_app.command("show")
def tools_show(
    tool_name: str = typer.Argument(help="Tool name to inspect"),
):
    """Show the parameters of a tool."""
    from huddle.tools import _tools

    if tool_name not in _tools:
        console.print(f"[red]Tool '{tool_name}' not found[/red]")
        console.print("\nUse [cyan]huddle tools list[/cyan] to see all available tools")
        raise typer.Exit(1)

    tool_info = _tools[tool_name]
    console.print(f"\n[bold cyan]{tool_info.name}[/bold cyan]")
    console.print(f"[dim]{tool_info.description}[/dim]\n")

    schema = tool_info.parameters
    properties = schema.get("properties", {})
    if properties:
        required = set(schema.get("required", []))
        table = Table(show_header=True, header_style="bold cyan", border_style="dim")
        table.add_column("Parameter", style="bold")
        table.add_column("Type")
        table.add_column("Required")
        table.add_column("Description")

        for param_name, param_info in properties.items():
            param_type = param_info.get("type") or " | ".join(
                option.get("type", "?") for option in param_info.get("anyOf", [])
            )
            table.add_row(
                param_name,
                param_type,
                "✓" if param_name in required else "",
                param_info.get("description", ""),
            )

        console.print(table)
    else:
        console.print("[dim]No parameters[/dim]")

    console.print(f"\n[dim]Module: {tool_info.func.__module__}[/dim]")


@tools_app.command("call")
def tools_call(
    tool_name: str = typer.Argument(help="Tool to run"),
    args: str = typer.Option("{}", "--args", "-a", help="Arguments as a JSON object"),
    user: str = typer.Option(..., "--user", "-u", help="Username the tool acts for"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Run a tool against the workspace store and print its result."""
    config = load_cli_config(config_path)

    async def _run():
        async with open_workspace(config) as workspace:
            participant = await queries.ensure_participant(workspace.store, user)
            context = ToolContext(user_id=participant.id, store=workspace.store, cache=workspace.cache)
            return await dispatch(tool_name, args, context)

    outcome = asyncio.run(_run())
    if outcome.success:
        console.print_json(json.dumps(outcome.data))
    else:
        get_error_console().print(f"[red]{outcome.error}[/red]")
        raise typer.Exit(1)
