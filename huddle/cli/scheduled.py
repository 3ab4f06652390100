"""Scheduled message commands."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from huddle.exceptions import HuddleError
from huddle.markup import strip_markup
from huddle.store import RecipientType, queries

from .helpers import get_error_console, load_cli_config, open_workspace

console = Console()

schedule_app = typer.Typer(help="Schedule messages to be posted later")


@schedule_app.command("add")
def schedule_add(
    content: str = typer.Argument(help="Message to post"),
    at: datetime = typer.Option(..., "--at", help="When to post it, in UTC unless an offset is given"),
    to: Optional[str] = typer.Option(None, "--to", help="Conversation ID to post in"),
    new_agent: bool = typer.Option(False, "--new-agent", help="Start a new agent session instead"),
    label: Optional[str] = typer.Option(None, "--label", help="Name for the new agent session"),
    user: str = typer.Option("me", "--user", "-u", help="Username to send as"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Queue a message for later."""
    if bool(to) == new_agent:
        get_error_console().print("[red]Pass exactly one of --to or --new-agent[/red]")
        raise typer.Exit(1)
    config = load_cli_config(config_path)

    async def _run():
        async with open_workspace(config) as workspace:
            participant = await queries.ensure_participant(workspace.store, user)
            return await workspace.scheduled.schedule(
                participant.id,
                content,
                at,
                conversation_id=to,
                recipient_type=RecipientType.NEW_AGENT if new_agent else None,
                recipient_label=label,
            )

    try:
        scheduled = asyncio.run(_run())
    except HuddleError as e:
        get_error_console().print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Scheduled[/green] {scheduled.id} for {scheduled.send_at}")


@schedule_app.command("list")
def schedule_list(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only messages from this username"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """List pending scheduled messages."""
    config = load_cli_config(config_path)

    async def _run():
        async with open_workspace(config) as workspace:
            sender_id = None
            if user:
                sender_id = (await queries.ensure_participant(workspace.store, user)).id
            pending = await workspace.scheduled.pending(sender_id)
            names = await queries.sender_names(workspace.store, [p.sender_id for p in pending])
            return pending, names

    pending, names = asyncio.run(_run())
    if not pending:
        console.print("[yellow]No scheduled messages[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan", border_style="dim")
    table.add_column("Send at")
    table.add_column("From", style="bold")
    table.add_column("To")
    table.add_column("Message")
    table.add_column("ID", style="dim")
    for item in pending:
        target = item.conversation_id or f"new session: {item.recipient_label or 'untitled'}"
        table.add_row(item.send_at, names.get(item.sender_id, "?"), target, strip_markup(item.content)[:60], item.id)
    console.print(table)


@schedule_app.command("cancel")
def schedule_cancel(
    scheduled_id: str = typer.Argument(help="Scheduled message ID"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Cancel a pending scheduled message."""
    config = load_cli_config(config_path)

    async def _run():
        async with open_workspace(config) as workspace:
            return await workspace.scheduled.cancel(scheduled_id)

    if not asyncio.run(_run()):
        get_error_console().print(f"[red]No pending scheduled message: {scheduled_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Cancelled[/green] {scheduled_id}")


@schedule_app.command("send-due")
def schedule_send_due(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Post every scheduled message whose time has come."""
    config = load_cli_config(config_path)

    async def _run():
        async with open_workspace(config) as workspace:
            return await workspace.scheduled.send_due()

    sent = asyncio.run(_run())
    console.print(f"Sent {sent} scheduled message{'s' if sent != 1 else ''}")
