"""Slash command library commands."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from huddle.commands import CommandLibrary

from .helpers import load_cli_config

console = Console()

commands_app = typer.Typer(help="Inspect slash commands and skills")


@commands_app.command("list")
def commands_list(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
    content_dir: Optional[Path] = typer.Option(None, "--content-dir", help="Override the content directory"),
):
    """List slash commands and skills."""
    config = load_cli_config(config_path)
    library = CommandLibrary(content_dir or config.content_dir)
    items = library.list_commands()

    if not items:
        console.print(f"[yellow]No commands or skills found in {library.content_dir}[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan", border_style="dim")
    table.add_column("Command", style="bold")
    table.add_column("Kind")
    table.add_column("Description")
    for item in items:
        table.add_row(item.label, item.category, item.description)
    console.print(table)
