"""CLI helper functions."""

import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import AsyncIterator, Optional

import typer
from rich.console import Console

from huddle.config import HuddleConfig, load_config
from huddle.exceptions import StoreError
from huddle.generation.base import GenerationService
from huddle.generation.litellm_service import LiteLLMGenerationService
from huddle.store import JsonFileStore
from huddle.workspace import Workspace


def get_error_console() -> Console:
    return Console(file=sys.stderr)


def load_cli_config(config_path: Optional[Path]) -> HuddleConfig:
    """Load config or exit with a readable error."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        get_error_console().print(f"[red]Config error: {e}[/red]")
        raise typer.Exit(1)

    # The environment variable wins over the config file
    if "HUDDLE_LOG_LEVEL" not in os.environ:
        level = getattr(logging, config.log_level.upper(), None)
        if isinstance(level, int):
            logging.getLogger("huddle").setLevel(level)
    return config


def create_service(config: HuddleConfig) -> GenerationService:
    return LiteLLMGenerationService(config.resolve_model(), max_tool_rounds=config.max_tool_rounds)


@contextlib.asynccontextmanager
async def open_workspace(config: HuddleConfig) -> AsyncIterator[Workspace]:
    """Started workspace over the configured JSON store, closed on exit."""
    try:
        store = JsonFileStore(config.store_path)
    except StoreError as e:
        get_error_console().print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    workspace = Workspace(config, store, create_service(config))
    await workspace.start()
    try:
        yield workspace
    finally:
        await workspace.close()
