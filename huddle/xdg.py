"""XDG Base Directory helpers for config and data locations."""

import os
from pathlib import Path

APP_DIR = "huddle"


def _base(env_var: str, fallback: Path) -> Path:
    value = os.environ.get(env_var)
    return Path(value) if value else fallback


def get_xdg_config_path(filename: str) -> Path:
    """Locate a huddle config file.

    An existing file under $XDG_CONFIG_HOME/huddle wins over one under
    ~/.config/huddle. When neither exists, the path under $XDG_CONFIG_HOME
    (or ~/.config when it is unset) is returned so callers can create it.

    Args:
        filename: Name of the config file (e.g., "config.yaml")

    Returns:
        Path to config file
    """
    default_path = Path.home() / ".config" / APP_DIR / filename
    preferred = _base("XDG_CONFIG_HOME", Path.home() / ".config") / APP_DIR / filename

    for candidate in (preferred, default_path):
        if candidate.exists():
            return candidate
    return preferred


def get_xdg_data_path(subdir: str = "") -> Path:
    """Directory for workspace data, optionally a subdirectory of it."""
    base = _base("XDG_DATA_HOME", Path.home() / ".local" / "share") / APP_DIR
    return base / subdir if subdir else base
