"""Workspace configuration loaded from YAML."""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from huddle.agents import GENERIC_AGENT, AgentDefinition
from huddle.xdg import get_xdg_config_path, get_xdg_data_path

CONFIG_FILENAME = "config.yaml"


def _default_store_path() -> Path:
    return get_xdg_data_path() / "workspace.json"


def _default_content_dir() -> Path:
    return get_xdg_data_path("content")


class HTTPConfig(BaseModel):
    """Configuration for the HTTP API server."""

    host: str = "127.0.0.1"
    port: int = 8375
    auth_tokens: List[str] = Field(default_factory=list)


class HuddleConfig(BaseModel):
    """Main configuration."""

    default_model: str = "openai:gpt-4.1-mini"
    title_model: str = "openai:gpt-4o-mini"
    model_aliases: Dict[str, str] = Field(default_factory=dict)
    store_path: Path = Field(default_factory=_default_store_path)
    content_dir: Path = Field(default_factory=_default_content_dir)
    agents: List[AgentDefinition] = Field(default_factory=list)
    context_message_limit: int = Field(default=100, gt=0)
    autoreply_window: int = Field(default=10, gt=0)
    persist_retry_delay: float = Field(default=1.0, ge=0)
    max_tool_rounds: int = Field(default=5, gt=0)
    web_search: bool = True
    web_search_context_size: Literal["low", "medium", "high"] = "medium"
    schedule_poll_interval: float = Field(default=30.0, ge=0)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    log_level: str = "warning"

    def all_agents(self) -> List[AgentDefinition]:
        """Configured agents plus the generic session agent."""
        agents = list(self.agents)
        if not any(a.username == GENERIC_AGENT.username for a in agents):
            agents.append(GENERIC_AGENT)
        return agents

    def get_agent(self, username: str) -> Optional[AgentDefinition]:
        for agent in self.all_agents():
            if agent.username == username:
                return agent
        return None

    def web_search_options(self) -> Optional[Dict[str, Any]]:
        """LiteLLM web_search_options for agent turns, or None when search is off."""
        if not self.web_search:
            return None
        return {"search_context_size": self.web_search_context_size}

    def resolve_model(self, model: Optional[str] = None) -> str:
        """Resolve an alias (or None) to a full provider:model string."""
        model = model or self.default_model
        if ":" in model:
            return model
        return self.model_aliases.get(model, model)


def load_config(path: Optional[Path] = None) -> HuddleConfig:
    """Load config from YAML.

    Args:
        path: Path to config file. If None, uses default XDG location

    Returns:
        HuddleConfig instance. Defaults when the file does not exist.

    Raises:
        ValueError: If the file exists but is not valid YAML or fails validation
    """
    if path is None:
        path = get_xdg_config_path(CONFIG_FILENAME)

    if not path.exists():
        return HuddleConfig()

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    http_data = data.get("http")
    if http_data and "auth_tokens" in http_data:
        http_data["auth_tokens"] = [os.path.expandvars(t) for t in http_data["auth_tokens"]]

    for key in ("store_path", "content_dir"):
        if key in data:
            data[key] = Path(os.path.expandvars(str(data[key]))).expanduser()

    return HuddleConfig.model_validate(data)


def save_config(config: HuddleConfig, path: Optional[Path] = None) -> Path:
    """Save config to YAML file.

    Args:
        config: HuddleConfig instance to save
        path: Path to save config. If None, uses default XDG location

    Returns:
        Path where config was saved
    """
    if path is None:
        path = get_xdg_config_path(CONFIG_FILENAME)

    path.parent.mkdir(parents=True, exist_ok=True)

    # mode="json" ensures Path objects become strings
    config_data = config.model_dump(exclude_none=True, mode="json")

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)

    return path
