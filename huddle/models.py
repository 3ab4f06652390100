"""Model string handling for LiteLLM calls."""

import os
import re
from typing import Optional


def parse_model_string(model_string: str) -> tuple[str, str, Optional[str]]:
    """Parse a provider:model[:variant] string.

    Args:
        model_string: Format like "ollama:qwen2.5-coder:14b" or "openai:gpt-4.1-mini"

    Returns:
        Tuple of (provider, model_name, variant)
    """
    parts = model_string.split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid model string format: {model_string}")

    provider = parts[0]
    model_name = parts[1]
    variant = parts[2] if len(parts) > 2 else None

    return provider, model_name, variant


def _is_reasoning_model(provider: str, model_name: str) -> bool:
    # o1/o3 models reject sampling parameters
    return provider == "openai" and bool(re.match(r"^(o1|o3|o4)(-mini|-preview)?(-\d{4}-\d{2}-\d{2})?$", model_name))


def get_model_params(model_string: str, **kwargs) -> dict:
    """Get parameters for litellm.acompletion().

    Args:
        model_string: Model string like "openai:gpt-4o-mini"
        **kwargs: Additional parameters (messages, temperature, tools, ...)

    Returns:
        Dict with "model" key and all parameters ready for litellm.acompletion()

    Examples:
        >>> get_model_params("openai:gpt-4o-mini", temperature=0.5)["model"]
        'openai/gpt-4o-mini'
    """
    provider, model_name, variant = parse_model_string(model_string)
    params = dict(kwargs)

    if _is_reasoning_model(provider, model_name):
        for param in ("temperature", "top_p", "presence_penalty", "frequency_penalty"):
            params.pop(param, None)

    if provider == "ollama":
        params["model"] = f"{model_name}:{variant}" if variant else model_name
        params.setdefault("api_base", os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1"))
        params.setdefault("api_key", "ollama")
    elif provider == "openai":
        params["model"] = f"openai/{model_name}"
        params.setdefault("api_key", os.getenv("OPENAI_API_KEY"))
    elif provider == "anthropic":
        params["model"] = f"anthropic/{model_name}"
        params.setdefault("api_key", os.getenv("ANTHROPIC_API_KEY"))
    elif provider == "google":
        params["model"] = f"gemini/{model_name}"
        params.setdefault("api_key", os.getenv("GOOGLE_API_KEY"))
    else:
        params["model"] = f"{provider}/{model_name}"

    return params
