"""Short titles for new agent sessions."""

import logging
from typing import Optional

from huddle.generation.base import GenerationService

logger = logging.getLogger(__name__)

TITLE_SYSTEM_PROMPT = (
    "You are a title generator. Given a user message, produce a short title of 3 to 7 words in sentence case "
    "(capitalize only the first word) that captures the essence of the message. Reply with ONLY the title, "
    "no quotes, no punctuation at the end, no explanation."
)
DEFAULT_TITLE = "New conversation"
FALLBACK_TITLE_LENGTH = 60


def fallback_title(prompt: str) -> str:
    """Title used when summarization is unavailable: the prompt's first 60 characters."""
    text = " ".join(prompt.split())
    return text[:FALLBACK_TITLE_LENGTH] or DEFAULT_TITLE


def _clean_title(raw: str) -> str:
    title = raw.strip().strip("\"'").strip()
    return title.rstrip(".!?").strip()


async def summarize_title(service: GenerationService, prompt: str, model: Optional[str] = None) -> str:
    """Summarize a user's first message into a session title.

    Args:
        service: Generation service used for the completion
        prompt: Plain text of the first user message
        model: Optional model override

    Returns:
        Title text; ``DEFAULT_TITLE`` when the model returns nothing

    Raises:
        GenerationError: If the service fails
    """
    hints = {"max_tokens": 20, "temperature": 0.5}
    if model:
        hints["model"] = model
    raw = await service.complete(TITLE_SYSTEM_PROMPT, prompt, **hints)
    return _clean_title(raw or "") or DEFAULT_TITLE
