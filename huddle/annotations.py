"""Out-of-band metadata embedded in agent message content.

Agent replies carry two kinds of metadata as HTML comments so they survive
storage as plain message content:

- a tool-status block at the start: ``<!--TOOL_CALLS:[...]-->``
- a source-citation block at the end: ``<!--SOURCES:[...]-->``

Unparseable marker payloads are ignored rather than raised.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

TOOL_CALLS_PATTERN = re.compile(r"<!--TOOL_CALLS:([\s\S]*?)-->\n*")
SOURCES_PATTERN = re.compile(r"\n*<!--SOURCES:([\s\S]*?)-->")

# Trailing markdown link still being streamed: "[text", "[text]" or "[text](url"
_INCOMPLETE_LINK = re.compile(r"\[[^\]]*(?:\](?:\([^)]*)?)?\Z")
_CITATION_MARKER = re.compile(r"【[^】]*】")
_INCOMPLETE_CITATION = re.compile(r"【[^】]*\Z")


class ToolCallEntry(BaseModel):
    """Status of one tool invocation as shown alongside an agent message."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    success: Optional[bool] = None
    result: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.success is not None


class SourceCitation(BaseModel):
    """A web source cited by the agent, optionally anchored to a span of the text."""

    model_config = ConfigDict(extra="ignore")

    url: str
    title: str = ""
    start_index: Optional[int] = None
    end_index: Optional[int] = None

    @property
    def positioned(self) -> bool:
        return (
            isinstance(self.start_index, int)
            and isinstance(self.end_index, int)
            and self.start_index < self.end_index
        )


_tool_calls_adapter = TypeAdapter(List[ToolCallEntry])
_sources_adapter = TypeAdapter(List[SourceCitation])


def _dump(items: Sequence[BaseModel]) -> str:
    return json.dumps([item.model_dump(exclude_none=True) for item in items], ensure_ascii=False)


def embed_tool_calls(entries: Sequence[ToolCallEntry]) -> str:
    """Tool-status marker block, placed before the message text."""
    if not entries:
        return ""
    return f"<!--TOOL_CALLS:{_dump(entries)}-->\n\n"


def embed_sources(sources: Sequence[SourceCitation]) -> str:
    """Source-citation marker block, placed after the message text."""
    if not sources:
        return ""
    return f"\n\n<!--SOURCES:{_dump(sources)}-->"


def parse_tool_calls(content: str) -> Tuple[List[ToolCallEntry], str]:
    """Split a message into its tool-status entries and the remaining content.

    Returns an empty list when there is no marker or its payload is malformed.
    """
    match = TOOL_CALLS_PATTERN.search(content)
    if not match:
        return [], content
    remaining = TOOL_CALLS_PATTERN.sub("", content, count=1).strip()
    try:
        entries = _tool_calls_adapter.validate_json(match.group(1))
    except ValidationError:
        logger.debug("Ignoring malformed TOOL_CALLS marker")
        return [], remaining
    return entries, remaining


def parse_sources(content: str) -> Tuple[List[SourceCitation], str]:
    """Split a message into its source citations and the remaining content."""
    match = SOURCES_PATTERN.search(content)
    if not match:
        return [], content
    remaining = SOURCES_PATTERN.sub("", content, count=1).strip()
    try:
        sources = _sources_adapter.validate_json(match.group(1))
    except ValidationError:
        logger.debug("Ignoring malformed SOURCES marker")
        return [], remaining
    return sources, remaining


def strip_metadata(content: str) -> str:
    """Message content with both marker blocks removed."""
    content = TOOL_CALLS_PATTERN.sub("", content)
    content = SOURCES_PATTERN.sub("", content)
    return content.strip()


def compose_content(text: str, tool_calls: Sequence[ToolCallEntry], sources: Sequence[SourceCitation]) -> str:
    """Tool-status block + text + source-citation block."""
    return embed_tool_calls(tool_calls) + text + embed_sources(sources)


def default_citation(source: SourceCitation) -> str:
    title = source.title or source.url
    return f"[{title}]({source.url})"


def inline_citations(
    text: str,
    sources: Sequence[SourceCitation],
    render: Callable[[SourceCitation], str] = default_citation,
) -> str:
    """Replace each positioned citation span with its rendered form.

    Spans are replaced from the highest start offset to the lowest so earlier
    offsets stay valid. Spans outside the text are left alone.
    """
    positioned = sorted((s for s in sources if s.positioned), key=lambda s: s.start_index, reverse=True)
    for source in positioned:
        start, end = source.start_index, source.end_index
        if start >= 0 and end <= len(text):
            text = text[:start] + render(source) + text[end:]
    return text


def render_message(content: str, render: Callable[[SourceCitation], str] = default_citation) -> str:
    """Display text of a stored agent message with citations inlined."""
    _, content = parse_tool_calls(content)
    sources, text = parse_sources(content)
    return inline_citations(text, sources, render)


def clean_streaming_content(content: str) -> str:
    """Hide artifacts of a partially streamed reply.

    Trims a trailing incomplete markdown link and removes raw citation
    markers. Only for the live display copy, never for persisted content.
    """
    cleaned = _INCOMPLETE_LINK.sub("", content, count=1)
    cleaned = _CITATION_MARKER.sub("", cleaned)
    return _INCOMPLETE_CITATION.sub("", cleaned, count=1)
