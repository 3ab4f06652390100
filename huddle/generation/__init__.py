"""Generation services and the response frame protocol."""

from huddle.generation.base import (
    ChatTurn,
    DoneFrame,
    Frame,
    GenerationRequest,
    GenerationService,
    GenerationSession,
    SourcesFrame,
    TextFrame,
    ToolCallFrame,
    ToolResultFrame,
    parse_frame,
)

__all__ = [
    "ChatTurn",
    "DoneFrame",
    "Frame",
    "GenerationRequest",
    "GenerationService",
    "GenerationSession",
    "SourcesFrame",
    "TextFrame",
    "ToolCallFrame",
    "ToolResultFrame",
    "parse_frame",
]
