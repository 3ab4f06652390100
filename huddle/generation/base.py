"""Generation service protocol and response frames.

A generation session yields frames while the model responds::

    {"text": "..."}                                  incremental text
    {"sources": [{url, title, start_index, end_index}]}
    {"tool_call": {id, name, arguments}}             model wants a tool run
    {"tool_result": {id, name, success, result}}     outcome fed back to the model
    [DONE]                                           end of stream

Frames may arrive already typed, as dicts, as JSON text, or as SSE
``data: ...`` lines. ``parse_frame`` normalizes all of them and returns None
for anything malformed so consumers can skip it.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from huddle.annotations import SourceCitation
from huddle.tools.context import ToolOutcome

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


class TextFrame(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class SourcesFrame(BaseModel):
    kind: Literal["sources"] = "sources"
    sources: List[SourceCitation]


class ToolCallFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResultFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["tool_result"] = "tool_result"
    id: str
    name: str
    success: bool
    result: Optional[str] = None


class DoneFrame(BaseModel):
    kind: Literal["done"] = "done"


Frame = Union[TextFrame, SourcesFrame, ToolCallFrame, ToolResultFrame, DoneFrame]
_FRAME_TYPES = (TextFrame, SourcesFrame, ToolCallFrame, ToolResultFrame, DoneFrame)


def parse_frame(raw: Any) -> Optional[Frame]:
    """Normalize a raw frame. Returns None when it cannot be understood."""
    if isinstance(raw, _FRAME_TYPES):
        return raw

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        payload = raw.strip()
        if not payload or payload.startswith(":"):
            return None
        if payload.startswith("data:"):
            payload = payload[len("data:") :].strip()
        if payload == DONE_MARKER:
            return DoneFrame()
        try:
            raw = json.loads(payload)
        except json.JSONDecodeError:
            return None

    if not isinstance(raw, dict):
        return None

    try:
        if isinstance(raw.get("text"), str):
            return TextFrame(text=raw["text"])
        if "sources" in raw:
            return SourcesFrame(sources=raw["sources"])
        if isinstance(raw.get("tool_call"), dict):
            return ToolCallFrame.model_validate(raw["tool_call"])
        if isinstance(raw.get("tool_result"), dict):
            return ToolResultFrame.model_validate(raw["tool_result"])
        if raw.get("done") is True:
            return DoneFrame()
    except ValidationError:
        return None
    return None



class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class GenerationRequest(BaseModel):
    """Everything a generation service needs for one response.

    Attributes:
        system: System prompt
        turns: Conversation history as alternating user/assistant turns
        tools: Function-calling schemas the model may use
        hints: Provider options (model, temperature, ...)
    """

    system: str
    turns: List[ChatTurn]
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    hints: Dict[str, Any] = Field(default_factory=dict)


class GenerationSession(ABC):
    """One streaming response.

    Iterating yields raw or typed frames. After a tool_call frame the
    consumer runs the tool and hands the outcome back through
    ``submit_tool_outcome`` before asking for the next frame.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[Any]: ...

    @abstractmethod
    async def submit_tool_outcome(self, outcome: ToolOutcome) -> None: ...

    async def aclose(self) -> None:
        """Release transport resources. Safe to call more than once."""


class GenerationService(ABC):
    """Opaque text/event generating service."""

    @abstractmethod
    async def open(self, request: GenerationRequest) -> GenerationSession:
        """Start a response.

        Raises:
            GenerationError: If the service cannot be reached
        """

    async def complete(self, system: str, user: str, **hints: Any) -> str:
        """Single non-streaming completion built on ``open``."""
        session = await self.open(GenerationRequest(system=system, turns=[ChatTurn(role="user", content=user)], hints=hints))
        parts = []
        try:
            async for raw in session:
                frame = parse_frame(raw)
                if isinstance(frame, TextFrame):
                    parts.append(frame.text)
                elif isinstance(frame, DoneFrame):
                    break
        finally:
            await session.aclose()
        return "".join(parts)
