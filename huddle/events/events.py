"""Event definitions."""

from typing import Any, Dict, Optional

from pydantic import Field

from .base import BaseEvent, EventType


class TurnStateChangedEvent(BaseEvent):
    """An agent turn moved to a new state."""

    event_type: EventType = Field(default=EventType.TURN_STATE, frozen=True)
    turn_id: str
    conversation_id: str
    state: str


class PlaceholderCreatedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.PLACEHOLDER_CREATED, frozen=True)
    conversation_id: str
    placeholder_id: str
    sender_id: str


class PlaceholderUpdatedEvent(BaseEvent):
    """The live display content of a streaming reply changed."""

    event_type: EventType = Field(default=EventType.PLACEHOLDER_UPDATED, frozen=True)
    conversation_id: str
    placeholder_id: str
    content: str


class PlaceholderRemovedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.PLACEHOLDER_REMOVED, frozen=True)
    conversation_id: str
    placeholder_id: str
    reason: str = ""


class MessagePersistedEvent(BaseEvent):
    """A streamed reply was stored and replaced its placeholder."""

    event_type: EventType = Field(default=EventType.MESSAGE_PERSISTED, frozen=True)
    conversation_id: str
    placeholder_id: Optional[str] = None
    message_id: str
    content: str


class ToolCallStartedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.TOOL_CALL_STARTED, frozen=True)
    call_id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCallFinishedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.TOOL_CALL_FINISHED, frozen=True)
    call_id: str
    name: str
    success: bool
    result: Optional[str] = None


class ChannelCreatedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.CHANNEL_CREATED, frozen=True)
    channel_id: str
    name: str


class ChannelDeletedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.CHANNEL_DELETED, frozen=True)
    name: str
    channel_id: Optional[str] = None


class SessionCreatedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.SESSION_CREATED, frozen=True)
    session_id: str
    name: str


class SessionDeletedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.SESSION_DELETED, frozen=True)
    session_id: str


class SessionRenamedEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.SESSION_RENAMED, frozen=True)
    session_id: str
    name: str


class WarningEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.WARNING, frozen=True)
    message: str


class ErrorEvent(BaseEvent):
    event_type: EventType = Field(default=EventType.ERROR, frozen=True)
    error: str
    error_type: Optional[str] = None
