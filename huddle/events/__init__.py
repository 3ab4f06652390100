"""Event system for agent turns and workspace changes."""

from .base import BaseEvent, EventType
from .bus import EventBus
from .events import (
    ChannelCreatedEvent,
    ChannelDeletedEvent,
    ErrorEvent,
    MessagePersistedEvent,
    PlaceholderCreatedEvent,
    PlaceholderRemovedEvent,
    PlaceholderUpdatedEvent,
    SessionCreatedEvent,
    SessionDeletedEvent,
    SessionRenamedEvent,
    ToolCallFinishedEvent,
    ToolCallStartedEvent,
    TurnStateChangedEvent,
    WarningEvent,
)
from .sidebar import sidebar_event

__all__ = [
    "BaseEvent",
    "ChannelCreatedEvent",
    "ChannelDeletedEvent",
    "ErrorEvent",
    "EventBus",
    "EventType",
    "MessagePersistedEvent",
    "PlaceholderCreatedEvent",
    "PlaceholderRemovedEvent",
    "PlaceholderUpdatedEvent",
    "SessionCreatedEvent",
    "SessionDeletedEvent",
    "SessionRenamedEvent",
    "ToolCallFinishedEvent",
    "ToolCallStartedEvent",
    "TurnStateChangedEvent",
    "WarningEvent",
    "sidebar_event",
]
