"""Base event model and event type enum."""

from datetime import datetime, timezone
from enum import IntEnum

from pydantic import BaseModel, Field


class EventType(IntEnum):
    """Event type enumeration."""

    # Turn lifecycle
    TURN_STATE = 1
    PLACEHOLDER_CREATED = 2
    PLACEHOLDER_UPDATED = 3
    PLACEHOLDER_REMOVED = 4
    MESSAGE_PERSISTED = 5

    # Tool activity
    TOOL_CALL_STARTED = 10
    TOOL_CALL_FINISHED = 11

    # Sidebar refresh signals
    CHANNEL_CREATED = 20
    CHANNEL_DELETED = 21
    SESSION_CREATED = 22
    SESSION_DELETED = 23
    SESSION_RENAMED = 24

    # Diagnostics
    WARNING = 30
    ERROR = 31


class BaseEvent(BaseModel):
    """Base class for all workspace events."""

    model_config = {"frozen": True, "use_enum_values": False}

    event_type: EventType = Field(frozen=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
