"""Map successful tool results to sidebar refresh events."""

import json
from typing import Optional

from .base import BaseEvent
from .events import ChannelCreatedEvent, ChannelDeletedEvent, SessionCreatedEvent, SessionDeletedEvent


def sidebar_event(tool_name: str, success: bool, result: Optional[str]) -> Optional[BaseEvent]:
    """Event announcing a tool's effect on the channel or session list.

    Args:
        tool_name: Name of the tool that ran
        success: Whether it succeeded
        result: Serialized result data

    Returns:
        The matching event, or None for tools without a sidebar effect and
        for failed or unparseable results
    """
    if not success or not result:
        return None
    try:
        data = json.loads(result)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    if tool_name == "create_channel" and data.get("channel_name") and data.get("channel_id"):
        return ChannelCreatedEvent(channel_id=data["channel_id"], name=data["channel_name"])
    if tool_name == "delete_channel" and data.get("channel_name"):
        return ChannelDeletedEvent(name=data["channel_name"], channel_id=data.get("channel_id"))
    if tool_name == "create_agent_session" and data.get("session_id") and data.get("session_name"):
        return SessionCreatedEvent(session_id=data["session_id"], name=data["session_name"])
    if tool_name == "delete_agent_session" and data.get("session_id"):
        return SessionDeletedEvent(session_id=data["session_id"])
    return None
