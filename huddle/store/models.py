"""Typed views over store rows."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

PARTICIPANTS = "participants"
CONVERSATIONS = "conversations"
MEMBERSHIPS = "memberships"
MESSAGES = "messages"
SCHEDULED_MESSAGES = "scheduled_messages"


class ConversationKind(str, Enum):
    CHANNEL = "channel"
    DIRECT = "direct"
    AGENT_SESSION = "agent-session"


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


class RecipientType(str, Enum):
    """What a scheduled message was addressed to, as picked in the composer."""

    CHANNEL = "channel"
    AGENT = "agent"
    PEOPLE = "people"
    NEW_AGENT = "new_agent"


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Participant(_Row):
    """A human user or an autonomous agent."""

    id: str
    username: str
    is_autonomous: bool = False
    avatar_url: Optional[str] = None
    created_at: str


class Conversation(_Row):
    id: str
    kind: ConversationKind
    name: Optional[str] = None
    created_at: str

    @property
    def is_shared(self) -> bool:
        """Channels and DMs are shared; agent sessions are private chats."""
        return self.kind in (ConversationKind.CHANNEL, ConversationKind.DIRECT)


class Membership(_Row):
    conversation_id: str
    participant_id: str


class Message(_Row):
    """A persisted chat message. Content is rich-text markup and may embed metadata markers."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: str


class ScheduledMessage(_Row):
    """A message waiting to be posted at ``send_at``.

    ``conversation_id`` is empty only for ``new_agent`` recipients, whose
    agent session is created when the message goes out.
    """

    id: str
    sender_id: str
    content: str
    send_at: str
    conversation_id: Optional[str] = None
    recipient_type: Optional[RecipientType] = None
    recipient_id: Optional[str] = None
    recipient_label: Optional[str] = None
    status: ScheduleStatus = ScheduleStatus.PENDING
    created_at: str
