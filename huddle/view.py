"""Per-conversation state shown to a client."""

import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from huddle.store.models import Message


@dataclass
class Placeholder:
    """A reply that is still streaming and has no stored row yet."""

    id: str
    conversation_id: str
    sender_id: str
    content: str = ""


class ConversationView:
    """Stored messages plus in-flight placeholders for one conversation.

    Messages are keyed by id, so a row that arrives both from a finished turn
    and from the change feed is only shown once.
    """

    def __init__(self, conversation_id: str, messages: Optional[Iterable[Message]] = None):
        self.conversation_id = conversation_id
        self._messages: Dict[str, Message] = {}
        self.placeholders: Dict[str, Placeholder] = {}
        for message in messages or []:
            self.add_message(message)

    @property
    def messages(self) -> List[Message]:
        return sorted(self._messages.values(), key=lambda m: m.created_at)

    def add_message(self, message: Message) -> bool:
        """Add a stored message. Returns False if it was already present."""
        if message.conversation_id != self.conversation_id or message.id in self._messages:
            return False
        self._messages[message.id] = message
        return True

    def add_placeholder(self, sender_id: str) -> Placeholder:
        placeholder = Placeholder(
            id=f"streaming-{uuid.uuid4()}", conversation_id=self.conversation_id, sender_id=sender_id
        )
        self.placeholders[placeholder.id] = placeholder
        return placeholder

    def update_placeholder(self, placeholder_id: str, content: str) -> None:
        placeholder = self.placeholders.get(placeholder_id)
        if placeholder is not None:
            placeholder.content = content

    def remove_placeholder(self, placeholder_id: str) -> Optional[Placeholder]:
        return self.placeholders.pop(placeholder_id, None)

    def replace_placeholder(self, placeholder_id: str, message: Message) -> None:
        """Swap a finished placeholder for its stored message."""
        self.remove_placeholder(placeholder_id)
        self.add_message(message)

    def entries(self) -> List[Union[Message, Placeholder]]:
        """Display order: stored messages by creation time, then live placeholders."""
        return [*self.messages, *self.placeholders.values()]
