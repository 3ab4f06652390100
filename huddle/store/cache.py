"""Lookup cache for participants and conversations."""

import logging
from typing import Dict, Optional

from huddle.store import queries
from huddle.store.base import Change, Store
from huddle.store.models import CONVERSATIONS, PARTICIPANTS, Conversation, ConversationKind, Participant

logger = logging.getLogger(__name__)


class LookupCache:
    """Caches id and name lookups, invalidated from the store's change feed.

    Owned by whoever builds the workspace and passed to the components that
    need it.
    """

    def __init__(self, store: Store):
        self.store = store
        self._participants: Dict[str, Participant] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._channel_ids: Dict[str, str] = {}
        self.hits = 0
        self.misses = 0
        self._unsubscribers = [
            store.feed.subscribe(PARTICIPANTS, self._on_participant_change),
            store.feed.subscribe(CONVERSATIONS, self._on_conversation_change),
        ]

    def _on_participant_change(self, change: Change) -> None:
        self._participants.pop(change.row.get("id"), None)

    def _on_conversation_change(self, change: Change) -> None:
        conversation_id = change.row.get("id")
        self._conversations.pop(conversation_id, None)
        for row in (change.row, change.old or {}):
            name = row.get("name")
            if name and self._channel_ids.get(name) == conversation_id:
                del self._channel_ids[name]

    async def participant(self, participant_id: str) -> Optional[Participant]:
        if participant_id in self._participants:
            self.hits += 1
            return self._participants[participant_id]
        self.misses += 1
        participant = await queries.get_participant(self.store, participant_id)
        if participant is not None:
            self._participants[participant_id] = participant
        return participant

    async def conversation(self, conversation_id: str) -> Optional[Conversation]:
        if conversation_id in self._conversations:
            self.hits += 1
            return self._conversations[conversation_id]
        self.misses += 1
        conversation = await queries.get_conversation(self.store, conversation_id)
        if conversation is not None:
            self._conversations[conversation_id] = conversation
        return conversation

    async def channel_by_name(self, name: str) -> Optional[Conversation]:
        """Exact lookup of a channel by its stored name."""
        conversation_id = self._channel_ids.get(name)
        if conversation_id is not None:
            return await self.conversation(conversation_id)
        self.misses += 1
        row = await self.store.select_one(CONVERSATIONS, kind=ConversationKind.CHANNEL.value, name=name)
        if row is None:
            return None
        conversation = Conversation.model_validate(row)
        self._conversations[conversation.id] = conversation
        self._channel_ids[name] = conversation.id
        return conversation

    def clear(self) -> None:
        self._participants.clear()
        self._conversations.clear()
        self._channel_ids.clear()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
