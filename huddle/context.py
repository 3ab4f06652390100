"""Resolve mentioned entities to conversation transcripts."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from huddle.markup import Document, EntityCategory, MentionNode
from huddle.markup import parse as parse_markup
from huddle.markup import strip_markup
from huddle.store import queries
from huddle.store.base import Store
from huddle.store.cache import LookupCache
from huddle.utils import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_LIMIT = 100
TRANSCRIPT_TIME_FORMAT = "%Y-%m-%d %H:%M"


@dataclass(frozen=True)
class EntityReference:
    """An entity mentioned in a message."""

    category: EntityCategory
    entity_id: str
    label: str

    @property
    def key(self):
        return self.category, self.entity_id

    @property
    def display_label(self) -> str:
        return f"{self.category.sigil}{self.label}"

    @classmethod
    def from_mention(cls, node: MentionNode) -> Optional["EntityReference"]:
        if node.key is None:
            return None
        return cls(category=node.category, entity_id=node.entity_id, label=node.label)


@dataclass(frozen=True)
class EntityContext:
    """Formatted transcript of a referenced entity's conversation."""

    label: str
    category: EntityCategory
    entity_id: str
    transcript: str

    @property
    def key(self):
        return self.category, self.entity_id

    @property
    def display_label(self) -> str:
        return f"{self.category.sigil}{self.label}"


def extract_references(markup) -> List[EntityReference]:
    """Unique entity references in a message, in order of first appearance.

    ``app`` mentions and chips with an unrecognised prefix are skipped.

    Args:
        markup: Raw message markup or an already parsed Document
    """
    document = markup if isinstance(markup, Document) else parse_markup(markup)
    refs: List[EntityReference] = []
    seen = set()
    for node in document.mentions():
        ref = EntityReference.from_mention(node)
        if ref is None or ref.category is EntityCategory.APP:
            continue
        if ref.key in seen:
            continue
        seen.add(ref.key)
        refs.append(ref)
    return refs


class EntityContextResolver:
    """Fetches conversation history for entities mentioned in a message.

    Channel and agent-session references name their conversation directly.
    A person reference resolves to the direct conversation the acting user
    shares with that person.
    """

    def __init__(self, store: Store, cache: Optional[LookupCache] = None, message_limit: int = DEFAULT_MESSAGE_LIMIT):
        self.store = store
        self.cache = cache
        self.message_limit = message_limit

    async def _conversation_id(self, reference: EntityReference, acting_user_id: str) -> Optional[str]:
        if reference.category in (EntityCategory.CHANNEL, EntityCategory.AGENT_SESSION):
            return reference.entity_id
        if reference.category is EntityCategory.PERSON:
            direct = await queries.find_direct_conversation(self.store, acting_user_id, reference.entity_id)
            return direct.id if direct else None
        return None

    async def _sender_name(self, sender_id: str, names: dict) -> str:
        if sender_id in names:
            return names[sender_id]
        if self.cache is not None:
            participant = await self.cache.participant(sender_id)
            name = participant.username if participant else "Unknown"
        else:
            name = "Unknown"
        names[sender_id] = name
        return name

    async def resolve(self, reference: EntityReference, acting_user_id: str) -> Optional[EntityContext]:
        """Fetch and format the referenced conversation.

        Args:
            reference: Mentioned entity
            acting_user_id: Participant whose view is used for person references

        Returns:
            EntityContext, or None when there is no conversation or it has no messages
        """
        conversation_id = await self._conversation_id(reference, acting_user_id)
        if conversation_id is None:
            return None

        messages = await queries.fetch_messages(self.store, conversation_id, limit=self.message_limit)
        if not messages:
            return None

        names = {} if self.cache is not None else await queries.sender_names(self.store, (m.sender_id for m in messages))
        lines = []
        for message in messages:
            sender = await self._sender_name(message.sender_id, names)
            time = parse_timestamp(message.created_at).strftime(TRANSCRIPT_TIME_FORMAT)
            lines.append(f"[{sender}] ({time}): {strip_markup(message.content)}")

        return EntityContext(
            label=reference.label,
            category=reference.category,
            entity_id=reference.entity_id,
            transcript="\n".join(lines),
        )

    async def resolve_all(self, references: Iterable[EntityReference], acting_user_id: str) -> List[EntityContext]:
        """Resolve several references concurrently, keeping input order and dropping misses."""
        unique = []
        seen = set()
        for ref in references:
            if ref.category is EntityCategory.APP or ref.key in seen:
                continue
            seen.add(ref.key)
            unique.append(ref)
        results = await asyncio.gather(*(self.resolve(ref, acting_user_id) for ref in unique))
        return [ctx for ctx in results if ctx is not None]
