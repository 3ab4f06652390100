"""Unprompted agent replies in shared conversations."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from huddle.agents import AgentDefinition
from huddle.markup import EntityCategory
from huddle.markup import parse as parse_markup
from huddle.store import queries
from huddle.store.base import Change, ChangeKind, Store
from huddle.store.cache import LookupCache
from huddle.store.models import MESSAGES, Conversation, ConversationKind, Message, Participant

logger = logging.getLogger(__name__)


class PendingReplies:
    """Set of ``(conversation_id, participant_id)`` pairs with a reply in flight."""

    def __init__(self):
        self._pending: Set[Tuple[str, str]] = set()
        self._lock = asyncio.Lock()

    async def claim(self, conversation_id: str, participant_id: str) -> bool:
        """Mark a pair as replying. Returns False if it already was."""
        key = (conversation_id, participant_id)
        async with self._lock:
            if key in self._pending:
                return False
            self._pending.add(key)
            return True

    async def release(self, conversation_id: str, participant_id: str) -> None:
        async with self._lock:
            self._pending.discard((conversation_id, participant_id))

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)


@dataclass
class ReplyCandidate:
    """An agent that should answer a message, and why."""

    agent: AgentDefinition
    participant: Participant
    reasons: Tuple[str, ...]


ReplyRunner = Callable[[Conversation, ReplyCandidate, Message], Awaitable[Any]]


def mentioned_person_ids(content: str) -> List[str]:
    return [
        node.entity_id
        for node in parse_markup(content).mentions()
        if node.category is EntityCategory.PERSON and node.entity_id
    ]


class AutoReplyEngine:
    """Watches new messages and starts replies from autonomous participants.

    An agent replies to a human message in a channel or DM when the message
    mentions it, or when the message is in a channel the agent follows. Each
    agent replies at most once per message and never runs two replies in the
    same conversation at the same time.

    Args:
        store: Workspace store whose change feed is observed
        reply: Coroutine running one reply turn for a candidate
        cache: Optional lookup cache for senders and conversations
    """

    def __init__(self, store: Store, reply: ReplyRunner, cache: Optional[LookupCache] = None):
        self.store = store
        self.reply = reply
        self.cache = cache
        self.pending = PendingReplies()
        self._agents: Dict[str, Tuple[AgentDefinition, Participant]] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    def register(self, agent: AgentDefinition, participant: Participant) -> None:
        self._agents[participant.id] = (agent, participant)

    @property
    def agents(self) -> List[AgentDefinition]:
        return [agent for agent, _ in self._agents.values()]

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.feed.subscribe(MESSAGES, self._on_change, kinds=[ChangeKind.INSERT])

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_change(self, change: Change) -> None:
        await self.handle(Message.model_validate(change.row))

    async def _participant(self, participant_id: str) -> Optional[Participant]:
        if self.cache is not None:
            return await self.cache.participant(participant_id)
        return await queries.get_participant(self.store, participant_id)

    async def _conversation(self, conversation_id: str) -> Optional[Conversation]:
        if self.cache is not None:
            return await self.cache.conversation(conversation_id)
        return await queries.get_conversation(self.store, conversation_id)

    def candidates(self, conversation: Conversation, message: Message) -> List[ReplyCandidate]:
        """Agents that should answer ``message``: mentioned ones plus channel followers."""
        reasons: Dict[str, List[str]] = {}

        mentioned = set(mentioned_person_ids(message.content))
        for participant_id in self._agents:
            if participant_id in mentioned:
                reasons.setdefault(participant_id, []).append("mention")

        if conversation.kind is ConversationKind.CHANNEL and conversation.name:
            for participant_id, (agent, _) in self._agents.items():
                if conversation.name in agent.channels:
                    reasons.setdefault(participant_id, []).append("channel")

        # The author never answers itself
        reasons.pop(message.sender_id, None)
        return [
            ReplyCandidate(agent=self._agents[pid][0], participant=self._agents[pid][1], reasons=tuple(why))
            for pid, why in reasons.items()
        ]

    async def handle(self, message: Message) -> List[Any]:
        """Start replies for a new message.

        Returns:
            Results of the reply runs that were started (empty when none were)
        """
        if not self._agents:
            return []

        sender = await self._participant(message.sender_id)
        if sender is None or sender.is_autonomous:
            return []

        conversation = await self._conversation(message.conversation_id)
        if conversation is None or not conversation.is_shared:
            return []

        candidates = self.candidates(conversation, message)
        if not candidates:
            return []

        results = await asyncio.gather(*(self._run(conversation, c, message) for c in candidates))
        return [r for r in results if r is not None]

    async def _run(self, conversation: Conversation, candidate: ReplyCandidate, message: Message) -> Any:
        if not await self.pending.claim(conversation.id, candidate.participant.id):
            logger.debug(
                "Skipping reply from %s in %s: one is already in progress",
                candidate.agent.username,
                conversation.id,
            )
            return None
        try:
            return await self.reply(conversation, candidate, message)
        except Exception:
            logger.exception("Auto-reply from %s failed", candidate.agent.username)
            return None
        finally:
            await self.pending.release(conversation.id, candidate.participant.id)
