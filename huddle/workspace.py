"""Workspace orchestrator: wires store, generation, turns, and auto-replies."""

import asyncio
import functools
import logging
from typing import Dict, List, Optional, Tuple

from huddle.agents import GENERIC_AGENT, AgentDefinition
from huddle.autoreply import AutoReplyEngine, ReplyCandidate
from huddle.commands import CommandLibrary
from huddle.composer import TurnComposer
from huddle.config import HuddleConfig
from huddle.context import EntityContextResolver
from huddle.events import EventBus, SessionCreatedEvent, SessionRenamedEvent, WarningEvent
from huddle.exceptions import GenerationError, HuddleError
from huddle.generation.base import GenerationService
from huddle.generation.title import fallback_title, summarize_title
from huddle.markup import strip_markup
from huddle.scheduled import ScheduledMessages
from huddle.store import queries
from huddle.store.base import Change, ChangeKind, Store
from huddle.store.cache import LookupCache
from huddle.store.models import (
    CONVERSATIONS,
    MEMBERSHIPS,
    MESSAGES,
    Conversation,
    ConversationKind,
    Message,
    Participant,
)
from huddle.tools import ToolContext
from huddle.turn import AgentTurn, TurnResult
from huddle.utils import BackgroundTasks
from huddle.view import ConversationView

logger = logging.getLogger(__name__)


class Workspace:
    """Everything needed to chat with agents in one store.

    Owns the lookup cache, the per-conversation views, and the detached turn
    tasks. Call ``start`` before use and ``close`` when done.

    Args:
        config: Workspace configuration
        store: Store holding participants, conversations, and messages
        service: Generation service for agent turns and titles
        bus: Event bus; a private one is created when omitted
        library: Command and skill library; defaults to ``config.content_dir``
    """

    def __init__(
        self,
        config: HuddleConfig,
        store: Store,
        service: GenerationService,
        bus: Optional[EventBus] = None,
        library: Optional[CommandLibrary] = None,
    ):
        self.config = config
        self.store = store
        self.service = service
        self.bus = bus or EventBus()
        self.library = library or CommandLibrary(config.content_dir)
        self.cache = LookupCache(store)
        self.resolver = EntityContextResolver(store, self.cache, message_limit=config.context_message_limit)
        self.composer = TurnComposer(
            store,
            self.resolver,
            self.library,
            autoreply_window=config.autoreply_window,
            web_search_options=config.web_search_options(),
        )
        self.autoreply = AutoReplyEngine(store, self._autoreply_turn, cache=self.cache)
        self.scheduled = ScheduledMessages(self)
        self._agents: Dict[str, AgentDefinition] = {}
        self._views: Dict[str, ConversationView] = {}
        self._tasks = BackgroundTasks()
        self._unsubscribers = []

    async def start(self) -> None:
        """Seed agent participants and begin watching for new messages."""
        await self.seed_agents()
        if not self._unsubscribers:
            self._unsubscribers = [
                self.store.feed.subscribe(MESSAGES, self._on_message, kinds=[ChangeKind.INSERT]),
                self.store.feed.subscribe(CONVERSATIONS, self._on_conversation, kinds=[ChangeKind.DELETE]),
            ]
        self.autoreply.start()

    async def seed_agents(self) -> List[Participant]:
        """Create a participant for every configured agent that lacks one."""
        participants = []
        for agent in self.config.all_agents():
            participant = await queries.ensure_participant(
                self.store, agent.username, is_autonomous=True, avatar_url=agent.avatar_url
            )
            if not participant.is_autonomous:
                logger.warning("Participant '%s' exists but is not autonomous; skipping agent", agent.username)
                self.bus.emit(WarningEvent(message=f"Participant '{agent.username}' is not an agent; skipping"))
                continue
            self._agents[participant.id] = agent
            self.autoreply.register(agent, participant)
            participants.append(participant)
        return participants

    def agent_for(self, participant_id: str) -> Optional[AgentDefinition]:
        return self._agents.get(participant_id)

    def _is_generic(self, participant_id: str) -> bool:
        agent = self._agents.get(participant_id)
        return agent is not None and agent.username == GENERIC_AGENT.username

    def _on_message(self, change: Change) -> None:
        view = self._views.get(change.row.get("conversation_id"))
        if view is not None:
            view.add_message(Message.model_validate(change.row))

    def _on_conversation(self, change: Change) -> None:
        self._views.pop(change.row.get("id"), None)

    async def view(self, conversation_id: str) -> ConversationView:
        """The client view of a conversation, loaded from the store on first use."""
        view = self._views.get(conversation_id)
        if view is None:
            messages = await queries.fetch_messages(self.store, conversation_id)
            view = self._views.setdefault(conversation_id, ConversationView(conversation_id, messages))
        return view

    async def _conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.cache.conversation(conversation_id)
        if conversation is None:
            raise HuddleError(f"Conversation not found: {conversation_id}")
        return conversation

    async def _session_agent(self, conversation: Conversation) -> Optional[Tuple[str, AgentDefinition]]:
        for participant_id in await queries.member_ids(self.store, conversation.id):
            agent = self._agents.get(participant_id)
            if agent is not None:
                return participant_id, agent
        return None

    async def post_message(
        self, conversation_id: str, sender_id: str, content: str
    ) -> Tuple[Message, Optional[AgentTurn]]:
        """Store a message from a participant.

        In an agent session the returned turn is the agent's answer; the
        caller runs it (``await turn.run()``) or detaches it with
        ``start_turn``. In channels and DMs auto-replies start on their own
        and no turn is returned.

        Raises:
            HuddleError: If the conversation does not exist or the sender is not a member
        """
        conversation = await self._conversation(conversation_id)
        if sender_id not in await queries.member_ids(self.store, conversation.id):
            if conversation.kind is not ConversationKind.CHANNEL:
                raise HuddleError(f"Participant {sender_id} is not a member of {conversation_id}")
            # Channels are open: posting joins them
            await self.store.insert(MEMBERSHIPS, {"conversation_id": conversation.id, "participant_id": sender_id})

        turn = None
        first_prompt = False
        if conversation.kind is ConversationKind.AGENT_SESSION:
            session_agent = await self._session_agent(conversation)
            if session_agent is not None:
                agent_id, _ = session_agent
                earlier = await queries.fetch_messages(self.store, conversation.id)
                first_prompt = not any(m.sender_id != agent_id for m in earlier)

        row = await self.store.insert(
            MESSAGES, {"conversation_id": conversation.id, "sender_id": sender_id, "content": content}
        )
        message = Message.model_validate(row)
        (await self.view(conversation.id)).add_message(message)

        if conversation.kind is ConversationKind.AGENT_SESSION:
            turn = await self._session_turn(conversation, message)
            if turn is not None and first_prompt and self._is_generic(turn.sender_id):
                self._tasks.spawn(self._name_session(conversation.id, message), context=f"title:{conversation.id}")
        return message, turn

    async def _session_turn(self, conversation: Conversation, message: Message) -> Optional[AgentTurn]:
        session_agent = await self._session_agent(conversation)
        if session_agent is None:
            logger.warning("Agent session %s has no agent participant", conversation.id)
            return None
        agent_id, agent = session_agent
        compose = functools.partial(
            self.composer.session_request,
            conversation,
            agent,
            agent_id,
            message,
            message.sender_id,
            self.config.resolve_model(agent.model),
        )
        return AgentTurn(
            self.store,
            self.service,
            await self.view(conversation.id),
            agent_id,
            compose,
            tool_context=ToolContext(user_id=message.sender_id, store=self.store, cache=self.cache),
            bus=self.bus,
            persist_retry_delay=self.config.persist_retry_delay,
        )

    def start_turn(self, turn: AgentTurn) -> asyncio.Task:
        """Run a turn as a detached task that outlives its caller."""
        return self._tasks.spawn(turn.run(), context=f"turn:{turn.id}")

    async def ask(self, conversation_id: str, sender_id: str, content: str) -> Optional[TurnResult]:
        """Post a message to an agent session and wait for the agent's answer."""
        _, turn = await self.post_message(conversation_id, sender_id, content)
        if turn is None:
            return None
        return await turn.run()

    async def _name_session(self, conversation_id: str, message: Message) -> str:
        prompt = strip_markup(message.content)
        try:
            title = await summarize_title(self.service, prompt, model=self.config.resolve_model(self.config.title_model))
        except GenerationError as e:
            logger.warning("Title summarization failed: %s", e)
            self.bus.emit(WarningEvent(message=f"Could not summarize session title: {e}"))
            title = fallback_title(prompt)
        await self.store.update(CONVERSATIONS, {"id": conversation_id}, {"name": title})
        self.bus.emit(SessionRenamedEvent(session_id=conversation_id, name=title))
        return title

    async def create_session(self, user_id: str, name: Optional[str] = None) -> Conversation:
        """New agent session between a user and the generic agent."""
        agent = await queries.ensure_participant(
            self.store, GENERIC_AGENT.username, is_autonomous=True, avatar_url=GENERIC_AGENT.avatar_url
        )
        self._agents.setdefault(agent.id, GENERIC_AGENT)
        conversation = await queries.create_conversation(
            self.store, ConversationKind.AGENT_SESSION, name, [user_id, agent.id]
        )
        self.bus.emit(SessionCreatedEvent(session_id=conversation.id, name=name or "Untitled session"))
        return conversation

    async def agent_session_for(self, user_id: str, agent_username: str) -> Conversation:
        """The user's chat with a named agent, created on first use.

        When several exist the oldest is used.

        Raises:
            HuddleError: If no seeded agent has that username
        """
        agent_id = next((pid for pid, a in self._agents.items() if a.username == agent_username), None)
        if agent_id is None:
            raise HuddleError(f"Unknown agent: {agent_username}")
        sessions = await queries.shared_conversations(self.store, user_id, agent_id, ConversationKind.AGENT_SESSION)
        if sessions:
            return sessions[0]
        return await queries.create_conversation(
            self.store, ConversationKind.AGENT_SESSION, agent_username, [user_id, agent_id]
        )

    async def _autoreply_turn(self, conversation: Conversation, candidate: ReplyCandidate, message: Message) -> TurnResult:
        compose = functools.partial(
            self.composer.autoreply_request,
            conversation,
            candidate.agent,
            message,
            self.config.resolve_model(candidate.agent.model),
        )
        turn = AgentTurn(
            self.store,
            self.service,
            await self.view(conversation.id),
            candidate.participant.id,
            compose,
            bus=self.bus,
            persist_retry_delay=self.config.persist_retry_delay,
            allow_silence=True,
        )
        return await turn.run()

    async def drain(self) -> None:
        """Wait for detached turns, titles, and auto-replies, including ones they trigger."""
        while len(self._tasks) or self.store.feed.pending:
            await self._tasks.drain()
            await self.store.feed.drain()

    async def close(self) -> None:
        self.autoreply.stop()
        await self.drain()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.cache.close()
        await self.store.close()
