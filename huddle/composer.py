"""Build generation requests for agent turns."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from huddle.agents import AgentDefinition
from huddle.annotations import strip_metadata
from huddle.commands import CommandLibrary
from huddle.context import EntityContextResolver, EntityReference, extract_references
from huddle.generation.base import ChatTurn, GenerationRequest
from huddle.markup import EntityCategory, parse as parse_markup, strip_markup
from huddle.prompt import (
    activated_skills,
    autoreply_system_prompt,
    autoreply_user_prompt,
    build_system_prompt,
    compose,
)
from huddle.store import queries
from huddle.store.base import Store
from huddle.store.models import CONVERSATIONS, PARTICIPANTS, Conversation, ConversationKind, Message
from huddle.tools import tool_schemas

logger = logging.getLogger(__name__)

DEFAULT_AUTOREPLY_WINDOW = 10


def history_turns(messages: Sequence[Message], agent_id: str) -> List[ChatTurn]:
    """Alternating user/assistant turns from stored messages.

    The agent's own messages become assistant turns with metadata markers
    removed; everything else is a user turn in plain text. Consecutive
    messages from the same side are merged.
    """
    turns: List[ChatTurn] = []
    for message in messages:
        if message.sender_id == agent_id:
            role, text = "assistant", strip_metadata(message.content).strip()
        else:
            role, text = "user", strip_markup(message.content)
        if not text:
            continue
        if turns and turns[-1].role == role:
            turns[-1] = ChatTurn(role=role, content=f"{turns[-1].content}\n\n{text}")
        else:
            turns.append(ChatTurn(role=role, content=text))
    return turns


class TurnComposer:
    """Assembles system prompt, history, and tools for a turn.

    Args:
        store: Workspace store
        resolver: Resolves mentioned entities to transcripts
        library: Command and skill library for activated skills
        autoreply_window: Number of recent messages shown to an unprompted reply
        web_search_options: LiteLLM web search settings added to every request, if any
    """

    def __init__(
        self,
        store: Store,
        resolver: EntityContextResolver,
        library: Optional[CommandLibrary] = None,
        autoreply_window: int = DEFAULT_AUTOREPLY_WINDOW,
        web_search_options: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.library = library
        self.autoreply_window = autoreply_window
        self.web_search_options = web_search_options

    def _hints(self, model: Optional[str]) -> Dict[str, Any]:
        hints: Dict[str, Any] = {}
        if model:
            hints["model"] = model
        if self.web_search_options:
            hints["web_search_options"] = dict(self.web_search_options)
        return hints

    async def known_entities(self, acting_user_id: str, agent_id: str) -> List[EntityReference]:
        """People, channels, and the acting user's agent sessions the model may link to."""
        entities = []
        for row in await self.store.select(PARTICIPANTS, order_by="username"):
            if row["id"] != agent_id:
                entities.append(EntityReference(EntityCategory.PERSON, row["id"], row["username"]))

        for row in await self.store.select(CONVERSATIONS, where={"kind": ConversationKind.CHANNEL.value}, order_by="name"):
            entities.append(EntityReference(EntityCategory.CHANNEL, row["id"], row["name"] or ""))

        session_ids = await queries.conversation_ids_for(self.store, acting_user_id)
        if session_ids:
            sessions = await self.store.select(
                CONVERSATIONS,
                where={"kind": ConversationKind.AGENT_SESSION.value},
                where_in={"id": session_ids},
                order_by="created_at",
            )
            for row in sessions:
                entities.append(EntityReference(EntityCategory.AGENT_SESSION, row["id"], row["name"] or "Untitled"))
        return entities

    def _skill_instructions(self, raw_markup: str) -> List[str]:
        if self.library is None:
            return []
        instructions = []
        for name in activated_skills(raw_markup):
            text = self.library.load_skill_instructions(name)
            if text is None:
                logger.warning("Activated skill '%s' not found", name)
                continue
            instructions.append(text)
        return instructions

    async def session_request(
        self,
        conversation: Conversation,
        agent: AgentDefinition,
        agent_id: str,
        user_message: Message,
        acting_user_id: str,
        model: Optional[str] = None,
    ) -> GenerationRequest:
        """Request for an agent answering a user in an agent session or DM.

        Mentions in the user's message are resolved to transcripts and any
        command bodies become instruction blocks ahead of the user's text.
        """
        raw = user_message.content
        document = parse_markup(raw)
        contexts = await self.resolver.resolve_all(extract_references(document), acting_user_id)
        composed = compose(raw, contexts)
        if composed == raw:
            composed = strip_markup(raw)

        messages = await queries.fetch_messages(self.store, conversation.id)
        earlier = [m for m in messages if m.id != user_message.id and m.created_at <= user_message.created_at]
        turns = history_turns(earlier, agent_id)
        if turns and turns[-1].role == "user":
            turns[-1] = ChatTurn(role="user", content=f"{turns[-1].content}\n\n{composed}")
        else:
            turns.append(ChatTurn(role="user", content=composed))

        session_name = conversation.name if conversation.kind is ConversationKind.AGENT_SESSION else None
        system = build_system_prompt(
            agent.system_prompt,
            session_name=session_name,
            skill_instructions=self._skill_instructions(raw),
            entities=await self.known_entities(acting_user_id, agent_id),
        )

        return GenerationRequest(system=system, turns=turns, tools=tool_schemas(), hints=self._hints(model))

    async def autoreply_request(
        self,
        conversation: Conversation,
        agent: AgentDefinition,
        trigger: Message,
        model: Optional[str] = None,
    ) -> GenerationRequest:
        """Request for an unprompted reply in a shared conversation.

        The model sees the last few messages up to the trigger as
        ``username: text`` lines. Tools are not offered.
        """
        messages = await queries.fetch_messages(self.store, conversation.id)
        window = [m for m in messages if m.created_at <= trigger.created_at][-self.autoreply_window :]
        names = await queries.sender_names(self.store, {m.sender_id for m in window} | {trigger.sender_id})

        recent = [(names.get(m.sender_id, "Unknown"), strip_markup(m.content)) for m in window]
        trigger_text = strip_markup(trigger.content)
        if not recent or recent[-1][1] != trigger_text:
            recent.append((names.get(trigger.sender_id, "Unknown"), trigger_text))

        channel_name = conversation.name if conversation.kind is ConversationKind.CHANNEL else None
        return GenerationRequest(
            system=autoreply_system_prompt(agent.system_prompt, channel_name),
            turns=[ChatTurn(role="user", content=autoreply_user_prompt(recent, agent.username))],
            hints=self._hints(model),
        )
