"""Test configuration and fixtures."""

import warnings
from pathlib import Path
from types import SimpleNamespace
from typing import Any, List

import pytest

from huddle.agents import AgentDefinition
from huddle.config import HuddleConfig
from huddle.generation.base import (
    GenerationRequest,
    GenerationService,
    GenerationSession,
    ToolCallFrame,
    ToolResultFrame,
)
from huddle.store import MemoryStore, queries
from huddle.store.models import MESSAGES, ConversationKind
from huddle.tools import ToolContext, ToolOutcome

# Suppress RuntimeWarnings from litellm's async cleanup
warnings.filterwarnings("ignore", category=RuntimeWarning, module="litellm")

# Placeholder in a script: replaced by a tool_result frame for the last submitted outcome
TOOL_RESULT = object()


class ScriptedSession(GenerationSession):
    """Replays a fixed list of raw frames.

    Items may be frame objects, dicts, JSON/SSE strings, or anything else
    (to exercise malformed input). An Exception item is raised mid-stream.
    """

    def __init__(self, frames: List[Any]):
        self.frames = frames
        self.outcomes: List[ToolOutcome] = []
        self.closed = False
        self._last_call = None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.frames:
            if isinstance(item, Exception):
                raise item
            if item is TOOL_RESULT:
                outcome = self.outcomes[-1]
                yield ToolResultFrame(
                    id=outcome.call_id,
                    name=self._last_call.name,
                    success=outcome.success,
                    result=outcome.result_text(),
                )
                continue
            if isinstance(item, ToolCallFrame):
                self._last_call = item
            yield item

    async def submit_tool_outcome(self, outcome: ToolOutcome) -> None:
        self.outcomes.append(outcome)

    async def aclose(self) -> None:
        self.closed = True


class ScriptedService(GenerationService):
    """Generation service returning one scripted session per ``open``.

    A script that is an Exception makes ``open`` raise it.
    """

    def __init__(self, *scripts: Any, completion: Any = "Planning the launch"):
        self.scripts = list(scripts)
        self.completion = completion
        self.requests: List[GenerationRequest] = []
        self.sessions: List[ScriptedSession] = []
        self.completions: List[tuple] = []

    async def open(self, request: GenerationRequest) -> ScriptedSession:
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else [{"text": "ok"}, "[DONE]"]
        if isinstance(script, Exception):
            raise script
        session = ScriptedSession(list(script))
        self.sessions.append(session)
        return session

    async def complete(self, system: str, user: str, **hints: Any) -> str:
        self.completions.append((system, user, hints))
        if isinstance(self.completion, Exception):
            raise self.completion
        return self.completion


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scripted_service():
    """Factory for ScriptedService instances."""
    return ScriptedService


@pytest.fixture
def config(tmp_path: Path) -> HuddleConfig:
    return HuddleConfig(
        store_path=tmp_path / "workspace.json",
        content_dir=tmp_path / "content",
        persist_retry_delay=0,
        agents=[
            AgentDefinition(
                username="Ada",
                system_prompt="You are Ada, a pragmatic engineer.",
                channels=["engineering"],
            ),
            AgentDefinition(
                username="Grace",
                system_prompt="You are Grace, a compiler expert.",
            ),
        ],
    )


@pytest.fixture
def seed_workspace():
    """Populate a store with two humans, two channels, and a DM.

    Returns an async function ``seed(store)`` producing a namespace of ids.
    """

    async def seed(store: MemoryStore) -> SimpleNamespace:
        alice = await queries.ensure_participant(store, "alice")
        bob = await queries.ensure_participant(store, "bob")
        general = await queries.create_conversation(store, ConversationKind.CHANNEL, "general", [alice.id, bob.id])
        engineering = await queries.create_conversation(
            store, ConversationKind.CHANNEL, "engineering", [alice.id, bob.id]
        )
        dm = await queries.create_conversation(store, ConversationKind.DIRECT, None, [alice.id, bob.id])

        for sender, text in [
            (alice, "<p>Morning all</p>"),
            (bob, "<p>We ship the beta on Friday</p>"),
            (alice, "<p>Sounds good, I will update the docs</p>"),
        ]:
            await store.insert(MESSAGES, {"conversation_id": general.id, "sender_id": sender.id, "content": text})
        await store.insert(
            MESSAGES, {"conversation_id": dm.id, "sender_id": bob.id, "content": "<p>Can you review my PR?</p>"}
        )

        return SimpleNamespace(
            alice=alice,
            bob=bob,
            general=general,
            engineering=engineering,
            dm=dm,
            ctx=ToolContext(user_id=alice.id, store=store),
        )

    return seed
