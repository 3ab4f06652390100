"""Tests for the agent turn state machine."""

import json
from pathlib import Path

import pytest

from conftest import TOOL_RESULT, ScriptedService
from huddle.annotations import parse_tool_calls
from huddle.events import (
    ChannelCreatedEvent,
    ErrorEvent,
    EventBus,
    MessagePersistedEvent,
    PlaceholderCreatedEvent,
    PlaceholderRemovedEvent,
    PlaceholderUpdatedEvent,
    ToolCallFinishedEvent,
    ToolCallStartedEvent,
    TurnStateChangedEvent,
)
from huddle.exceptions import GenerationError, StoreError
from huddle.generation.base import ChatTurn, GenerationRequest, ToolCallFrame, ToolResultFrame
from huddle.store import MESSAGES, JsonFileStore, queries
from huddle.tools import ToolContext
from huddle.turn import TOOLS_UNAVAILABLE, AgentTurn, TurnAccumulator, TurnState
from huddle.view import ConversationView


async def _request():
    return GenerationRequest(system="You are Ada.", turns=[ChatTurn(role="user", content="hi")])


async def _setup(store, seed_workspace, *scripts, tools=False, allow_silence=False):
    ws = await seed_workspace(store)
    agent = await queries.ensure_participant(store, "Ada", is_autonomous=True)
    service = ScriptedService(*scripts)
    view = ConversationView(ws.general.id, await queries.fetch_messages(store, ws.general.id))
    bus = EventBus()
    events = []
    bus.subscribe(events.append)
    turn = AgentTurn(
        store,
        service,
        view,
        agent.id,
        _request,
        tool_context=ToolContext(user_id=ws.alice.id, store=store) if tools else None,
        bus=bus,
        persist_retry_delay=0,
        allow_silence=allow_silence,
    )
    return ws, agent, service, view, turn, events


async def _agent_rows(store, agent):
    return await store.select(MESSAGES, where={"sender_id": agent.id})


def _states(events):
    return [e.state for e in events if isinstance(e, TurnStateChangedEvent)]


def test_accumulator_keeps_one_entry_per_call():
    acc = TurnAccumulator()
    call = ToolCallFrame(id="call_1", name="list_users")

    assert acc.start_call(call)
    assert not acc.start_call(call)
    acc.finish_call(ToolResultFrame(id="call_1", name="list_users", success=True, result="{}"))
    acc.finish_call(ToolResultFrame(id="call_2", name="list_channels", success=False, result="boom"))

    assert [e.id for e in acc.tool_calls] == ["call_1", "call_2"]
    assert acc.entry("call_1").success is True
    assert acc.entry("call_2").success is False


def test_accumulator_final_content_is_empty_without_output():
    acc = TurnAccumulator()
    acc.add_text("  \n")

    assert acc.final_content() == ""


def test_accumulator_display_hides_partial_link():
    acc = TurnAccumulator()
    acc.add_text("Read [the guide](https://exa")

    assert acc.display() == "Read "


@pytest.mark.asyncio
async def test_reply_is_streamed_and_persisted(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(
        store, seed_workspace, [{"text": "Hello "}, {"text": "there  "}, "[DONE]"]
    )

    result = await turn.run()

    assert result.state is TurnState.DONE
    assert result.content == "Hello there"
    rows = await _agent_rows(store, agent)
    assert [r["content"] for r in rows] == ["Hello there"]
    assert view.placeholders == {}
    assert view.messages[-1].id == rows[0]["id"]
    assert _states(events) == ["composing", "streaming", "persisting", "done"]
    updates = [e.content for e in events if isinstance(e, PlaceholderUpdatedEvent)]
    assert updates == ["Hello ", "Hello there  "]
    persisted = [e for e in events if isinstance(e, MessagePersistedEvent)]
    created = [e for e in events if isinstance(e, PlaceholderCreatedEvent)]
    assert persisted[0].placeholder_id == created[0].placeholder_id
    assert service.sessions[0].closed


@pytest.mark.asyncio
async def test_tool_call_mid_stream_is_dispatched(store, seed_workspace):
    call = ToolCallFrame(id="call_1", name="create_channel", arguments={"channel_name": "Launch Room"})
    ws, agent, service, view, turn, events = await _setup(
        store,
        seed_workspace,
        [{"text": "On it. "}, call, call, TOOL_RESULT, {"text": "Created #launch-room."}, "[DONE]"],
        tools=True,
    )

    result = await turn.run()

    session = service.sessions[0]
    assert len(session.outcomes) == 1
    assert session.outcomes[0].success
    assert session.outcomes[0].call_id == "call_1"
    assert await queries.get_conversation(store, session.outcomes[0].data["channel_id"]) is not None

    entries, text = parse_tool_calls(result.content)
    assert text == "On it. Created #launch-room."
    assert [(e.id, e.success) for e in entries] == [("call_1", True)]
    assert [type(e) for e in events if isinstance(e, (ToolCallStartedEvent, ToolCallFinishedEvent))] == [
        ToolCallStartedEvent,
        ToolCallFinishedEvent,
    ]
    sidebar = [e for e in events if isinstance(e, ChannelCreatedEvent)]
    assert [e.name for e in sidebar] == ["launch-room"]


@pytest.mark.asyncio
async def test_tool_call_without_context_is_refused(store, seed_workspace):
    call = ToolCallFrame(id="call_1", name="list_users")
    ws, agent, service, view, turn, events = await _setup(
        store, seed_workspace, [call, TOOL_RESULT, {"text": "Sorry."}, "[DONE]"]
    )

    result = await turn.run()

    outcome = service.sessions[0].outcomes[0]
    assert not outcome.success
    assert outcome.error == TOOLS_UNAVAILABLE
    assert result.state is TurnState.DONE


@pytest.mark.asyncio
async def test_malformed_frames_are_skipped(store, seed_workspace):
    script = ["garbage", 42, {"unknown": 1}, ": keepalive", 'data: {"text": "ok"}', "data: [DONE]", {"text": "late"}]
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, script)

    result = await turn.run()

    assert result.state is TurnState.DONE
    assert result.content == "ok"


@pytest.mark.asyncio
async def test_transport_failure_removes_placeholder(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(
        store, seed_workspace, [{"text": "partial"}, GenerationError("connection reset")]
    )

    result = await turn.run()

    assert result.state is TurnState.FAILED
    assert result.error == "connection reset"
    assert view.placeholders == {}
    assert await _agent_rows(store, agent) == []
    assert service.sessions[0].closed
    removed = [e for e in events if isinstance(e, PlaceholderRemovedEvent)]
    assert removed[0].reason == "generation failed"
    assert any(isinstance(e, ErrorEvent) for e in events)


@pytest.mark.asyncio
async def test_service_unreachable_fails_turn(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, GenerationError("unreachable"))

    result = await turn.run()

    assert result.state is TurnState.FAILED
    assert view.placeholders == {}
    assert _states(events)[-1] == "failed"


@pytest.mark.asyncio
async def test_compose_failure_never_creates_placeholder(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace)

    async def broken():
        raise ValueError("no such conversation")

    turn.compose = broken
    result = await turn.run()

    assert result.state is TurnState.FAILED
    assert not any(isinstance(e, PlaceholderCreatedEvent) for e in events)
    assert service.requests == []


@pytest.mark.asyncio
async def test_store_failure_is_retried_once(store, seed_workspace, monkeypatch):
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, [{"text": "Saved"}, "[DONE]"])
    original = store.insert
    attempts = []

    async def flaky(table, row):
        if table == MESSAGES:
            attempts.append(row)
            if len(attempts) == 1:
                raise StoreError("database is locked", table=table, operation="insert")
        return await original(table, row)

    monkeypatch.setattr(store, "insert", flaky)

    result = await turn.run()

    assert result.state is TurnState.DONE
    assert len(attempts) == 2
    assert [r["content"] for r in await _agent_rows(store, agent)] == ["Saved"]
    assert view.placeholders == {}


@pytest.mark.asyncio
async def test_retry_after_failed_snapshot_stores_one_row(tmp_path, seed_workspace, monkeypatch):
    path = tmp_path / "workspace.json"
    store = JsonFileStore(path)
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, [{"text": "hello"}, "[DONE]"])
    original = Path.write_text
    writes = []

    def flaky(self, *args, **kwargs):
        writes.append(self)
        if len(writes) == 1:
            raise OSError("disk full")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", flaky)

    result = await turn.run()

    assert result.state is TurnState.DONE
    assert len(writes) == 2
    assert [r["content"] for r in await _agent_rows(store, agent)] == ["hello"]
    on_disk = json.loads(path.read_text())["messages"]
    assert [r["content"] for r in on_disk if r["sender_id"] == agent.id] == ["hello"]


@pytest.mark.asyncio
async def test_double_store_failure_keeps_placeholder(store, seed_workspace, monkeypatch):
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, [{"text": "Keep me"}, "[DONE]"])
    original = store.insert
    attempts = []

    async def broken(table, row):
        if table == MESSAGES:
            attempts.append(row)
            raise StoreError("disk full", table=table, operation="insert")
        return await original(table, row)

    monkeypatch.setattr(store, "insert", broken)

    result = await turn.run()

    assert result.state is TurnState.FAILED
    assert result.error == "Failed to save agent reply"
    assert len(attempts) == 2
    assert [p.content for p in view.placeholders.values()] == ["Keep me"]
    assert await _agent_rows(store, agent) == []


@pytest.mark.asyncio
async def test_empty_reply_is_not_persisted(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, [{"text": "  "}, "[DONE]"])

    result = await turn.run()

    assert result.state is TurnState.DONE
    assert result.message is None
    assert view.placeholders == {}
    assert await _agent_rows(store, agent) == []


@pytest.mark.asyncio
async def test_no_reply_marker_is_silent_when_allowed(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(
        store, seed_workspace, [{"text": "[NO_REPLY]"}, "[DONE]"], allow_silence=True
    )

    result = await turn.run()

    assert result.silent
    assert result.state is TurnState.DONE
    assert await _agent_rows(store, agent) == []


@pytest.mark.asyncio
async def test_no_reply_marker_is_text_otherwise(store, seed_workspace):
    ws, agent, service, view, turn, events = await _setup(store, seed_workspace, [{"text": "[NO_REPLY]"}, "[DONE]"])

    result = await turn.run()

    assert not result.silent
    assert [r["content"] for r in await _agent_rows(store, agent)] == ["[NO_REPLY]"]
