"""Tests for the HTTP API."""

import asyncio
import json

import pytest
from starlette.testclient import TestClient

from conftest import ScriptedService
from huddle.agents import GENERIC_AGENT
from huddle.config import HTTPConfig
from huddle.events import SessionRenamedEvent
from huddle.server import HuddleServer, event_payload
from huddle.store import queries
from huddle.store.models import ConversationKind
from huddle.workspace import Workspace


@pytest.fixture
def seeded(store, seed_workspace):
    async def _seed():
        ws = await seed_workspace(store)
        agent = await queries.ensure_participant(store, GENERIC_AGENT.username, is_autonomous=True)
        ws.session = await queries.create_conversation(
            store, ConversationKind.AGENT_SESSION, None, [ws.alice.id, agent.id]
        )
        return ws

    return asyncio.run(_seed())


def _server(config, store, auth_tokens=None, *scripts):
    workspace = Workspace(config, store, ScriptedService(*scripts))
    return HuddleServer(workspace, HTTPConfig(auth_tokens=auth_tokens or []))


def _sse_events(text):
    return [json.loads(line[len("data: ") :]) for line in text.splitlines() if line.startswith("data: ")]


def test_event_payload_names_the_type():
    payload = event_payload(SessionRenamedEvent(session_id="s1", name="Launch"))

    assert payload == {"type": "session_renamed", "session_id": "s1", "name": "Launch"}


def test_health_lists_agents(config, store, seeded):
    server = _server(config, store)

    with TestClient(server.app) as client:
        response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "agents": ["Ada", "Grace", "Slack Agent"]}


def test_auth_is_required_when_tokens_configured(config, store, seeded):
    server = _server(config, store, ["secret-token"])

    with TestClient(server.app) as client:
        denied = client.get("/api/tools")
        wrong = client.get("/api/tools", headers={"Authorization": "Bearer nope"})
        allowed = client.get("/api/tools", headers={"Authorization": "Bearer secret-token"})
        health = client.get("/api/health")

    assert denied.status_code == 401
    assert wrong.status_code == 401
    assert allowed.status_code == 200
    assert health.status_code == 200
    names = {t["name"] for t in allowed.json()["tools"]}
    assert "send_message" in names


def test_commands_endpoint_lists_library(config, store, seeded):
    commands_dir = config.content_dir / "commands"
    commands_dir.mkdir(parents=True)
    (commands_dir / "summarize.md").write_text("---\ndescription: Summarize\n---\nSummarize the conversation.\n")
    server = _server(config, store)

    with TestClient(server.app) as client:
        response = client.get("/api/commands")

    commands = response.json()["commands"]
    assert [(c["id"], c["label"], c["body"]) for c in commands] == [
        ("command-summarize", "/summarize", "Summarize the conversation.")
    ]


def test_get_messages(config, store, seeded):
    server = _server(config, store)

    with TestClient(server.app) as client:
        response = client.get(f"/api/conversations/{seeded.general.id}/messages")
        missing = client.get("/api/conversations/nope/messages")

    messages = response.json()["messages"]
    assert [m["content"] for m in messages][0] == "<p>Morning all</p>"
    assert all(m["streaming"] is False for m in messages)
    assert missing.status_code == 404


def test_post_to_channel_returns_created(config, store, seeded):
    server = _server(config, store)

    with TestClient(server.app) as client:
        response = client.post(
            f"/api/conversations/{seeded.general.id}/messages",
            json={"sender_id": seeded.bob.id, "content": "<p>Standup in 5</p>"},
        )

    assert response.status_code == 201
    assert response.json()["message"]["content"] == "<p>Standup in 5</p>"


def test_post_validation(config, store, seeded):
    server = _server(config, store)
    url = f"/api/conversations/{seeded.general.id}/messages"

    with TestClient(server.app) as client:
        not_json = client.post(url, content=b"{nope", headers={"Content-Type": "application/json"})
        no_content = client.post(url, json={"sender_id": seeded.bob.id, "content": "  "})
        no_sender = client.post(url, json={"content": "hi"})
        unknown = client.post("/api/conversations/nope/messages", json={"sender_id": seeded.bob.id, "content": "hi"})

    assert not_json.status_code == 400
    assert no_content.json() == {"error": "content is required"}
    assert no_sender.json() == {"error": "sender_id is required"}
    assert unknown.status_code == 404


def test_post_to_session_streams_the_reply(config, store, seeded):
    server = _server(config, store, None, [{"text": "Sure, "}, {"text": "here it is."}, "[DONE]"])
    url = f"/api/conversations/{seeded.session.id}/messages"

    with TestClient(server.app) as client:
        response = client.post(url, json={"sender_id": seeded.alice.id, "content": "<p>Plan the week</p>"})
        events = _sse_events(response.text)
        after = client.get(url).json()["messages"]

    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    types = [e["type"] for e in events]
    assert types[0] == "message"
    assert events[0]["message"]["content"] == "<p>Plan the week</p>"
    assert types[-1] == "done"
    assert "placeholder_created" in types
    assert "placeholder_updated" in types
    persisted = next(e for e in events if e["type"] == "message_persisted")
    assert persisted["content"] == "Sure, here it is."
    states = [e["state"] for e in events if e["type"] == "turn_state"]
    assert states[-1] == "done"
    assert [m["content"] for m in after] == ["<p>Plan the week</p>", "Sure, here it is."]


def _manual_schedule(config):
    return config.model_copy(update={"schedule_poll_interval": 0})


def test_scheduled_message_lifecycle(config, store, seeded):
    server = _server(_manual_schedule(config), store)
    body = {
        "sender_id": seeded.alice.id,
        "content": "<p>Standup in five</p>",
        "send_at": "2099-01-01T09:00:00+00:00",
        "conversation_id": seeded.general.id,
    }

    with TestClient(server.app) as client:
        created = client.post("/api/scheduled", json=body)
        scheduled_id = created.json()["scheduled"]["id"]
        listed = client.get("/api/scheduled", params={"sender_id": seeded.alice.id}).json()["scheduled"]
        others = client.get("/api/scheduled", params={"sender_id": seeded.bob.id}).json()["scheduled"]
        cancelled = client.delete(f"/api/scheduled/{scheduled_id}")
        again = client.delete(f"/api/scheduled/{scheduled_id}")
        remaining = client.get("/api/scheduled").json()["scheduled"]

    assert created.status_code == 201
    assert created.json()["scheduled"]["status"] == "pending"
    assert [s["id"] for s in listed] == [scheduled_id]
    assert others == []
    assert cancelled.json() == {"cancelled": scheduled_id}
    assert again.status_code == 404
    assert remaining == []


def test_scheduled_validation(config, store, seeded):
    server = _server(_manual_schedule(config), store)
    base = {"sender_id": seeded.alice.id, "content": "<p>hi</p>", "send_at": "2099-01-01T09:00:00+00:00"}

    with TestClient(server.app) as client:
        no_time = client.post("/api/scheduled", json={**base, "send_at": ""})
        bad_time = client.post("/api/scheduled", json={**base, "send_at": "next tuesday"})
        bad_type = client.post("/api/scheduled", json={**base, "recipient_type": "pigeon"})
        no_target = client.post("/api/scheduled", json=base)
        missing = client.post("/api/scheduled/nope/send")

    assert no_time.json() == {"error": "send_at is required"}
    assert bad_time.status_code == 400
    assert bad_type.status_code == 400
    assert no_target.status_code == 400
    assert "needs a conversation" in no_target.json()["error"]
    assert missing.status_code == 404


def test_send_scheduled_delivers_due_messages(config, store, seeded):
    server = _server(_manual_schedule(config), store)
    url = f"/api/conversations/{seeded.general.id}/messages"

    with TestClient(server.app) as client:
        client.post(
            "/api/scheduled",
            json={
                "sender_id": seeded.bob.id,
                "content": "<p>Release notes are up</p>",
                "send_at": "2020-01-01T09:00:00+00:00",
                "conversation_id": seeded.general.id,
            },
        )
        sent = client.post("/api/send-scheduled").json()
        again = client.post("/api/send-scheduled").json()
        messages = client.get(url).json()["messages"]

    assert sent == {"sent": 1}
    assert again == {"sent": 0}
    assert messages[-1]["content"] == "<p>Release notes are up</p>"


def test_send_now_starts_new_agent_session(config, store, seeded):
    server = _server(_manual_schedule(config), store, None, [{"text": "Reviewed."}, "[DONE]"])

    with TestClient(server.app) as client:
        created = client.post(
            "/api/scheduled",
            json={
                "sender_id": seeded.alice.id,
                "content": "<p>Review the week</p>",
                "send_at": "2099-01-01T09:00:00+00:00",
                "recipient_type": "new_agent",
                "recipient_label": "Weekly review",
            },
        ).json()["scheduled"]
        response = client.post(f"/api/scheduled/{created['id']}/send")

    delivered = response.json()["scheduled"]
    assert created["conversation_id"] is None
    assert delivered["status"] == "sent"
    messages = asyncio.run(queries.fetch_messages(store, delivered["conversation_id"]))
    assert [m.content for m in messages] == ["<p>Review the week</p>", "Reviewed."]
