"""Tests for the in-memory and JSON stores, change feed, and lookup cache."""

import asyncio
import json
from pathlib import Path

import pytest

from huddle.exceptions import StoreError
from huddle.store import (
    CONVERSATIONS,
    MEMBERSHIPS,
    MESSAGES,
    PARTICIPANTS,
    ChangeKind,
    ConversationKind,
    JsonFileStore,
    LookupCache,
    MemoryStore,
    queries,
)


@pytest.mark.asyncio
async def test_insert_assigns_id_and_increasing_timestamps(store):
    first = await store.insert(PARTICIPANTS, {"username": "alice"})
    second = await store.insert(PARTICIPANTS, {"username": "bob"})

    assert first["id"] != second["id"]
    assert first["created_at"] < second["created_at"]


@pytest.mark.asyncio
async def test_duplicate_username_is_rejected(store):
    await store.insert(PARTICIPANTS, {"username": "alice"})

    with pytest.raises(StoreError):
        await store.insert(PARTICIPANTS, {"username": "alice"})


@pytest.mark.asyncio
async def test_duplicate_membership_is_rejected(store):
    alice = await queries.ensure_participant(store, "alice")
    channel = await queries.create_conversation(store, ConversationKind.CHANNEL, "general", [alice.id])

    with pytest.raises(StoreError):
        await store.insert(MEMBERSHIPS, {"conversation_id": channel.id, "participant_id": alice.id})


@pytest.mark.asyncio
async def test_unknown_table_raises(store):
    with pytest.raises(StoreError):
        await store.select("reactions")


@pytest.mark.asyncio
async def test_select_filters_orders_and_limits(store):
    for name in ["b", "c", "a"]:
        await store.insert(CONVERSATIONS, {"kind": "channel", "name": name})
    await store.insert(CONVERSATIONS, {"kind": "direct", "name": None})

    rows = await store.select(CONVERSATIONS, where={"kind": "channel"}, order_by="name", limit=2)
    assert [r["name"] for r in rows] == ["a", "b"]

    rows = await store.select(CONVERSATIONS, where_in={"name": ["a", "c"]}, order_by="name", descending=True)
    assert [r["name"] for r in rows] == ["c", "a"]


@pytest.mark.asyncio
async def test_deleting_conversation_cascades(store, seed_workspace):
    ws = await seed_workspace(store)

    await store.delete(CONVERSATIONS, {"id": ws.general.id})

    assert await store.select(MESSAGES, where={"conversation_id": ws.general.id}) == []
    assert await store.select(MEMBERSHIPS, where={"conversation_id": ws.general.id}) == []
    assert await store.select(MESSAGES, where={"conversation_id": ws.dm.id}) != []


@pytest.mark.asyncio
async def test_update_returns_changed_rows(store):
    row = await store.insert(CONVERSATIONS, {"kind": "agent-session", "name": None})

    updated = await store.update(CONVERSATIONS, {"id": row["id"]}, {"name": "Roadmap"})

    assert [r["name"] for r in updated] == ["Roadmap"]
    assert (await store.select_one(CONVERSATIONS, id=row["id"]))["name"] == "Roadmap"


@pytest.mark.asyncio
async def test_feed_publishes_inserts_to_sync_and_async_handlers(store):
    seen = []
    async_seen = []

    async def on_async(change):
        await asyncio.sleep(0)
        async_seen.append(change.row["content"])

    store.feed.subscribe(MESSAGES, lambda change: seen.append(change.kind))
    store.feed.subscribe(MESSAGES, on_async, kinds=[ChangeKind.INSERT])

    await store.insert(MESSAGES, {"conversation_id": "c", "sender_id": "s", "content": "hello"})
    await store.feed.drain()

    assert seen == [ChangeKind.INSERT]
    assert async_seen == ["hello"]


@pytest.mark.asyncio
async def test_feed_reports_cascaded_deletes(store, seed_workspace):
    ws = await seed_workspace(store)
    deleted = []
    store.feed.subscribe(MESSAGES, lambda change: deleted.append(change.row["id"]), kinds=[ChangeKind.DELETE])

    await store.delete(CONVERSATIONS, {"id": ws.general.id})

    assert len(deleted) == 3


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_insert(store):
    def broken(change):
        raise RuntimeError("boom")

    store.feed.subscribe(MESSAGES, broken)

    row = await store.insert(MESSAGES, {"conversation_id": "c", "sender_id": "s", "content": "x"})
    assert row["id"]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(store):
    seen = []
    unsubscribe = store.feed.subscribe(MESSAGES, seen.append)
    unsubscribe()

    await store.insert(MESSAGES, {"conversation_id": "c", "sender_id": "s", "content": "x"})

    assert seen == []
    assert store.feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_json_store_persists_between_instances(tmp_path):
    path = tmp_path / "data" / "workspace.json"
    first = JsonFileStore(path)
    await queries.ensure_participant(first, "alice")

    assert json.loads(path.read_text())["participants"][0]["username"] == "alice"

    second = JsonFileStore(path)
    assert (await second.select_one(PARTICIPANTS, username="alice")) is not None
    newer = await second.insert(PARTICIPANTS, {"username": "bob"})
    older = await second.select_one(PARTICIPANTS, username="alice")
    assert newer["created_at"] > older["created_at"]


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "workspace.json"
    path.write_text("{not json")

    with pytest.raises(StoreError):
        JsonFileStore(path)


def _fail_first_write(monkeypatch):
    original = Path.write_text
    calls = []

    def flaky(self, *args, **kwargs):
        calls.append(self)
        if len(calls) == 1:
            raise OSError("No space left on device")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", flaky)
    return calls


@pytest.mark.asyncio
async def test_failed_snapshot_insert_leaves_no_row(tmp_path, monkeypatch):
    path = tmp_path / "workspace.json"
    store = JsonFileStore(path)
    seen = []
    store.feed.subscribe(MESSAGES, seen.append)
    _fail_first_write(monkeypatch)

    with pytest.raises(StoreError, match="No space left"):
        await store.insert(MESSAGES, {"conversation_id": "c1", "sender_id": "p1", "content": "first"})
    assert await store.select(MESSAGES) == []
    assert seen == []

    await store.insert(MESSAGES, {"conversation_id": "c1", "sender_id": "p1", "content": "second"})

    assert [r["content"] for r in await store.select(MESSAGES)] == ["second"]
    assert [r["content"] for r in json.loads(path.read_text())["messages"]] == ["second"]


@pytest.mark.asyncio
async def test_failed_snapshot_update_and_delete_roll_back(tmp_path, monkeypatch, seed_workspace):
    store = JsonFileStore(tmp_path / "workspace.json")
    ws = await seed_workspace(store)

    _fail_first_write(monkeypatch)
    with pytest.raises(StoreError):
        await store.update(CONVERSATIONS, {"id": ws.general.id}, {"name": "renamed"})
    assert (await store.select_one(CONVERSATIONS, id=ws.general.id))["name"] == "general"

    _fail_first_write(monkeypatch)
    with pytest.raises(StoreError):
        await store.delete(CONVERSATIONS, {"id": ws.general.id})
    assert await store.select_one(CONVERSATIONS, id=ws.general.id) is not None
    assert len(await store.select(MESSAGES, where={"conversation_id": ws.general.id})) == 3


@pytest.mark.asyncio
async def test_json_store_writes_are_serialized(tmp_path):
    path = tmp_path / "workspace.json"
    store = JsonFileStore(path)

    await asyncio.gather(*(store.insert(PARTICIPANTS, {"username": f"user{i}"}) for i in range(10)))

    assert len(json.loads(path.read_text())["participants"]) == 10
    assert len(await JsonFileStore(path).select(PARTICIPANTS)) == 10


@pytest.mark.asyncio
async def test_find_direct_conversation_prefers_oldest(store, seed_workspace):
    ws = await seed_workspace(store)
    await queries.create_conversation(store, ConversationKind.DIRECT, None, [ws.alice.id, ws.bob.id])

    found = await queries.find_direct_conversation(store, ws.bob.id, ws.alice.id)

    assert found.id == ws.dm.id


@pytest.mark.asyncio
async def test_fetch_messages_newest_is_chronological(store, seed_workspace):
    ws = await seed_workspace(store)

    newest = await queries.fetch_messages(store, ws.general.id, limit=2, newest=True)
    oldest = await queries.fetch_messages(store, ws.general.id, limit=2)

    assert [m.content for m in newest] == ["<p>We ship the beta on Friday</p>", "<p>Sounds good, I will update the docs</p>"]
    assert [m.content for m in oldest] == ["<p>Morning all</p>", "<p>We ship the beta on Friday</p>"]


@pytest.mark.asyncio
async def test_cache_hits_and_invalidation(store, seed_workspace):
    ws = await seed_workspace(store)
    cache = LookupCache(store)

    assert (await cache.channel_by_name("general")).id == ws.general.id
    assert (await cache.conversation(ws.general.id)).name == "general"
    assert cache.hits == 1

    await store.update(CONVERSATIONS, {"id": ws.general.id}, {"name": "town-square"})

    assert await cache.channel_by_name("general") is None
    assert (await cache.channel_by_name("town-square")).id == ws.general.id

    await store.delete(PARTICIPANTS, {"id": ws.bob.id})
    assert await cache.participant(ws.bob.id) is None
    cache.close()
    assert store.feed.subscriber_count == 0
