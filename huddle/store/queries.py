"""Query helpers shared by tools, context resolution, and the workspace."""

from typing import Dict, Iterable, List, Optional

from huddle.store.base import Store
from huddle.store.models import (
    CONVERSATIONS,
    MEMBERSHIPS,
    MESSAGES,
    PARTICIPANTS,
    Conversation,
    ConversationKind,
    Message,
    Participant,
)


async def get_participant(store: Store, participant_id: str) -> Optional[Participant]:
    row = await store.select_one(PARTICIPANTS, id=participant_id)
    return Participant.model_validate(row) if row else None


async def get_conversation(store: Store, conversation_id: str) -> Optional[Conversation]:
    row = await store.select_one(CONVERSATIONS, id=conversation_id)
    return Conversation.model_validate(row) if row else None


async def conversation_ids_for(store: Store, participant_id: str) -> List[str]:
    rows = await store.select(MEMBERSHIPS, where={"participant_id": participant_id})
    return [r["conversation_id"] for r in rows]


async def member_ids(store: Store, conversation_id: str) -> List[str]:
    rows = await store.select(MEMBERSHIPS, where={"conversation_id": conversation_id})
    return [r["participant_id"] for r in rows]


async def shared_conversations(
    store: Store, first_id: str, second_id: str, kind: Optional[ConversationKind] = None
) -> List[Conversation]:
    """Conversations both participants belong to, oldest first."""
    mine = await conversation_ids_for(store, first_id)
    if not mine:
        return []
    shared = await store.select(
        MEMBERSHIPS, where={"participant_id": second_id}, where_in={"conversation_id": mine}
    )
    if not shared:
        return []
    where = {"kind": kind.value} if kind else None
    rows = await store.select(
        CONVERSATIONS,
        where=where,
        where_in={"id": [r["conversation_id"] for r in shared]},
        order_by="created_at",
    )
    return [Conversation.model_validate(r) for r in rows]


async def find_direct_conversation(store: Store, first_id: str, second_id: str) -> Optional[Conversation]:
    """The DM between two participants. When several exist the oldest wins."""
    dms = await shared_conversations(store, first_id, second_id, ConversationKind.DIRECT)
    return dms[0] if dms else None


async def create_conversation(
    store: Store, kind: ConversationKind, name: Optional[str], participant_ids: Iterable[str]
) -> Conversation:
    row = await store.insert(CONVERSATIONS, {"kind": kind.value, "name": name})
    await store.insert_many(
        MEMBERSHIPS,
        [{"conversation_id": row["id"], "participant_id": pid} for pid in dict.fromkeys(participant_ids)],
    )
    return Conversation.model_validate(row)


async def fetch_messages(
    store: Store, conversation_id: str, limit: Optional[int] = None, newest: bool = False
) -> List[Message]:
    """Messages in chronological order.

    Args:
        store: Store handle
        conversation_id: Conversation to read
        limit: Maximum number of messages
        newest: With a limit, take the most recent messages instead of the oldest
    """
    rows = await store.select(
        MESSAGES,
        where={"conversation_id": conversation_id},
        order_by="created_at",
        descending=newest,
        limit=limit,
    )
    if newest:
        rows.reverse()
    return [Message.model_validate(r) for r in rows]


async def sender_names(store: Store, sender_ids: Iterable[str]) -> Dict[str, str]:
    ids = set(sender_ids)
    if not ids:
        return {}
    rows = await store.select(PARTICIPANTS, where_in={"id": ids})
    return {r["id"]: r["username"] for r in rows}


async def ensure_participant(
    store: Store, username: str, is_autonomous: bool = False, avatar_url: Optional[str] = None
) -> Participant:
    """Find a participant by exact username or create it."""
    row = await store.select_one(PARTICIPANTS, username=username)
    if row is None:
        row = await store.insert(
            PARTICIPANTS, {"username": username, "is_autonomous": is_autonomous, "avatar_url": avatar_url}
        )
    return Participant.model_validate(row)
