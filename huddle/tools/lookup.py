"""Forgiving name resolution for channels and participants."""

import re
from typing import Optional

from huddle.store.models import CONVERSATIONS, PARTICIPANTS, Conversation, ConversationKind, Participant
from huddle.tools.context import ToolContext


def clean_name(name: str) -> str:
    """Strip leading @/# sigils and surrounding whitespace."""
    return re.sub(r"^[@#]+", "", name.strip()).strip()


def normalize_channel_name(name: str) -> str:
    """Channel names are lowercase with runs of whitespace turned into hyphens."""
    return re.sub(r"\s+", "-", clean_name(name).lower())


async def find_user(ctx: ToolContext, raw_username: str) -> Optional[Participant]:
    """Exact username match first, then case-insensitive."""
    cleaned = clean_name(raw_username)
    if not cleaned:
        return None
    row = await ctx.store.select_one(PARTICIPANTS, username=cleaned)
    if row:
        return Participant.model_validate(row)
    folded = cleaned.casefold()
    for row in await ctx.store.select(PARTICIPANTS, order_by="created_at"):
        if row["username"].casefold() == folded:
            return Participant.model_validate(row)
    return None


async def find_channel(ctx: ToolContext, raw_name: str) -> Optional[Conversation]:
    """Channel by normalized name, falling back to a case-insensitive comparison."""
    name = normalize_channel_name(raw_name)
    if not name:
        return None
    if ctx.cache is not None:
        channel = await ctx.cache.channel_by_name(name)
    else:
        row = await ctx.store.select_one(CONVERSATIONS, kind=ConversationKind.CHANNEL.value, name=name)
        channel = Conversation.model_validate(row) if row else None
    if channel is not None:
        return channel
    rows = await ctx.store.select(CONVERSATIONS, where={"kind": ConversationKind.CHANNEL.value}, order_by="created_at")
    for row in rows:
        if row.get("name") and normalize_channel_name(row["name"]) == name:
            return Conversation.model_validate(row)
    return None


def channel_not_found(raw_name: str) -> str:
    return f'Channel "#{clean_name(raw_name)}" not found.'


def user_not_found(raw_username: str) -> str:
    return f'User "{clean_name(raw_username)}" not found. Try using list_users to see available usernames.'
