"""Tools that post and read messages."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from huddle.store import queries
from huddle.store.models import MESSAGES, ConversationKind, Message
from huddle.tools import tool
from huddle.tools.context import ToolContext, ToolOutcome
from huddle.tools.lookup import channel_not_found, find_channel, find_user, user_not_found

DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 50


class SendMessageArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel_name: str = Field(description='The name of the channel to send the message to (e.g. "general").')
    content: str = Field(description="The message content to send.")


class SendDmArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_username: str = Field(description="The username of the person to send the DM to.")
    content: str = Field(description="The message content to send.")


class ChannelHistoryArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel_name: str = Field(description="The name of the channel to read messages from.")
    limit: Optional[int] = Field(
        default=None, description="Maximum number of recent messages to retrieve. Defaults to 20."
    )


class DmHistoryArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_username: str = Field(description="The username of the other person in the DM.")
    limit: Optional[int] = Field(
        default=None, description="Maximum number of recent messages to retrieve. Defaults to 20."
    )


def history_limit(limit: Optional[int]) -> int:
    return max(1, min(limit or DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT))


async def _format_history(ctx: ToolContext, messages: List[Message]) -> List[dict]:
    names = await queries.sender_names(ctx.store, (m.sender_id for m in messages))
    return [
        {"sender": names.get(m.sender_id, "unknown"), "content": m.content, "time": m.created_at} for m in messages
    ]


@tool(SendMessageArgs)
async def send_message(args: SendMessageArgs, ctx: ToolContext) -> ToolOutcome:
    """Send a message to a channel on behalf of the current user.

    Use this when the user asks you to post or say something in a channel.
    """
    channel = await find_channel(ctx, args.channel_name)
    if channel is None:
        return ToolOutcome.fail(channel_not_found(args.channel_name))

    await ctx.store.insert(
        MESSAGES, {"conversation_id": channel.id, "sender_id": ctx.user_id, "content": args.content}
    )
    return ToolOutcome.ok(channel_name=channel.name, message="Message sent.")


@tool(SendDmArgs)
async def send_dm(args: SendDmArgs, ctx: ToolContext) -> ToolOutcome:
    """Send a direct message to a specific user on behalf of the current user.

    Use this when the user asks you to DM or message someone. The direct
    conversation is created on first contact.
    """
    target = await find_user(ctx, args.target_username)
    if target is None:
        return ToolOutcome.fail(user_not_found(args.target_username))

    direct = await queries.find_direct_conversation(ctx.store, ctx.user_id, target.id)
    if direct is None:
        direct = await queries.create_conversation(ctx.store, ConversationKind.DIRECT, None, [ctx.user_id, target.id])

    await ctx.store.insert(
        MESSAGES, {"conversation_id": direct.id, "sender_id": ctx.user_id, "content": args.content}
    )
    return ToolOutcome.ok(target_username=target.username, message=f"DM sent to {target.username}.")


@tool(ChannelHistoryArgs)
async def get_channel_history(args: ChannelHistoryArgs, ctx: ToolContext) -> ToolOutcome:
    """Retrieve recent messages from a channel.

    Use this when the user asks what happened in a channel or wants a summary.
    """
    channel = await find_channel(ctx, args.channel_name)
    if channel is None:
        return ToolOutcome.fail(channel_not_found(args.channel_name))

    messages = await queries.fetch_messages(ctx.store, channel.id, limit=history_limit(args.limit), newest=True)
    formatted = await _format_history(ctx, messages)
    return ToolOutcome.ok(channel_name=channel.name, message_count=len(formatted), messages=formatted)


@tool(DmHistoryArgs)
async def get_dm_history(args: DmHistoryArgs, ctx: ToolContext) -> ToolOutcome:
    """Retrieve recent direct messages between the current user and another user.

    Use this when the user asks about their conversation with someone.
    """
    target = await find_user(ctx, args.target_username)
    if target is None:
        return ToolOutcome.fail(user_not_found(args.target_username))

    direct = await queries.find_direct_conversation(ctx.store, ctx.user_id, target.id)
    if direct is None:
        return ToolOutcome.ok(target_username=target.username, message_count=0, messages=[])

    messages = await queries.fetch_messages(ctx.store, direct.id, limit=history_limit(args.limit), newest=True)
    formatted = await _format_history(ctx, messages)
    return ToolOutcome.ok(target_username=target.username, message_count=len(formatted), messages=formatted)
