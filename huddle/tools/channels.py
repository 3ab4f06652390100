"""Channel management tools."""

from pydantic import BaseModel, ConfigDict, Field

from huddle.store.models import CONVERSATIONS, ConversationKind
from huddle.tools import tool
from huddle.tools.context import ToolContext, ToolOutcome
from huddle.tools.lookup import channel_not_found, find_channel, normalize_channel_name


class NoArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateChannelArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel_name: str = Field(
        description='The name for the new channel (e.g. "project-alpha"). '
        "Will be lowercased and spaces replaced with hyphens."
    )


class DeleteChannelArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel_name: str = Field(description="The name of the channel to delete.")


@tool(NoArgs)
async def list_channels(args: NoArgs, ctx: ToolContext) -> ToolOutcome:
    """List all channels in the workspace.

    Use this when the user asks what channels exist or wants to browse channels.
    """
    rows = await ctx.store.select(CONVERSATIONS, where={"kind": ConversationKind.CHANNEL.value}, order_by="name")
    channels = [{"name": r["name"], "created_at": r["created_at"]} for r in rows]
    return ToolOutcome.ok(channel_count=len(channels), channels=channels)


@tool(CreateChannelArgs)
async def create_channel(args: CreateChannelArgs, ctx: ToolContext) -> ToolOutcome:
    """Create a new channel.

    Use this when the user asks to create or set up a new channel.
    """
    name = normalize_channel_name(args.channel_name)
    if not name:
        return ToolOutcome.fail("Channel name cannot be empty.")

    if await find_channel(ctx, name) is not None:
        return ToolOutcome.fail(f'Channel "#{name}" already exists.')

    row = await ctx.store.insert(CONVERSATIONS, {"kind": ConversationKind.CHANNEL.value, "name": name})
    return ToolOutcome.ok(
        channel_name=name,
        channel_id=row["id"],
        message=f'Channel "#{name}" created successfully.',
    )


@tool(DeleteChannelArgs)
async def delete_channel(args: DeleteChannelArgs, ctx: ToolContext) -> ToolOutcome:
    """Delete an existing channel.

    Use this only when the user explicitly asks to delete or remove a channel.
    This action is irreversible.
    """
    channel = await find_channel(ctx, args.channel_name)
    if channel is None:
        return ToolOutcome.fail(channel_not_found(args.channel_name))

    await ctx.store.delete(CONVERSATIONS, {"id": channel.id})
    return ToolOutcome.ok(
        channel_name=channel.name,
        channel_id=channel.id,
        message=f'Channel "#{channel.name}" has been deleted.',
    )
