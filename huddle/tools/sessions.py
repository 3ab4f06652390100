"""Agent session management tools."""

from pydantic import BaseModel, ConfigDict, Field

from huddle.agents import GENERIC_AGENT
from huddle.store import queries
from huddle.store.models import CONVERSATIONS, PARTICIPANTS, ConversationKind
from huddle.tools import tool
from huddle.tools.channels import NoArgs
from huddle.tools.context import ToolContext, ToolOutcome


class CreateSessionArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_name: str = Field(description="A short name describing what the session is about.")


class DeleteSessionArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_name: str = Field(description="The name of the agent session to delete.")


async def _user_sessions(ctx: ToolContext, descending: bool = False):
    conversation_ids = await queries.conversation_ids_for(ctx.store, ctx.user_id)
    if not conversation_ids:
        return []
    return await ctx.store.select(
        CONVERSATIONS,
        where={"kind": ConversationKind.AGENT_SESSION.value},
        where_in={"id": conversation_ids},
        order_by="created_at",
        descending=descending,
    )


@tool(NoArgs)
async def list_agent_sessions(args: NoArgs, ctx: ToolContext) -> ToolOutcome:
    """List the current user's agent chat sessions.

    Use this when the user asks about their existing agent conversations.
    """
    rows = await _user_sessions(ctx, descending=True)
    sessions = [{"id": r["id"], "name": r.get("name") or "Untitled", "created_at": r["created_at"]} for r in rows]
    return ToolOutcome.ok(session_count=len(sessions), sessions=sessions)


@tool(CreateSessionArgs)
async def create_agent_session(args: CreateSessionArgs, ctx: ToolContext) -> ToolOutcome:
    """Create a new agent chat session for the current user.

    Use this when the user asks to start a new conversation with the agent.
    """
    agent_row = await ctx.store.select_one(PARTICIPANTS, username=GENERIC_AGENT.username, is_autonomous=True)
    if agent_row is None:
        agent_row = await ctx.store.insert(
            PARTICIPANTS,
            {"username": GENERIC_AGENT.username, "avatar_url": GENERIC_AGENT.avatar_url, "is_autonomous": True},
        )

    session = await queries.create_conversation(
        ctx.store, ConversationKind.AGENT_SESSION, args.session_name, [ctx.user_id, agent_row["id"]]
    )
    return ToolOutcome.ok(
        session_id=session.id,
        session_name=args.session_name,
        message=f'Agent session "{args.session_name}" created successfully.',
    )


@tool(DeleteSessionArgs)
async def delete_agent_session(args: DeleteSessionArgs, ctx: ToolContext) -> ToolOutcome:
    """Delete one of the current user's agent sessions by name.

    Use this only when the user explicitly asks to delete a session.
    """
    wanted = args.session_name.strip().casefold()
    target = next((r for r in await _user_sessions(ctx) if (r.get("name") or "").casefold() == wanted), None)
    if target is None:
        return ToolOutcome.fail(f'No agent session named "{args.session_name}" found.')

    await ctx.store.delete(CONVERSATIONS, {"id": target["id"]})
    return ToolOutcome.ok(
        session_id=target["id"],
        session_name=target.get("name") or args.session_name,
        message=f'Agent session "{args.session_name}" has been deleted.',
    )
