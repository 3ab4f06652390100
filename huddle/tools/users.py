"""User directory tools."""

from huddle.store.models import PARTICIPANTS
from huddle.tools import tool
from huddle.tools.channels import NoArgs
from huddle.tools.context import ToolContext, ToolOutcome


@tool(NoArgs)
async def list_users(args: NoArgs, ctx: ToolContext) -> ToolOutcome:
    """List all users in the workspace, including both human users and AI agents.

    Use this when the user asks who is in the workspace or wants to find someone.
    """
    rows = await ctx.store.select(PARTICIPANTS, order_by="username")
    users = [
        {
            "username": r["username"],
            "is_agent": bool(r.get("is_autonomous")),
            "type": "AI Agent" if r.get("is_autonomous") else "Human",
        }
        for r in rows
    ]
    return ToolOutcome.ok(user_count=len(users), users=users)
