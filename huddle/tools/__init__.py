"""Tool registry and dispatcher for workspace tools."""

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from huddle.tools.context import ToolContext, ToolOutcome

logger = logging.getLogger(__name__)

Executor = Callable[[BaseModel, ToolContext], Awaitable[ToolOutcome]]


@dataclass
class ToolInfo:
    """Information about a registered tool."""

    name: str
    func: Executor
    description: str
    args_model: Type[BaseModel]

    @property
    def parameters(self) -> Dict[str, Any]:
        """JSON schema of the argument object."""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        return schema

    def schema(self) -> Dict[str, Any]:
        """Function-calling schema for the generation service."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# Global tool registry
_tools: Dict[str, ToolInfo] = {}


def _description(func: Callable) -> str:
    doc = inspect.getdoc(func) or "No description available"
    # First paragraph of the docstring
    return " ".join(doc.split("\n\n")[0].split())


def tool(args_model: Type[BaseModel], name: Optional[str] = None) -> Callable[[Executor], Executor]:
    """Register an async executor as a tool.

    Args:
        args_model: Pydantic model validating the tool's argument object
        name: Tool name (defaults to the function name)
    """

    def decorator(func: Executor) -> Executor:
        tool_name = name or func.__name__
        _tools[tool_name] = ToolInfo(
            name=tool_name,
            func=func,
            description=_description(func),
            args_model=args_model,
        )
        return func

    return decorator


def get_tool(name: str) -> Optional[ToolInfo]:
    """Get a registered tool by name."""
    return _tools.get(name)


def list_tools() -> List[str]:
    """List all registered tool names."""
    return list(_tools.keys())


def tool_schemas(names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Function-calling schemas for the given tools (default: all)."""
    selected = names if names is not None else list_tools()
    return [_tools[n].schema() for n in selected if n in _tools]


def _coerce_arguments(arguments: Union[str, Dict[str, Any], None]) -> Any:
    if arguments is None:
        return {}
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            return json.loads(arguments)
        except json.JSONDecodeError:
            return None
    return arguments


def _validation_message(name: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        where = ".".join(str(p) for p in item.get("loc", ())) or "arguments"
        problems.append(f"{where}: {item.get('msg')}")
    return f"Invalid arguments for {name}: " + "; ".join(problems)


async def dispatch(
    name: str,
    arguments: Union[str, Dict[str, Any], None],
    context: ToolContext,
    call_id: Optional[str] = None,
) -> ToolOutcome:
    """Route an invocation to its executor.

    Never raises: unknown tools, invalid arguments and executor failures all
    come back as a negative outcome.

    Args:
        name: Tool name requested by the model
        arguments: Argument object, or its JSON text
        context: Acting user and store
        call_id: Correlation id to stamp on the outcome

    Returns:
        ToolOutcome carrying ``call_id``
    """
    info = _tools.get(name)
    if info is None:
        return ToolOutcome(success=False, error=f"Unknown tool: {name}", call_id=call_id)

    raw = _coerce_arguments(arguments)
    if not isinstance(raw, dict):
        return ToolOutcome(
            success=False, error=f"Invalid arguments for {name}: expected a JSON object", call_id=call_id
        )

    try:
        args = info.args_model.model_validate(raw)
    except ValidationError as e:
        return ToolOutcome(success=False, error=_validation_message(name, e), call_id=call_id)

    try:
        outcome = await info.func(args, context)
    except Exception as e:
        logger.exception("Tool '%s' raised", name)
        return ToolOutcome(success=False, error=f"Tool '{name}' failed: {e}", call_id=call_id)

    return outcome.model_copy(update={"call_id": call_id})


__all__ = [
    "ToolContext",
    "ToolInfo",
    "ToolOutcome",
    "dispatch",
    "get_tool",
    "list_tools",
    "tool",
    "tool_schemas",
]

# Import tool modules at the end to avoid circular imports
# (they need the 'tool' decorator from this module)
from . import channels as channels  # noqa: E402
from . import messaging as messaging  # noqa: E402
from . import sessions as sessions  # noqa: E402
from . import users as users  # noqa: E402
