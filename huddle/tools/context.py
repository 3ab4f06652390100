"""Execution context and result type shared by every tool."""

import json
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel

from huddle.store.base import Store
from huddle.store.cache import LookupCache


@dataclass
class ToolContext:
    """Who a tool acts for and where it reads and writes.

    Attributes:
        user_id: Participant the tool acts on behalf of
        store: Shared workspace store
        cache: Optional lookup cache for name resolution
    """

    user_id: str
    store: Store
    cache: Optional[LookupCache] = None


class ToolOutcome(BaseModel):
    """Result of one tool invocation. Executors return these instead of raising."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    call_id: Optional[str] = None

    @classmethod
    def ok(cls, **data: Any) -> "ToolOutcome":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolOutcome":
        return cls(success=False, error=error)

    def result_text(self) -> str:
        """Serialized data on success, otherwise the error message."""
        if self.success:
            return json.dumps(self.data, ensure_ascii=False)
        return self.error or "Tool failed."

    def for_model(self) -> str:
        """Outcome as sent back to the generation service."""
        return self.model_dump_json(include={"success", "data", "error"}, exclude_none=True)
