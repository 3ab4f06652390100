"""EventBus for broadcasting events to multiple handlers."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .base import BaseEvent, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[BaseEvent], None]


@dataclass(frozen=True)
class _Subscription:
    handler: EventHandler
    event_types: Optional[frozenset]
    conversation_id: Optional[str]

    def wants(self, event: BaseEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.conversation_id is not None:
            # Events that are not tied to a conversation reach every scope
            scope = getattr(event, "conversation_id", None)
            if scope is not None and scope != self.conversation_id:
                return False
        return True


class EventBus:
    """Synchronous fan-out of events with per-handler error isolation.

    A subscription can be narrowed to some event types, to one
    conversation, or both. Subscribing the same handler twice is a no-op.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Iterable[EventType]] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        """Subscribe a handler.

        Args:
            handler: Callable that accepts a BaseEvent
            event_types: Only deliver these event types (default: all)
            conversation_id: Only deliver events for this conversation, plus
                events that carry no conversation
        """
        if any(sub.handler == handler for sub in self._subscriptions):
            return
        types = frozenset(event_types) if event_types is not None else None
        self._subscriptions.append(_Subscription(handler, types, conversation_id))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscriptions = [sub for sub in self._subscriptions if sub.handler != handler]

    def emit(self, event: BaseEvent) -> None:
        for sub in list(self._subscriptions):
            if not sub.wants(event):
                continue
            try:
                sub.handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type.name)

    def has_handlers(self) -> bool:
        return bool(self._subscriptions)

    def handler_count(self) -> int:
        return len(self._subscriptions)
