"""Abstract async store and its change feed."""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from huddle.utils import BackgroundTasks

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    """A committed row mutation."""

    table: str
    kind: ChangeKind
    row: Row
    old: Optional[Row] = None


ChangeHandler = Callable[[Change], Any]


@dataclass
class _Subscription:
    table: str
    handler: ChangeHandler
    kinds: Optional[frozenset]


class ChangeFeed:
    """Fan out committed changes to subscribers.

    Plain callables run inline. Coroutine functions are scheduled as tracked
    background tasks so a slow subscriber never blocks the writer.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []
        self._tasks = BackgroundTasks()

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        kinds: Optional[Iterable[ChangeKind]] = None,
    ) -> Callable[[], None]:
        """Subscribe to changes on a table.

        Args:
            table: Table name
            handler: Callable (sync or async) receiving a Change
            kinds: Restrict to these change kinds (default: all)

        Returns:
            Function that removes the subscription
        """
        sub = _Subscription(table, handler, frozenset(kinds) if kinds else None)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    def publish(self, change: Change) -> None:
        for sub in list(self._subscriptions):
            if sub.table != change.table:
                continue
            if sub.kinds is not None and change.kind not in sub.kinds:
                continue
            try:
                result = sub.handler(change)
                if inspect.isawaitable(result):
                    self._tasks.spawn(result, context=f"feed:{change.table}")
            except Exception:
                logger.exception("Change handler failed for %s %s", change.kind.value, change.table)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        await self._tasks.drain()
        # Let handlers scheduled by handlers settle
        await asyncio.sleep(0)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def pending(self) -> int:
        """Number of async handler tasks still running."""
        return len(self._tasks)


class Store(ABC):
    """Relational store with change notifications.

    Rows are plain dicts. ``id`` and ``created_at`` are assigned on insert
    for tables that carry them.
    """

    def __init__(self):
        self.feed = ChangeFeed()

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row and return it with generated columns filled in.

        Raises:
            StoreError: On constraint violation or storage failure
        """

    async def insert_many(self, table: str, rows: Iterable[Row]) -> List[Row]:
        return [await self.insert(table, row) for row in rows]

    @abstractmethod
    async def select(
        self,
        table: str,
        where: Optional[Row] = None,
        where_in: Optional[Dict[str, Iterable[Any]]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Select rows matching every equality in ``where`` and every membership in ``where_in``."""

    async def select_one(self, table: str, **where: Any) -> Optional[Row]:
        rows = await self.select(table, where=where, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def update(self, table: str, where: Row, values: Row) -> List[Row]:
        """Update matching rows and return their new values."""

    @abstractmethod
    async def delete(self, table: str, where: Row) -> List[Row]:
        """Delete matching rows (with cascades) and return the deleted rows."""

    async def close(self) -> None:
        await self.feed.drain()
