"""In-process store backed by lists of dict rows."""

import asyncio
import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from huddle.exceptions import StoreError
from huddle.store.base import Change, ChangeKind, Row, Store
from huddle.store.models import CONVERSATIONS, MEMBERSHIPS, MESSAGES, PARTICIPANTS, SCHEDULED_MESSAGES
from huddle.utils import parse_timestamp, utc_timestamp

TABLES = (PARTICIPANTS, CONVERSATIONS, MEMBERSHIPS, MESSAGES, SCHEDULED_MESSAGES)

# Tables that get generated id/created_at columns
_GENERATED = {PARTICIPANTS, CONVERSATIONS, MESSAGES, SCHEDULED_MESSAGES}

# Unique constraints per table
_UNIQUE: Dict[str, List[Tuple[str, ...]]] = {
    PARTICIPANTS: [("id",), ("username",)],
    CONVERSATIONS: [("id",)],
    MEMBERSHIPS: [("conversation_id", "participant_id")],
    MESSAGES: [("id",)],
    SCHEDULED_MESSAGES: [("id",)],
}

# Deleting a parent row removes children whose column references it
_CASCADES: Dict[str, List[Tuple[str, str]]] = {
    CONVERSATIONS: [
        (MEMBERSHIPS, "conversation_id"),
        (MESSAGES, "conversation_id"),
        (SCHEDULED_MESSAGES, "conversation_id"),
    ],
    PARTICIPANTS: [(MEMBERSHIPS, "participant_id"), (SCHEDULED_MESSAGES, "sender_id")],
}


def _matches(row: Row, where: Optional[Row], where_in: Optional[Dict[str, Iterable[Any]]]) -> bool:
    if where:
        for key, value in where.items():
            if row.get(key) != value:
                return False
    if where_in:
        for key, values in where_in.items():
            if row.get(key) not in values:
                return False
    return True


class MemoryStore(Store):
    """Store holding every table in memory.

    Creation timestamps are strictly increasing so ``created_at`` always
    reflects insertion order, even for inserts within the same microsecond.
    """

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None):
        super().__init__()
        self._tables: Dict[str, List[Row]] = {name: [] for name in TABLES}
        if tables:
            for name, rows in tables.items():
                self._tables.setdefault(name, []).extend(copy.deepcopy(rows))
        self._last_created: Optional[datetime] = None
        self._write_lock = asyncio.Lock()

    def _table(self, table: str, tables: Optional[Dict[str, List[Row]]] = None) -> List[Row]:
        tables = self._tables if tables is None else tables
        if table not in tables:
            raise StoreError(f"Unknown table: {table}", table=table)
        return tables[table]

    def _next_timestamp(self) -> str:
        now = datetime.now(timezone.utc)
        if self._last_created is None:
            for name in _GENERATED:
                for row in self._tables[name]:
                    created = parse_timestamp(row["created_at"])
                    if self._last_created is None or created > self._last_created:
                        self._last_created = created
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return utc_timestamp(now)

    def _check_unique(self, table: str, rows: List[Row], row: Row, ignore: Optional[Row] = None) -> None:
        for columns in _UNIQUE.get(table, []):
            if any(row.get(c) is None for c in columns):
                continue
            key = tuple(row.get(c) for c in columns)
            for existing in rows:
                if existing is ignore:
                    continue
                if tuple(existing.get(c) for c in columns) == key:
                    raise StoreError(
                        f"Duplicate value for {table}({', '.join(columns)}): {key}",
                        table=table,
                        operation="insert",
                    )

    def _stage(self) -> Dict[str, List[Row]]:
        # Rows are flat, so copying each dict isolates the staged state
        return {name: [dict(r) for r in rows] for name, rows in self._tables.items()}

    async def _persist(self, tables: Dict[str, List[Row]]) -> None:
        """Hook for subclasses that write each staged state before it becomes visible."""

    async def _commit(self, staged: Dict[str, List[Row]]) -> None:
        await self._persist(staged)
        self._tables = staged

    async def insert(self, table: str, row: Row) -> Row:
        async with self._write_lock:
            staged = self._stage()
            rows = self._table(table, staged)
            new_row = dict(row)
            if table in _GENERATED:
                new_row.setdefault("id", str(uuid.uuid4()))
                new_row.setdefault("created_at", self._next_timestamp())
            self._check_unique(table, rows, new_row)
            rows.append(new_row)
            await self._commit(staged)
        self.feed.publish(Change(table, ChangeKind.INSERT, dict(new_row)))
        return dict(new_row)

    async def select(
        self,
        table: str,
        where: Optional[Row] = None,
        where_in: Optional[Dict[str, Iterable[Any]]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        if where_in:
            where_in = {key: set(values) for key, values in where_in.items()}
        rows = [r for r in self._table(table) if _matches(r, where, where_in)]
        if order_by:
            # Reversing first keeps ties in reverse insertion order for descending sorts
            if descending:
                rows.reverse()
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=descending)
        elif descending:
            rows.reverse()
        if limit is not None:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    async def update(self, table: str, where: Row, values: Row) -> List[Row]:
        changed = []
        async with self._write_lock:
            staged = self._stage()
            rows = self._table(table, staged)
            for row in rows:
                if not _matches(row, where, None):
                    continue
                old = dict(row)
                self._check_unique(table, rows, {**row, **values}, ignore=row)
                row.update(values)
                changed.append((old, dict(row)))
            if changed:
                await self._commit(staged)
        for old, new in changed:
            self.feed.publish(Change(table, ChangeKind.UPDATE, new, old=old))
        return [new for _, new in changed]

    async def delete(self, table: str, where: Row) -> List[Row]:
        removed: List[Tuple[str, Row]] = []
        async with self._write_lock:
            staged = self._stage()
            self._delete_rows(staged, table, where, removed)
            if removed:
                await self._commit(staged)
        for name, row in removed:
            self.feed.publish(Change(name, ChangeKind.DELETE, row, old=row))
        return [row for name, row in removed if name == table]

    def _delete_rows(
        self, tables: Dict[str, List[Row]], table: str, where: Row, removed: List[Tuple[str, Row]]
    ) -> None:
        rows = self._table(table, tables)
        doomed = [r for r in rows if _matches(r, where, None)]
        if not doomed:
            return
        tables[table] = [r for r in rows if not any(r is d for d in doomed)]
        for row in doomed:
            removed.append((table, dict(row)))
            for child_table, column in _CASCADES.get(table, []):
                self._delete_rows(tables, child_table, {column: row["id"]}, removed)

    def dump(self) -> Dict[str, List[Row]]:
        return copy.deepcopy(self._tables)
