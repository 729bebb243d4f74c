"""
Persistent store adapter.

Rows are plain dicts keyed by "id" and grouped in named tables (sessions,
messages, accounts, todos, todo_categories, learning_topics,
learning_sessions). The API is async so a database-backed store can replace
this in-memory one without touching the services.

Every method completes without awaiting in between reading and writing a row,
so each call is atomic with respect to other coroutines on the event loop.
compare_and_set() is the primitive services use for optimistic
read-modify-write.

Security: Data is stored in-memory (suitable for demo).
In production, use a database.
"""
import copy
from typing import Optional

from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import StorageError

logger = get_logger(__name__)

SESSIONS = "sessions"
MESSAGES = "messages"
ACCOUNTS = "accounts"
TODOS = "todos"
TODO_CATEGORIES = "todo_categories"
LEARNING_TOPICS = "learning_topics"
LEARNING_SESSIONS = "learning_sessions"

# Columns that must stay unique within a table
UNIQUE_COLUMNS = {
    SESSIONS: ["provider_session_id"],
}

# Child rows removed together with their parent: table -> [(child_table, fk)]
CASCADES = {
    SESSIONS: [(MESSAGES, "session_id")],
    LEARNING_TOPICS: [(LEARNING_SESSIONS, "topic_id")],
}

_OPERATORS = {
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
    "gt": lambda a, b: a is not None and a > b,
    "gte": lambda a, b: a is not None and a >= b,
    "lt": lambda a, b: a is not None and a < b,
    "lte": lambda a, b: a is not None and a <= b,
    "in": lambda a, b: a in b,
}


def _matches(row: dict, filters: Optional[dict]) -> bool:
    """
    Check a row against filters.

    A filter value is either a plain value (equality) or an
    (operator, value) tuple, e.g. {"status": ("ne", "done")}.
    """
    for column, condition in (filters or {}).items():
        if isinstance(condition, tuple) and len(condition) == 2 and condition[0] in _OPERATORS:
            op, value = condition
        else:
            op, value = "eq", condition
        if not _OPERATORS[op](row.get(column), value):
            return False
    return True


class MemoryStore:
    """
    In-memory table store.

    Usage:
        store = MemoryStore()
        await store.insert("todos", {"id": "t1", "title": "Buy milk"})
        rows = await store.select("todos", {"status": "todo"}, order_by="created_at")
    """

    def __init__(self):
        self._tables: dict[str, dict[str, dict]] = {}

    def _table(self, table: str) -> dict[str, dict]:
        return self._tables.setdefault(table, {})

    async def insert(self, table: str, row: dict) -> dict:
        """Insert a row. Raises StorageError on duplicate id or unique column."""
        rows = self._table(table)
        key = row.get("id")
        if not key:
            raise StorageError(f"Row for {table} has no id")
        if key in rows:
            raise StorageError(f"Duplicate id in {table}: {key}")

        for column in UNIQUE_COLUMNS.get(table, []):
            value = row.get(column)
            if value is not None and any(r.get(column) == value for r in rows.values()):
                raise StorageError(f"Duplicate {column} in {table}: {value}")

        rows[key] = copy.deepcopy(row)
        return copy.deepcopy(row)

    async def get(self, table: str, key: str) -> Optional[dict]:
        row = self._table(table).get(key)
        return copy.deepcopy(row) if row is not None else None

    async def find_one(self, table: str, filters: dict) -> Optional[dict]:
        """First row (in insertion order) matching the filters."""
        for row in self._table(table).values():
            if _matches(row, filters):
                return copy.deepcopy(row)
        return None

    async def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Select rows matching filters.

        Ordering is stable: rows with equal sort keys keep insertion order.
        """
        rows = [r for r in self._table(table).values() if _matches(r, filters)]

        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing

        end = offset + limit if limit is not None else None
        return [copy.deepcopy(r) for r in rows[offset:end]]

    async def count(self, table: str, filters: Optional[dict] = None) -> int:
        return sum(1 for r in self._table(table).values() if _matches(r, filters))

    async def update(self, table: str, key: str, changes: dict) -> Optional[dict]:
        """Patch a row in place. Returns the updated row or None if missing."""
        row = self._table(table).get(key)
        if row is None:
            return None
        row.update(copy.deepcopy(changes))
        return copy.deepcopy(row)

    async def compare_and_set(self, table: str, key: str, expected_version: int, row: dict) -> bool:
        """
        Replace a row only if its stored `version` still equals expected_version.

        Returns False when the row is gone or another writer got there first.
        """
        current = self._table(table).get(key)
        if current is None or current.get("version", 0) != expected_version:
            return False
        self._table(table)[key] = copy.deepcopy(row)
        return True

    async def delete(self, table: str, key: str) -> Optional[dict]:
        """Delete a row and its cascaded children. Returns the deleted row."""
        row = self._table(table).pop(key, None)
        if row is None:
            return None

        for child_table, foreign_key in CASCADES.get(table, []):
            removed = await self.delete_where(child_table, {foreign_key: key})
            if removed:
                logger.info(f"Cascade deleted {removed} rows from {child_table}")

        return row

    async def delete_where(self, table: str, filters: dict) -> int:
        rows = self._table(table)
        doomed = [k for k, r in rows.items() if _matches(r, filters)]
        for k in doomed:
            del rows[k]
        return len(doomed)

    def clear(self) -> None:
        self._tables.clear()
