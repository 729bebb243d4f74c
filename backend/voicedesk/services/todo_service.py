"""
Todo service - handler behind the `todo_actions` tool.

Todos can be completed by id or by a case-insensitive substring of their
title. Title matches scan not-done todos in creation order and take the
first; the other candidates are returned so the agent can ask the user
when it picked the wrong one.
"""
import re
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional

from voicedesk.integrations.store import MemoryStore, TODO_CATEGORIES, TODOS
from voicedesk.models.todo import Todo, TodoCategory, TodoPriority, TodoStatus
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import (
    CategoryNotFoundError,
    InvalidRequestError,
    TodoNotFoundError,
    UnknownActionError,
)
from voicedesk.utils.validators import clamp_int, optional_str, parse_datetime, require_str

logger = get_logger(__name__)

TOOL_NAME = "todo_actions"

DEFAULT_CATEGORY = "Others"

# Checked in this order; the first group with a hit wins
CATEGORY_KEYWORDS = [
    ("Work", {
        "work", "meeting", "client", "report", "project", "presentation", "deadline",
        "office", "boss", "team", "invoice", "email", "slides", "review",
    }),
    ("Grocery", {
        "buy", "milk", "grocery", "groceries", "supermarket", "bread", "eggs", "fruit",
        "vegetables", "shopping", "store", "coffee", "cheese",
    }),
    ("Learning", {
        "learn", "study", "read", "course", "practice", "tutorial", "book", "lesson",
        "homework", "exam",
    }),
    ("Personal", {
        "call", "mom", "dad", "family", "doctor", "dentist", "gym", "birthday", "clean",
        "laundry", "appointment", "friend",
    }),
]

CATEGORIES = [name for name, _ in CATEGORY_KEYWORDS] + [DEFAULT_CATEGORY]


def categorize(title: str, description: Optional[str] = None) -> str:
    """Pick a category from keywords in title + description."""
    words = set(re.findall(r"[a-z]+", f"{title} {description or ''}".lower()))
    for category, keywords in CATEGORY_KEYWORDS:
        if words & keywords:
            return category
    return DEFAULT_CATEGORY


def normalize_category(value: str) -> str:
    for category in CATEGORIES:
        if category.lower() == value.lower():
            return category
    return value.strip().title()


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        raise InvalidRequestError(
            f"Invalid {field} '{value}'",
            details={"field": field, "allowed": [e.value for e in enum_cls]},
        )


def _brief(todo: Todo) -> dict:
    return {"id": todo.id, "title": todo.title}


class TodoService:
    """
    Todo operations for one user.

    Usage:
        service = TodoService(store, user_id)
        result = await service.handle("create", {"title": "buy milk tomorrow"})
        result = await service.handle("complete", {"title": "milk"})
    """

    def __init__(self, store: MemoryStore, user_id: str):
        self.store = store
        self.user_id = user_id
        self._actions = {
            "list": self.list_todos,
            "create": self.create_todo,
            "update": self.update_todo,
            "complete": self.complete_todo,
            "delete": self.delete_todo,
            "stats": self.stats,
        }

    async def handle(self, action: Optional[str], args: dict) -> dict:
        handler = self._actions.get(action or "")
        if handler is None:
            raise UnknownActionError(TOOL_NAME, action, list(self._actions))
        return await handler(args)

    async def _todos(self, filters: Optional[dict] = None, limit: Optional[int] = None) -> List[Todo]:
        rows = await self.store.select(
            TODOS, {"user_id": self.user_id, **(filters or {})}, order_by="created_at", limit=limit
        )
        return [Todo.model_validate(row) for row in rows]

    async def _require(self, todo_id: str) -> Todo:
        row = await self.store.get(TODOS, todo_id)
        if not row or row.get("user_id") != self.user_id:
            raise TodoNotFoundError(todo_id)
        return Todo.model_validate(row)

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def list_todos(self, args: dict) -> dict:
        filters = {}
        if args.get("status"):
            filters["status"] = _parse_enum(TodoStatus, args["status"], "status")
        if args.get("priority"):
            filters["priority"] = _parse_enum(TodoPriority, args["priority"], "priority")
        if args.get("category"):
            filters["category"] = normalize_category(args["category"])
        if optional_str(args, "category_id"):
            filters["category"] = (await self._require_category(args["category_id"]))["name"]

        limit = clamp_int(args.get("limit"), default=50, minimum=1, maximum=100)
        todos = await self._todos(filters, limit=limit)
        return {
            "count": len(todos),
            "todos": [todo.model_dump(mode="json") for todo in todos],
        }

    async def create_todo(self, args: dict) -> dict:
        title = require_str(args, "title")
        description = optional_str(args, "description")
        category = optional_str(args, "category")
        category = normalize_category(category) if category else categorize(title, description)

        now = datetime.now(timezone.utc)
        todo = Todo(
            user_id=self.user_id,
            title=title,
            description=description,
            category=category,
            priority=_parse_enum(TodoPriority, args["priority"], "priority") if args.get("priority") else TodoPriority.MEDIUM,
            due_date=parse_datetime(args["due_date"], "due_date") if args.get("due_date") else None,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(TODOS, todo.model_dump())
        logger.info(f"Created todo '{title}' in {category} for user: {self.user_id}")
        return {"todo": todo.model_dump(mode="json")}

    async def update_todo(self, args: dict) -> dict:
        todo = await self._require(require_str(args, "todo_id"))

        changes = {}
        if optional_str(args, "title"):
            changes["title"] = optional_str(args, "title")
        if "description" in args:
            changes["description"] = optional_str(args, "description")
        if optional_str(args, "category"):
            changes["category"] = normalize_category(args["category"])
        if args.get("priority"):
            changes["priority"] = _parse_enum(TodoPriority, args["priority"], "priority")
        if args.get("due_date"):
            changes["due_date"] = parse_datetime(args["due_date"], "due_date")
        if args.get("status"):
            status = _parse_enum(TodoStatus, args["status"], "status")
            changes["status"] = status
            changes["completed_at"] = datetime.now(timezone.utc) if status == TodoStatus.DONE else None

        if not changes:
            raise InvalidRequestError("Nothing to update")

        changes["updated_at"] = datetime.now(timezone.utc)
        row = await self.store.update(TODOS, todo.id, changes)
        return {"todo": Todo.model_validate(row).model_dump(mode="json")}

    async def complete_todo(self, args: dict) -> dict:
        """
        Mark a todo done, by `todo_id` or by `title` substring.

        Title matching only considers todos that are not done yet and takes
        the oldest match, so repeated calls on unchanged data pick the same
        todo.
        """
        other_matches: List[Todo] = []

        if optional_str(args, "todo_id"):
            todo = await self._require(args["todo_id"])
        else:
            needle = require_str(args, "title").lower()
            candidates = [
                t for t in await self._todos({"status": ("ne", TodoStatus.DONE)})
                if needle in t.title.lower()
            ]
            if not candidates:
                raise TodoNotFoundError(args["title"])
            todo, other_matches = candidates[0], candidates[1:]
            if other_matches:
                logger.info(f"'{needle}' matched {len(candidates)} todos, completing the oldest")

        now = datetime.now(timezone.utc)
        row = await self.store.update(
            TODOS, todo.id, {"status": TodoStatus.DONE, "completed_at": now, "updated_at": now}
        )
        return {
            "todo": Todo.model_validate(row).model_dump(mode="json"),
            "other_matches": [_brief(t) for t in other_matches],
        }

    async def delete_todo(self, args: dict) -> dict:
        todo = await self._require(require_str(args, "todo_id"))
        await self.store.delete(TODOS, todo.id)
        logger.info(f"Deleted todo {todo.id} for user: {self.user_id}")
        return {"todo_id": todo.id, "deleted": True}

    async def stats(self, args: dict) -> dict:
        todos = await self._todos()
        now = datetime.now(timezone.utc)
        open_todos = [t for t in todos if t.status != TodoStatus.DONE]
        return {
            "total": len(todos),
            "open": len(open_todos),
            "done": len(todos) - len(open_todos),
            "overdue": sum(1 for t in open_todos if t.due_date and t.due_date < now),
            "by_status": dict(Counter(t.status.value for t in todos)),
            "by_category": dict(Counter(t.category for t in todos)),
        }

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    def _builtin(self, name: str) -> dict:
        return {"id": name.lower(), "name": name, "color": None, "icon": None, "is_default": True}

    async def _custom_categories(self) -> List[TodoCategory]:
        rows = await self.store.select(TODO_CATEGORIES, {"user_id": self.user_id}, order_by="created_at")
        return [TodoCategory.model_validate(row) for row in rows]

    async def _require_category(self, category_id: str) -> dict:
        """Built-in or custom category by id, as it is listed."""
        for name in CATEGORIES:
            if name.lower() == category_id:
                return self._builtin(name)
        row = await self.store.get(TODO_CATEGORIES, category_id)
        if not row or row.get("user_id") != self.user_id:
            raise CategoryNotFoundError(category_id)
        return {**TodoCategory.model_validate(row).model_dump(mode="json"), "is_default": False}

    async def _check_name_free(self, name: str) -> None:
        taken = list(CATEGORIES) + [c.name for c in await self._custom_categories()]
        if name.lower() in {t.lower() for t in taken}:
            raise InvalidRequestError(f"Category '{name}' already exists", details={"field": "name"})

    async def list_categories(self) -> List[dict]:
        """Built-in categories first, then the user's own in creation order."""
        custom = [
            {**c.model_dump(mode="json"), "is_default": False}
            for c in await self._custom_categories()
        ]
        return [self._builtin(name) for name in CATEGORIES] + custom

    async def create_category(self, name: str, color: Optional[str] = None, icon: Optional[str] = None) -> dict:
        name = normalize_category(name or "")
        if not name:
            raise InvalidRequestError("name is required", details={"field": "name"})
        await self._check_name_free(name)

        now = datetime.now(timezone.utc)
        category = TodoCategory(user_id=self.user_id, name=name, color=color, icon=icon, created_at=now, updated_at=now)
        await self.store.insert(TODO_CATEGORIES, category.model_dump())
        logger.info(f"Created todo category '{name}' for user: {self.user_id}")
        return {**category.model_dump(mode="json"), "is_default": False}

    async def update_category(self, category_id: str, changes: dict) -> dict:
        """
        Rename or restyle a custom category.

        Todos filed under the old name move with the rename. Built-in
        categories are fixed.
        """
        category = await self._require_category(category_id)
        if category["is_default"]:
            raise InvalidRequestError(f"Built-in category '{category['name']}' cannot be changed")

        updates = {k: changes[k] for k in ("color", "icon") if k in changes}
        new_name = normalize_category(changes.get("name") or "")
        if new_name and new_name != category["name"]:
            await self._check_name_free(new_name)
            updates["name"] = new_name
        updates["updated_at"] = datetime.now(timezone.utc)

        row = await self.store.update(TODO_CATEGORIES, category_id, updates)
        if "name" in updates:
            moved = await self._move_todos(category["name"], new_name)
            logger.info(f"Renamed todo category '{category['name']}' to '{new_name}' ({moved} todos)")
        return {**TodoCategory.model_validate(row).model_dump(mode="json"), "is_default": False}

    async def delete_category(self, category_id: str) -> dict:
        """Delete a custom category; its todos fall back to the default category."""
        category = await self._require_category(category_id)
        if category["is_default"]:
            raise InvalidRequestError(f"Built-in category '{category['name']}' cannot be deleted")

        await self.store.delete(TODO_CATEGORIES, category_id)
        moved = await self._move_todos(category["name"], DEFAULT_CATEGORY)
        logger.info(f"Deleted todo category {category_id}, {moved} todos moved to {DEFAULT_CATEGORY}")
        return {"category_id": category_id, "deleted": True, "moved_todos": moved}

    async def _move_todos(self, old_name: str, new_name: str) -> int:
        todos = await self._todos({"category": old_name})
        now = datetime.now(timezone.utc)
        for todo in todos:
            await self.store.update(TODOS, todo.id, {"category": new_name, "updated_at": now})
        return len(todos)
