"""
Todo models.
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class TodoStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Todo(BaseModel):
    """A single todo item owned by a user."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str
    description: Optional[str] = None
    category: str = "Others"
    priority: TodoPriority = TodoPriority.MEDIUM
    status: TodoStatus = TodoStatus.TODO
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class TodoCategory(BaseModel):
    """A user-defined todo category. Built-in categories are not stored."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    color: Optional[str] = None
    icon: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CategoryRequest(BaseModel):
    """Body of POST /api/todos/categories."""
    name: str
    color: Optional[str] = None
    icon: Optional[str] = None


class UpdateCategoryRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
