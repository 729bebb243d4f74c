"""
Learning topic and learning session models.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List
from uuid import uuid4

from pydantic import BaseModel, Field


class TopicStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class LearningTopic(BaseModel):
    """Something the user is learning across several conversations."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str
    description: Optional[str] = None
    category: str = "General"
    difficulty: Difficulty = Difficulty.BEGINNER
    status: TopicStatus = TopicStatus.NOT_STARTED
    concepts_covered: List[str] = []
    last_summary: Optional[str] = None
    next_steps: Optional[str] = None
    progress_percentage: int = 0
    session_count: int = 0
    total_minutes: int = 0
    created_at: datetime
    updated_at: datetime
    last_session_at: Optional[datetime] = None
    version: int = 0


class LearningSession(BaseModel):
    """One study sitting on a topic."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    topic_id: str
    user_id: str
    conversation_session_id: Optional[str] = None
    session_number: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    summary: Optional[str] = None
    concepts_covered: List[str] = []
    next_steps: Optional[str] = None
    progress_percentage: Optional[int] = None


class CreateTopicRequest(BaseModel):
    """Body of POST /api/learning/topics."""
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None


class UpdateTopicRequest(BaseModel):
    """Body of PATCH /api/learning/topics/{id}. Only sent fields change."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None
    status: Optional[str] = None
    progress_percentage: Optional[int] = None
    last_summary: Optional[str] = None
    next_steps: Optional[str] = None
