"""
Conversation session model and its state transitions.

A session changes only through apply_event(), a pure function from
(Session, event) to the next Session. The session store applies it with an
optimistic read-modify-write, so the transition never sees a stale snapshot.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, List, Union
from uuid import uuid4

from pydantic import BaseModel, Field


class Mode(str, Enum):
    """Active domain context of a conversation."""
    NONE = "none"
    EMAIL = "email"
    CALENDAR = "calendar"
    TODO = "todo"
    LEARNING = "learning"
    RELAX = "relax"


class SessionStatus(str, Enum):
    """Lifecycle status of a conversation session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.EXPIRED}


class Session(BaseModel):
    """One live or historical voice conversation."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    provider_session_id: str
    user_id: Optional[str] = None
    mode: Mode = Mode.NONE
    selected_account: Optional[str] = None
    active_tools: List[str] = []
    status: SessionStatus = SessionStatus.ACTIVE
    model: Optional[str] = None
    voice: Optional[str] = None
    started_at: datetime
    updated_at: datetime
    ended_at: Optional[datetime] = None
    total_messages: int = 0
    action_count: int = 0
    duration_seconds: Optional[int] = None
    error_message: Optional[str] = None
    metadata: dict = {}
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ConversationMessage(BaseModel):
    """Transcript entry stored alongside a session."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    message_type: str
    content: Optional[str] = None
    audio_duration_ms: Optional[int] = None
    timestamp_ms: int
    metadata: dict = {}
    created_at: datetime


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class ModeChanged:
    mode: Mode


@dataclass(frozen=True)
class AccountSelected:
    email: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class ToolsRefreshed:
    """Resolver output, tagged with the session state it was computed from."""
    tool_names: tuple
    mode: Mode
    user_id: Optional[str] = None
    selected_account: Optional[str] = None

    @classmethod
    def computed_for(cls, session: Session, tool_names) -> "ToolsRefreshed":
        return cls(tuple(tool_names), session.mode, session.user_id, session.selected_account)

    def matches(self, session: Session) -> bool:
        return (self.mode, self.user_id, self.selected_account) == (
            session.mode, session.user_id, session.selected_account
        )


@dataclass(frozen=True)
class StatusChanged:
    status: SessionStatus
    error_message: Optional[str] = None
    duration_seconds: Optional[int] = None
    total_messages: Optional[int] = None


@dataclass(frozen=True)
class MessageRecorded:
    count: int = 1


@dataclass(frozen=True)
class ActionRecorded:
    tool_name: str
    action: Optional[str] = None


SessionEvent = Union[ModeChanged, AccountSelected, ToolsRefreshed, StatusChanged, MessageRecorded, ActionRecorded]


def apply_event(session: Session, event: SessionEvent, now: datetime) -> Session:
    """
    Compute the session that results from applying `event`.

    Terminal sessions are returned unchanged: duplicate status updates from
    client retries and late tool results must not rewrite history. A
    ToolsRefreshed computed for a different (mode, user, account) than the
    stored one is dropped the same way.

    Args:
        session: Current persisted session
        event: The state change to apply
        now: Timestamp to stamp on the change

    Returns:
        A new Session (the input is never modified)
    """
    if session.is_terminal:
        return session

    # A tool list resolved for an older mode or owner is stale
    if isinstance(event, ToolsRefreshed) and not event.matches(session):
        return session

    changes: dict = {"updated_at": now, "version": session.version + 1}

    if isinstance(event, ModeChanged):
        changes["mode"] = event.mode

    elif isinstance(event, AccountSelected):
        changes["selected_account"] = event.email
        # Anonymous sessions are claimed by the user who picks an account
        if session.user_id is None and event.user_id:
            changes["user_id"] = event.user_id

    elif isinstance(event, ToolsRefreshed):
        changes["active_tools"] = list(dict.fromkeys(event.tool_names))

    elif isinstance(event, StatusChanged):
        changes["status"] = event.status
        if event.error_message:
            changes["error_message"] = event.error_message
        if event.duration_seconds is not None:
            changes["duration_seconds"] = event.duration_seconds
        if event.total_messages is not None:
            changes["total_messages"] = event.total_messages
        if event.status in TERMINAL_STATUSES:
            changes["ended_at"] = now

    elif isinstance(event, MessageRecorded):
        changes["total_messages"] = session.total_messages + event.count

    elif isinstance(event, ActionRecorded):
        changes["action_count"] = session.action_count + 1
        changes["metadata"] = {
            **session.metadata,
            "last_action": {"tool": event.tool_name, "action": event.action, "at": now.isoformat()},
        }

    else:
        raise TypeError(f"Unsupported session event: {type(event).__name__}")

    return session.model_copy(update=changes)


# =============================================================================
# REQUEST BODIES
# =============================================================================

class CreateSessionRequest(BaseModel):
    """Body of POST /api/realtime/session. Unset fields use settings defaults."""
    model: Optional[str] = None
    voice: Optional[str] = None
    instructions: Optional[str] = None


class UpdateSessionRequest(BaseModel):
    status: Optional[str] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[int] = None
    total_messages: Optional[int] = None


class MessageRequest(BaseModel):
    message_type: str
    timestamp_ms: int
    content: Optional[str] = None
    audio_duration_ms: Optional[int] = None
    metadata: dict = {}
