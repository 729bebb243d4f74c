"""
Session lifecycle management.

This module handles:
1. Creating realtime sessions (provider session + persisted record)
2. Mode switches and account selection, with tool-set recomputation
3. Status transitions and deletion
4. Transcript messages and session history lookups

Tool sets are always recomputed from the committed session state, after the
write, never from a snapshot taken before it.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from voicedesk.config import get_settings
from voicedesk.integrations.realtime_client import RealtimeClient
from voicedesk.integrations.store import SESSIONS
from voicedesk.models.account import AccountSummary
from voicedesk.models.session import (
    AccountSelected,
    ConversationMessage,
    MessageRecorded,
    Mode,
    ModeChanged,
    Session,
    SessionStatus,
    StatusChanged,
    ToolsRefreshed,
)
from voicedesk.models.tool import ToolDefinition
from voicedesk.services import tool_catalog
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.services.session_store import SessionStore
from voicedesk.services.tool_resolver import ToolResolver
from voicedesk.utils.best_effort import BestEffortResult, best_effort
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import ConcurrentUpdateError, InvalidRequestError, SessionNotFoundError

logger = get_logger(__name__)


def parse_mode(value) -> Mode:
    """Validate a mode name. Raises InvalidRequestError for unknown modes."""
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        raise InvalidRequestError(
            f"Invalid mode '{value}'",
            details={"allowed_modes": [m.value for m in Mode]},
        )


def parse_status(value) -> SessionStatus:
    if isinstance(value, SessionStatus):
        return value
    try:
        return SessionStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidRequestError(
            f"Invalid status '{value}'",
            details={"allowed_statuses": [s.value for s in SessionStatus]},
        )


def tool_names(tools: List[ToolDefinition]) -> List[str]:
    return [tool.name for tool in tools]


@dataclass
class CreatedSession:
    """Provider session plus the persisted record (None when persisting failed)."""
    provider: dict
    tools: List[ToolDefinition]
    session: Optional[Session] = None
    persisted: Optional[BestEffortResult] = None

    def to_response(self) -> dict:
        return {
            **self.provider,
            "session_id": self.session.id if self.session else None,
            "active_tools": tool_names(self.tools),
        }


@dataclass
class ModeSwitch:
    session: Session
    tools: List[ToolDefinition]
    changed: bool

    def to_response(self) -> dict:
        return {
            "success": True,
            "mode": self.session.mode.value,
            "tools": [tool.model_dump() for tool in self.tools],
            "active_tools": tool_names(self.tools),
            "changed": self.changed,
            "update_session": True,
        }


@dataclass
class AccountSelection:
    session: Session
    account: AccountSummary
    tools: List[ToolDefinition] = field(default_factory=list)
    changed: bool = False
    refreshed: bool = False

    def to_response(self) -> dict:
        response = {
            "success": True,
            "selected_account": self.account.email,
            "account": self.account.model_dump(mode="json"),
            "mode": self.session.mode.value,
            "update_session": self.refreshed,
        }
        if self.refreshed:
            response["tools"] = [tool.model_dump() for tool in self.tools]
            response["active_tools"] = tool_names(self.tools)
            response["changed"] = self.changed
        return response


class SessionService:
    """
    Session Lifecycle Manager.

    Usage:
        service = SessionService(sessions, resolver, accounts, realtime_client)
        created = await service.create_session(user_id, {"voice": "verse"})
        switch = await service.switch_mode(created.provider["id"], "todo")
    """

    def __init__(
        self,
        sessions: SessionStore,
        resolver: ToolResolver,
        accounts: AccountDirectory,
        realtime: RealtimeClient,
    ):
        self.sessions = sessions
        self.resolver = resolver
        self.accounts = accounts
        self.realtime = realtime

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_session(self, user_id: Optional[str], model_config: Optional[dict] = None) -> CreatedSession:
        """
        Mint a provider session with the initial tool set and persist it.

        Provider failure is fatal and nothing is persisted. Persistence
        failure is not: the conversation proceeds without history.

        Raises:
            RealtimeProviderError / UpstreamTimeoutError: Provider failed
        """
        settings = get_settings()
        config = {
            "model": settings.realtime_model,
            "voice": settings.realtime_voice,
            **{k: v for k, v in (model_config or {}).items() if v is not None},
        }

        tools = await self.resolver.resolve(Mode.NONE, user_id)
        provider = await self.realtime.create_ephemeral_session(config, tools)

        now = datetime.now(timezone.utc)
        session = Session(
            provider_session_id=provider["id"],
            user_id=user_id,
            mode=Mode.NONE,
            active_tools=tool_names(tools),
            status=SessionStatus.ACTIVE,
            model=config["model"],
            voice=config["voice"],
            started_at=now,
            updated_at=now,
        )

        persisted = await best_effort("persist session", self.sessions.create(session))
        if not persisted.ok:
            logger.warning(f"Session {provider['id']} running without history")

        logger.info(f"Realtime session created: {provider['id']} for user: {user_id or 'anonymous'}")
        return CreatedSession(
            provider=provider,
            tools=tools,
            session=session if persisted.ok else None,
            persisted=persisted,
        )

    # =========================================================================
    # MODE / ACCOUNT
    # =========================================================================

    async def switch_mode(self, session_ref: str, mode) -> ModeSwitch:
        """
        Switch the session's mode and recompute its tools.

        Raises:
            InvalidRequestError: Unknown mode
            SessionNotFoundError: No session for this provider id
        """
        new_mode = parse_mode(mode)
        before = await self.require_by_provider_id(session_ref)

        session = await self.sessions.apply(before.id, ModeChanged(new_mode))
        session, tools = await self._refresh_tools(session)
        changed = tool_names(tools) != before.active_tools

        logger.info(f"Session {session_ref} mode -> {session.mode.value} (tools changed: {changed})")
        return ModeSwitch(session=session, tools=tools, changed=changed)

    async def select_account(self, session_ref: str, user_id: str, email: str) -> AccountSelection:
        """
        Select which of the user's accounts the session acts on.

        Raises:
            AccountNotFoundError: The user has no account with this email
            SessionNotFoundError: No session for this provider id
        """
        if not email:
            raise InvalidRequestError("email is required")

        account = await self.accounts.credentials_for(user_id, email)
        before = await self.require_by_provider_id(session_ref)

        session = await self.sessions.apply(before.id, AccountSelected(account.email, user_id))
        logger.info(f"Session {session_ref} selected account: {account.email}")

        if not tool_catalog.is_account_scoped_mode(session.mode):
            return AccountSelection(session=session, account=account.summary())

        session, tools = await self._refresh_tools(session)
        return AccountSelection(
            session=session,
            account=account.summary(),
            tools=tools,
            changed=tool_names(tools) != before.active_tools,
            refreshed=True,
        )

    async def _refresh_tools(self, session: Session) -> Tuple[Session, List[ToolDefinition]]:
        """
        Resolve tools for the committed state and cache their names on the session.

        If another mode switch or account selection commits while the resolver
        runs, the write is dropped and tools are resolved again from the newer
        state, so the returned list always matches what is stored.

        Raises:
            ConcurrentUpdateError: State kept changing under the resolver
        """
        for attempt in range(self.sessions.max_retries + 1):
            tools = await self.resolver.resolve(session.mode, session.user_id)
            refreshed = ToolsRefreshed.computed_for(session, tool_names(tools))
            committed = await self.sessions.apply(session.id, refreshed)
            if refreshed.matches(committed):
                return committed, tools

            logger.info(
                f"Session {session.provider_session_id} moved to mode {committed.mode.value} "
                f"while resolving tools (attempt {attempt + 1}), resolving again"
            )
            session = committed

        raise ConcurrentUpdateError(SESSIONS, session.id)

    # =========================================================================
    # STATUS / DELETION
    # =========================================================================

    async def update_status(
        self,
        session_id: str,
        status,
        error_message: Optional[str] = None,
        duration_seconds: Optional[int] = None,
        total_messages: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Session:
        """
        Move a session to a new status.

        Updates on a terminal session are ignored and the stored session is
        returned, so duplicate client retries are harmless.
        """
        session = await self.get_session(session_id, user_id)
        new_status = parse_status(status) if status is not None else session.status

        updated = await self.sessions.apply(
            session.id,
            StatusChanged(
                status=new_status,
                error_message=error_message,
                duration_seconds=duration_seconds,
                total_messages=total_messages,
            ),
        )
        if updated.version == session.version:
            logger.info(f"Ignored status update on terminal session {session_id}")
        else:
            logger.info(f"Session {session_id} status -> {new_status.value}")
        return updated

    async def delete_session(self, session_id: str, user_id: Optional[str] = None) -> bool:
        """Delete a session and its transcript. False when nothing was deleted."""
        session = await self.sessions.get(session_id)
        if session is None or session.user_id != user_id:
            return False
        deleted = await self.sessions.delete(session.id)
        if deleted:
            logger.info(f"Session deleted: {session_id}")
        return deleted

    # =========================================================================
    # LOOKUPS / TRANSCRIPT
    # =========================================================================

    async def require_by_provider_id(self, provider_session_id: str) -> Session:
        if not provider_session_id:
            raise SessionNotFoundError()
        session = await self.sessions.get_by_provider_id(provider_session_id)
        if session is None:
            raise SessionNotFoundError(provider_session_id)
        return session

    async def get_session(self, session_id: str, user_id: Optional[str] = None) -> Session:
        """Session by internal id, visible only to its owner (None = anonymous)."""
        session = await self.sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError(session_id)
        return session

    async def get_by_provider_id(self, provider_session_id: str, user_id: Optional[str] = None) -> Session:
        session = await self.require_by_provider_id(provider_session_id)
        if session.user_id != user_id:
            raise SessionNotFoundError(provider_session_id)
        return session

    async def transcript(self, session_id: str) -> List[ConversationMessage]:
        return await self.sessions.messages_for(session_id)

    async def list_sessions(
        self,
        user_id: Optional[str],
        limit: int = 50,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> List[Session]:
        if status:
            status = parse_status(status).value
        return await self.sessions.list(user_id, limit=limit, offset=offset, status=status)

    async def record_message(
        self,
        session_id: str,
        user_id: Optional[str],
        message_type: str,
        content: Optional[str] = None,
        timestamp_ms: Optional[int] = None,
        audio_duration_ms: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ConversationMessage:
        """
        Store a transcript message.

        The session's message counter is bumped best-effort: a lost counter
        update never fails the message write.
        """
        if not message_type:
            raise InvalidRequestError("message_type is required")

        session = await self.get_session(session_id, user_id)
        now = datetime.now(timezone.utc)
        message = ConversationMessage(
            session_id=session.id,
            message_type=message_type,
            content=content,
            audio_duration_ms=audio_duration_ms,
            timestamp_ms=timestamp_ms if timestamp_ms is not None else int(now.timestamp() * 1000),
            metadata=metadata or {},
            created_at=now,
        )
        await self.sessions.add_message(message)
        await best_effort("count message", self.sessions.apply(session.id, MessageRecorded()))
        return message
