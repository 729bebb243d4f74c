"""
Session Store - persisted conversation sessions and their transcripts.

Sessions are addressable by the internal id and by the provider-issued
session id. Every mutation goes through apply(): read the current row,
compute apply_event(), and compare-and-set on `version`, retrying when
another request committed in between.
"""
from datetime import datetime, timezone
from typing import List, Optional

from voicedesk.config import get_settings
from voicedesk.integrations.store import MemoryStore, SESSIONS, MESSAGES
from voicedesk.models.session import ConversationMessage, Session, SessionEvent, apply_event
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import ConcurrentUpdateError, SessionNotFoundError

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """
    Typed access to the sessions and messages tables.

    Usage:
        sessions = SessionStore(store)
        session = await sessions.create(session)
        session = await sessions.apply(session.id, ModeChanged(Mode.EMAIL))
    """

    def __init__(self, store: MemoryStore, max_retries: Optional[int] = None):
        self.store = store
        self.max_retries = max_retries if max_retries is not None else get_settings().store_max_retries

    async def create(self, session: Session) -> Session:
        """Persist a new session. Raises StorageError on duplicate provider id."""
        await self.store.insert(SESSIONS, session.model_dump())
        logger.info(f"Session persisted: {session.id} (provider {session.provider_session_id})")
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        row = await self.store.get(SESSIONS, session_id)
        return Session.model_validate(row) if row else None

    async def get_by_provider_id(self, provider_session_id: str) -> Optional[Session]:
        row = await self.store.find_one(SESSIONS, {"provider_session_id": provider_session_id})
        return Session.model_validate(row) if row else None

    async def apply(self, session_id: str, event: SessionEvent) -> Session:
        """
        Apply an event to the latest persisted state of a session.

        Terminal sessions come back unchanged and nothing is written.

        Raises:
            SessionNotFoundError: Session is gone
            ConcurrentUpdateError: Lost the race max_retries + 1 times
        """
        for attempt in range(self.max_retries + 1):
            current = await self.get(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)

            updated = apply_event(current, event, _now())
            if updated is current:
                return current

            if await self.store.compare_and_set(SESSIONS, session_id, current.version, updated.model_dump()):
                return updated

            logger.info(f"Version conflict on session {session_id} (attempt {attempt + 1}), retrying")

        logger.error(f"Giving up on session {session_id} after {self.max_retries + 1} attempts")
        raise ConcurrentUpdateError(SESSIONS, session_id)

    async def list(
        self,
        user_id: Optional[str],
        limit: int = 50,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> List[Session]:
        """Sessions of one owner (None = anonymous), newest first."""
        filters = {"user_id": user_id}
        if status:
            filters["status"] = status
        rows = await self.store.select(
            SESSIONS, filters, order_by="started_at", descending=True, offset=offset, limit=limit
        )
        return [Session.model_validate(row) for row in rows]

    async def delete(self, session_id: str) -> bool:
        """Delete a session and its messages."""
        return await self.store.delete(SESSIONS, session_id) is not None

    async def add_message(self, message: ConversationMessage) -> ConversationMessage:
        await self.store.insert(MESSAGES, message.model_dump())
        return message

    async def messages_for(self, session_id: str) -> List[ConversationMessage]:
        rows = await self.store.select(MESSAGES, {"session_id": session_id}, order_by="timestamp_ms")
        return [ConversationMessage.model_validate(row) for row in rows]
