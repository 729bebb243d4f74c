"""
Realtime session routes.

Session Flow:
1. Frontend calls POST /api/realtime/session → provider session + tool set
2. Browser opens the voice connection with the returned client secret
3. Transcript messages are posted to /session/{id}/message as they happen
4. PATCH /session/{id} records completion or failure

Lookups only return sessions owned by the caller; anonymous callers see
anonymous sessions.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from voicedesk.dependencies import get_optional_identity, get_session_service
from voicedesk.models.session import CreateSessionRequest, MessageRequest, Session, UpdateSessionRequest
from voicedesk.models.user import Identity
from voicedesk.services.session_service import SessionService
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import SessionNotFoundError

router = APIRouter()
logger = get_logger(__name__)


def _user_id(identity: Optional[Identity]) -> Optional[str]:
    return identity.user_id if identity else None


async def _with_transcript(service: SessionService, session: Session) -> dict:
    messages = await service.transcript(session.id)
    return {
        "session": session.model_dump(mode="json"),
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.post("/session")
async def create_session(
    body: Optional[CreateSessionRequest] = None,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    """
    Create an ephemeral realtime session.

    Returns:
        Provider session payload + session_id + active_tools
    """
    config = body.model_dump() if body else {}
    created = await service.create_session(_user_id(identity), config)
    return created.to_response()


@router.patch("/session/{session_id}")
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    session = await service.update_status(
        session_id,
        body.status,
        error_message=body.error_message,
        duration_seconds=body.duration_seconds,
        total_messages=body.total_messages,
        user_id=_user_id(identity),
    )
    return {"session": session.model_dump(mode="json")}


@router.get("/sessions")
async def list_sessions(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status: Optional[str] = None,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    sessions = await service.list_sessions(_user_id(identity), limit=limit, offset=offset, status=status)
    return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/session/provider/{provider_session_id}")
async def get_session_by_provider_id(
    provider_session_id: str,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    session = await service.get_by_provider_id(provider_session_id, _user_id(identity))
    return await _with_transcript(service, session)


@router.get("/session/{session_id}")
async def get_session(
    session_id: str,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    session = await service.get_session(session_id, _user_id(identity))
    return await _with_transcript(service, session)


@router.post("/session/{session_id}/message")
async def store_message(
    session_id: str,
    body: MessageRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    message = await service.record_message(
        session_id,
        _user_id(identity),
        message_type=body.message_type,
        content=body.content,
        timestamp_ms=body.timestamp_ms,
        audio_duration_ms=body.audio_duration_ms,
        metadata=body.metadata,
    )
    return {"message": message.model_dump(mode="json")}


@router.delete("/session/{session_id}")
async def delete_session(
    session_id: str,
    identity: Optional[Identity] = Depends(get_optional_identity),
    service: SessionService = Depends(get_session_service),
):
    if not await service.delete_session(session_id, _user_id(identity)):
        raise SessionNotFoundError(session_id)
    return {"success": True, "message": "Session deleted successfully"}
