"""
FastAPI dependencies: shared service instances and the caller's identity.

Services share one store per process. Tests swap them out through
app.dependency_overrides.
"""
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from voicedesk.integrations.identity import verify_token
from voicedesk.integrations.realtime_client import RealtimeClient
from voicedesk.integrations.store import MemoryStore
from voicedesk.models.user import Identity
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.services.auth_service import AuthService
from voicedesk.services.learning_service import LearningService
from voicedesk.services.session_service import SessionService
from voicedesk.services.session_store import SessionStore
from voicedesk.services.todo_service import TodoService
from voicedesk.services.tool_dispatcher import ToolDispatcher
from voicedesk.services.tool_resolver import ToolResolver
from voicedesk.utils.errors import AuthRequiredError


@lru_cache()
def get_store() -> MemoryStore:
    return MemoryStore()


@lru_cache()
def get_account_directory() -> AccountDirectory:
    return AccountDirectory(get_store())


@lru_cache()
def get_session_service() -> SessionService:
    accounts = get_account_directory()
    return SessionService(
        sessions=SessionStore(get_store()),
        resolver=ToolResolver(accounts),
        accounts=accounts,
        realtime=RealtimeClient(),
    )


@lru_cache()
def get_dispatcher() -> ToolDispatcher:
    service = get_session_service()
    return ToolDispatcher(
        session_service=service,
        resolver=service.resolver,
        accounts=service.accounts,
        store=get_store(),
    )


@lru_cache()
def get_auth_service() -> AuthService:
    return AuthService(get_account_directory())


def get_optional_identity(authorization: Optional[str] = Header(default=None)) -> Optional[Identity]:
    """
    Identity from an `Authorization: Bearer <jwt>` header.

    Missing, malformed and invalid tokens all mean anonymous; routes that
    need a user depend on require_identity instead.
    """
    if not authorization:
        return None

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None

    return verify_token(token.strip())


def require_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise AuthRequiredError()
    return identity


def get_todo_service(
    identity: Identity = Depends(require_identity),
    store: MemoryStore = Depends(get_store),
) -> TodoService:
    return TodoService(store, identity.user_id)


def get_learning_service(
    identity: Identity = Depends(require_identity),
    store: MemoryStore = Depends(get_store),
) -> LearningService:
    return LearningService(store, identity.user_id)
