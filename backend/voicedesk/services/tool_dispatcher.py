"""
Tool Dispatcher - runs one model-issued tool call.

Stages, in order, stopping at the first failure:
  0. Tool name must exist in the catalog
  1. Session lookup by provider session id (other users' sessions are not found)
     and mode gate: the tool must be exposed for the session's current mode
  2. Auth gate: hard-auth tools need a verified identity
  3. Account gate: account-scoped tools need a selected account, otherwise a
     RemediationNeeded payload is returned
  4. Credentials for the selected account, refreshed when expired
  5. Domain execution, bounded by settings.tool_timeout_seconds
  6. Side effects: ActionRecorded on the re-fetched, non-terminal session

Todo and learning tools may also be called without a session by a signed-in
user (the app screens do this). Those calls skip stages 1, 3, 4 and 6.

Meta tools (set_mode, select_account) go to the SessionService and always
answer with update_session so the client pushes the new tool set.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from voicedesk.config import get_settings
from voicedesk.integrations.store import MemoryStore
from voicedesk.models.account import Account
from voicedesk.models.session import ActionRecorded, Session
from voicedesk.models.tool import AuthLevel, RemediationNeeded, ToolRequest
from voicedesk.models.user import Identity
from voicedesk.services import tool_catalog
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.services.calendar_service import CalendarService
from voicedesk.services.email_service import EmailService
from voicedesk.services.learning_service import LearningService
from voicedesk.services.session_service import SessionService
from voicedesk.services.todo_service import TodoService
from voicedesk.services.tool_resolver import ToolResolver
from voicedesk.utils.best_effort import best_effort
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import (
    AccountNotFoundError,
    AuthRequiredError,
    InvalidRequestError,
    SessionNotFoundError,
    ToolNotAvailableError,
    UnknownToolError,
    UpstreamTimeoutError,
)

logger = get_logger(__name__)

# Actions that change data; only these are counted on the session
MUTATING_ACTIONS = {
    "email_actions": {"send", "draft", "reply", "update_draft", "delete_draft", "send_draft"},
    "calendar_actions": {"create", "update", "delete"},
    "todo_actions": {"create", "update", "complete", "delete"},
    "learning_actions": {"create_topic", "continue_topic", "save_progress", "complete_topic", "delete_topic"},
}


@dataclass
class ToolContext:
    """Everything a domain handler may need for one call."""
    session: Optional[Session]
    identity: Optional[Identity]
    account: Optional[Account]
    store: MemoryStore


def _split_action(request: ToolRequest):
    """(action, args) with `action` taken out of the argument dict."""
    args = request.merged_args()
    action = request.action or args.get("action")
    args.pop("action", None)
    return action, args


HandlerFactory = Callable[[ToolContext], object]

DEFAULT_HANDLERS: Dict[str, HandlerFactory] = {
    "email_actions": lambda ctx: EmailService(ctx.account),
    "calendar_actions": lambda ctx: CalendarService(ctx.account),
    "todo_actions": lambda ctx: TodoService(ctx.store, ctx.identity.user_id),
    "learning_actions": lambda ctx: LearningService(ctx.store, ctx.identity.user_id, ctx.session),
}


class ToolDispatcher:
    """
    Usage:
        dispatcher = ToolDispatcher(session_service, resolver, accounts, store)
        result = await dispatcher.dispatch("todo_actions", ToolRequest(...), identity)
    """

    def __init__(
        self,
        session_service: SessionService,
        resolver: ToolResolver,
        accounts: AccountDirectory,
        store: MemoryStore,
        handlers: Optional[Dict[str, HandlerFactory]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session_service = session_service
        self.resolver = resolver
        self.accounts = accounts
        self.store = store
        self.handlers = handlers if handlers is not None else DEFAULT_HANDLERS
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else get_settings().tool_timeout_seconds

    async def dispatch(self, tool_name: str, request: ToolRequest, identity: Optional[Identity] = None) -> dict:
        if not tool_catalog.is_known_tool(tool_name):
            raise UnknownToolError(tool_name)

        policy = tool_catalog.policy_for(tool_name)
        if not request.session_ref and policy.session_optional:
            return await self._dispatch_direct(tool_name, request, identity)

        user_id = identity.user_id if identity else None
        session = await self._resolve_session(request.session_ref, user_id)

        exposed = await self.resolver.resolve_names(session.mode, session.user_id)
        if tool_name not in exposed:
            logger.info(f"Rejected {tool_name} in mode '{session.mode.value}' for session {session.provider_session_id}")
            raise ToolNotAvailableError(tool_name, session.mode.value, exposed)

        if policy.auth == AuthLevel.HARD and identity is None:
            raise AuthRequiredError()

        action, args = _split_action(request)

        if policy.meta:
            return await self._dispatch_meta(tool_name, session, identity, args)

        account = None
        if policy.account_scoped:
            if not session.selected_account:
                return await self._account_remediation(user_id)
            account = await self._credentials(user_id, session.selected_account)

        context = ToolContext(session=session, identity=identity, account=account, store=self.store)
        logger.info(f"Dispatching {tool_name}.{action} for session {session.provider_session_id}")
        result = await self._execute(tool_name, action, args, context)

        if action in MUTATING_ACTIONS.get(tool_name, set()):
            await self._record_action(session.id, tool_name, action)

        return {"success": True, "action": action, **result}

    async def _dispatch_direct(self, tool_name: str, request: ToolRequest, identity: Optional[Identity]) -> dict:
        """
        Run a user-data tool for the signed-in caller without a realtime session.

        The app's todo and learning screens call these tools directly. There
        is no mode to gate on and no session to record the action on.
        """
        if identity is None:
            raise AuthRequiredError()

        action, args = _split_action(request)
        context = ToolContext(session=None, identity=identity, account=None, store=self.store)
        logger.info(f"Dispatching {tool_name}.{action} for user: {identity.user_id} (no session)")
        result = await self._execute(tool_name, action, args, context)
        return {"success": True, "action": action, **result}

    async def _execute(self, tool_name: str, action: Optional[str], args: dict, context: ToolContext) -> dict:
        factory = self.handlers.get(tool_name)
        if factory is None:
            raise UnknownToolError(tool_name)
        handler = factory(context)

        try:
            return await asyncio.wait_for(handler.handle(action, args), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"{tool_name}.{action} timed out after {self.timeout_seconds}s")
            raise UpstreamTimeoutError(tool_name)

    # =========================================================================
    # STAGES
    # =========================================================================

    async def _resolve_session(self, session_ref: Optional[str], user_id: Optional[str]) -> Session:
        if not session_ref:
            raise InvalidRequestError("openai_session_id is required", details={"field": "openai_session_id"})
        session = await self.session_service.sessions.get_by_provider_id(session_ref)
        if session is None:
            raise SessionNotFoundError(session_ref)
        if session.user_id is not None and session.user_id != user_id:
            logger.warning(f"Session {session_ref} does not belong to caller")
            raise SessionNotFoundError(session_ref)
        return session

    async def _account_remediation(self, user_id: Optional[str]) -> dict:
        accounts = await self.accounts.accounts_for_user(user_id)
        remediation = RemediationNeeded(
            available_accounts=[account.summary().model_dump(mode="json") for account in accounts],
        )
        if not accounts:
            remediation = remediation.model_copy(
                update={"error": "No Google account is connected. Connect one in settings first."}
            )
        return remediation.model_dump()

    async def _credentials(self, user_id: Optional[str], email: str) -> Account:
        try:
            account = await self.accounts.credentials_for(user_id, email)
        except AccountNotFoundError:
            raise AccountNotFoundError("selected account no longer connected")
        return await self.accounts.ensure_fresh(account)

    async def _record_action(self, session_id: str, tool_name: str, action: str) -> None:
        latest = await self.session_service.sessions.get(session_id)
        if latest is None or latest.is_terminal:
            logger.info(f"Session {session_id} ended during {tool_name}.{action}, not recording")
            return
        await best_effort(
            "record action",
            self.session_service.sessions.apply(session_id, ActionRecorded(tool_name, action)),
        )

    async def _dispatch_meta(self, tool_name: str, session: Session, identity: Optional[Identity], args: dict) -> dict:
        ref = session.provider_session_id

        if tool_name == "set_mode":
            if not args.get("mode"):
                raise InvalidRequestError("'mode' is required", details={"field": "mode"})
            switch = await self.session_service.switch_mode(ref, args["mode"])
            response = switch.to_response()

            mode = switch.session.mode
            if tool_catalog.is_account_scoped_mode(mode):
                connected = await self.accounts.has_accounts(switch.session.user_id)
                response["accounts_connected"] = connected
                if not connected:
                    response["message"] = (
                        f"{mode.value.title()} needs a connected Google account. "
                        "Ask the user to connect one first."
                    )
            return response

        if tool_name == "select_account":
            email = args.get("email") or args.get("account")
            if not email:
                raise InvalidRequestError("'email' is required", details={"field": "email"})
            selection = await self.session_service.select_account(ref, identity.user_id, email)
            return selection.to_response()

        raise UnknownToolError(tool_name)
