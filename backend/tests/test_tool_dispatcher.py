"""
Tests for the tool dispatcher: the gates in front of every tool call and
complete voice-conversation flows through it.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from voicedesk.integrations import google_auth
from voicedesk.integrations.store import ACCOUNTS
from voicedesk.models.session import Mode, SessionStatus
from voicedesk.models.tool import ToolRequest
from voicedesk.services.tool_dispatcher import DEFAULT_HANDLERS, ToolDispatcher
from voicedesk.utils.errors import (
    AccountNotFoundError,
    AuthRequiredError,
    InvalidRequestError,
    PermissionRevokedError,
    SessionNotFoundError,
    ToolNotAvailableError,
    UnknownActionError,
    UnknownToolError,
    UpstreamTimeoutError,
)


def call(ref="sess_1", **fields) -> ToolRequest:
    """Tool request as the browser relays it."""
    return ToolRequest.model_validate({"openai_session_id": ref, **fields})


class FakeHandler:
    """Stand-in domain handler that records what it was given."""

    def __init__(self, result=None, delay=0.0, on_call=None):
        self.result = result if result is not None else {}
        self.delay = delay
        self.on_call = on_call
        self.calls = []
        self.contexts = []

    def factory(self, ctx):
        self.contexts.append(ctx)
        return self

    async def handle(self, action, args):
        self.calls.append((action, args))
        if self.on_call:
            await self.on_call()
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


def dispatcher_with(session_service, resolver, accounts, store, timeout_seconds=1.0, **handlers):
    return ToolDispatcher(
        session_service,
        resolver,
        accounts,
        store,
        handlers={**DEFAULT_HANDLERS, **{name: h.factory for name, h in handlers.items()}},
        timeout_seconds=timeout_seconds,
    )


class TestTodoConversation:
    """Create a session, switch to todo, add a todo."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, session_service, dispatcher, identity):
        created = await session_service.create_session(identity.user_id)
        assert created.to_response()["active_tools"] == ["set_mode", "select_account"]

        switched = await dispatcher.dispatch("set_mode", call(mode="todo"), identity)
        assert switched["success"] is True
        assert switched["changed"] is True
        assert switched["update_session"] is True
        assert switched["active_tools"] == ["set_mode", "select_account", "todo_actions"]

        result = await dispatcher.dispatch("todo_actions", call(action="create", title="buy milk tomorrow"), identity)
        assert result["success"] is True
        assert result["action"] == "create"
        assert result["todo"]["title"] == "buy milk tomorrow"
        assert result["todo"]["category"] == "Grocery"

        session = await session_service.sessions.get_by_provider_id("sess_1")
        assert session.action_count == 1
        assert session.metadata["last_action"]["action"] == "create"

    @pytest.mark.asyncio
    async def test_nested_args(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="todo"), identity)

        result = await dispatcher.dispatch(
            "todo_actions", call(args={"action": "create", "title": "call mom"}), identity
        )

        assert result["action"] == "create"
        assert result["todo"]["category"] == "Personal"

    @pytest.mark.asyncio
    async def test_read_actions_are_not_counted(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="todo"), identity)

        result = await dispatcher.dispatch("todo_actions", call(action="list"), identity)

        assert result["count"] == 0
        session = await session_service.sessions.get_by_provider_id("sess_1")
        assert session.action_count == 0

    @pytest.mark.asyncio
    async def test_unknown_action(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="todo"), identity)

        with pytest.raises(UnknownActionError) as exc_info:
            await dispatcher.dispatch("todo_actions", call(action="archive"), identity)
        assert "create" in exc_info.value.details["supported_actions"]


class TestGates:

    @pytest.mark.asyncio
    async def test_unknown_tool(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)
        with pytest.raises(UnknownToolError):
            await dispatcher.dispatch("launch_rockets", call(), identity)

    @pytest.mark.asyncio
    async def test_session_reference_required(self, dispatcher, identity):
        with pytest.raises(InvalidRequestError):
            await dispatcher.dispatch("set_mode", call(ref=None, mode="todo"), identity)

    @pytest.mark.asyncio
    async def test_unknown_session(self, dispatcher, identity):
        with pytest.raises(SessionNotFoundError):
            await dispatcher.dispatch("set_mode", call(ref="sess_missing", mode="todo"), identity)

    @pytest.mark.asyncio
    async def test_other_users_session(self, session_service, dispatcher, identity, other_identity):
        await session_service.create_session(identity.user_id)
        with pytest.raises(SessionNotFoundError):
            await dispatcher.dispatch("set_mode", call(mode="todo"), other_identity)

    @pytest.mark.asyncio
    async def test_tool_not_exposed_for_mode(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)

        with pytest.raises(ToolNotAvailableError) as exc_info:
            await dispatcher.dispatch("todo_actions", call(action="create", title="x"), identity)

        error = exc_info.value
        assert error.code == "UNKNOWN_TOOL_FOR_MODE"
        assert error.details["mode"] == "none"
        assert error.details["active_tools"] == ["set_mode", "select_account"]

    @pytest.mark.asyncio
    async def test_hard_auth_tool_needs_identity(self, session_service, dispatcher):
        """An anonymous caller may switch modes but not touch todos."""
        await session_service.create_session(None)

        switched = await dispatcher.dispatch("set_mode", call(mode="todo"), None)
        assert switched["mode"] == "todo"

        with pytest.raises(AuthRequiredError):
            await dispatcher.dispatch("todo_actions", call(action="list"), None)
        with pytest.raises(AuthRequiredError):
            await dispatcher.dispatch("select_account", call(email="me@gmail.com"), None)

    @pytest.mark.asyncio
    async def test_set_mode_requires_mode(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)
        with pytest.raises(InvalidRequestError):
            await dispatcher.dispatch("set_mode", call(), identity)

    @pytest.mark.asyncio
    async def test_set_mode_none_returns_to_meta_tools(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="learning"), identity)

        result = await dispatcher.dispatch("set_mode", call(mode="none"), identity)

        assert result["active_tools"] == ["set_mode", "select_account"]
        assert result["changed"] is True


class TestEmailConversation:
    """Account-scoped flow: set_mode email, select_account, email action."""

    @pytest.mark.asyncio
    async def test_email_mode_without_accounts(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)

        result = await dispatcher.dispatch("set_mode", call(mode="email"), identity)

        assert result["accounts_connected"] is False
        assert "connect" in result["message"].lower()
        assert result["active_tools"] == ["set_mode", "select_account"]

        with pytest.raises(ToolNotAvailableError):
            await dispatcher.dispatch("email_actions", call(action="search"), identity)

    @pytest.mark.asyncio
    async def test_remediation_before_account_selected(
        self, session_service, resolver, accounts, store, identity, connect_account
    ):
        await connect_account(identity.user_id, "me@gmail.com")
        email = FakeHandler({"emails": []})
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, email_actions=email)
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="email"), identity)

        result = await dispatcher.dispatch("email_actions", call(action="search"), identity)

        assert result["success"] is False
        assert result["action"] == "select_account_required"
        assert result["needs_account_selection"] is True
        assert [a["email"] for a in result["available_accounts"]] == ["me@gmail.com"]
        assert "access_token" not in result["available_accounts"][0]
        assert email.calls == []

    @pytest.mark.asyncio
    async def test_select_then_search(self, session_service, resolver, accounts, store, identity, connect_account):
        account = await connect_account(identity.user_id, "me@gmail.com")
        email = FakeHandler({"count": 0, "emails": []})
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, email_actions=email)
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="email"), identity)

        selected = await dispatcher.dispatch("select_account", call(email="me@gmail.com"), identity)
        assert selected["selected_account"] == "me@gmail.com"
        assert selected["update_session"] is True
        assert selected["active_tools"] == ["set_mode", "select_account", "email_actions"]

        result = await dispatcher.dispatch("email_actions", call(action="search", query="is:unread"), identity)

        assert result == {"success": True, "action": "search", "count": 0, "emails": []}
        assert email.calls == [("search", {"query": "is:unread"})]
        assert email.contexts[0].account.id == account.id

    @pytest.mark.asyncio
    async def test_selected_account_no_longer_connected(
        self, session_service, resolver, accounts, store, identity, connect_account
    ):
        gone = await connect_account(identity.user_id, "old@gmail.com")
        await connect_account(identity.user_id, "new@gmail.com")
        email = FakeHandler()
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, email_actions=email)
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="email"), identity)
        await dispatcher.dispatch("select_account", call(email="old@gmail.com"), identity)

        await store.delete(ACCOUNTS, gone.id)

        with pytest.raises(AccountNotFoundError) as exc_info:
            await dispatcher.dispatch("email_actions", call(action="search"), identity)
        assert exc_info.value.message == "selected account no longer connected"
        assert email.calls == []

    @pytest.mark.asyncio
    async def test_expired_account_is_refreshed(
        self, session_service, resolver, accounts, store, identity, connect_account
    ):
        account = await connect_account(identity.user_id, "me@gmail.com", expired=True)
        calendar = FakeHandler({"events": []})
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, calendar_actions=calendar)
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="calendar"), identity)
        await dispatcher.dispatch("select_account", call(email="me@gmail.com"), identity)

        with patch.object(google_auth, "refresh_access_token", new_callable=AsyncMock) as refresh:
            refresh.return_value = ("fresh-token", 3600)
            await dispatcher.dispatch("calendar_actions", call(action="list"), identity)

        refresh.assert_called_once_with("mock-refresh-token")
        assert calendar.contexts[0].account.access_token == "fresh-token"
        stored = await store.get(ACCOUNTS, account.id)
        assert stored["access_token"] == "fresh-token"

    @pytest.mark.asyncio
    async def test_expired_account_without_refresh_token(
        self, session_service, resolver, accounts, store, identity, connect_account
    ):
        await connect_account(identity.user_id, "me@gmail.com", expired=True, refresh_token=None)
        calendar = FakeHandler()
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, calendar_actions=calendar)
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="calendar"), identity)
        await dispatcher.dispatch("select_account", call(email="me@gmail.com"), identity)

        with pytest.raises(PermissionRevokedError):
            await dispatcher.dispatch("calendar_actions", call(action="list"), identity)


class TestExecution:

    @pytest.mark.asyncio
    async def test_timeout_fails_only_the_call(self, session_service, resolver, accounts, store, identity):
        slow = FakeHandler(delay=1.0)
        dispatcher = dispatcher_with(
            session_service, resolver, accounts, store, timeout_seconds=0.05, todo_actions=slow
        )
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="todo"), identity)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await dispatcher.dispatch("todo_actions", call(action="create", title="x"), identity)

        assert exc_info.value.code == "UPSTREAM_TIMEOUT"
        session = await session_service.sessions.get_by_provider_id("sess_1")
        assert session.status == SessionStatus.ACTIVE
        assert session.mode == Mode.TODO
        assert session.action_count == 0

    @pytest.mark.asyncio
    async def test_action_not_recorded_when_session_ended_meanwhile(
        self, session_service, resolver, accounts, store, identity
    ):
        created = await session_service.create_session(identity.user_id)

        async def hang_up():
            await session_service.update_status(created.session.id, "completed", user_id=identity.user_id)

        todo = FakeHandler({"todo": {"title": "x"}}, on_call=hang_up)
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, todo_actions=todo)
        await dispatcher.dispatch("set_mode", call(mode="todo"), identity)

        result = await dispatcher.dispatch("todo_actions", call(action="create", title="x"), identity)

        assert result["success"] is True
        session = await session_service.sessions.get(created.session.id)
        assert session.status == SessionStatus.COMPLETED
        assert session.action_count == 0

    @pytest.mark.asyncio
    async def test_handler_gets_session_and_identity(self, session_service, resolver, accounts, store, identity):
        learning = FakeHandler({"topics": []})
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, learning_actions=learning)
        await session_service.create_session(identity.user_id)
        await dispatcher.dispatch("set_mode", call(mode="learning"), identity)

        await dispatcher.dispatch("learning_actions", call(action="list_topics"), identity)

        ctx = learning.contexts[0]
        assert ctx.identity.user_id == identity.user_id
        assert ctx.session.provider_session_id == "sess_1"
        assert ctx.account is None


class TestWithoutSession:
    """The app's todo and learning screens call tools with no realtime session."""

    @pytest.mark.asyncio
    async def test_todo_create_and_list(self, dispatcher, identity):
        created = await dispatcher.dispatch("todo_actions", call(ref=None, action="create", title="buy milk"), identity)
        listed = await dispatcher.dispatch("todo_actions", call(ref=None, action="list"), identity)

        assert created["success"] is True
        assert created["todo"]["category"] == "Grocery"
        assert [t["title"] for t in listed["todos"]] == ["buy milk"]

    @pytest.mark.asyncio
    async def test_learning_has_no_conversation(self, session_service, resolver, accounts, store, identity):
        learning = FakeHandler({"topics": []})
        dispatcher = dispatcher_with(session_service, resolver, accounts, store, learning_actions=learning)

        result = await dispatcher.dispatch("learning_actions", call(ref=None, action="list_topics"), identity)

        assert result == {"success": True, "action": "list_topics", "topics": []}
        assert learning.contexts[0].session is None
        assert learning.calls == [("list_topics", {})]

    @pytest.mark.asyncio
    async def test_requires_identity(self, dispatcher):
        with pytest.raises(AuthRequiredError):
            await dispatcher.dispatch("todo_actions", call(ref=None, action="list"), None)

    @pytest.mark.asyncio
    async def test_email_still_needs_a_session(self, dispatcher, identity):
        with pytest.raises(InvalidRequestError) as exc_info:
            await dispatcher.dispatch("email_actions", call(ref=None, action="search"), identity)
        assert exc_info.value.details == {"field": "openai_session_id"}

    @pytest.mark.asyncio
    async def test_nothing_recorded_on_sessions(self, session_service, dispatcher, identity):
        await session_service.create_session(identity.user_id)

        await dispatcher.dispatch("todo_actions", call(ref=None, action="create", title="call mom"), identity)

        session = await session_service.sessions.get_by_provider_id("sess_1")
        assert session.action_count == 0
