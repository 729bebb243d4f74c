"""
Pytest fixtures for VoiceDesk backend tests.
"""
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from voicedesk.integrations.realtime_client import RealtimeClient
from voicedesk.integrations.store import MemoryStore, ACCOUNTS
from voicedesk.models.account import Account
from voicedesk.models.user import Identity
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.services.session_service import SessionService
from voicedesk.services.session_store import SessionStore
from voicedesk.services.tool_dispatcher import ToolDispatcher
from voicedesk.services.tool_resolver import ToolResolver


# =============================================================================
# CORE SERVICES (in-memory store, mocked conversation provider)
# =============================================================================

@pytest.fixture
def store():
    """Fresh in-memory store per test."""
    return MemoryStore()


@pytest.fixture
def accounts(store):
    return AccountDirectory(store)


@pytest.fixture
def resolver(accounts):
    return ToolResolver(accounts)


@pytest.fixture
def session_store(store):
    return SessionStore(store, max_retries=2)


@pytest.fixture
def realtime():
    """Conversation provider that mints sess_1, sess_2, ... without network calls."""
    counter = itertools.count(1)
    client = AsyncMock(spec=RealtimeClient)

    def mint(model_config, tools):
        return {
            "id": f"sess_{next(counter)}",
            "object": "realtime.session",
            "model": model_config["model"],
            "voice": model_config["voice"],
            "client_secret": {"value": "ek_test_secret", "expires_at": 9999999999},
        }

    client.create_ephemeral_session.side_effect = mint
    return client


@pytest.fixture
def session_service(session_store, resolver, accounts, realtime):
    return SessionService(session_store, resolver, accounts, realtime)


@pytest.fixture
def dispatcher(session_service, resolver, accounts, store):
    return ToolDispatcher(session_service, resolver, accounts, store, timeout_seconds=1.0)


# =============================================================================
# IDENTITY / ACCOUNTS
# =============================================================================

@pytest.fixture
def identity():
    """Verified caller."""
    return Identity(user_id="user-1", email="user@example.com")


@pytest.fixture
def other_identity():
    return Identity(user_id="user-2", email="someone@example.com")


@pytest.fixture
def connect_account(store):
    """
    Factory that stores a connected Google account.

    Usage:
        account = await connect_account("user-1", "me@gmail.com", expired=True)
    """
    counter = itertools.count(1)

    async def _connect(user_id="user-1", email="me@gmail.com", expired=False, refresh_token="mock-refresh-token"):
        n = next(counter)
        now = datetime.now(timezone.utc)
        account = Account(
            user_id=user_id,
            google_user_id=f"google-{n}",
            email=email,
            name=f"Account {n}",
            access_token=f"mock-access-token-{n}",
            refresh_token=refresh_token,
            token_expires_at=now - timedelta(minutes=1) if expired else now + timedelta(hours=1),
            # Later accounts are newer
            created_at=now + timedelta(seconds=n),
            updated_at=now,
        )
        await store.insert(ACCOUNTS, account.model_dump())
        return account

    return _connect


# =============================================================================
# GMAIL PAYLOADS
# =============================================================================

@pytest.fixture
def mock_gmail_message():
    """Create a mock Gmail API message response."""
    return {
        "id": "msg-abc123",
        "threadId": "thread-xyz789",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "This is the email snippet...",
        "payload": {
            "headers": [
                {"name": "From", "value": "John Doe <john@example.com>"},
                {"name": "To", "value": "me@example.com"},
                {"name": "Subject", "value": "Test Subject"},
                {"name": "Date", "value": "Wed, 5 Feb 2025 10:30:00 +0000"},
                {"name": "Message-ID", "value": "<abc@x>"},
            ],
            "mimeType": "text/plain",
            "body": {
                "data": "VGhpcyBpcyB0aGUgZW1haWwgYm9keQ=="  # Base64 "This is the email body"
            },
        },
    }


@pytest.fixture
def mock_gmail_multipart_message():
    """Create a mock Gmail API multipart message."""
    return {
        "id": "msg-multi123",
        "threadId": "thread-multi789",
        "labelIds": ["INBOX"],
        "snippet": "Multipart email snippet...",
        "payload": {
            "headers": [
                {"name": "From", "value": "Jane Smith <jane@example.com>"},
                {"name": "To", "value": "me@example.com, bob@example.com"},
                {"name": "Cc", "value": "Carol <carol@example.com>"},
                {"name": "Subject", "value": "Multipart Email"},
                {"name": "Date", "value": "Wed, 5 Feb 2025 11:00:00 +0000"},
            ],
            "mimeType": "multipart/alternative",
            "parts": [
                {
                    "mimeType": "text/plain",
                    "body": {
                        "data": "UGxhaW4gdGV4dCBib2R5"  # "Plain text body"
                    },
                },
                {
                    "mimeType": "text/html",
                    "body": {
                        "data": "PHA+SFRNTCBib2R5PC9wPg=="  # "<p>HTML body</p>"
                    },
                },
            ],
        },
    }


@pytest.fixture
def mock_openai_response():
    """Create a mock OpenAI chat completion carrying an inbox digest."""
    return MagicMock(
        choices=[
            MagicMock(
                message=MagicMock(
                    content='{"summary": "One email from John about a test.", '
                            '"key_emails": [{"index": 1, "reason": "Unread"}], '
                            '"suggested_actions": ["Reply to John"]}'
                )
            )
        ],
        usage=MagicMock(total_tokens=50),
    )
