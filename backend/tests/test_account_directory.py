"""
Tests for connected-account lookups and the Google connection flow.
"""
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import jwt
import pytest
from unittest.mock import AsyncMock, patch

from voicedesk.config import get_settings
from voicedesk.integrations import google_auth
from voicedesk.integrations.store import ACCOUNTS
from voicedesk.services import auth_service as auth_module
from voicedesk.services.auth_service import AuthService, decode_state, encode_state
from voicedesk.utils.errors import AccountNotFoundError, AuthError, UpstreamError

PROFILE = {"id": "google-42", "email": "me@gmail.com", "name": "Me", "picture": "https://example.com/me.png"}


class TestAccountLookups:

    @pytest.mark.asyncio
    async def test_accounts_newest_first(self, accounts, connect_account):
        await connect_account("user-1", "old@gmail.com")
        await connect_account("user-1", "new@gmail.com")
        await connect_account("user-2", "them@gmail.com")

        listed = await accounts.accounts_for_user("user-1")

        assert [a.email for a in listed] == ["new@gmail.com", "old@gmail.com"]
        assert await accounts.has_accounts("user-1") is True
        assert await accounts.has_accounts("user-3") is False

    @pytest.mark.asyncio
    async def test_anonymous_has_no_accounts(self, accounts, connect_account):
        await connect_account("user-1", "me@gmail.com")
        assert await accounts.accounts_for_user(None) == []
        assert await accounts.has_accounts(None) is False

    @pytest.mark.asyncio
    async def test_credentials_case_insensitive(self, accounts, connect_account):
        account = await connect_account("user-1", "Me@Gmail.com")
        found = await accounts.credentials_for("user-1", " me@gmail.COM ")
        assert found.id == account.id

    @pytest.mark.asyncio
    async def test_credentials_never_cross_users(self, accounts, connect_account):
        await connect_account("user-2", "shared@gmail.com")
        with pytest.raises(AccountNotFoundError):
            await accounts.credentials_for("user-1", "shared@gmail.com")

    @pytest.mark.asyncio
    async def test_summary_has_no_tokens(self, connect_account):
        account = await connect_account("user-1", "me@gmail.com")
        summary = account.summary().model_dump()
        assert "access_token" not in summary
        assert "refresh_token" not in summary


class TestRefresh:

    @pytest.mark.asyncio
    async def test_fresh_account_untouched(self, accounts, connect_account):
        account = await connect_account("user-1", "me@gmail.com")
        with patch.object(google_auth, "refresh_access_token", new_callable=AsyncMock) as refresh:
            assert await accounts.ensure_fresh(account) is account
        refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_failure_propagates(self, accounts, connect_account):
        account = await connect_account("user-1", "me@gmail.com", expired=True)
        with patch.object(google_auth, "refresh_access_token", new_callable=AsyncMock) as refresh:
            refresh.side_effect = UpstreamError("Failed to refresh Google access token", "TOKEN_REFRESH_FAILED")
            with pytest.raises(UpstreamError):
                await accounts.ensure_fresh(account)


class TestSaveAuthorization:

    @pytest.mark.asyncio
    async def test_new_account(self, accounts):
        account = await accounts.save_authorization(
            "user-1", PROFILE, {"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600}, ["email"]
        )

        assert account.email == "me@gmail.com"
        assert account.refresh_token == "rt-1"
        assert account.token_expires_at > datetime.now(timezone.utc) + timedelta(minutes=50)

    @pytest.mark.asyncio
    async def test_reauthorization_updates_in_place(self, accounts):
        first = await accounts.save_authorization(
            "user-1", PROFILE, {"access_token": "at-1", "refresh_token": "rt-1"}, ["email"]
        )

        second = await accounts.save_authorization("user-1", PROFILE, {"access_token": "at-2"}, ["email"])

        assert second.id == first.id
        assert second.access_token == "at-2"
        assert second.refresh_token == "rt-1"
        assert len(await accounts.accounts_for_user("user-1")) == 1


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_revokes_and_deletes(self, accounts, store, connect_account):
        account = await connect_account("user-1", "me@gmail.com")
        with patch.object(google_auth, "revoke_token", new_callable=AsyncMock) as revoke:
            await accounts.disconnect("user-1", account.id)

        revoke.assert_called_once_with("mock-refresh-token")
        assert await store.get(ACCOUNTS, account.id) is None

    @pytest.mark.asyncio
    async def test_deletes_even_when_revoke_fails(self, accounts, store, connect_account):
        account = await connect_account("user-1", "me@gmail.com")
        with patch.object(google_auth, "revoke_token", new_callable=AsyncMock) as revoke:
            revoke.side_effect = UpstreamError("Google token revocation failed: 400", "TOKEN_REVOKE_FAILED")
            disconnected = await accounts.disconnect("user-1", account.id)

        assert disconnected.email == "me@gmail.com"
        assert await store.get(ACCOUNTS, account.id) is None

    @pytest.mark.asyncio
    async def test_cannot_disconnect_someone_elses_account(self, accounts, store, connect_account):
        account = await connect_account("user-2", "them@gmail.com")
        with pytest.raises(AccountNotFoundError):
            await accounts.disconnect("user-1", account.id)
        assert await store.get(ACCOUNTS, account.id) is not None


class TestOAuthState:

    def test_round_trip(self):
        assert decode_state(encode_state("user-1")) == "user-1"

    def test_tampered_state(self):
        with pytest.raises(AuthError) as exc_info:
            decode_state(encode_state("user-1") + "x")
        assert exc_info.value.code == "INVALID_STATE"

    def test_identity_token_is_not_a_state(self):
        settings = get_settings()
        token = jwt.encode({"sub": "user-1"}, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)
        with pytest.raises(AuthError):
            decode_state(token)

    def test_expired_state(self):
        settings = get_settings()
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": "user-1", "purpose": "google_connect", "iat": past, "exp": past + timedelta(minutes=10)},
            settings.auth_jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
        )
        with pytest.raises(AuthError) as exc_info:
            decode_state(token)
        assert exc_info.value.code == "STATE_EXPIRED"


class TestAuthService:

    def test_oauth_url_carries_signed_state(self, accounts):
        url = AuthService(accounts).get_oauth_url("user-1")

        query = parse_qs(urlparse(url).query)
        assert decode_state(query["state"][0]) == "user-1"

    @pytest.mark.asyncio
    async def test_callback_saves_account(self, accounts):
        service = AuthService(accounts)
        tokens = {"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600, "scope": "openid email"}

        with patch.object(auth_module, "exchange_code_for_tokens", new_callable=AsyncMock) as exchange, \
                patch.object(auth_module, "get_user_info", new_callable=AsyncMock) as user_info:
            exchange.return_value = tokens
            user_info.return_value = PROFILE
            account = await service.handle_oauth_callback("code-1", encode_state("user-1"))

        exchange.assert_called_once_with("code-1")
        assert account.user_id == "user-1"
        assert account.scopes == ["openid", "email"]
        assert [a.email for a in await accounts.accounts_for_user("user-1")] == ["me@gmail.com"]

    @pytest.mark.asyncio
    async def test_callback_with_forged_state(self, accounts):
        with patch.object(auth_module, "exchange_code_for_tokens", new_callable=AsyncMock) as exchange:
            with pytest.raises(AuthError):
                await AuthService(accounts).handle_oauth_callback("code-1", "user-1")
        exchange.assert_not_called()
