"""
Account connection service.

This module orchestrates the Google OAuth flow that connects an account to
an already signed-in user:
1. Generate OAuth URL → google_auth, with a signed state naming the user
2. Handle callback → verify state → exchange code → get profile → save account
3. Access check on a connected account → live Gmail and Calendar calls
"""
from datetime import datetime, timedelta, timezone

import jwt

from voicedesk.config import get_settings
from voicedesk.integrations.google_auth import (
    get_oauth_url as _get_oauth_url,
    exchange_code_for_tokens,
    get_user_info,
)
from voicedesk.integrations.calendar_client import CalendarClient
from voicedesk.integrations.gmail_client import GmailClient
from voicedesk.models.account import Account
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import AuthError

logger = get_logger(__name__)

# The user has this long to finish the consent screen
STATE_TTL = timedelta(minutes=10)
STATE_PURPOSE = "google_connect"


def encode_state(user_id: str) -> str:
    """Signed OAuth state carrying the user id through Google's redirect."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "purpose": STATE_PURPOSE, "iat": now, "exp": now + STATE_TTL}
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def decode_state(state: str) -> str:
    """
    Verify an OAuth state and return the user id.

    Raises:
        AuthError: Forged, expired or foreign state
    """
    settings = get_settings()
    try:
        payload = jwt.decode(state, settings.auth_jwt_secret, algorithms=[settings.auth_jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Account connection took too long. Please try again.", "STATE_EXPIRED")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid OAuth state: {e}")
        raise AuthError("Invalid OAuth state", "INVALID_STATE")

    if payload.get("purpose") != STATE_PURPOSE or not payload.get("sub"):
        raise AuthError("Invalid OAuth state", "INVALID_STATE")
    return payload["sub"]


class AuthService:
    """
    Google account connection flow.

    Usage:
        auth_service = AuthService(account_directory)
        url = auth_service.get_oauth_url(user_id)
        account = await auth_service.handle_oauth_callback(code, state)
    """

    def __init__(self, accounts: AccountDirectory):
        self.accounts = accounts

    def get_oauth_url(self, user_id: str) -> str:
        """
        Get the Google OAuth authorization URL for connecting an account.

        Frontend should redirect user to this URL.
        """
        return _get_oauth_url(encode_state(user_id))

    async def handle_oauth_callback(self, code: str, state: str) -> Account:
        """
        Handle OAuth callback after user grants permission.

        Flow:
        1. Verify the state and recover the user id
        2. Exchange authorization code for tokens
        3. Fetch the Google profile
        4. Create or update the connected account

        Raises:
            AuthError: If any step fails
        """
        user_id = decode_state(state)

        tokens = await exchange_code_for_tokens(code)
        logger.info("Exchanged code for tokens")

        profile = await get_user_info(tokens["access_token"])
        logger.info(f"Got Google profile for: {profile['email']}")

        scopes = tokens.get("scope", "").split() or get_settings().google_scopes
        return await self.accounts.save_authorization(user_id, profile, tokens, scopes)

    async def check_account_access(self, user_id: str, account_id: str) -> dict:
        """
        Check that a connected account's tokens still reach Gmail and Calendar.

        The access token is refreshed first when it has expired.

        Raises:
            AccountNotFoundError: Not one of this user's accounts
            PermissionRevokedError: Refresh failed for good
            GmailError / CalendarError: Google rejected the call
        """
        account = await self.accounts.get_account(user_id, account_id)
        account = await self.accounts.ensure_fresh(account)

        profile = await GmailClient(account.access_token).get_profile()
        calendars = await CalendarClient(account.access_token).list_calendars()

        logger.info(f"Access check passed for {account.email}: {len(calendars)} calendars")
        return {
            "email": account.email,
            "gmail": {
                "emailAddress": profile.get("emailAddress"),
                "messagesTotal": profile.get("messagesTotal"),
                "threadsTotal": profile.get("threadsTotal"),
            },
            "calendar": {
                "calendarsCount": len(calendars),
                "calendars": calendars,
            },
        }
