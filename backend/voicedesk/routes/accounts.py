"""
Google account connection routes.

OAuth Flow:
1. Frontend calls GET /api/google/auth → gets OAuth URL
2. Frontend redirects user to OAuth URL
3. User grants permissions on Google
4. Google redirects to GET /auth/google/callback with code and state
5. Backend exchanges code for tokens and saves the account
6. Backend redirects to frontend /settings
"""
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from voicedesk.config import get_settings
from voicedesk.dependencies import get_account_directory, get_auth_service, require_identity
from voicedesk.models.user import Identity
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.services.auth_service import AuthService
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import AppError

router = APIRouter()
callback_router = APIRouter()
logger = get_logger(__name__)


@router.get("/accounts")
async def list_accounts(
    identity: Identity = Depends(require_identity),
    accounts: AccountDirectory = Depends(get_account_directory),
):
    """Connected accounts of the caller (no token material)."""
    connected = await accounts.accounts_for_user(identity.user_id)
    return {"accounts": [a.summary().model_dump(mode="json") for a in connected]}


@router.get("/auth")
async def get_auth_url(
    identity: Identity = Depends(require_identity),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Get the Google consent URL for connecting an account.

    Returns:
        { authUrl: "https://accounts.google.com/..." }
    """
    return {"authUrl": auth_service.get_oauth_url(identity.user_id)}


@router.delete("/accounts/{account_id}")
async def disconnect_account(
    account_id: str,
    identity: Identity = Depends(require_identity),
    accounts: AccountDirectory = Depends(get_account_directory),
):
    account = await accounts.disconnect(identity.user_id, account_id)
    return {"success": True, "message": f"Disconnected {account.email}"}


@callback_router.get("/auth/google/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Handle Google OAuth callback.

    Always redirects to the frontend settings page, with either
    connected=true&email=... or error=...
    """
    settings_url = f"{get_settings().frontend_url}/settings"

    if error:
        logger.warning(f"OAuth error: {error}")
        return RedirectResponse(url=f"{settings_url}?error=oauth_denied")

    if not code or not state:
        logger.warning("OAuth callback missing code or state")
        return RedirectResponse(url=f"{settings_url}?error=missing_code")

    try:
        account = await auth_service.handle_oauth_callback(code, state)
    except AppError as e:
        logger.error(f"OAuth callback failed: {e.message}")
        return RedirectResponse(url=f"{settings_url}?error=auth_failed")

    return RedirectResponse(url=f"{settings_url}?connected=true&email={quote(account.email)}", status_code=302)


@router.get("/accounts/{account_id}/test")
async def check_account(
    account_id: str,
    identity: Identity = Depends(require_identity),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Live access check for one connected account.

    Returns:
        { success, email, gmail: {...}, calendar: { calendarsCount, calendars } }
    """
    result = await auth_service.check_account_access(identity.user_id, account_id)
    return {"success": True, **result}
