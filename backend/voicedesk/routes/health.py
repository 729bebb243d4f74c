"""
Health check and configuration endpoints.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from voicedesk.config import get_settings
from voicedesk.dependencies import get_account_directory, get_optional_identity
from voicedesk.models.user import Identity
from voicedesk.services.account_directory import AccountDirectory

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }


@router.get("/check-config")
async def check_config(
    identity: Optional[Identity] = Depends(get_optional_identity),
    accounts: AccountDirectory = Depends(get_account_directory),
):
    """Which integrations are configured, and how many accounts the caller has connected."""
    settings = get_settings()
    connected = len(await accounts.accounts_for_user(identity.user_id)) if identity else 0
    return {
        "hasApiKey": bool(settings.openai_api_key),
        "hasGoogleOAuth": bool(settings.google_client_id and settings.google_client_secret),
        "connectedGoogleAccounts": connected,
        "authenticated": identity is not None,
    }
