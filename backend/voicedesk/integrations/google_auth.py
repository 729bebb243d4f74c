"""
Google OAuth client integration.

This module handles:
1. Generating OAuth authorization URLs for connecting an account
2. Exchanging authorization codes for tokens
3. Refreshing expired access tokens
4. Fetching the connected account's profile
5. Revoking tokens when an account is disconnected
"""
import httpx
from typing import Tuple
from urllib.parse import urlencode

from voicedesk.config import get_settings
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import AuthError, PermissionRevokedError, UpstreamError

logger = get_logger(__name__)
settings = get_settings()

# Google OAuth endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


def get_oauth_url(state: str) -> str:
    """
    Generate Google OAuth authorization URL.

    The state parameter carries a signed user id through the consent screen so
    the callback knows which user the new account belongs to.

    Args:
        state: Signed state token naming the caller

    Returns:
        OAuth authorization URL string
    """
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(settings.google_scopes),
        "access_type": "offline",  # Request refresh token
        "prompt": "consent",  # Force consent to get refresh token
        "include_granted_scopes": "true",
        "state": state,
    }

    url = f"{GOOGLE_AUTH_URL}?{urlencode(params)}"
    logger.info("Generated OAuth URL")
    return url


async def exchange_code_for_tokens(code: str) -> dict:
    """
    Exchange authorization code for access and refresh tokens.

    Args:
        code: Authorization code from Google callback

    Returns:
        Dict with access_token, refresh_token, expires_in, scope

    Raises:
        AuthError: If token exchange fails
    """
    data = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": settings.google_redirect_uri,
    }

    async with httpx.AsyncClient() as client:
        try:
            response = await client.post(GOOGLE_TOKEN_URL, data=data, timeout=settings.upstream_timeout_seconds)

            if response.status_code != 200:
                error_data = response.json()
                logger.error(f"Token exchange failed: {error_data}")
                raise AuthError(f"Failed to exchange code: {error_data.get('error_description', 'Unknown error')}")

            tokens = response.json()
            logger.info("Successfully exchanged code for tokens")

            return {
                "access_token": tokens["access_token"],
                "refresh_token": tokens.get("refresh_token"),  # May not be present on re-auth
                "expires_in": tokens.get("expires_in", 3600),
                "scope": tokens.get("scope", ""),
            }

        except httpx.RequestError as e:
            logger.error(f"Token exchange request failed: {e}")
            raise AuthError("Failed to connect to Google for authentication")


async def refresh_access_token(refresh_token: str) -> Tuple[str, int]:
    """
    Refresh an expired access token using the refresh token.

    Args:
        refresh_token: The refresh token from initial auth

    Returns:
        Tuple of (new_access_token, expires_in_seconds)

    Raises:
        PermissionRevokedError: If refresh token is invalid/revoked
        UpstreamError: For other refresh failures
    """
    data = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }

    async with httpx.AsyncClient() as client:
        try:
            response = await client.post(GOOGLE_TOKEN_URL, data=data, timeout=settings.upstream_timeout_seconds)

            if response.status_code != 200:
                error_data = response.json()
                error_code = error_data.get("error", "")

                # Check for revoked permissions
                if error_code == "invalid_grant":
                    logger.warning("Refresh token revoked or expired")
                    raise PermissionRevokedError()

                logger.error(f"Token refresh failed: {error_data}")
                raise UpstreamError("Failed to refresh Google access token", "TOKEN_REFRESH_FAILED")

            tokens = response.json()
            logger.info("Successfully refreshed access token")

            return tokens["access_token"], tokens.get("expires_in", 3600)

        except httpx.RequestError as e:
            logger.error(f"Token refresh request failed: {e}")
            raise UpstreamError("Failed to connect to Google for token refresh", "TOKEN_REFRESH_FAILED")


async def revoke_token(token: str) -> None:
    """
    Revoke an access or refresh token.

    Raises:
        UpstreamError: If Google refuses or cannot be reached
    """
    async with httpx.AsyncClient() as client:
        try:
            response = await client.post(
                GOOGLE_REVOKE_URL,
                data={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=settings.upstream_timeout_seconds,
            )
        except httpx.RequestError as e:
            raise UpstreamError(f"Failed to reach Google to revoke token: {e}", "TOKEN_REVOKE_FAILED")

    if response.status_code != 200:
        raise UpstreamError(f"Google token revocation failed: {response.status_code}", "TOKEN_REVOKE_FAILED")

    logger.info("Revoked Google token")


async def get_user_info(access_token: str) -> dict:
    """
    Fetch the connected account's profile from Google.

    Args:
        access_token: Valid Google access token

    Returns:
        Dict with id, email, name, picture

    Raises:
        AuthError: If request fails or token is invalid
    """
    headers = {"Authorization": f"Bearer {access_token}"}

    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(GOOGLE_USERINFO_URL, headers=headers, timeout=settings.upstream_timeout_seconds)

            if response.status_code == 401:
                logger.warning("Access token invalid when fetching user info")
                raise AuthError("Access token is invalid")

            if response.status_code != 200:
                logger.error(f"Failed to get user info: {response.status_code}")
                raise AuthError("Failed to fetch user information")

            user_data = response.json()
            logger.info(f"Fetched user info for: {user_data.get('email', 'unknown')}")

            return {
                "id": user_data["id"],
                "email": user_data["email"],
                "name": user_data.get("name", user_data["email"]),
                "picture": user_data.get("picture"),
            }

        except httpx.RequestError as e:
            logger.error(f"User info request failed: {e}")
            raise AuthError("Failed to connect to Google for user information")
