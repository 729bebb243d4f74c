"""
Identity verification.

Bearer tokens are JWTs issued by the identity provider and signed with the
shared secret from settings. The `sub` claim is the user id; `email` and an
optional `profile` claim are passed through.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from voicedesk.config import get_settings
from voicedesk.models.user import Identity
from voicedesk.utils.logger import get_logger

logger = get_logger(__name__)


def verify_token(token: str) -> Optional[Identity]:
    """
    Verify a bearer token and return the caller's identity.

    Args:
        token: Raw JWT (without the "Bearer " prefix)

    Returns:
        Identity, or None if the token is invalid or expired
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Identity token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid identity token: {e}")
        return None

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Identity token has no subject")
        return None

    return Identity(
        user_id=str(user_id),
        email=payload.get("email"),
        profile=payload.get("profile") or {},
    )


def issue_token(user_id: str, email: Optional[str] = None, expires_in: int = 3600) -> str:
    """Sign a token for a user. Used by tests and local tooling."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)
