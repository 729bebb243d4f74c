"""
Account Directory - which Google accounts a user has connected.

This module handles:
1. Listing a user's connected accounts (and the has-any check)
2. Resolving credentials for (user, account email)
3. Refreshing expired access tokens
4. Saving accounts on OAuth callback and disconnecting them

A missing account raises AccountNotFoundError. An expired account is still
returned; callers check `is_expired` and go through ensure_fresh(), which
refreshes and persists the new token.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from voicedesk.integrations import google_auth
from voicedesk.integrations.store import MemoryStore, ACCOUNTS
from voicedesk.models.account import Account
from voicedesk.utils.best_effort import best_effort
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import AccountNotFoundError, PermissionRevokedError

logger = get_logger(__name__)


class AccountDirectory:
    """
    Connected-account lookups for one store.

    Usage:
        directory = AccountDirectory(store)
        if await directory.has_accounts(user_id):
            account = await directory.credentials_for(user_id, "me@gmail.com")
            account = await directory.ensure_fresh(account)
    """

    def __init__(self, store: MemoryStore):
        self.store = store

    async def accounts_for_user(self, user_id: Optional[str]) -> List[Account]:
        """Connected accounts, newest first. Empty for anonymous callers."""
        if not user_id:
            return []
        rows = await self.store.select(ACCOUNTS, {"user_id": user_id}, order_by="created_at", descending=True)
        return [Account.model_validate(row) for row in rows]

    async def has_accounts(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        return await self.store.count(ACCOUNTS, {"user_id": user_id}) > 0

    async def credentials_for(self, user_id: Optional[str], email: str) -> Account:
        """
        Find the account with this email that belongs to this user.

        Accounts of other users are never returned, even when the email
        matches.

        Raises:
            AccountNotFoundError: No such account for this user
        """
        if not user_id or not email:
            raise AccountNotFoundError()

        wanted = email.strip().lower()
        for account in await self.accounts_for_user(user_id):
            if account.email.lower() == wanted:
                return account
        raise AccountNotFoundError()

    async def get_account(self, user_id: str, account_id: str) -> Account:
        row = await self.store.get(ACCOUNTS, account_id)
        if not row or row.get("user_id") != user_id:
            raise AccountNotFoundError()
        return Account.model_validate(row)

    async def ensure_fresh(self, account: Account) -> Account:
        """
        Return an account whose access token is usable, refreshing if needed.

        Raises:
            PermissionRevokedError: Refresh token is gone or revoked
            UpstreamError: Google token endpoint failed
        """
        if not account.is_expired:
            return account

        if not account.refresh_token:
            logger.warning(f"Account {account.email} expired and has no refresh token")
            raise PermissionRevokedError()

        access_token, expires_in = await google_auth.refresh_access_token(account.refresh_token)
        now = datetime.now(timezone.utc)
        changes = {
            "access_token": access_token,
            "token_expires_at": now + timedelta(seconds=expires_in),
            "updated_at": now,
        }
        await self.store.update(ACCOUNTS, account.id, changes)
        logger.info(f"Refreshed token for account: {account.email}")
        return account.model_copy(update=changes)

    async def save_authorization(
        self,
        user_id: str,
        profile: dict,
        tokens: dict,
        scopes: List[str],
    ) -> Account:
        """
        Create or update the account after the user granted access.

        Re-authorizing an account that is already connected updates its
        tokens in place (matched on the Google user id).
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=tokens.get("expires_in", 3600))

        existing = await self.store.find_one(
            ACCOUNTS, {"user_id": user_id, "google_user_id": profile["id"]}
        )

        if existing:
            changes = {
                "access_token": tokens["access_token"],
                "token_expires_at": expires_at,
                "name": profile.get("name"),
                "picture": profile.get("picture"),
                "updated_at": now,
            }
            # Google only sends a refresh token on the first consent
            if tokens.get("refresh_token"):
                changes["refresh_token"] = tokens["refresh_token"]
            row = await self.store.update(ACCOUNTS, existing["id"], changes)
            logger.info(f"Updated Google account {profile['email']} for user: {user_id}")
            return Account.model_validate(row)

        account = Account(
            user_id=user_id,
            google_user_id=profile["id"],
            email=profile["email"],
            name=profile.get("name"),
            picture=profile.get("picture"),
            scopes=scopes,
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            token_expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(ACCOUNTS, account.model_dump())
        logger.info(f"Google account connected: {account.email} for user: {user_id}")
        return account

    async def disconnect(self, user_id: str, account_id: str) -> Account:
        """
        Revoke the account's tokens and delete it.

        Revocation is best-effort: the account is deleted even when Google
        refuses or cannot be reached.

        Raises:
            AccountNotFoundError: Not one of this user's accounts
        """
        account = await self.get_account(user_id, account_id)

        token = account.refresh_token or account.access_token
        if token:
            revoked = await best_effort("revoke google token", google_auth.revoke_token(token))
            if not revoked.ok:
                logger.warning(f"Continuing disconnect of {account.email} without revocation")

        await self.store.delete(ACCOUNTS, account.id)
        logger.info(f"Google account disconnected: {account.email} for user: {user_id}")
        return account
