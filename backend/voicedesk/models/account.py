"""
Connected external (Google) account models.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, List
from uuid import uuid4

from pydantic import BaseModel, Field

# Refresh a little before the provider actually rejects the token
EXPIRY_BUFFER = timedelta(minutes=5)


class Account(BaseModel):
    """One authorized Google identity belonging to a user."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    google_user_id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    scopes: List[str] = []
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_expired(self) -> bool:
        if self.token_expires_at is None:
            return False
        return datetime.now(timezone.utc) + EXPIRY_BUFFER > self.token_expires_at

    def summary(self) -> "AccountSummary":
        return AccountSummary(
            id=self.id,
            email=self.email,
            name=self.name,
            picture=self.picture,
            connected_at=self.created_at,
        )


class AccountSummary(BaseModel):
    """Account fields that are safe to show to the client and the model."""
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    connected_at: datetime
