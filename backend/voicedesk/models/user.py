"""
User-related Pydantic models.
"""
from pydantic import BaseModel
from typing import Optional


class Identity(BaseModel):
    """Verified caller identity."""
    user_id: str
    email: Optional[str] = None
    profile: dict = {}


class UserResponse(BaseModel):
    """User profile response."""
    id: str
    email: Optional[str] = None
    profile: dict = {}
