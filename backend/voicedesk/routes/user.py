"""
User profile endpoint.
"""
from fastapi import APIRouter, Depends

from voicedesk.dependencies import require_identity
from voicedesk.models.user import Identity, UserResponse

router = APIRouter()


@router.get("/profile", response_model=UserResponse)
async def get_profile(identity: Identity = Depends(require_identity)):
    """
    Get the verified caller's profile.
    """
    return UserResponse(id=identity.user_id, email=identity.email, profile=identity.profile)
