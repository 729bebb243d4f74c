"""
Tool-related Pydantic models.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthLevel(str, Enum):
    """How much identity a tool needs."""
    PUBLIC = "public"
    SOFT = "soft-auth"   # works anonymously, richer with identity
    HARD = "hard-auth"   # requires a verified identity


class ToolDefinition(BaseModel):
    """Function tool descriptor in the realtime provider's format."""
    model_config = ConfigDict(frozen=True)

    type: str = "function"
    name: str
    description: str
    parameters: dict


class ToolPolicy(BaseModel):
    """Preconditions the dispatcher enforces before running a tool."""
    model_config = ConfigDict(frozen=True)

    auth: AuthLevel = AuthLevel.HARD
    account_scoped: bool = False
    meta: bool = False
    # Callable from the app UI without a realtime session
    session_optional: bool = False


class ToolRequest(BaseModel):
    """
    Body posted to /api/tools/{tool_name}.

    The model's function-call arguments are spread at the top level next to
    the session reference; anything that is not `action`, `args` or the
    session reference is treated as a tool argument.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    session_ref: Optional[str] = Field(default=None, alias="openai_session_id")
    action: Optional[str] = None
    args: dict = {}

    def merged_args(self) -> dict:
        """Tool arguments with top-level fields taking precedence over `args`."""
        merged = dict(self.args or {})
        merged.update(self.model_extra or {})
        return merged


class RemediationNeeded(BaseModel):
    """
    Not an error: the tool cannot run until the user picks an account.

    Returned with HTTP 200 so the agent reads it as an instruction to ask
    the user rather than as a failure.
    """
    success: bool = False
    error: str = "Please choose which Google account to use first."
    action: str = "select_account_required"
    needs_account_selection: bool = True
    available_accounts: List[dict] = []
