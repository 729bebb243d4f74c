"""
Custom error classes for the application.

Every error carries a stable `code` the voice agent can check and a
human-readable `message` it can read back to the user.
"""
from typing import Optional


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for response."""
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
            **self.details,
        }


# =============================================================================
# NOT FOUND (404)
# =============================================================================

class NotFoundError(AppError):
    """A referenced entity does not exist (or is not visible to the caller)."""

    def __init__(self, message: str = "Not found.", code: str = "NOT_FOUND", details: Optional[dict] = None):
        super().__init__(message, code, status_code=404, details=details)


class SessionNotFoundError(NotFoundError):
    """Conversation session not found."""

    def __init__(self, reference: str = ""):
        super().__init__("session not found", "SESSION_NOT_FOUND", {"session_ref": reference} if reference else None)


class AccountNotFoundError(NotFoundError):
    """Connected account not found for this user."""

    def __init__(self, message: str = "account not found"):
        super().__init__(message, "ACCOUNT_NOT_FOUND")


class EmailNotFoundError(NotFoundError):
    """Email not found."""

    def __init__(self, reference: str = ""):
        message = f"Couldn't find email matching '{reference}'." if reference else "Email not found."
        super().__init__(message, "EMAIL_NOT_FOUND")


class DraftNotFoundError(NotFoundError):
    """Draft not found."""

    def __init__(self, draft_id: str = ""):
        message = f"Couldn't find draft '{draft_id}'." if draft_id else "Draft not found."
        super().__init__(message, "DRAFT_NOT_FOUND")


class EventNotFoundError(NotFoundError):
    """Calendar event not found."""

    def __init__(self, event_id: str = ""):
        message = f"Couldn't find calendar event '{event_id}'." if event_id else "Calendar event not found."
        super().__init__(message, "EVENT_NOT_FOUND")


class TodoNotFoundError(NotFoundError):
    """Todo not found."""

    def __init__(self, reference: str = ""):
        message = f"Couldn't find a todo matching '{reference}'." if reference else "Todo not found."
        super().__init__(message, "TODO_NOT_FOUND")


class TopicNotFoundError(NotFoundError):
    """Learning topic not found."""

    def __init__(self, reference: str = ""):
        message = f"Couldn't find a learning topic matching '{reference}'." if reference else "Learning topic not found."
        super().__init__(message, "TOPIC_NOT_FOUND")


class CategoryNotFoundError(NotFoundError):
    """Todo category not found."""

    def __init__(self, category_id: str = ""):
        message = f"No todo category with id '{category_id}'." if category_id else "Todo category not found."
        super().__init__(message, "CATEGORY_NOT_FOUND")


# =============================================================================
# VALIDATION (400)
# =============================================================================

class InvalidRequestError(AppError):
    """Invalid request format."""

    def __init__(self, message: str = "Invalid request format.", details: Optional[dict] = None):
        super().__init__(message, "INVALID_REQUEST", status_code=400, details=details)


class UnknownActionError(AppError):
    """A tool was called with an action it does not support."""

    def __init__(self, tool_name: str, action: Optional[str], supported: list[str]):
        super().__init__(
            f"unknown action '{action}' for {tool_name}",
            "UNKNOWN_ACTION",
            status_code=400,
            details={"tool": tool_name, "supported_actions": supported},
        )


class UnknownToolError(AppError):
    """Tool name is not part of any catalog."""

    def __init__(self, tool_name: str):
        super().__init__(f"unknown tool '{tool_name}'", "UNKNOWN_TOOL", status_code=400, details={"tool": tool_name})


class ToolNotAvailableError(AppError):
    """Tool exists but is not exposed for the session's current mode."""

    def __init__(self, tool_name: str, mode: str, active_tools: list[str]):
        super().__init__(
            "unknown tool for current mode",
            "UNKNOWN_TOOL_FOR_MODE",
            status_code=400,
            details={"tool": tool_name, "mode": mode, "active_tools": active_tools},
        )


# =============================================================================
# AUTH (401)
# =============================================================================

class AuthError(AppError):
    """Authentication related errors."""

    def __init__(self, message: str, code: str = "AUTH_ERROR"):
        super().__init__(message, code, status_code=401)


class AuthRequiredError(AuthError):
    """A protected tool or route was called without a verified identity."""

    def __init__(self):
        super().__init__("authentication required", "AUTH_REQUIRED")


class PermissionRevokedError(AuthError):
    """Google permissions were revoked."""

    def __init__(self):
        super().__init__(
            "Google access was revoked. Please reconnect the account and grant permissions again.",
            "PERMISSION_REVOKED"
        )


# =============================================================================
# UPSTREAM (502 / 504)
# =============================================================================

class UpstreamError(AppError):
    """A remote provider failed. Only the current call fails, never the session."""

    def __init__(self, message: str, code: str = "UPSTREAM_ERROR", details: Optional[dict] = None):
        super().__init__(message, code, status_code=502, details=details)


class UpstreamTimeoutError(AppError):
    """A remote provider did not answer within the configured bound."""

    def __init__(self, service: str = "upstream service"):
        super().__init__(
            f"{service} took too long to respond. Please try again.",
            "UPSTREAM_TIMEOUT",
            status_code=504,
            details={"service": service},
        )


class GmailError(UpstreamError):
    """Gmail API related errors."""

    def __init__(self, message: str = "Couldn't reach Gmail. Please try again."):
        super().__init__(message, "GMAIL_ERROR")


class CalendarError(UpstreamError):
    """Google Calendar API related errors."""

    def __init__(self, message: str = "Couldn't reach Google Calendar. Please try again."):
        super().__init__(message, "CALENDAR_ERROR")


class RealtimeProviderError(UpstreamError):
    """Conversation provider refused or failed to mint a session."""

    def __init__(self, message: str = "Failed to create realtime session", detail: str = ""):
        super().__init__(message, "REALTIME_PROVIDER_ERROR", details={"details": detail} if detail else None)


class AIError(UpstreamError):
    """AI service related errors."""

    def __init__(self, message: str = "AI processing failed. Please try again."):
        super().__init__(message, "AI_ERROR")


# =============================================================================
# STORAGE
# =============================================================================

class StorageError(AppError):
    """Persistent store rejected a write."""

    def __init__(self, message: str = "Storage write failed."):
        super().__init__(message, "STORAGE_ERROR", status_code=500)


class ConcurrentUpdateError(StorageError):
    """Optimistic update kept losing the race for the same row."""

    def __init__(self, table: str, key: str):
        super().__init__(f"Concurrent update conflict on {table}/{key}")
