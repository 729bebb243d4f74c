"""
Application configuration loaded from environment variables.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # OpenAI (realtime sessions + chat completions)
    openai_api_key: str = ""
    openai_realtime_url: str = "https://api.openai.com/v1/realtime/sessions"
    openai_chat_model: str = "gpt-4o-mini"
    realtime_model: str = "gpt-4o-realtime-preview"
    realtime_voice: str = "verse"

    # Google OAuth
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:3001/auth/google/callback"

    # Frontend URL for CORS and redirects
    frontend_url: str = "http://localhost:8080"

    # Identity tokens (bearer JWT issued by the identity provider)
    auth_jwt_secret: str = "dev-secret-please-change-in-production"
    auth_jwt_algorithm: str = "HS256"

    # Upstream calls must stay short, the user is waiting on a live voice turn
    upstream_timeout_seconds: float = 15.0
    upstream_retries: int = 1
    tool_timeout_seconds: float = 25.0

    # Optimistic read-modify-write attempts against the store
    store_max_retries: int = 5

    # Logging
    log_level: str = "INFO"

    # Debug mode
    debug: bool = True

    # Google OAuth scopes
    @property
    def google_scopes(self) -> list[str]:
        return [
            "https://www.googleapis.com/auth/userinfo.profile",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.send",
            "https://www.googleapis.com/auth/gmail.compose",
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/calendar.events",
        ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
