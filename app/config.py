"""Application settings for the Krismini chat backend.

Values come from environment variables (or a local ``.env`` file) and are
exposed through the module-level ``settings`` instance.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Message store
    DATABASE_URL: str = "sqlite+aiosqlite:///./krismini.db"
    DATABASE_ECHO: bool = False

    # Access tokens issued by the auth provider (Supabase-style HS256)
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = "authenticated"

    # Text completion (OpenAI-compatible Gemini endpoint)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    OPENAI_MODEL: str = "gemini-2.0-flash"
    OPENAI_TIMEOUT: float = 30.0

    # Gateway retry policy (seconds)
    DB_RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY: float = 1.0
    DB_RETRY_MAX_DELAY: float = 5.0

    # Offline retry queue
    QUEUE_ENABLED: bool = True
    QUEUE_MAX_RETRIES: int = 3
    QUEUE_RETRY_DELAY: float = 2.0

    CHAT_PAGE_SIZE: int = 50
    LOG_LEVEL: str = "INFO"


settings = Settings()
