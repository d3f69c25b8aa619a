"""
Application configuration using Pydantic Settings.

Automatically loads environment variables from .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str | None = None
    ai_model: str = "gpt-4o"
    ai_temperature: float = 0.1
    ai_max_tokens: int = 2000
    ai_timeout_seconds: float = 60.0

    # Database
    database_url: str = "sqlite:///./docgrid.db"

    # Content fetching
    content_fetch_timeout_seconds: float = 30.0

    # Text extraction
    min_text_length: int = 50
    max_prompt_chars: int = 15000
    layout_max_pages: int = 20
    ocr_max_pages: int = 3
    ocr_dpi: int = 200
    ocr_language: str = "eng"

    # Bulk processing
    bulk_stagger_seconds: float = 0.5
    max_concurrent_jobs: int = 5

    # Debug flags
    sql_debug: bool = False
    debug: bool = False

    model_config = SettingsConfigDict(
        # Load from .env file in the backend directory
        env_file=Path(__file__).parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Case insensitive environment variable names
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration loaded from environment.
    """
    return Settings()
