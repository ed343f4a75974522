from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Find .env in the parent directory of this file (apps/api/)
ENV_FILE = Path(__file__).parent.parent / ".env"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore")

    env: str = "local"
    log_level: str = "INFO"

    database_url: str = ""  # e.g. sqlite:///./focustutor.db; empty keeps sessions in memory

    openai_api_key: str = ""
    openai_base_url: str = ""  # e.g. http://localhost:1234/v1
    openai_model: str = "llama-3.2-3b-instruct"

    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # Topic moderation
    discovery_window: int = Field(default=3, ge=1)
    relevance_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    follow_up_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    recent_history_size: int = Field(default=10, ge=0)
    moderation_patterns_file: str = ""  # JSON file overriding the built-in pattern tables


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""

    return Settings()


settings = get_settings()
