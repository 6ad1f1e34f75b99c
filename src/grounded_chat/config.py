"""Configuration management using pydantic-settings."""

import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Grounded Chat"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./grounded_chat.db"

    # Redis (only used when RATE_LIMIT_BACKEND=redis)
    REDIS_URL: str = "redis://redis:6379/0"

    # Rate limiting (per conversation token)
    RATE_LIMIT_BACKEND: str = "memory"  # 'memory' or 'redis'
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    RATE_LIMIT_MAX_MESSAGES: int = 100
    RATE_LIMIT_MAX_KEYS: int = 50_000  # Prune expired windows above this size

    # Chat engine
    CHAT_MAX_MESSAGE_LENGTH: int = 2000
    CHAT_HISTORY_WINDOW: int = 20  # Prior turns sent to the model
    CHAT_TOP_K: int = 5
    CHAT_MIN_SIMILARITY: float = 0.5  # Retrieval floor, below the confidence threshold
    CHAT_MAX_TOKENS: int = 1024
    CHAT_TEMPERATURE: float = 0.7
    BOOKING_UTM_SOURCE: str = "grounded-chat"
    BOOKING_UTM_MEDIUM: str = "chatbot"

    # Knowledge base
    DUPLICATE_PAIR_THRESHOLD: float = 0.95
    TEST_MATCH_MIN_SIMILARITY: float = 0.3  # Low floor to show the range of matches
    TEST_MATCH_TOP_K: int = 5

    # Embeddings
    EMBEDDING_PROVIDER: str = "openai"  # 'openai', 'sentence-transformer' or 'ollama'
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"  # sentence-transformer model
    OLLAMA_BASE_URL: str = "http://ollama:11434"
    OLLAMA_EMBEDDING_MODEL: str = "mxbai-embed-large"

    # App-level model used by the conversation summarizer
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"

    @model_validator(mode="after")
    def check_rate_limit_settings(self) -> "Settings":
        """Warn about per-process rate limiting outside debug mode."""
        if not self.DEBUG and self.RATE_LIMIT_BACKEND == "memory":
            logging.warning(
                "Rate limiter uses in-process memory; counters are not shared "
                "between workers. Set RATE_LIMIT_BACKEND=redis for multi-worker deployments."
            )
        return self


settings = Settings()
