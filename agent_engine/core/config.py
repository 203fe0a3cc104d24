"""Configuration management using environment variables."""

import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database configuration
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", "postgresql+asyncpg://localhost:5432/agent_engine"
    )
    # Only applied to PostgreSQL URLs; use "disable" for local dev without SSL
    DATABASE_SSL: str = os.getenv("DATABASE_SSL", "require").lower()

    # Application configuration
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Reasoning oracle configuration
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    REASONING_MODEL: str = os.getenv("REASONING_MODEL", "claude-sonnet-4-5")
    REASONING_SYSTEM_PROMPT: str = os.getenv(
        "REASONING_SYSTEM_PROMPT",
        "You are an assistant that carries out business actions "
        "(email, calendar, CRM) on behalf of the user.",
    )

    # Task engine tuning
    DEFAULT_MAX_RETRIES: int = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
    RECENCY_MATCH_WINDOW_MINUTES: int = int(
        os.getenv("RECENCY_MATCH_WINDOW_MINUTES", "120")
    )
    MUTATION_CONFLICT_RETRIES: int = int(os.getenv("MUTATION_CONFLICT_RETRIES", "3"))

    # Opik configuration
    OPIK_ENABLED: bool = os.getenv("OPIK_ENABLED", "false").lower() == "true"
    OPIK_PROJECT_NAME: Optional[str] = os.getenv("OPIK_PROJECT_NAME")
    OPIK_WORKSPACE: Optional[str] = os.getenv("OPIK_WORKSPACE")
    OPIK_API_KEY: Optional[str] = os.getenv("OPIK_API_KEY")

    @property
    def database_url_sync(self) -> str:
        """Get synchronous database URL for Alembic."""
        return self.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")

# Global settings instance
settings = Settings()
