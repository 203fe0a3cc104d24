"""Database session management."""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from agent_engine.core.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    Args:
        database_url: SQLAlchemy async URL (asyncpg or aiosqlite)
        echo: Whether to log emitted SQL

    Returns:
        AsyncEngine instance
    """
    connect_args: Dict[str, Any] = {}
    # SSL for PostgreSQL: required by most cloud providers (Neon, Supabase, RDS, etc.)
    if database_url.startswith("postgresql") and settings.DATABASE_SSL in (
        "require",
        "true",
        "1",
    ):
        connect_args["ssl"] = True

    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        connect_args=connect_args,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """Create the session factory used by repositories and the lifecycle manager."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create async session factory
async_session_maker = build_session_maker(engine)

# Base class for models
Base = declarative_base()
