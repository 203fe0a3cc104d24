"""Database package."""

from agent_engine.db.session import (
    Base,
    async_session_maker,
    build_engine,
    build_session_maker,
)

__all__ = [
    "Base",
    "async_session_maker",
    "build_engine",
    "build_session_maker",
]
