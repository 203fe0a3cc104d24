"""Shared FastAPI dependencies and the service container behind them."""

import uuid
from typing import Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from agent_engine.core.agents.reasoning_engine import ReasoningEngine
from agent_engine.core.agents.tool_integration import AgentToolExecutor, ToolExecutor
from agent_engine.core.tool_registry import ToolRegistry
from agent_engine.services.event_matching import EventMatcher
from agent_engine.services.rule_engine import RuleEngine
from agent_engine.services.task_lifecycle import TaskLifecycleManager
from agent_engine.services.workflow_engine import WorkflowEngine


class EngineServices:
    """The lifecycle manager, workflow engine, event matcher and rule engine used by the API."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        executor: ToolExecutor,
        oracle,
        tool_registry: Optional[ToolRegistry] = None,
        db_engine: Optional[AsyncEngine] = None,
    ):
        """Wire the services together.

        Args:
            session_maker: Session factory for the task store
            executor: Tool executor
            oracle: Reasoning oracle
            tool_registry: Tool metadata (defaults to the built-in registry)
            db_engine: Engine disposed on shutdown, if the container owns it
        """
        self.session_maker = session_maker
        self.db_engine = db_engine
        self.lifecycle = TaskLifecycleManager(session_maker)
        self.workflow_engine = WorkflowEngine(
            self.lifecycle, executor, oracle, tool_registry=tool_registry
        )
        self.event_matcher = EventMatcher(self.lifecycle, self.workflow_engine)
        self.rule_engine = RuleEngine(session_maker, self.workflow_engine.tools)


def build_default_services() -> EngineServices:
    """Services backed by the configured database and the Claude reasoning engine."""
    from agent_engine.db.session import async_session_maker, engine

    reasoning_engine = ReasoningEngine()
    return EngineServices(
        session_maker=async_session_maker,
        executor=AgentToolExecutor(reasoning_engine),
        oracle=reasoning_engine,
        db_engine=engine,
    )


def get_services(request: Request) -> EngineServices:
    """Service container stored on the application."""
    return request.app.state.services


async def get_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
) -> uuid.UUID:
    """Extract and validate the user id from the X-User-ID header.

    Raises:
        HTTPException: If header is missing or invalid
    """
    if not x_user_id:
        raise HTTPException(status_code=400, detail="X-User-ID header is required")

    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="X-User-ID must be a valid UUID",
        )


def parse_task_id(task_id: str) -> uuid.UUID:
    """Parse a task id path parameter."""
    try:
        return uuid.UUID(task_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid task_id format")


def parse_rule_id(rule_id: str) -> uuid.UUID:
    """Parse a rule id path parameter."""
    try:
        return uuid.UUID(rule_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid rule_id format")


__all__ = [
    "EngineServices",
    "build_default_services",
    "get_services",
    "get_user_id",
    "parse_rule_id",
    "parse_task_id",
]
