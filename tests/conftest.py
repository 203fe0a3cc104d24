"""Shared test fixtures and configuration."""

import os

# Settings are read at import time; keep tests off PostgreSQL and Opik.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["OPIK_ENABLED"] = "false"

import uuid
from typing import Any, Callable, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from agent_engine.core.agents.tool_integration import ToolInvocation, ToolResult
from agent_engine.core.exceptions import ReasoningError
from agent_engine.core.tool_registry import ToolRegistry
from agent_engine.db.session import Base, build_engine, build_session_maker
from agent_engine.models.user import AgentUser
from agent_engine.services.event_matching import EventMatcher
from agent_engine.services.rule_engine import RuleEngine
from agent_engine.services.task_lifecycle import TaskLifecycleManager
from agent_engine.services.workflow_engine import WorkflowEngine

JANE_BREAKDOWN = """Here is the plan:
Step 1: Find Jane's email address
Step 2: Send Jane an email asking if she is free tomorrow 4-5pm
"""


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """SQLite-backed task store with the schema created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
def lifecycle(session_maker):
    return TaskLifecycleManager(session_maker, max_conflict_retries=3, default_max_retries=3)


@pytest.fixture
def user():
    return AgentUser(id=uuid.uuid4(), email="me@example.com", display_name="Sam")


@pytest.fixture
def tool_registry():
    """Create ToolRegistry instance."""
    return ToolRegistry()


def make_oracle(
    classification: Any = "COMPLEX: email Jane and wait for her answer",
    breakdown: Any = JANE_BREAKDOWN,
    reply: Any = "ACCEPTED",
) -> MagicMock:
    """Reasoning oracle double answering by prompt kind.

    Each answer may be a string or an exception to raise.
    """

    async def complete(user, prompt, tools_enabled=False):
        if prompt.startswith("You are routing"):
            answer = classification
        elif prompt.startswith("Break the following"):
            answer = breakdown
        elif prompt.startswith("Analyze this email reply"):
            answer = reply
        else:
            raise AssertionError(f"Unexpected prompt: {prompt[:60]}")
        if isinstance(answer, Exception):
            raise answer
        return answer

    oracle = MagicMock()
    oracle.complete = AsyncMock(side_effect=complete)
    return oracle


def default_tool_result(tool_name: str, args: Dict[str, Any]) -> ToolResult:
    """Results a well-behaved executor returns for the Jane meeting flow."""
    instruction = (args.get("instruction") or "").lower()
    if tool_name == "agent" and instruction.startswith("find"):
        return ToolResult(
            success=True,
            tool_name="agent",
            message="Found jane@x.com",
            invocations=[
                ToolInvocation(
                    tool_name="email_find_contact",
                    args={"name": "Jane"},
                    data={"email": "jane@x.com"},
                )
            ],
        )
    if tool_name == "agent" and instruction.startswith("send"):
        return ToolResult(
            success=True,
            tool_name="agent",
            message="Email sent to jane@x.com",
            invocations=[
                ToolInvocation(
                    tool_name="email_send",
                    args={"to": ["jane@x.com"], "subject": "Meeting Request"},
                    data={"thread_id": "T-1", "message_id": "M-1"},
                )
            ],
        )
    if tool_name == "calendar_create_event":
        return ToolResult(
            success=True,
            tool_name="calendar_create_event",
            message="Event created",
            data={"event_id": "evt-1", "title": args.get("title")},
        )
    if tool_name == "agent":
        return ToolResult(
            success=True,
            tool_name="agent",
            message=f"Done: {args.get('instruction')}",
            invocations=[
                ToolInvocation(
                    tool_name="search_context",
                    args={"query": args.get("instruction")},
                    data={"output": "ok"},
                )
            ],
        )
    return ToolResult(success=True, tool_name=tool_name, message=f"{tool_name} done")


def make_executor(
    handler: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
) -> MagicMock:
    """Tool executor double; ``handler(tool_name, args)`` returns a result or raises."""
    handler = handler or default_tool_result

    async def execute(user, tool_name, args):
        return handler(tool_name, args)

    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=execute)
    return executor


@pytest.fixture
def oracle():
    return make_oracle()


@pytest.fixture
def executor():
    return make_executor()


@pytest.fixture
def workflow_engine(lifecycle, executor, oracle, tool_registry):
    return WorkflowEngine(lifecycle, executor, oracle, tool_registry=tool_registry)


@pytest.fixture
def event_matcher(lifecycle, workflow_engine):
    return EventMatcher(lifecycle, workflow_engine)


@pytest.fixture
def rule_engine(session_maker, workflow_engine):
    """Rule engine sharing the workflow engine's tool boundary and executor."""
    return RuleEngine(session_maker, workflow_engine.tools)


@pytest.fixture
def oracle_down():
    """Oracle that always fails."""
    error = ReasoningError("oracle unavailable")
    return make_oracle(classification=error, breakdown=error, reply=error)


@pytest.fixture
def oracle_factory():
    return make_oracle


@pytest.fixture
def executor_factory():
    return make_executor


@pytest.fixture
def build_workflow_engine(lifecycle, tool_registry):
    """Build an engine with custom executor/oracle doubles."""

    def build(executor=None, oracle=None) -> WorkflowEngine:
        return WorkflowEngine(
            lifecycle,
            executor or make_executor(),
            oracle or make_oracle(),
            tool_registry=tool_registry,
        )

    return build


@pytest.fixture
def default_results():
    """Handler used by the default executor, for wrapping in custom handlers."""
    return default_tool_result
