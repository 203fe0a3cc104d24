"""Reasoning and tool execution components."""

from agent_engine.core.agents.reasoning_engine import ReasoningEngine
from agent_engine.core.agents.tool_integration import (
    AgentToolExecutor,
    ToolExecutor,
    ToolIntegration,
    ToolInvocation,
    ToolResult,
)

__all__ = [
    "ReasoningEngine",
    "AgentToolExecutor",
    "ToolExecutor",
    "ToolIntegration",
    "ToolInvocation",
    "ToolResult",
]
