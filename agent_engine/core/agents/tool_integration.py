"""Tool execution boundary used by the workflow engine."""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from agent_engine.core.exceptions import ReasoningError, ToolExecutionError
from agent_engine.core.tool_registry import ToolMetadata, ToolRegistry
from agent_engine.models.user import AgentUser

logger = logging.getLogger(__name__)


class ToolInvocation(BaseModel):
    """A concrete action the executor performed while handling a call."""

    tool_name: str = Field(..., description="Registered tool that was invoked")
    args: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Structured output (thread_id, message_id, event_id, object_id, ...)",
    )


class ToolResult(BaseModel):
    """Structured result of one executor call."""

    success: bool = Field(..., description="Whether the call succeeded")
    tool_name: str = Field(..., description="Tool that was called")
    message: str = Field(default="", description="Human-readable summary")
    data: Dict[str, Any] = Field(default_factory=dict, description="Tool-specific fields")
    invocations: List[ToolInvocation] = Field(
        default_factory=list, description="Actions performed, in order"
    )
    error: Optional[str] = Field(default=None, description="Error message when success is False")


class ToolExecutor(Protocol):
    """Performs a single named action on behalf of a user."""

    async def execute(
        self, user: AgentUser, tool_name: str, args: Dict[str, Any]
    ) -> ToolResult: ...


class ToolIntegration:
    """Validate tool names and normalize executor output."""

    def __init__(self, executor: ToolExecutor, tool_registry: ToolRegistry):
        """Initialize tool integration.

        Args:
            executor: Concrete tool executor
            tool_registry: Tool registry instance
        """
        self.executor = executor
        self.tool_registry = tool_registry

    def get_tool(self, tool_name: str) -> Optional[ToolMetadata]:
        """Get a tool by name."""
        return self.tool_registry.get_tool(tool_name)

    async def execute_tool(
        self,
        user: AgentUser,
        tool_name: str,
        parameters: Dict[str, Any],
    ) -> ToolResult:
        """Execute a tool with given parameters.

        Args:
            user: Acting user
            tool_name: Name of the tool to execute
            parameters: Tool parameters

        Returns:
            ToolResult as reported by the executor

        Raises:
            ToolExecutionError: If the tool is unknown or the executor raised
            ReasoningError: If the executor returned something that is not a result
        """
        if not self.get_tool(tool_name):
            raise ToolExecutionError(tool_name, f"Tool '{tool_name}' not found")

        logger.info("Executing tool %s", tool_name)
        try:
            raw = await self.executor.execute(user, tool_name, parameters)
        except (ToolExecutionError, ReasoningError):
            raise
        except Exception as e:
            logger.exception("Tool %s raised", tool_name)
            raise ToolExecutionError(tool_name, str(e)) from e

        return self._coerce(tool_name, raw)

    @staticmethod
    def _coerce(tool_name: str, raw: Any) -> ToolResult:
        if isinstance(raw, ToolResult):
            return raw
        if isinstance(raw, dict):
            payload = {"tool_name": tool_name, **raw}
            try:
                return ToolResult.model_validate(payload)
            except PydanticValidationError as e:
                raise ReasoningError(
                    f"Tool '{tool_name}' returned an unrecognized result shape", str(raw)
                ) from e
        raise ReasoningError(
            f"Tool '{tool_name}' returned an unrecognized result shape", repr(raw)
        )


def _registered_name(sdk_tool_name: str) -> str:
    """Strip the ``mcp__<server>__`` prefix the SDK puts on MCP tool names."""
    return sdk_tool_name.rsplit("__", 1)[-1]


def _tool_output(content: Any) -> Dict[str, Any]:
    """Structured data from a tool result block (JSON object text when possible)."""
    if isinstance(content, list):
        text = "\n".join(
            str(item.get("text", "")) for item in content if isinstance(item, dict)
        )
    else:
        text = str(content or "")
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    return {"output": text} if text.strip() else {}


class AgentToolExecutor:
    """Executor that hands each call to the reasoning engine with tools enabled.

    The engine's own tool configuration (MCP servers, allowed tools) performs
    the action. A call only succeeds when the run finished without error and
    at least one tool call completed; each completed call becomes a
    ToolInvocation so the workflow engine can see what was sent or created.
    """

    def __init__(self, reasoning_engine):
        self.reasoning_engine = reasoning_engine

    async def execute(
        self, user: AgentUser, tool_name: str, args: Dict[str, Any]
    ) -> ToolResult:
        instruction = args.get("instruction") or args.get("request")
        if instruction:
            prompt = f"Use the '{tool_name}' tool to do the following:\n{instruction}"
        else:
            details = "\n".join(f"{k}: {v}" for k, v in args.items())
            prompt = f"Call the '{tool_name}' tool with these arguments:\n{details}"

        try:
            run = await self.reasoning_engine.run_tools(user, prompt)
        except Exception as e:
            logger.exception("Agent run for %s raised", tool_name)
            return ToolResult(success=False, tool_name=tool_name, error=str(e))

        text = run.get("text") or ""
        calls = run.get("tool_calls") or []
        invocations = [
            ToolInvocation(
                tool_name=_registered_name(call["name"]),
                args=call.get("input") or {},
                data=_tool_output(call.get("output")),
            )
            for call in calls
            if call.get("is_error") is False
        ]

        if run.get("is_error"):
            return ToolResult(
                success=False,
                tool_name=tool_name,
                message=text,
                invocations=invocations,
                error=text or "Agent run failed",
            )
        if not invocations:
            failed = [_tool_output(call.get("output")).get("output") for call in calls]
            reason = next((f for f in failed if f), None) or text or "no tool call"
            logger.warning("Agent run for %s invoked no tool: %s", tool_name, reason)
            return ToolResult(
                success=False,
                tool_name=tool_name,
                message=text,
                error=f"No tool was invoked ({reason})",
            )
        return ToolResult(
            success=True, tool_name=tool_name, message=text, invocations=invocations
        )


__all__ = [
    "AgentToolExecutor",
    "ToolExecutor",
    "ToolIntegration",
    "ToolInvocation",
    "ToolResult",
]
