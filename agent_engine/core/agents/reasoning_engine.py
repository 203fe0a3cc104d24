"""Reasoning engine component using Claude SDK."""

import logging
from typing import Any, Dict, List, Optional

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    query,
)
from opik import track

from agent_engine.core.config import settings
from agent_engine.core.exceptions import ReasoningError
from agent_engine.models.user import AgentUser
from agent_engine.utils.opik_wrapper import store_prompt

logger = logging.getLogger(__name__)


class ReasoningEngine:
    """Reasoning oracle backed by the Claude agent SDK."""

    def __init__(
        self,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        tools: Optional[List[str]] = None,
        mcp_servers: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the reasoning engine.

        Args:
            model: Claude model to use
            system_prompt: Optional system prompt
            tools: Tools allowed when a call has tools enabled
            mcp_servers: MCP servers attached when a call has tools enabled
        """
        self.model = model or settings.REASONING_MODEL
        self.system_prompt = system_prompt or settings.REASONING_SYSTEM_PROMPT
        self.tools = tools or []
        self.mcp_servers = mcp_servers or {}
        self._opik_logged_system_prompts: set[str] = set()

    async def complete(
        self, user: AgentUser, prompt: str, tools_enabled: bool = False
    ) -> str:
        """Return the oracle's text for a prompt.

        Args:
            user: Acting user (added as context)
            prompt: Prompt text
            tools_enabled: Whether the model may call tools

        Returns:
            Response text

        Raises:
            ReasoningError: If the call failed or produced no text
        """
        result = await self.reason(
            prompt,
            context=self._user_context(user),
            tools=self.tools if tools_enabled else None,
            mcp_servers=self.mcp_servers if tools_enabled else None,
            caller="TaskEngine",
        )
        if result.get("error"):
            raise ReasoningError(f"Reasoning call failed: {result['error']}")
        text = result.get("result")
        if not text or not str(text).strip():
            raise ReasoningError("Reasoning call returned no text", raw_output=text)
        return str(text)

    async def run_tools(self, user: AgentUser, prompt: str) -> Dict[str, Any]:
        """Run a tool-enabled call and report what the model actually did.

        Never raises; the caller decides whether the run counts as success.

        Returns:
            Dict with ``text`` (final or error text), ``is_error`` and
            ``tool_calls`` (each with ``name``, ``input``, ``output``, ``is_error``)
        """
        result = await self.reason(
            prompt,
            context=self._user_context(user),
            tools=self.tools,
            mcp_servers=self.mcp_servers,
            caller="ToolExecutor",
        )
        is_error = bool(result.get("error"))
        return {
            "text": str(result.get("error") if is_error else result.get("result") or ""),
            "is_error": is_error,
            "tool_calls": result.get("tool_calls", []),
        }

    @staticmethod
    def _user_context(user: AgentUser) -> Optional[Dict[str, Any]]:
        context: Dict[str, Any] = {}
        if user.display_name:
            context["user"] = user.display_name
        if user.email:
            context["user_email"] = user.email
        return context or None

    @track
    async def reason(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
        tools: Optional[List[str]] = None,
        mcp_servers: Optional[Dict[str, Any]] = None,
        caller: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Perform reasoning with Claude.

        Args:
            prompt: Reasoning prompt
            context: Optional context dictionary
            tools: Optional list of allowed tool names
            mcp_servers: Optional MCP servers to attach
            caller: Component name used when storing prompts

        Returns:
            Dictionary with reasoning result and metadata
        """
        # Build full prompt with context
        full_prompt = prompt
        if context:
            context_str = "\n".join(f"{k}: {v}" for k, v in context.items())
            full_prompt = f"{prompt}\n\nContext:\n{context_str}"

        caller_name = (
            caller.strip()
            if isinstance(caller, str) and caller.strip()
            else "UnknownCaller"
        )
        system_prompt_name = f"{caller_name}_ReasoningEngine_system_prompt"
        if self.system_prompt and system_prompt_name not in self._opik_logged_system_prompts:
            store_prompt(
                name=system_prompt_name,
                prompt=self.system_prompt,
                metadata={
                    "component": "ReasoningEngine",
                    "kind": "system_prompt",
                    "caller": caller_name,
                },
            )
            self._opik_logged_system_prompts.add(system_prompt_name)

        options = ClaudeAgentOptions(
            system_prompt=self.system_prompt or "",
            model=self.model,
        )
        if tools:
            options.allowed_tools = tools

        try:
            run: Dict[str, Any] = {"result": None, "assistant": None, "tool_calls": []}
            if mcp_servers:
                options.mcp_servers = mcp_servers
                options.permission_mode = "acceptEdits"
                async with ClaudeSDKClient(options=options) as client:
                    await client.query(full_prompt)
                    async for message in client.receive_response():
                        self._collect(message, run)
            else:
                async for message in query(prompt=full_prompt, options=options):
                    self._collect(message, run)

            last_result: Optional[ResultMessage] = run["result"]
            reasoning_result = ""
            if last_result and last_result.result:
                reasoning_result = last_result.result
            elif run["assistant"]:
                reasoning_result = self._extract_assistant_text(run["assistant"])

            if last_result is not None and last_result.is_error:
                return {
                    "result": None,
                    "error": reasoning_result or last_result.subtype,
                    "tool_calls": run["tool_calls"],
                    "metadata": {},
                }

            return {
                "result": reasoning_result,
                "tool_calls": run["tool_calls"],
                "metadata": {
                    "model": self.model,
                    "usage": getattr(last_result, "usage", {}) if last_result else {},
                    "stop_reason": (
                        getattr(last_result, "stop_reason", None) if last_result else None
                    ),
                },
            }
        except Exception as e:
            logger.exception("Reasoning call failed")
            return {
                "result": None,
                "error": str(e),
                "tool_calls": [],
                "metadata": {},
            }

    @staticmethod
    def _collect(message: Any, run: Dict[str, Any]) -> None:
        """Record the final result, last assistant turn and every tool call."""
        if isinstance(message, ResultMessage):
            run["result"] = message
            return
        if isinstance(message, AssistantMessage):
            run["assistant"] = message
        if not isinstance(message, (AssistantMessage, UserMessage)):
            return
        if not isinstance(message.content, list):
            return
        for block in message.content:
            if isinstance(block, ToolUseBlock):
                run["tool_calls"].append(
                    {
                        "id": block.id,
                        "name": block.name,
                        "input": dict(block.input or {}),
                        "output": None,
                        "is_error": None,
                    }
                )
            elif isinstance(block, ToolResultBlock):
                for call in run["tool_calls"]:
                    if call["id"] == block.tool_use_id:
                        call["output"] = block.content
                        call["is_error"] = bool(block.is_error)

    @staticmethod
    def _extract_assistant_text(message: AssistantMessage) -> str:
        """Extract text content from an AssistantMessage."""
        if isinstance(message.content, str):
            return message.content
        if isinstance(message.content, list):
            text_parts = []
            for item in message.content:
                if isinstance(item, TextBlock):
                    text_parts.append(item.text)
                else:
                    text_parts.append(str(item))
            return "\n".join(text_parts)
        return str(message.content)


__all__ = ["ReasoningEngine"]
