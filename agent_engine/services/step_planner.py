"""Break complex requests into ordered, tool-addressable steps."""

import logging
import re
from typing import Dict, List, Optional

from agent_engine.core.agents.oracle import ask_oracle
from agent_engine.core.tool_registry import ToolRegistry
from agent_engine.models.user import AgentUser
from agent_engine.models.workflow_state import WorkflowStep
from agent_engine.utils.opik_wrapper import store_prompt

logger = logging.getLogger(__name__)

BREAKDOWN_PROMPT = """Break the following request into the smallest ordered list of concrete actions.
Each action must be doable with one of these tools (arguments in parentheses, ? marks optional):
{tools}

Write one action per line, in order, using exactly this format:
Step 1: <action>
Step 2: <action>

If the request needs someone to answer before the work can continue, end with the
step that sends the message; the workflow pauses there until the answer arrives.

Request:
{request}
"""

_STEP_LINE_RE = re.compile(r"^\s*\**\s*Step\s+(\d+)\s*\**\s*[:.)-]\s*(.+?)\s*$", re.I)


def parse_steps(text: Optional[str]) -> List[WorkflowStep]:
    """Parse ``Step N: ...`` lines into ordered workflow steps.

    Lines are sorted by their number; duplicates keep the first occurrence and
    the result is renumbered from 1 without gaps.

    Args:
        text: Raw oracle response

    Returns:
        Ordered list of pending WorkflowStep (empty when nothing parsed)
    """
    found: Dict[int, str] = {}
    for line in (text or "").splitlines():
        match = _STEP_LINE_RE.match(line)
        if not match:
            continue
        number = int(match.group(1))
        description = match.group(2).strip().strip("*").strip()
        if description and number not in found:
            found[number] = description

    return [
        WorkflowStep(step_number=index, description=found[number])
        for index, number in enumerate(sorted(found), start=1)
    ]


class StepPlanner:
    """Ask the reasoning oracle for a step breakdown."""

    def __init__(self, oracle, tool_registry: ToolRegistry):
        self.oracle = oracle
        self.tool_registry = tool_registry

    def _tool_lines(self) -> str:
        return "\n".join(
            f"- {tool.signature()}: {tool.description}"
            for tool in self.tool_registry.get_all_tools()
        )

    async def plan(self, user: AgentUser, request: str) -> List[WorkflowStep]:
        """Decompose a request.

        Raises:
            ReasoningError: If the oracle fails
        """
        prompt = BREAKDOWN_PROMPT.format(tools=self._tool_lines(), request=request)
        store_prompt(
            name="StepPlanner_breakdown_prompt",
            prompt=BREAKDOWN_PROMPT,
            metadata={"component": "StepPlanner"},
        )
        text = await ask_oracle(self.oracle, user, prompt)
        steps = parse_steps(text)
        logger.info("Planned %s steps", len(steps))
        return steps


__all__ = ["BREAKDOWN_PROMPT", "StepPlanner", "parse_steps"]
