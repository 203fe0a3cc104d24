"""Results returned by the request entry point."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from agent_engine.models.classification import ActionKind


class SimpleResult(BaseModel):
    """A request handled with a single tool call and no persisted task."""

    kind: Literal["simple"] = "simple"
    action_kind: ActionKind = Field(..., description="Tool family that handled the request")
    tool_name: str = Field(..., description="Tool invoked")
    message: str = Field(..., description="Human-readable tool output")
    data: Dict[str, Any] = Field(default_factory=dict, description="Structured tool output")


class WorkflowResult(BaseModel):
    """State of a task after the engine ran as far as it could."""

    kind: Literal["workflow"] = "workflow"
    task_id: str = Field(..., description="Persisted task id")
    status: str = Field(..., description="Task status after this run")
    message: str = Field(..., description="Human-readable summary")
    steps_completed: List[str] = Field(default_factory=list)
    waiting_for: Optional[str] = Field(default=None, description="Wait kind when suspended")
    failure_reason: Optional[str] = Field(default=None)
    workflow_state: Dict[str, Any] = Field(default_factory=dict)


class ClarificationNeeded(BaseModel):
    """The request is ambiguous; nothing was executed."""

    kind: Literal["clarification"] = "clarification"
    questions: List[str] = Field(..., description="Questions for the user")
    message: str = Field(default="I need a bit more information before I can do that.")


class RuleActionResult(BaseModel):
    """Outcome of one action of a proactive rule."""

    action: str = Field(..., description="Action name from the rule")
    success: bool
    tool_name: Optional[str] = Field(default=None, description="Tool invoked, if any")
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class RuleRunResult(BaseModel):
    """Outcome of running one matched proactive rule against an event."""

    rule_id: str
    rule_name: str
    trigger_type: str
    success: bool = Field(..., description="Whether every action succeeded")
    action_results: List[RuleActionResult] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description="Why the rule stopped early")


__all__ = [
    "SimpleResult",
    "WorkflowResult",
    "ClarificationNeeded",
    "RuleActionResult",
    "RuleRunResult",
]
