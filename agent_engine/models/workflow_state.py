"""Typed workflow state stored in ``Task.workflow_state``."""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from agent_engine.core.task_types import TaskType


class StepStatus(str, Enum):
    """Step execution status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ReplyVerdict(str, Enum):
    """How a recipient answered a meeting request."""

    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    UNCLEAR = "UNCLEAR"


class WorkflowStep(BaseModel):
    """A single ordered, tool-addressable step of a decomposed request."""

    step_number: int = Field(..., ge=1, description="1-based position in the workflow")
    description: str = Field(..., description="Instruction handed to the tool executor")
    status: StepStatus = Field(default=StepStatus.PENDING, description="Current execution status")
    tool_name: Optional[str] = Field(
        default=None, description="Concrete tool to call instead of the generic agent tool"
    )
    tool_args: Dict[str, Any] = Field(default_factory=dict, description="Arguments for tool_name")
    error: Optional[str] = Field(default=None, description="Error message if the step failed")

    @property
    def step_id(self) -> str:
        """Identifier recorded in ``steps_completed`` and ``next_step``."""
        return f"step_{self.step_number}"


class WorkflowState(BaseModel):
    """State shared by every workflow kind."""

    kind: str = Field(default="generic", description="Discriminator for the state variant")
    steps: List[WorkflowStep] = Field(default_factory=list, description="Ordered workflow steps")
    step_results: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Tool result per step_id"
    )
    suspended_step: Optional[str] = Field(
        default=None, description="step_id whose result suspended the task"
    )
    last_event: Optional[Dict[str, Any]] = Field(
        default=None, description="Event that resumed the task most recently"
    )
    resumed_at: Optional[str] = Field(default=None, description="ISO time of the last resumption")
    resumed_by: Optional[str] = Field(
        default=None, description="Event category of the last resumption"
    )
    outcome: Optional[str] = Field(default=None, description="Human-readable final outcome")
    extra: Dict[str, Any] = Field(
        default_factory=dict, description="Free-form oracle output kept for debugging"
    )

    def step(self, step_id: str) -> Optional[WorkflowStep]:
        """Look up a step by its identifier."""
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def first_pending(self) -> Optional[WorkflowStep]:
        """Return the lowest-numbered step that has not run yet."""
        for step in sorted(self.steps, key=lambda s: s.step_number):
            if step.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
                return step
        return None

    def step_after(self, step_id: str) -> Optional[WorkflowStep]:
        """Return the pending step that follows ``step_id``."""
        current = self.step(step_id)
        if current is None:
            return self.first_pending()
        for step in sorted(self.steps, key=lambda s: s.step_number):
            if step.step_number > current.step_number and step.status == StepStatus.PENDING:
                return step
        return None


class EmailWorkflowState(WorkflowState):
    """State for workflows that send mail and may wait for a reply."""

    kind: str = "email"
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    time_mentioned: Optional[str] = None
    sent_message_id: Optional[str] = None
    thread_id: Optional[str] = None
    reply_verdict: Optional[ReplyVerdict] = None
    reply_analysis: Optional[str] = None
    calendar_event: Optional[Dict[str, Any]] = None


AnyWorkflowState = Union[EmailWorkflowState, WorkflowState]

_EMAIL_TASK_TYPES = {
    TaskType.EMAIL_WORKFLOW.value,
    TaskType.EMAIL_CALENDAR_WORKFLOW.value,
    TaskType.FOLLOW_UP_TASK.value,
}


def state_class_for(task_type: str) -> type:
    """Pick the workflow state variant for a task type."""
    if task_type in _EMAIL_TASK_TYPES:
        return EmailWorkflowState
    return WorkflowState


def load_workflow_state(task_type: str, data: Optional[Dict[str, Any]]) -> AnyWorkflowState:
    """Parse a persisted state dict into its typed variant.

    Unknown keys written by older code are folded into ``extra`` instead of
    being dropped.

    Args:
        task_type: Task type the state belongs to
        data: Raw ``workflow_state`` column value

    Returns:
        Typed workflow state
    """
    state_cls = state_class_for(task_type)
    data = dict(data or {})
    known = set(state_cls.model_fields)
    unknown = {k: data.pop(k) for k in list(data) if k not in known}
    state = state_cls.model_validate(data)
    if unknown:
        state.extra.update(unknown)
    return state


def dump_workflow_state(state: WorkflowState) -> Dict[str, Any]:
    """Serialize a typed state for the JSON column."""
    return state.model_dump(mode="json")


__all__ = [
    "StepStatus",
    "ReplyVerdict",
    "WorkflowStep",
    "WorkflowState",
    "EmailWorkflowState",
    "AnyWorkflowState",
    "state_class_for",
    "load_workflow_state",
    "dump_workflow_state",
]
