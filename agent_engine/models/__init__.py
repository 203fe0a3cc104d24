"""Data models package."""

from agent_engine.models.classification import ActionKind, RequestClassification, RequestKind
from agent_engine.models.events import (
    EventCategory,
    MatchReport,
    NormalizedEvent,
    OutcomeStatus,
    ResumeOutcome,
)
from agent_engine.models.results import (
    ClarificationNeeded,
    RuleActionResult,
    RuleRunResult,
    SimpleResult,
    WorkflowResult,
)
from agent_engine.models.rule import ProactiveRule, RuleAction, RuleTrigger
from agent_engine.models.task import Task
from agent_engine.models.user import AgentUser
from agent_engine.models.workflow_state import (
    EmailWorkflowState,
    ReplyVerdict,
    StepStatus,
    WorkflowState,
    WorkflowStep,
)

__all__ = [
    "Task",
    "AgentUser",
    "ActionKind",
    "RequestKind",
    "RequestClassification",
    "EventCategory",
    "NormalizedEvent",
    "OutcomeStatus",
    "MatchReport",
    "ResumeOutcome",
    "SimpleResult",
    "WorkflowResult",
    "ClarificationNeeded",
    "ProactiveRule",
    "RuleAction",
    "RuleTrigger",
    "RuleActionResult",
    "RuleRunResult",
    "WorkflowState",
    "EmailWorkflowState",
    "WorkflowStep",
    "StepStatus",
    "ReplyVerdict",
]
