"""Services package."""

from agent_engine.services.event_matching import EventMatcher
from agent_engine.services.reply_analysis import ReplyAnalyzer
from agent_engine.services.request_classifier import RequestClassifier
from agent_engine.services.rule_engine import RuleEngine
from agent_engine.services.step_planner import StepPlanner
from agent_engine.services.task_lifecycle import TaskLifecycleManager
from agent_engine.services.workflow_engine import ExecutionContext, WorkflowEngine

__all__ = [
    "EventMatcher",
    "ExecutionContext",
    "ReplyAnalyzer",
    "RequestClassifier",
    "RuleEngine",
    "StepPlanner",
    "TaskLifecycleManager",
    "WorkflowEngine",
]
