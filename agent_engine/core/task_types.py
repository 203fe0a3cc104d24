"""Task enumerations shared by the store, the lifecycle manager and the engine.

Values are lowercase strings; they are persisted as-is in the ``tasks`` table.
"""

from enum import Enum
from typing import FrozenSet


class TaskType(str, Enum):
    """Kind of orchestrated work a task represents."""

    EMAIL_WORKFLOW = "email_workflow"
    CALENDAR_WORKFLOW = "calendar_workflow"
    HUBSPOT_WORKFLOW = "hubspot_workflow"
    EMAIL_CALENDAR_WORKFLOW = "email_calendar_workflow"
    MULTI_STEP_ACTION = "multi_step_action"
    SCHEDULED_TASK = "scheduled_task"
    RECURRING_TASK = "recurring_task"
    FOLLOW_UP_TASK = "follow_up_task"
    COMPOSITE_TASK = "composite_task"


class TaskStatus(str, Enum):
    """Task status enumeration."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING_FOR_RESPONSE = "waiting_for_response"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority enumeration."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class WaitingFor(str, Enum):
    """External event a waiting task expects."""

    EMAIL_REPLY = "email_reply"
    CALENDAR_RESPONSE = "calendar_response"
    EXTERNAL_APPROVAL = "external_approval"
    SCHEDULED_TIME = "scheduled_time"
    USER_INPUT = "user_input"
    API_RESPONSE = "api_response"
    WEBHOOK_EVENT = "webhook_event"
    MANUAL_COMPLETION = "manual_completion"


ACTIVE_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}
)

# Statuses that end a task for parent roll-up and overdue queries.
TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.FAILED}
)

# Statuses no operation other than cancel-cascade bookkeeping can leave.
FINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
)


__all__ = [
    "TaskType",
    "TaskStatus",
    "TaskPriority",
    "WaitingFor",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "FINAL_STATUSES",
]
