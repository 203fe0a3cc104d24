"""Task lifecycle management for persistent multi-step workflows.

Every write goes through :class:`TaskLifecycleManager`. Each mutation reads the
row, validates the requested change against the current state, and writes it
back with ``UPDATE ... WHERE version = ?``. When another writer wins the race
the read-validate-write cycle is repeated, so a loser re-checks its
preconditions against the winner's result (a second resume of the same task
fails with :class:`NotWaitingError` instead of executing steps twice).
"""

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from agent_engine.core.config import settings
from agent_engine.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFailedError,
    NotFoundError,
    NotWaitingError,
    RetryExhaustedError,
    ValidationError,
)
from agent_engine.core.task_types import (
    ACTIVE_STATUSES,
    TaskPriority,
    TaskStatus,
    TaskType,
    WaitingFor,
)
from agent_engine.models.task import Task, utcnow
from agent_engine.repositories.task_repository import TaskRepository

logger = logging.getLogger(__name__)

UserRef = Union[uuid.UUID, Any]
Mutation = Callable[[Task, TaskRepository], Awaitable[Dict[str, Any]]]

# Reserved workflow_state keys written by resume().
LAST_EVENT_KEY = "last_event"
RESUMED_AT_KEY = "resumed_at"

DEFAULT_FAILURE_REASON = "Task failed during execution"

_S = TaskStatus
ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    _S.PENDING.value: frozenset(
        {_S.PENDING, _S.IN_PROGRESS, _S.PAUSED, _S.COMPLETED, _S.FAILED, _S.CANCELLED}
    ),
    _S.IN_PROGRESS.value: frozenset(
        {_S.PENDING, _S.IN_PROGRESS, _S.PAUSED, _S.COMPLETED, _S.FAILED, _S.CANCELLED}
    ),
    # Leaving a wait towards in_progress goes through resume()
    _S.WAITING_FOR_RESPONSE.value: frozenset({_S.FAILED, _S.CANCELLED}),
    _S.PAUSED.value: frozenset(
        {_S.PENDING, _S.IN_PROGRESS, _S.PAUSED, _S.FAILED, _S.CANCELLED}
    ),
    # Leaving failed towards pending goes through retry()
    _S.FAILED.value: frozenset({_S.CANCELLED}),
    _S.COMPLETED.value: frozenset(),
    _S.CANCELLED.value: frozenset(),
}

# Fields a transition patch may set directly.
PATCHABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "priority",
        "next_step",
        "workflow_state",
        "context_data",
        "metadata",
        "failure_reason",
        "scheduled_for",
    }
)

RESUMABLE_STATUSES = frozenset({_S.PENDING, _S.IN_PROGRESS, _S.PAUSED})
WAITABLE_STATUSES = frozenset({_S.PENDING.value, _S.IN_PROGRESS.value, _S.WAITING_FOR_RESPONSE.value})

_TITLE_PREFIXES = {
    TaskType.EMAIL_WORKFLOW.value: "Email",
    TaskType.EMAIL_CALENDAR_WORKFLOW.value: "Email->Calendar",
    TaskType.CALENDAR_WORKFLOW.value: "Calendar",
    TaskType.HUBSPOT_WORKFLOW.value: "CRM",
    TaskType.MULTI_STEP_ACTION.value: "Multi-step",
}


def generate_title(request: str, task_type: str) -> str:
    """Build a short title from the request text."""
    prefix = _TITLE_PREFIXES.get(task_type, "Task")
    text = " ".join(request.split())
    if len(text) > 50:
        text = f"{text[:50]}..."
    return f"{prefix}: {text}"


def _enum_value(enum_cls: type, value: Any, field: str) -> str:
    try:
        return enum_cls(value.value if hasattr(value, "value") else value).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Valid values are: {allowed}")


def _user_id(user: UserRef) -> uuid.UUID:
    if isinstance(user, uuid.UUID):
        return user
    user_id = getattr(user, "id", None)
    if isinstance(user_id, uuid.UUID):
        return user_id
    if user_id is None and isinstance(user, str):
        user_id = user
    try:
        return uuid.UUID(str(user_id))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid user reference: {user!r}")


def _append_steps(existing: Iterable[str], new_steps: Iterable[str]) -> List[str]:
    """Append step ids keeping first-seen order and dropping duplicates."""
    steps = list(existing or [])
    for step in new_steps:
        if step not in steps:
            steps.append(step)
    return steps


class TaskLifecycleManager:
    """Create, transition, suspend, resume, retry and cancel tasks."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        max_conflict_retries: Optional[int] = None,
        default_max_retries: Optional[int] = None,
    ):
        """Initialize the lifecycle manager.

        Args:
            session_maker: Factory for the sessions each operation runs in
            max_conflict_retries: Attempts before giving up on a contended row
            default_max_retries: max_retries for tasks created without one
        """
        self.session_maker = session_maker
        self.max_conflict_retries = max_conflict_retries or settings.MUTATION_CONFLICT_RETRIES
        self.default_max_retries = (
            default_max_retries
            if default_max_retries is not None
            else settings.DEFAULT_MAX_RETRIES
        )

    # Creation

    async def create(
        self,
        user: UserRef,
        request: str,
        task_type: Union[TaskType, str],
        options: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Create a new task from a user request.

        Args:
            user: Owner (UUID or an object with an ``id``)
            request: Original user request text
            task_type: One of :class:`TaskType`
            options: Optional title, description, priority, context_data,
                scheduled_for, parent_task_id, metadata, max_retries,
                next_step and workflow_state

        Returns:
            The persisted pending Task

        Raises:
            ValidationError: If an enum value is invalid or a required field is missing
        """
        options = dict(options or {})
        user_id = _user_id(user)
        if not request or not request.strip():
            raise ValidationError("original_request is required")

        task_type_value = _enum_value(TaskType, task_type, "task_type")
        priority = _enum_value(
            TaskPriority, options.get("priority") or TaskPriority.MEDIUM, "priority"
        )
        max_retries = options.get("max_retries", self.default_max_retries)
        if not isinstance(max_retries, int) or max_retries < 0:
            raise ValidationError("max_retries must be a non-negative integer")

        parent_task_id = options.get("parent_task_id")
        now = utcnow()
        task = Task(
            user_id=user_id,
            title=options.get("title") or generate_title(request, task_type_value),
            description=options.get("description"),
            task_type=task_type_value,
            original_request=request,
            priority=priority,
            status=TaskStatus.PENDING.value,
            next_step=options.get("next_step"),
            steps_completed=[],
            workflow_state=dict(options.get("workflow_state") or {}),
            context_data=dict(options.get("context_data") or {}),
            task_metadata=dict(options.get("metadata") or {}),
            waiting_for=None,
            waiting_for_data={},
            retry_count=0,
            max_retries=max_retries,
            scheduled_for=options.get("scheduled_for"),
            parent_task_id=parent_task_id,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
            version=1,
        )

        async with self.session_maker() as session:
            async with session.begin():
                repo = TaskRepository(session)
                if parent_task_id is not None:
                    parent = await repo.get(parent_task_id)
                    if parent is None:
                        raise ValidationError(f"Parent task {parent_task_id} does not exist")
                    if parent.status == TaskStatus.CANCELLED.value:
                        raise ValidationError(
                            f"Parent task {parent_task_id} is cancelled"
                        )
                task = await repo.add(task)

        logger.info("Created task %s (%s) for user %s", task.id, task_type_value, user_id)
        return task

    # Mutations

    async def transition(
        self,
        task_id: uuid.UUID,
        new_status: Union[TaskStatus, str],
        patch: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Apply a status change and a field patch in one atomic write.

        ``steps_completed`` in the patch is appended (de-duplicated) to the
        existing list rather than replacing it.

        Args:
            task_id: Task to update
            new_status: Target status
            patch: Fields to write alongside the status

        Returns:
            The updated Task

        Raises:
            NotFoundError: If the task does not exist
            InvalidTransitionError: If the status change is not allowed
            ValidationError: If the status or patch is invalid
        """
        status = _enum_value(TaskStatus, new_status, "status")
        patch = dict(patch or {})
        steps_to_append = patch.pop("steps_completed", None) or []
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")
        if "priority" in patch:
            patch["priority"] = _enum_value(TaskPriority, patch["priority"], "priority")

        async def mutation(task: Task, repo: TaskRepository) -> Dict[str, Any]:
            allowed = ALLOWED_TRANSITIONS.get(task.status, frozenset())
            if TaskStatus(status) not in allowed:
                raise InvalidTransitionError(task.id, task.status, status)

            values = self._patch_values(patch)
            values["status"] = status
            if steps_to_append:
                values["steps_completed"] = _append_steps(task.steps_completed, steps_to_append)
            if task.status == TaskStatus.WAITING_FOR_RESPONSE.value:
                values["waiting_for"] = None
                values["waiting_for_data"] = {}
            if status == TaskStatus.COMPLETED.value and task.completed_at is None:
                values["completed_at"] = utcnow()
            if status == TaskStatus.FAILED.value:
                if task.failed_at is None:
                    values["failed_at"] = utcnow()
                if not values.get("failure_reason"):
                    values["failure_reason"] = DEFAULT_FAILURE_REASON
            return values

        task = await self._mutate(task_id, mutation)
        logger.info("Task %s is now %s", task_id, status)
        if task.status == TaskStatus.FAILED.value:
            logger.error("Task %s failed: %s", task_id, task.failure_reason)
        await self._maybe_complete_parent(task)
        return task

    async def mark_waiting(
        self,
        task_id: uuid.UUID,
        waiting_for: Union[WaitingFor, str],
        waiting_data: Dict[str, Any],
        patch: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Suspend a task until an external event arrives.

        Any previous wait descriptor is replaced, never merged.

        Args:
            task_id: Task to suspend
            waiting_for: Kind of event expected
            waiting_data: Fields needed to match the event later
            patch: Extra fields (workflow_state, next_step, ...) written in the same update

        Returns:
            The waiting Task

        Raises:
            ValidationError: If the wait kind is invalid or the descriptor is empty
            InvalidTransitionError: If the task is not pending, in progress or already waiting
        """
        kind = _enum_value(WaitingFor, waiting_for, "waiting_for")
        if not isinstance(waiting_data, dict) or not waiting_data:
            raise ValidationError("waiting_for_data must be a non-empty mapping")
        patch = dict(patch or {})
        steps_to_append = patch.pop("steps_completed", None) or []
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")

        async def mutation(task: Task, repo: TaskRepository) -> Dict[str, Any]:
            if task.status not in WAITABLE_STATUSES:
                raise InvalidTransitionError(
                    task.id, task.status, TaskStatus.WAITING_FOR_RESPONSE.value
                )
            values = self._patch_values(patch)
            values.update(
                status=TaskStatus.WAITING_FOR_RESPONSE.value,
                waiting_for=kind,
                waiting_for_data=dict(waiting_data),
            )
            if steps_to_append:
                values["steps_completed"] = _append_steps(task.steps_completed, steps_to_append)
            return values

        task = await self._mutate(task_id, mutation)
        logger.info("Task %s is waiting for %s: %s", task_id, kind, waiting_data)
        return task

    async def resume(
        self,
        task_id: uuid.UUID,
        event_data: Optional[Dict[str, Any]] = None,
        new_status: Union[TaskStatus, str] = TaskStatus.IN_PROGRESS,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Resume a waiting task when its external event occurs.

        Args:
            task_id: Task to resume
            event_data: Event payload stored under ``workflow_state["last_event"]``
            new_status: Status after resumption (default in_progress)
            patch: Extra fields written in the same update

        Returns:
            The resumed Task

        Raises:
            NotWaitingError: If the task is not waiting_for_response
        """
        status = _enum_value(TaskStatus, new_status, "status")
        if TaskStatus(status) not in RESUMABLE_STATUSES:
            raise ValidationError(f"Cannot resume a task into '{status}'")
        patch = dict(patch or {})
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")

        async def mutation(task: Task, repo: TaskRepository) -> Dict[str, Any]:
            if not task.is_waiting:
                raise NotWaitingError(task.id, task.status)
            values = self._patch_values(patch)
            workflow_state = dict(values.get("workflow_state", task.workflow_state) or {})
            workflow_state[LAST_EVENT_KEY] = dict(event_data or {})
            workflow_state[RESUMED_AT_KEY] = utcnow().isoformat()
            values.update(
                status=status,
                waiting_for=None,
                waiting_for_data={},
                workflow_state=workflow_state,
            )
            return values

        task = await self._mutate(task_id, mutation)
        logger.info("Resumed task %s into %s", task_id, status)
        return task

    async def retry(self, task_id: uuid.UUID) -> Task:
        """Move a failed task back to pending.

        Args:
            task_id: Task to retry

        Returns:
            The pending Task

        Raises:
            NotFailedError: If the task is not failed
            RetryExhaustedError: If retry_count already reached max_retries
            InvalidTransitionError: If the parent task was cancelled
        """

        async def mutation(task: Task, repo: TaskRepository) -> Dict[str, Any]:
            if task.status != TaskStatus.FAILED.value:
                raise NotFailedError(task.id, task.status)
            if not task.can_retry:
                raise RetryExhaustedError(task.id, task.retry_count, task.max_retries)
            if task.parent_task_id is not None:
                parent = await repo.get(task.parent_task_id)
                if parent is not None and parent.status == TaskStatus.CANCELLED.value:
                    raise InvalidTransitionError(task.id, task.status, TaskStatus.PENDING.value)

            metadata = dict(task.task_metadata or {})
            previous = list(metadata.get("previous_failures", []))
            previous.append(
                {
                    "attempt": task.retry_count,
                    "reason": task.failure_reason,
                    "failed_at": task.failed_at.isoformat() if task.failed_at else None,
                }
            )
            metadata["previous_failures"] = previous
            return {
                "status": TaskStatus.PENDING.value,
                "retry_count": task.retry_count + 1,
                "failure_reason": None,
                "task_metadata": metadata,
            }

        task = await self._mutate(task_id, mutation)
        logger.info(
            "Retrying task %s (attempt %s/%s)", task_id, task.retry_count, task.max_retries
        )
        return task

    async def cancel(self, task_id: uuid.UUID, reason: str = "Cancelled by user") -> Task:
        """Cancel a task and, recursively, every subtask that has not finished.

        The parent is cancelled first so that cancelling its subtasks does not
        roll it up to completed.

        Args:
            task_id: Task to cancel
            reason: Stored as failure_reason

        Returns:
            The cancelled Task
        """
        logger.info("Cancelling task %s", task_id)
        task = await self.transition(
            task_id, TaskStatus.CANCELLED, {"failure_reason": reason}
        )
        await self._cancel_subtasks(task.id)
        return task

    async def add_completed_step(
        self,
        task_id: uuid.UUID,
        step_id: str,
        step_data: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Record a completed step without changing the status.

        Args:
            task_id: Task to update
            step_id: Step identifier appended to steps_completed
            step_data: Optional output stored under ``workflow_state["step_results"]``

        Returns:
            The updated Task
        """

        async def mutation(task: Task, repo: TaskRepository) -> Dict[str, Any]:
            if task.is_final:
                raise InvalidTransitionError(task.id, task.status, task.status)
            values: Dict[str, Any] = {
                "steps_completed": _append_steps(task.steps_completed, [step_id])
            }
            if step_data is not None:
                workflow_state = dict(task.workflow_state or {})
                results = dict(workflow_state.get("step_results") or {})
                results[step_id] = step_data
                workflow_state["step_results"] = results
                values["workflow_state"] = workflow_state
            return values

        task = await self._mutate(task_id, mutation)
        logger.info("Added step '%s' to task %s", step_id, task_id)
        return task

    # Queries

    async def get(self, task_id: uuid.UUID) -> Task:
        """Get a task by ID.

        Raises:
            NotFoundError: If the task does not exist
        """
        async with self.session_maker() as session:
            task = await TaskRepository(session).get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    async def list_tasks(
        self,
        user: UserRef,
        statuses: Optional[Iterable[str]] = None,
        task_type: Optional[str] = None,
        waiting_for: Optional[str] = None,
        include_subtasks: bool = True,
        limit: Optional[int] = 50,
    ) -> List[Task]:
        """List a user's tasks with optional filters."""
        async with self.session_maker() as session:
            return await TaskRepository(session).list_for_user(
                _user_id(user),
                statuses=statuses,
                task_type=task_type,
                waiting_for=waiting_for,
                include_subtasks=include_subtasks,
                limit=limit,
            )

    async def active_tasks(self, user: UserRef) -> List[Task]:
        """Tasks that are pending or in progress."""
        return await self.list_tasks(user, statuses=[s.value for s in ACTIVE_STATUSES])

    async def waiting_tasks(
        self,
        user: UserRef,
        waiting_for: Optional[Union[WaitingFor, str]] = None,
        newest_first: bool = True,
    ) -> List[Task]:
        """Tasks suspended on an external event, optionally of one kind."""
        kind = _enum_value(WaitingFor, waiting_for, "waiting_for") if waiting_for else None
        async with self.session_maker() as session:
            return await TaskRepository(session).list_waiting(
                _user_id(user), kind, newest_first=newest_first
            )

    async def overdue_tasks(self, user: Optional[UserRef] = None) -> List[Task]:
        """Unfinished tasks whose scheduled_for is in the past."""
        user_id = _user_id(user) if user is not None else None
        async with self.session_maker() as session:
            return await TaskRepository(session).list_overdue(utcnow(), user_id)

    async def stats(self, user: UserRef) -> Dict[str, Any]:
        """Per-status histogram of a user's tasks."""
        async with self.session_maker() as session:
            counts = await TaskRepository(session).status_counts(_user_id(user))
        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "active": counts.get(TaskStatus.PENDING.value, 0)
            + counts.get(TaskStatus.IN_PROGRESS.value, 0),
            "waiting": counts.get(TaskStatus.WAITING_FOR_RESPONSE.value, 0),
            "completed": counts.get(TaskStatus.COMPLETED.value, 0),
            "failed": counts.get(TaskStatus.FAILED.value, 0),
        }

    # Internals

    @staticmethod
    def _patch_values(patch: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(patch)
        if "metadata" in values:
            values["task_metadata"] = dict(values.pop("metadata") or {})
        for key in ("workflow_state", "context_data"):
            if key in values:
                values[key] = dict(values[key] or {})
        return values

    async def _mutate(self, task_id: uuid.UUID, mutation: Mutation) -> Task:
        """Run a read-validate-compare-and-set cycle until it wins or gives up."""
        for attempt in range(1, self.max_conflict_retries + 1):
            async with self.session_maker() as session:
                async with session.begin():
                    repo = TaskRepository(session)
                    task = await repo.get(task_id)
                    if task is None:
                        raise NotFoundError(task_id)

                    values = await mutation(task, repo)
                    now = utcnow()
                    values["last_activity_at"] = now
                    values["updated_at"] = now

                    if await repo.compare_and_update(task.id, task.version, values):
                        updated = await repo.get(task_id)
                        return updated

            logger.warning(
                "Task %s changed while being updated (attempt %s/%s), re-reading",
                task_id,
                attempt,
                self.max_conflict_retries,
            )
        raise ConcurrentModificationError(task_id, self.max_conflict_retries)

    async def _cancel_subtasks(self, parent_task_id: uuid.UUID) -> None:
        async with self.session_maker() as session:
            subtasks = await TaskRepository(session).list_subtasks(parent_task_id)
        for subtask in subtasks:
            if not subtask.is_final:
                await self.transition(
                    subtask.id,
                    TaskStatus.CANCELLED,
                    {"failure_reason": "Parent task cancelled"},
                )
            await self._cancel_subtasks(subtask.id)

    async def _maybe_complete_parent(self, task: Task) -> None:
        """Complete the parent once every one of its subtasks has finished."""
        if task.parent_task_id is None or not task.is_terminal:
            return

        async with self.session_maker() as session:
            repo = TaskRepository(session)
            parent = await repo.get(task.parent_task_id)
            siblings = await repo.list_subtasks(task.parent_task_id)

        if parent is None or parent.is_terminal:
            return
        if not all(sibling.is_terminal for sibling in siblings):
            return
        if TaskStatus.COMPLETED not in ALLOWED_TRANSITIONS.get(parent.status, frozenset()):
            logger.info(
                "All subtasks of %s finished but it is %s; not completing it",
                parent.id,
                parent.status,
            )
            return

        logger.info("All subtasks of %s finished, completing it", parent.id)
        try:
            await self.transition(parent.id, TaskStatus.COMPLETED)
        except InvalidTransitionError as e:
            # Parent changed state between the check and the write
            logger.info("Parent roll-up skipped: %s", e)


__all__ = [
    "TaskLifecycleManager",
    "ALLOWED_TRANSITIONS",
    "LAST_EVENT_KEY",
    "RESUMED_AT_KEY",
    "DEFAULT_FAILURE_REASON",
    "generate_title",
]
