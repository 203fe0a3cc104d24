"""Repository for Task database operations."""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agent_engine.core.task_types import TERMINAL_STATUSES, TaskStatus
from agent_engine.models.task import Task


class TaskRepository:
    """Repository for Task reads and version-checked writes."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository.

        Args:
            session: Database session
        """
        self.session = session

    async def add(self, task: Task) -> Task:
        """Insert a new task.

        Args:
            task: Unsaved Task instance

        Returns:
            The persisted Task
        """
        self.session.add(task)
        await self.session.flush()
        await self.session.refresh(task)
        return task

    async def get(self, task_id: uuid.UUID) -> Optional[Task]:
        """Get a task by ID, bypassing the identity map.

        Args:
            task_id: Task identifier

        Returns:
            Task instance or None if not found
        """
        result = await self.session.execute(
            select(Task)
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def compare_and_update(
        self, task_id: uuid.UUID, expected_version: int, values: Dict[str, Any]
    ) -> bool:
        """Write ``values`` only if the row still has ``expected_version``.

        Args:
            task_id: Task identifier
            expected_version: Version the caller read before computing ``values``
            values: Column values to write (``version`` is bumped automatically)

        Returns:
            True if the row was updated, False if another writer got there first
        """
        values = dict(values)
        values["version"] = expected_version + 1
        result = await self.session.execute(
            update(Task)
            .where(Task.id == task_id, Task.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        statuses: Optional[Iterable[str]] = None,
        task_type: Optional[str] = None,
        waiting_for: Optional[str] = None,
        include_subtasks: bool = True,
        limit: Optional[int] = 50,
    ) -> List[Task]:
        """List a user's tasks, most recently active first.

        Args:
            user_id: Owner of the tasks
            statuses: Optional status filter
            task_type: Optional task type filter
            waiting_for: Optional wait kind filter
            include_subtasks: Whether to include tasks that have a parent
            limit: Maximum number of results

        Returns:
            List of Task instances
        """
        query = select(Task).where(Task.user_id == user_id)
        if statuses is not None:
            query = query.where(Task.status.in_([_value(s) for s in statuses]))
        if task_type:
            query = query.where(Task.task_type == task_type)
        if waiting_for:
            query = query.where(Task.waiting_for == waiting_for)
        if not include_subtasks:
            query = query.where(Task.parent_task_id.is_(None))

        query = query.order_by(Task.last_activity_at.desc(), Task.created_at.desc())
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_waiting(
        self,
        user_id: uuid.UUID,
        waiting_for: Optional[str] = None,
        newest_first: bool = True,
    ) -> List[Task]:
        """List tasks suspended on an external event.

        Args:
            user_id: Owner of the tasks
            waiting_for: Optional wait kind filter
            newest_first: Order by creation time descending

        Returns:
            List of waiting Task instances
        """
        query = select(Task).where(
            Task.user_id == user_id,
            Task.status == TaskStatus.WAITING_FOR_RESPONSE.value,
        )
        if waiting_for:
            query = query.where(Task.waiting_for == _value(waiting_for))
        order = Task.created_at.desc() if newest_first else Task.created_at.asc()
        result = await self.session.execute(query.order_by(order))
        return list(result.scalars().all())

    async def list_overdue(
        self, now: datetime, user_id: Optional[uuid.UUID] = None
    ) -> List[Task]:
        """List unfinished tasks whose scheduled time has passed.

        Args:
            now: Reference time
            user_id: Optional owner filter

        Returns:
            List of overdue Task instances, earliest first
        """
        query = select(Task).where(
            Task.scheduled_for.is_not(None),
            Task.scheduled_for < now,
            Task.status.not_in([s.value for s in TERMINAL_STATUSES]),
        )
        if user_id is not None:
            query = query.where(Task.user_id == user_id)
        result = await self.session.execute(query.order_by(Task.scheduled_for.asc()))
        return list(result.scalars().all())

    async def list_subtasks(self, parent_task_id: uuid.UUID) -> List[Task]:
        """List direct subtasks of a task."""
        result = await self.session.execute(
            select(Task)
            .where(Task.parent_task_id == parent_task_id)
            .order_by(Task.created_at.asc())
        )
        return list(result.scalars().all())

    async def status_counts(self, user_id: uuid.UUID) -> Dict[str, int]:
        """Count a user's tasks per status."""
        result = await self.session.execute(
            select(Task.status, func.count(Task.id))
            .where(Task.user_id == user_id)
            .group_by(Task.status)
        )
        return {status: count for status, count in result.all()}


def _value(status: Any) -> str:
    return status.value if hasattr(status, "value") else str(status)


__all__ = ["TaskRepository"]
