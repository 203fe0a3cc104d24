"""Task database model."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from agent_engine.core.task_types import (
    ACTIVE_STATUSES,
    FINAL_STATUSES,
    TERMINAL_STATUSES,
    TaskStatus,
)
from agent_engine.db.session import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Task(Base):
    """A persisted, resumable unit of multi-step work owned by a user."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_status", "user_id", "status"),
        Index("ix_tasks_user_status_waiting_for", "user_id", "status", "waiting_for"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    parent_task_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    task_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    original_request = Column(Text, nullable=False)
    priority = Column(String(20), nullable=False, default="medium")

    status = Column(String(30), nullable=False, default=TaskStatus.PENDING.value)
    next_step = Column(String(100), nullable=True)
    steps_completed = Column(JSONType, nullable=False, default=list)
    workflow_state = Column(JSONType, nullable=False, default=dict)
    context_data = Column(JSONType, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    task_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    waiting_for = Column(String(30), nullable=True)
    waiting_for_data = Column(JSONType, nullable=False, default=dict)

    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    scheduled_for = Column(DateTime(timezone=True), nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Bumped on every write; compared in UPDATE ... WHERE version = ?
    version = Column(Integer, nullable=False, default=1)

    @property
    def is_active(self) -> bool:
        """Whether the task can be worked on right now."""
        return self.status in {s.value for s in ACTIVE_STATUSES}

    @property
    def is_waiting(self) -> bool:
        """Whether the task is suspended on an external event."""
        return self.status == TaskStatus.WAITING_FOR_RESPONSE.value

    @property
    def is_terminal(self) -> bool:
        """Whether the task has finished (successfully or not)."""
        return self.status in {s.value for s in TERMINAL_STATUSES}

    @property
    def is_final(self) -> bool:
        """Whether the task can no longer change status at all."""
        return self.status in {s.value for s in FINAL_STATUSES}

    @property
    def can_retry(self) -> bool:
        """Whether the task still has retries left."""
        return (self.retry_count or 0) < (self.max_retries or 0)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Whether the task is past its scheduled time and not finished."""
        if self.scheduled_for is None or self.is_terminal:
            return False
        return ensure_utc(self.scheduled_for) < (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the task for API responses and logs."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "parent_task_id": str(self.parent_task_id) if self.parent_task_id else None,
            "task_type": self.task_type,
            "title": self.title,
            "description": self.description,
            "original_request": self.original_request,
            "priority": self.priority,
            "status": self.status,
            "next_step": self.next_step,
            "steps_completed": list(self.steps_completed or []),
            "workflow_state": dict(self.workflow_state or {}),
            "context_data": dict(self.context_data or {}),
            "metadata": dict(self.task_metadata or {}),
            "waiting_for": self.waiting_for,
            "waiting_for_data": dict(self.waiting_for_data or {}),
            "failure_reason": self.failure_reason,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "scheduled_for": _iso(self.scheduled_for),
            "completed_at": _iso(self.completed_at),
            "failed_at": _iso(self.failed_at),
            "last_activity_at": _iso(self.last_activity_at),
            "created_at": _iso(self.created_at),
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, task_type={self.task_type}, status={self.status})>"


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


__all__ = ["Task", "utcnow", "ensure_utc"]
