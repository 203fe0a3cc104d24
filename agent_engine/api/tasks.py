"""Task query and management endpoints."""

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from agent_engine.api.dependencies import (
    EngineServices,
    get_services,
    get_user_id,
    parse_task_id,
)
from agent_engine.core.task_types import TaskStatus, TaskType, WaitingFor
from agent_engine.models.task import Task
from agent_engine.models.user import AgentUser


class TasksListResponse(BaseModel):
    tasks: List[Dict[str, Any]]
    total: int


class CancelRequest(BaseModel):
    reason: Optional[str] = None


router = APIRouter(tags=["tasks"])


async def _owned_task(services: EngineServices, task_id: str, user_id: uuid.UUID) -> Task:
    task = await services.lifecycle.get(parse_task_id(task_id))
    if task.user_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return task


@router.get("/tasks", response_model=TasksListResponse)
async def list_tasks(
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
    status: Optional[List[TaskStatus]] = Query(None, description="Filter by status"),
    task_type: Optional[TaskType] = Query(None, description="Filter by task type"),
    waiting_for: Optional[WaitingFor] = Query(None, description="Filter by wait kind"),
    include_subtasks: bool = Query(True, description="Include subtasks"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of tasks"),
) -> TasksListResponse:
    """
    List the user's tasks, most recently active first.
    """
    tasks = await services.lifecycle.list_tasks(
        user_id,
        statuses=[s.value for s in status] if status else None,
        task_type=task_type.value if task_type else None,
        waiting_for=waiting_for.value if waiting_for else None,
        include_subtasks=include_subtasks,
        limit=limit,
    )
    return TasksListResponse(tasks=[t.to_dict() for t in tasks], total=len(tasks))


@router.get("/tasks/stats")
async def task_stats(
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """Per-status counts of the user's tasks."""
    return await services.lifecycle.stats(user_id)


@router.get("/tasks/overdue", response_model=TasksListResponse)
async def overdue_tasks(
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> TasksListResponse:
    """Unfinished tasks whose scheduled time has passed."""
    tasks = await services.lifecycle.overdue_tasks(user_id)
    return TasksListResponse(tasks=[t.to_dict() for t in tasks], total=len(tasks))


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Get a task, including its failure_reason and workflow state.
    """
    task = await _owned_task(services, task_id, user_id)
    return task.to_dict()


@router.post("/tasks/{task_id}/retry")
async def retry_task(
    task_id: str,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Retry a failed task from its first unfinished step.
    """
    task = await _owned_task(services, task_id, user_id)
    result = await services.workflow_engine.retry_task(task.id, AgentUser(id=user_id))
    return result.model_dump(mode="json")


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    body: Optional[CancelRequest] = None,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Cancel a task and all of its unfinished subtasks.
    """
    task = await _owned_task(services, task_id, user_id)
    reason = (body.reason if body else None) or "Cancelled by user"
    cancelled = await services.workflow_engine.cancel_task(task.id, reason)
    return cancelled.to_dict()


__all__ = ["router", "TasksListResponse", "CancelRequest"]
