"""Repositories package."""

from agent_engine.repositories.rule_repository import RuleRepository
from agent_engine.repositories.task_repository import TaskRepository

__all__ = ["RuleRepository", "TaskRepository"]
