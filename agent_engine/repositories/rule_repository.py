"""Repository for ProactiveRule database operations."""

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_engine.models.rule import ProactiveRule


class RuleRepository:
    """Repository for a user's proactive rules."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository.

        Args:
            session: Database session
        """
        self.session = session

    async def add(self, rule: ProactiveRule) -> ProactiveRule:
        """Insert a new rule."""
        self.session.add(rule)
        await self.session.flush()
        await self.session.refresh(rule)
        return rule

    async def get(self, rule_id: uuid.UUID) -> Optional[ProactiveRule]:
        """Get a rule by ID.

        Args:
            rule_id: Rule identifier

        Returns:
            ProactiveRule or None if not found
        """
        result = await self.session.execute(
            select(ProactiveRule).where(ProactiveRule.id == rule_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self, user_id: uuid.UUID, active_only: bool = False
    ) -> List[ProactiveRule]:
        """List a user's rules, newest first."""
        query = select(ProactiveRule).where(ProactiveRule.user_id == user_id)
        if active_only:
            query = query.where(ProactiveRule.is_active.is_(True))
        result = await self.session.execute(query.order_by(ProactiveRule.created_at.desc()))
        return list(result.scalars().all())

    async def list_active_for_trigger(
        self, user_id: uuid.UUID, trigger_type: str
    ) -> List[ProactiveRule]:
        """Active rules of a user listening to ``trigger_type``, oldest first.

        Args:
            user_id: Rule owner
            trigger_type: RuleTrigger value

        Returns:
            Rules in creation order
        """
        result = await self.session.execute(
            select(ProactiveRule)
            .where(
                ProactiveRule.user_id == user_id,
                ProactiveRule.trigger_type == trigger_type,
                ProactiveRule.is_active.is_(True),
            )
            .order_by(ProactiveRule.created_at.asc())
        )
        return list(result.scalars().all())

    async def delete(self, rule: ProactiveRule) -> None:
        """Delete a rule."""
        await self.session.delete(rule)
        await self.session.flush()


__all__ = ["RuleRepository"]
