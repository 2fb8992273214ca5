"""
Automation rule and execution repositories.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func

from followup_engine.models.automation import AutomationRule, AutomationExecution
from followup_engine.repositories.base import BaseRepository


class AutomationRuleRepository(BaseRepository[AutomationRule]):
    """Repository for AutomationRule operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(AutomationRule, session)

    async def active_rule_ids_for(self, trigger_event: str) -> List[uuid.UUID]:
        query = select(AutomationRule.id).where(
            AutomationRule.trigger_event == trigger_event,
            AutomationRule.is_active == True
        ).order_by(AutomationRule.created_at)
        result = await self.session.exec(query)
        return result.all()

    async def get_fresh(self, rule_id: uuid.UUID) -> Optional[AutomationRule]:
        """Reload a rule from the database, replacing any stale in-session copy."""
        query = (
            select(AutomationRule)
            .where(AutomationRule.id == rule_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.exec(query)
        return result.first()

    async def lock_rule(self, rule_id: uuid.UUID) -> Optional[AutomationRule]:
        """
        Load a rule with a row lock for the rest of the transaction.
        populate_existing refreshes counters already in the identity map.
        """
        query = (
            select(AutomationRule)
            .where(AutomationRule.id == rule_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.exec(query)
        return result.first()


class AutomationExecutionRepository(BaseRepository[AutomationExecution]):
    """Repository for AutomationExecution operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(AutomationExecution, session)

    async def last_for(self, rule_id: uuid.UUID, lead_id: uuid.UUID) -> Optional[AutomationExecution]:
        query = select(AutomationExecution).where(
            AutomationExecution.rule_id == rule_id,
            AutomationExecution.lead_id == lead_id
        ).order_by(AutomationExecution.executed_at.desc()).limit(1)
        result = await self.session.exec(query)
        return result.first()

    async def count_for(self, rule_id: uuid.UUID, lead_id: uuid.UUID) -> int:
        query = select(func.count()).select_from(AutomationExecution).where(
            AutomationExecution.rule_id == rule_id,
            AutomationExecution.lead_id == lead_id
        )
        result = await self.session.exec(query)
        return result.one()

    async def executions_for(
        self,
        rule_id: uuid.UUID,
        lead_id: Optional[uuid.UUID] = None,
        since: Optional[datetime] = None
    ) -> List[AutomationExecution]:
        query = select(AutomationExecution).where(AutomationExecution.rule_id == rule_id)
        if lead_id is not None:
            query = query.where(AutomationExecution.lead_id == lead_id)
        if since is not None:
            query = query.where(AutomationExecution.executed_at >= since)
        result = await self.session.exec(query.order_by(AutomationExecution.executed_at.desc()))
        return result.all()
