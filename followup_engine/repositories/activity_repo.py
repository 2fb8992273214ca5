"""
Activity log repository - the audit trail written by every service mutation.
"""
import uuid
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.models.activity import ActivityLog
from followup_engine.repositories.base import BaseRepository


class ActivityLogRepository(BaseRepository[ActivityLog]):
    """Repository for ActivityLog operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(ActivityLog, session)

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        meta_data: Optional[dict] = None
    ) -> ActivityLog:
        return await self.create({
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actor_id": actor_id,
            "description": description,
            "meta_data": meta_data or {},
        })

    async def history(self, entity_type: str, entity_id: uuid.UUID, limit: int = 50) -> List[ActivityLog]:
        """Newest first. Entries survive soft deletion of the entity."""
        query = select(ActivityLog).where(
            ActivityLog.entity_type == entity_type,
            ActivityLog.entity_id == entity_id
        ).order_by(ActivityLog.created_at.desc(), ActivityLog.id).limit(limit)
        result = await self.session.exec(query)
        return result.all()
