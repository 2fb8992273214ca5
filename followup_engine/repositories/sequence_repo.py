"""
Followup sequence and enrollment repositories.
"""
import uuid
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func

from followup_engine.models.enums import EnrollmentStatus
from followup_engine.models.sequence import FollowupSequence, SequenceEnrollment
from followup_engine.repositories.base import BaseRepository


class SequenceRepository(BaseRepository[FollowupSequence]):
    """Repository for FollowupSequence operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(FollowupSequence, session)


class EnrollmentRepository(BaseRepository[SequenceEnrollment]):
    """Repository for SequenceEnrollment operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(SequenceEnrollment, session)

    async def active_enrollment_for(
        self,
        sequence_id: uuid.UUID,
        lead_id: uuid.UUID
    ) -> Optional[SequenceEnrollment]:
        query = select(SequenceEnrollment).where(
            SequenceEnrollment.sequence_id == sequence_id,
            SequenceEnrollment.lead_id == lead_id,
            SequenceEnrollment.status == EnrollmentStatus.ACTIVE.value
        )
        result = await self.session.exec(query)
        return result.first()

    async def count_active(self, sequence_id: uuid.UUID) -> int:
        query = select(func.count()).select_from(SequenceEnrollment).where(
            SequenceEnrollment.sequence_id == sequence_id,
            SequenceEnrollment.status == EnrollmentStatus.ACTIVE.value
        )
        result = await self.session.exec(query)
        return result.one()

    async def for_sequence(self, sequence_id: uuid.UUID, status: Optional[str] = None) -> List[SequenceEnrollment]:
        query = select(SequenceEnrollment).where(SequenceEnrollment.sequence_id == sequence_id)
        if status:
            query = query.where(SequenceEnrollment.status == status)
        result = await self.session.exec(query.order_by(SequenceEnrollment.enrolled_at))
        return result.all()

    async def all_active(self) -> List[SequenceEnrollment]:
        query = select(SequenceEnrollment).where(
            SequenceEnrollment.status == EnrollmentStatus.ACTIVE.value
        ).order_by(SequenceEnrollment.last_activity_at)
        result = await self.session.exec(query)
        return result.all()
