"""
User repository.
Lookups used by assignment strategies and escalation.
"""
import uuid
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.models.user import User
from followup_engine.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def get_active(self, user_id: Optional[uuid.UUID]) -> Optional[User]:
        if user_id is None:
            return None
        user = await self.get(user_id)
        if user and user.is_active:
            return user
        return None

    async def get_manager(self, user_id: uuid.UUID) -> Optional[User]:
        """Active manager of a user, if any."""
        user = await self.get(user_id)
        if not user or not user.manager_id:
            return None
        return await self.get_active(user.manager_id)

    async def list_active(self) -> List[User]:
        query = select(User).where(User.is_active == True).order_by(User.created_at, User.email)
        result = await self.session.exec(query)
        return result.all()

    async def team_members(self, team_id: uuid.UUID) -> List[User]:
        """Active team members in a stable order (round-robin rotation order)."""
        query = select(User).where(
            User.team_id == team_id,
            User.is_active == True
        ).order_by(User.created_at, User.email)
        result = await self.session.exec(query)
        return result.all()

    async def in_territory(self, territory: str) -> List[User]:
        query = select(User).where(
            User.territory == territory,
            User.is_active == True
        ).order_by(User.created_at, User.email)
        result = await self.session.exec(query)
        return result.all()

    async def digest_recipients(self) -> List[User]:
        query = select(User).where(
            User.is_active == True,
            User.daily_digest_enabled == True
        ).order_by(User.email)
        result = await self.session.exec(query)
        return result.all()
