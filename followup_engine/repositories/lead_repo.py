"""
Lead and Call repositories.
"""
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.models.lead import Lead, Call
from followup_engine.repositories.base import BaseRepository


class LeadRepository(BaseRepository[Lead]):
    """Repository for Lead operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Lead, session)


class CallRepository(BaseRepository[Call]):
    """Repository for Call operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Call, session)
