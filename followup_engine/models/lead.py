"""
Lead and Call models.
The CRM owns these; the engine reads them to fill templates and route work.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow


class Lead(SQLModel, table=True):
    """
    Lead entity - a prospect the call center works.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    # Basic info
    name: str = Field(index=True)
    company: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = Field(default=None, index=True)
    phone: Optional[str] = None

    # Qualification
    score: int = Field(default=0, index=True)
    status: str = Field(default="new", index=True)  # new, contacted, qualified, closed_won, closed_lost

    # Routing
    territory: Optional[str] = Field(default=None, index=True)
    owner_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id", index=True)

    last_contacted_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Call(SQLModel, table=True):
    """
    A completed call. Written by the telephony subsystem.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    lead_id: uuid.UUID = Field(foreign_key="lead.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    outcome: Optional[str] = Field(default=None, index=True)  # see FollowupOutcome
    notes: Optional[str] = None

    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
