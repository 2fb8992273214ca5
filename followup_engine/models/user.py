"""
User model.
Agents, managers and team membership used for assignment and escalation.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow
from followup_engine.models.types import json_column


class User(SQLModel, table=True):
    """
    A CRM user. Identity and credentials live in the CRM's identity service;
    this table carries only what the engine needs to route work.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    # Profile
    email: str = Field(unique=True, index=True)
    full_name: Optional[str] = None
    is_active: bool = Field(default=True)

    # Routing
    manager_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id", index=True)
    team_id: Optional[uuid.UUID] = Field(default=None, index=True)
    territory: Optional[str] = Field(default=None, index=True)
    skills: List[str] = Field(default_factory=list, sa_column=json_column())
    # Example: ["call", "demo", "proposal"]

    # Preferences
    daily_digest_enabled: bool = Field(default=True)
    timezone: str = Field(default="UTC")

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
