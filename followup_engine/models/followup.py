"""
Followup model - a scheduled, lead-centric activity.
Always tied to a lead, always has a wall-clock scheduled_for.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow
from followup_engine.models.types import json_column


class Followup(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    lead_id: uuid.UUID = Field(foreign_key="lead.id", index=True)
    call_id: Optional[uuid.UUID] = Field(default=None, foreign_key="call.id", index=True)
    assigned_to: uuid.UUID = Field(foreign_key="user.id", index=True)
    created_by: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")

    type: str = Field(default="call", index=True)  # see FollowupType
    status: str = Field(default="pending", index=True)  # see FollowupStatus
    priority: str = Field(default="medium", index=True)
    title: str
    description: Optional[str] = None

    # Scheduling
    scheduled_for: datetime = Field(index=True)
    duration: int = Field(default=30)  # minutes
    timezone: str = Field(default="UTC")

    # Automation linkage
    created_via: str = Field(default="manual")  # see CreatedVia
    automation_rule_id: Optional[uuid.UUID] = Field(default=None, index=True)
    sequence_id: Optional[uuid.UUID] = Field(default=None, index=True)
    sequence_step: Optional[int] = None
    enrollment_id: Optional[uuid.UUID] = Field(default=None, index=True)

    # Completion
    outcome: Optional[str] = None
    outcome_notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[uuid.UUID] = None

    # Reminders
    reminder_sent: bool = Field(default=False)
    reminder_sent_at: Optional[datetime] = None
    overdue_notified_at: Optional[datetime] = None

    # Rescheduling
    reschedule_count: int = Field(default=0)
    reschedule_history: List[Dict[str, Any]] = Field(default_factory=list, sa_column=json_column())
    # Example: [{"from": "...", "to": "...", "reason": "...", "by": "...", "at": "..."}]

    # Escalation
    escalated_at: Optional[datetime] = None
    escalated_to: Optional[uuid.UUID] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
