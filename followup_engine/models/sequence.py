"""
Followup sequence models.
A sequence is an ordered nurture campaign; an enrollment is one lead's pointer into it.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow
from followup_engine.models.types import json_column


class FollowupSequence(SQLModel, table=True):
    __tablename__ = "followup_sequence"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    category: str = Field(default="nurture")  # see SequenceCategory
    is_active: bool = Field(default=True)
    created_by: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")

    # Steps, ordered 1..total_steps
    total_steps: int = Field(default=0)
    steps: List[Dict[str, Any]] = Field(default_factory=list, sa_column=json_column())
    # Example: [{"order": 1, "type": "call", "priority": "medium",
    #            "title": "Intro call with {{leadName}}", "description": "...",
    #            "timing": {"delay": 1, "unit": "days", "business_hours_only": true},
    #            "template_id": null}]

    trigger_conditions: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    exit_conditions: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"outcomes": ["closed_won", "unsubscribed"], "max_reschedules": 3, "inactivity_days": 30}
    conversion_outcomes: List[str] = Field(default_factory=lambda: ["closed_won"], sa_column=json_column())

    # Counters
    enrollment_count: int = Field(default=0)
    completion_count: int = Field(default=0)
    conversion_count: int = Field(default=0)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def completion_rate(self) -> float:
        if not self.enrollment_count:
            return 0.0
        return self.completion_count / self.enrollment_count

    @property
    def conversion_rate(self) -> float:
        if not self.enrollment_count:
            return 0.0
        return self.conversion_count / self.enrollment_count

    def get_step(self, order: int) -> Optional[Dict[str, Any]]:
        for step in self.steps or []:
            if step.get("order") == order:
                return step
        return None

    def get_next_step(self, current_step: int) -> Optional[Dict[str, Any]]:
        return self.get_step(current_step + 1)


class SequenceEnrollment(SQLModel, table=True):
    __tablename__ = "sequence_enrollment"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    sequence_id: uuid.UUID = Field(foreign_key="followup_sequence.id", index=True)
    lead_id: uuid.UUID = Field(foreign_key="lead.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    current_step: int = Field(default=1)
    status: str = Field(default="active", index=True)  # active, completed, exited
    exit_reason: Optional[str] = None
    converted: bool = Field(default=False)

    enrolled_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
