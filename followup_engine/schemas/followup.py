"""
Followup schemas.
"""
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from followup_engine.models.enums import FollowupOutcome, FollowupStatus, FollowupType, Priority


class FollowupCreate(BaseModel):
    """
    Create a followup. scheduled_for may be omitted when call_id is given;
    the call outcome then picks a default delay.
    """
    lead_id: uuid.UUID
    call_id: Optional[uuid.UUID] = None
    assigned_to: Optional[uuid.UUID] = None
    type: FollowupType = FollowupType.CALL
    priority: Priority = Priority.MEDIUM
    title: Optional[str] = None
    description: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    duration: int = Field(default=30, ge=1)
    timezone: Optional[str] = None

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "lead_id": "6b1d3c1e-0a8f-4f4e-9a6c-0c2b8f1d9e77",
                "type": "call",
                "priority": "high",
                "title": "Discuss renewal terms",
                "scheduled_for": "2025-03-05T10:00:00Z"
            }
        }


class FollowupUpdate(BaseModel):
    """Partial update. Use reschedule and complete for dates and outcomes."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    type: Optional[FollowupType] = None
    priority: Optional[Priority] = None
    status: Optional[FollowupStatus] = None
    duration: Optional[int] = Field(default=None, ge=1)
    assigned_to: Optional[uuid.UUID] = None
    timezone: Optional[str] = None

    class Config:
        use_enum_values = True


class FollowupOptions(BaseModel):
    """Fields for a followup scheduled straight from a call."""
    assigned_to: Optional[uuid.UUID] = None
    type: Optional[FollowupType] = None
    priority: Optional[Priority] = None
    title: Optional[str] = None
    description: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=1)
    timezone: Optional[str] = None

    class Config:
        use_enum_values = True


class FollowupFromCall(BaseModel):
    call_id: uuid.UUID
    outcome: Optional[str] = None  # defaults to the call's recorded outcome
    create_manual: bool = False
    options: Optional[FollowupOptions] = None


class BulkFollowupCreate(BaseModel):
    followups: List[FollowupCreate] = Field(min_length=1)


class BulkFollowupResult(BaseModel):
    index: int
    success: bool
    followup_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


class BulkFollowupResponse(BaseModel):
    created: int
    failed: int
    results: List[BulkFollowupResult]


class FollowupStatistics(BaseModel):
    timeframe: str
    total: int
    completed: int
    overdue: int
    upcoming: int
    completion_rate: float
    average_completion_hours: float
    by_outcome: Dict[str, int]


class FollowupReschedule(BaseModel):
    new_date: datetime
    reason: Optional[str] = None


class FollowupComplete(BaseModel):
    outcome: FollowupOutcome = FollowupOutcome.SUCCESSFUL
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class FollowupCancel(BaseModel):
    reason: Optional[str] = None


class FollowupResponse(BaseModel):
    """Followup response."""
    id: uuid.UUID
    lead_id: uuid.UUID
    call_id: Optional[uuid.UUID]
    assigned_to: uuid.UUID
    created_by: Optional[uuid.UUID]
    type: str
    status: str
    priority: str
    title: str
    description: Optional[str]
    scheduled_for: datetime
    duration: int
    timezone: str
    created_via: str
    automation_rule_id: Optional[uuid.UUID]
    sequence_id: Optional[uuid.UUID]
    sequence_step: Optional[int]
    enrollment_id: Optional[uuid.UUID]
    outcome: Optional[str]
    outcome_notes: Optional[str]
    completed_at: Optional[datetime]
    completed_by: Optional[uuid.UUID]
    reminder_sent: bool
    reminder_sent_at: Optional[datetime]
    reschedule_count: int
    reschedule_history: List[Dict[str, Any]]
    escalated_at: Optional[datetime]
    escalated_to: Optional[uuid.UUID]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
