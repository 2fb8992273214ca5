"""
Followup sequence schemas.
"""
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from followup_engine.models.enums import FollowupType, Priority, SequenceCategory, TimeUnit


class StepTiming(BaseModel):
    delay: int = Field(default=1, ge=0)
    unit: TimeUnit = TimeUnit.DAYS
    business_hours_only: bool = True

    class Config:
        use_enum_values = True


class SequenceStep(BaseModel):
    order: int = Field(ge=1)
    type: FollowupType = FollowupType.CALL
    priority: Priority = Priority.MEDIUM
    title: str = Field(min_length=1)  # supports {{leadName}}, {{stepNumber}}, {{sequenceName}}
    description: Optional[str] = None
    timing: StepTiming = StepTiming()
    template_id: Optional[str] = None

    class Config:
        use_enum_values = True


class ExitConditions(BaseModel):
    outcomes: List[str] = ["closed_won", "closed_lost", "unsubscribed"]
    max_reschedules: Optional[int] = Field(default=3, ge=0)
    inactivity_days: Optional[int] = Field(default=None, ge=1)


class SequenceCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: SequenceCategory = SequenceCategory.NURTURE
    steps: List[SequenceStep] = Field(min_length=1)
    trigger_conditions: Dict[str, Any] = {}
    exit_conditions: ExitConditions = ExitConditions()
    conversion_outcomes: List[str] = ["closed_won"]

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "name": "Cold lead nurture",
                "category": "nurture",
                "steps": [
                    {"order": 1, "type": "call", "title": "Intro call with {{leadName}}",
                     "timing": {"delay": 1, "unit": "days", "business_hours_only": True}},
                    {"order": 2, "type": "email", "title": "Step {{stepNumber}} of {{sequenceName}}",
                     "timing": {"delay": 3, "unit": "days", "business_hours_only": True}}
                ]
            }
        }


class SequenceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[SequenceCategory] = None
    is_active: Optional[bool] = None
    steps: Optional[List[SequenceStep]] = None
    trigger_conditions: Optional[Dict[str, Any]] = None
    exit_conditions: Optional[ExitConditions] = None
    conversion_outcomes: Optional[List[str]] = None

    class Config:
        use_enum_values = True


class SequenceResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str]
    category: str
    is_active: bool
    total_steps: int
    steps: List[Dict[str, Any]]
    trigger_conditions: Dict[str, Any]
    exit_conditions: Dict[str, Any]
    conversion_outcomes: List[str]
    enrollment_count: int
    completion_count: int
    conversion_count: int
    completion_rate: float
    conversion_rate: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnrollRequest(BaseModel):
    lead_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None  # defaults to the caller
    start_step: int = Field(default=1, ge=1)


class ExitRequest(BaseModel):
    reason: str = "manual"


class EnrollmentResponse(BaseModel):
    id: uuid.UUID
    sequence_id: uuid.UUID
    lead_id: uuid.UUID
    user_id: uuid.UUID
    current_step: int
    status: str
    exit_reason: Optional[str]
    converted: bool
    enrolled_at: datetime
    last_activity_at: datetime
    finished_at: Optional[datetime]

    class Config:
        from_attributes = True


class SequenceStats(BaseModel):
    sequence_id: uuid.UUID
    enrollment_count: int
    active: int
    completion_count: int
    conversion_count: int
    exited: int
    completion_rate: float
    conversion_rate: float
