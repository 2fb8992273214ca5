"""
Automation rule schemas.
"""
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from followup_engine.models.enums import (
    AssignmentFallback,
    AssignmentType,
    FollowupType,
    Priority,
    RuleAction,
    ScheduleRuleType,
    TimeUnit,
    TriggerEvent,
)


class ScheduleRule(BaseModel):
    type: ScheduleRuleType = ScheduleRuleType.RELATIVE
    value: int = Field(default=1, ge=0)
    unit: TimeUnit = TimeUnit.DAYS
    business_hours_only: bool = True
    timezone: Optional[str] = None
    at: Optional[datetime] = None  # absolute rules only

    class Config:
        use_enum_values = True


class AssignmentRule(BaseModel):
    type: AssignmentType = AssignmentType.ORIGINAL_USER
    team_id: Optional[uuid.UUID] = None  # round_robin
    fallback: AssignmentFallback = AssignmentFallback.ORIGINAL_USER

    class Config:
        use_enum_values = True


class RuleTemplate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class RuleCreate(BaseModel):
    """Create an automation rule."""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True
    trigger_event: TriggerEvent
    conditions: Dict[str, Any] = {}
    action: RuleAction = RuleAction.CREATE_FOLLOWUP
    followup_type: FollowupType = FollowupType.CALL
    priority: Priority = Priority.MEDIUM
    schedule_rule: ScheduleRule = ScheduleRule()
    template: RuleTemplate = RuleTemplate()
    assignment_rule: AssignmentRule = AssignmentRule()
    max_executions_per_lead: Optional[int] = Field(default=None, ge=1)
    cooldown_period: Optional[int] = Field(default=None, ge=0)  # hours

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "name": "No answer - retry tomorrow",
                "trigger_event": "call_outcome",
                "conditions": {"outcome": "no_answer"},
                "followup_type": "call",
                "priority": "medium",
                "schedule_rule": {"type": "relative", "value": 1, "unit": "days", "business_hours_only": True},
                "template": {"title": "Retry {{leadName}}"},
                "cooldown_period": 24
            }
        }


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    conditions: Optional[Dict[str, Any]] = None
    action: Optional[RuleAction] = None
    followup_type: Optional[FollowupType] = None
    priority: Optional[Priority] = None
    schedule_rule: Optional[ScheduleRule] = None
    template: Optional[RuleTemplate] = None
    assignment_rule: Optional[AssignmentRule] = None
    max_executions_per_lead: Optional[int] = Field(default=None, ge=1)
    cooldown_period: Optional[int] = Field(default=None, ge=0)

    class Config:
        use_enum_values = True


class RuleResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str]
    is_active: bool
    trigger_event: str
    conditions: Dict[str, Any]
    action: str
    followup_type: str
    priority: str
    schedule_rule: Dict[str, Any]
    template: Dict[str, Any]
    assignment_rule: Dict[str, Any]
    max_executions_per_lead: Optional[int]
    cooldown_period: Optional[int]
    execution_count: int
    success_count: int
    success_rate: float
    last_executed: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AutomationEvent(BaseModel):
    """Fire a trigger event by hand."""
    trigger_event: TriggerEvent
    context: Dict[str, Any] = {}

    class Config:
        use_enum_values = True


class RuleOutcome(BaseModel):
    rule_id: uuid.UUID
    status: str  # created, skipped, failed
    entity_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


class EvaluationResponse(BaseModel):
    trigger_event: str
    matched: int
    results: List[RuleOutcome]
