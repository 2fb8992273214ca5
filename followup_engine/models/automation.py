"""
Automation rule models.
A rule binds a trigger event and exact-match conditions to a create-work action.
"""
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow
from followup_engine.models.types import json_column


class AutomationRule(SQLModel, table=True):
    __tablename__ = "automation_rule"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    is_active: bool = Field(default=True, index=True)
    created_by: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")

    # Trigger
    trigger_event: str = Field(index=True)  # see TriggerEvent
    conditions: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"outcome": "no_answer", "lead_status": "contacted"}

    # Action
    action: str = Field(default="create_followup")  # create_followup, create_task
    followup_type: str = Field(default="call")
    priority: str = Field(default="medium")
    schedule_rule: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"type": "relative", "value": 1, "unit": "days", "business_hours_only": true, "timezone": "UTC"}
    template: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"title": "Call back {{leadName}}", "description": "..."}

    # Assignment
    assignment_rule: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"type": "round_robin", "team_id": "...", "fallback": "manager"}
    assignment_state: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"round_robin_index": 3}

    # Limits
    max_executions_per_lead: Optional[int] = None
    cooldown_period: Optional[int] = None  # hours

    # Counters
    execution_count: int = Field(default=0)
    success_count: int = Field(default=0)
    last_executed: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def success_rate(self) -> float:
        if not self.execution_count:
            return 0.0
        return self.success_count / self.execution_count


class AutomationExecution(SQLModel, table=True):
    """
    One firing of a rule. Per-lead cooldowns and caps are read from here.
    """
    __tablename__ = "automation_execution"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    rule_id: uuid.UUID = Field(foreign_key="automation_rule.id", index=True)
    lead_id: Optional[uuid.UUID] = Field(default=None, index=True)
    trigger_event: str

    success: bool = Field(default=False)
    created_entity_type: Optional[str] = None  # followup, task
    created_entity_id: Optional[uuid.UUID] = None
    error: Optional[str] = None

    executed_at: datetime = Field(default_factory=utcnow, index=True)
