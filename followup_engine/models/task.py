"""
Task model - a discrete unit of agent work with a status state machine.
Dependencies, collaborators and history are stored as JSON id lists.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow
from followup_engine.models.types import json_column


class Task(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    # Basic info
    title: str
    description: Optional[str] = None
    type: str = Field(default="other", index=True)  # see TaskType
    category: Optional[str] = None
    status: str = Field(default="pending", index=True)  # see TaskStatus
    priority: str = Field(default="medium", index=True)  # low, medium, high, urgent

    # People
    assigned_to: uuid.UUID = Field(foreign_key="user.id", index=True)
    created_by: uuid.UUID = Field(foreign_key="user.id")
    started_by: Optional[uuid.UUID] = None
    completed_by: Optional[uuid.UUID] = None
    collaborators: List[str] = Field(default_factory=list, sa_column=json_column())
    watchers: List[str] = Field(default_factory=list, sa_column=json_column())

    # Back-references
    lead_id: Optional[uuid.UUID] = Field(default=None, foreign_key="lead.id", index=True)
    call_id: Optional[uuid.UUID] = Field(default=None, foreign_key="call.id", index=True)
    followup_id: Optional[uuid.UUID] = Field(default=None, foreign_key="followup.id", index=True)
    parent_task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="task.id", index=True)

    # Scheduling
    due_date: Optional[datetime] = Field(default=None, index=True)
    estimated_duration: Optional[int] = None  # minutes
    actual_duration: Optional[int] = None  # minutes
    progress_percentage: int = Field(default=0)

    # Dependencies (task ids as strings)
    blocked_by: List[str] = Field(default_factory=list, sa_column=json_column())

    # Recurrence, e.g. {"frequency": "weekly", "interval": 1}
    recurrence: Optional[Dict[str, Any]] = Field(default=None, sa_column=json_column())

    # Reminders; {"enabled": false} opts the task out of due-soon reminders
    reminder_settings: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    last_reminder_sent: Optional[datetime] = None
    overdue_notified_at: Optional[datetime] = None

    # Escalation
    escalated_at: Optional[datetime] = None
    escalated_to: Optional[uuid.UUID] = None
    escalation_reason: Optional[str] = None

    # Completion
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outcome: Optional[str] = None  # see TaskOutcome
    outcome_notes: Optional[str] = None

    # Automation
    is_automated: bool = Field(default=False)
    automation_rule_id: Optional[uuid.UUID] = None

    # Extras
    tags: List[str] = Field(default_factory=list, sa_column=json_column())
    custom_fields: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    meta_data: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"assignment_history": [...], "priority_history": [...], "escalation_history": [...]}

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
