"""
Task schemas.
"""
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from followup_engine.models.enums import Priority, TaskOutcome, TaskStatus, TaskType


class Recurrence(BaseModel):
    """Repeat a task after completion."""
    frequency: str = Field(pattern="^(daily|weekly|monthly)$")
    interval: int = Field(default=1, ge=1)


class TaskCreate(BaseModel):
    """Create a new task."""
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: TaskType = TaskType.OTHER
    category: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    assigned_to: Optional[uuid.UUID] = None  # defaults to the creator
    lead_id: Optional[uuid.UUID] = None
    call_id: Optional[uuid.UUID] = None
    followup_id: Optional[uuid.UUID] = None
    parent_task_id: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, ge=0)
    blocked_by: List[uuid.UUID] = []
    recurrence: Optional[Recurrence] = None
    reminder_settings: Dict[str, Any] = {}
    collaborators: List[uuid.UUID] = []
    watchers: List[uuid.UUID] = []
    tags: List[str] = []
    custom_fields: Dict[str, Any] = {}

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "title": "Send pricing sheet to Acme",
                "type": "email",
                "priority": "high",
                "due_date": "2025-03-04T15:00:00Z",
                "estimated_duration": 15
            }
        }


class TaskUpdate(BaseModel):
    """Patch a task. Status changes follow the task state machine."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    type: Optional[TaskType] = None
    category: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, ge=0)
    progress_percentage: Optional[int] = None
    blocked_by: Optional[List[uuid.UUID]] = None
    reminder_settings: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None

    class Config:
        use_enum_values = True


class TaskAssign(BaseModel):
    assigned_to: uuid.UUID
    reason: Optional[str] = None


class TaskComplete(BaseModel):
    outcome: Optional[TaskOutcome] = TaskOutcome.SUCCESSFUL
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class TaskEscalate(BaseModel):
    escalate_to: uuid.UUID
    reason: str = Field(min_length=1)


class TaskPriorityUpdate(BaseModel):
    priority: Priority
    reason: Optional[str] = None

    class Config:
        use_enum_values = True


class UserReference(BaseModel):
    user_id: uuid.UUID


class TaskOverrides(BaseModel):
    """Fields that replace the generated values on derived tasks."""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[TaskType] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[uuid.UUID] = None
    estimated_duration: Optional[int] = None

    class Config:
        use_enum_values = True


class TaskFromCall(BaseModel):
    call_id: uuid.UUID
    outcome: Optional[str] = None  # defaults to the call's recorded outcome
    overrides: Optional[TaskOverrides] = None


class TaskFromFollowup(BaseModel):
    followup_id: uuid.UUID
    overrides: Optional[TaskOverrides] = None


class BulkTaskCreate(BaseModel):
    tasks: List[TaskCreate] = Field(min_length=1)


class BulkTaskResult(BaseModel):
    index: int
    success: bool
    task_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


class BulkTaskResponse(BaseModel):
    created: int
    failed: int
    results: List[BulkTaskResult]


class TaskResponse(BaseModel):
    """Task response."""
    id: uuid.UUID
    title: str
    description: Optional[str]
    type: str
    category: Optional[str]
    status: str
    priority: str
    assigned_to: uuid.UUID
    created_by: uuid.UUID
    started_by: Optional[uuid.UUID]
    completed_by: Optional[uuid.UUID]
    collaborators: List[str]
    watchers: List[str]
    lead_id: Optional[uuid.UUID]
    call_id: Optional[uuid.UUID]
    followup_id: Optional[uuid.UUID]
    parent_task_id: Optional[uuid.UUID]
    due_date: Optional[datetime]
    estimated_duration: Optional[int]
    actual_duration: Optional[int]
    progress_percentage: int
    blocked_by: List[str]
    recurrence: Optional[Dict[str, Any]]
    reminder_settings: Dict[str, Any]
    escalated_at: Optional[datetime]
    escalated_to: Optional[uuid.UUID]
    escalation_reason: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    outcome: Optional[str]
    outcome_notes: Optional[str]
    is_automated: bool
    automation_rule_id: Optional[uuid.UUID]
    tags: List[str]
    custom_fields: Dict[str, Any]
    meta_data: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class NextTaskResponse(BaseModel):
    task: Optional[TaskResponse] = None
    score: Optional[int] = None


class TaskStatistics(BaseModel):
    timeframe: str
    total: int
    completed: int
    overdue: int
    completion_rate: float
    by_status: Dict[str, int]
