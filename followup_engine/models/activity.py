"""
Activity log model - audit trail for task and followup mutations.
"""
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlmodel import SQLModel, Field

from followup_engine.core.clock import utcnow
from followup_engine.models.types import json_column


class ActivityLog(SQLModel, table=True):
    """
    Activity log for tracking all significant actions.
    Tasks and followups are soft-deleted, so this history is never orphaned.
    """
    __tablename__ = "activity_log"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    actor_id: Optional[uuid.UUID] = Field(default=None, index=True)

    # Action details
    action: str = Field(index=True)  # see Actions
    entity_type: str = Field(index=True)  # task, followup, sequence, enrollment, rule
    entity_id: Optional[uuid.UUID] = Field(default=None, index=True)

    # Human-readable description
    description: Optional[str] = None

    # Additional metadata
    meta_data: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    # Example: {"from": "pending", "to": "in_progress"}

    created_at: datetime = Field(default_factory=utcnow)


# Action constants for consistency
class Actions:
    # Task actions
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_ASSIGNED = "task_assigned"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_ESCALATED = "task_escalated"
    TASK_DELETED = "task_deleted"
    TASK_PRIORITY_CHANGED = "task_priority_changed"
    TASK_UNBLOCKED = "task_unblocked"
    COLLABORATOR_ADDED = "collaborator_added"
    WATCHER_ADDED = "watcher_added"

    # Followup actions
    FOLLOWUP_CREATED = "followup_created"
    FOLLOWUP_UPDATED = "followup_updated"
    FOLLOWUP_RESCHEDULED = "followup_rescheduled"
    FOLLOWUP_COMPLETED = "followup_completed"
    FOLLOWUP_CANCELLED = "followup_cancelled"
    FOLLOWUP_ESCALATED = "followup_escalated"

    # Sequence actions
    SEQUENCE_CREATED = "sequence_created"
    SEQUENCE_UPDATED = "sequence_updated"
    SEQUENCE_DELETED = "sequence_deleted"
    LEAD_ENROLLED = "lead_enrolled"
    ENROLLMENT_COMPLETED = "enrollment_completed"
    ENROLLMENT_EXITED = "enrollment_exited"

    # Rule actions
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"
