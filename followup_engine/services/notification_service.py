"""
Notification service - builds reminder, overdue, digest, escalation and
assignment messages and hands them to the dispatcher.

Delivery failures are logged and reported as False; they never propagate
into the operation that triggered the notification.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from followup_engine.models.enums import NotificationKind
from followup_engine.models.followup import Followup
from followup_engine.models.task import Task
from followup_engine.services.integrations.base import NotificationDispatcher

logger = logging.getLogger(__name__)


def describe_item(item) -> Dict[str, Any]:
    """Common payload fields for a task or followup."""
    if isinstance(item, Followup):
        return {
            "item_type": "followup",
            "item_id": item.id,
            "title": item.title,
            "lead_id": item.lead_id,
            "priority": item.priority,
            "due": item.scheduled_for,
            "status": item.status,
        }
    return {
        "item_type": "task",
        "item_id": item.id,
        "title": item.title,
        "lead_id": item.lead_id,
        "priority": item.priority,
        "due": item.due_date,
        "status": item.status,
    }


class NotificationService:
    """Thin, failure-tolerant wrapper over a NotificationDispatcher."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def notify(self, kind: str, recipient_id: Optional[uuid.UUID], payload: Dict[str, Any]) -> bool:
        if recipient_id is None:
            logger.warning(f"Dropping {kind} notification with no recipient")
            return False
        try:
            return bool(await self.dispatcher.send(kind, recipient_id, payload))
        except Exception as e:
            logger.error(f"Failed to send {kind} notification to {recipient_id}: {e}")
            return False

    async def reminder(self, item) -> bool:
        payload = describe_item(item)
        payload["message"] = f"Reminder: '{item.title}' is due soon"
        return await self.notify(NotificationKind.REMINDER.value, item.assigned_to, payload)

    async def overdue(self, item) -> bool:
        payload = describe_item(item)
        payload["message"] = f"Overdue: '{item.title}'"
        return await self.notify(NotificationKind.OVERDUE.value, item.assigned_to, payload)

    async def escalation(self, item, manager_id: uuid.UUID, reason: str) -> bool:
        payload = describe_item(item)
        payload.update({
            "assignee_id": item.assigned_to,
            "reason": reason,
            "message": f"Escalated: '{item.title}' ({reason})",
        })
        return await self.notify(NotificationKind.ESCALATION.value, manager_id, payload)

    async def assignment(self, task: Task, assigned_by: Optional[uuid.UUID] = None) -> bool:
        payload = describe_item(task)
        payload.update({
            "assigned_by": assigned_by,
            "message": f"You have been assigned '{task.title}'",
        })
        return await self.notify(NotificationKind.ASSIGNMENT.value, task.assigned_to, payload)

    async def digest(
        self,
        user_id: uuid.UUID,
        due_today: List[Any],
        overdue: List[Any]
    ) -> bool:
        payload = {
            "title": "Your daily follow-up digest",
            "message": f"{len(due_today)} due today, {len(overdue)} overdue",
            "due_today": [describe_item(item) for item in due_today],
            "overdue": [describe_item(item) for item in overdue],
        }
        return await self.notify(NotificationKind.DIGEST.value, user_id, payload)
