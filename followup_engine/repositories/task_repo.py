"""
Task repository.
Entity-specific queries used by the task service, the priority index and the workers.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func, or_, and_

from followup_engine.core.pagination import paginate
from followup_engine.models.enums import CLOSED_TASK_STATUSES, TaskStatus
from followup_engine.models.task import Task
from followup_engine.repositories.base import BaseRepository


class TaskRepository(BaseRepository[Task]):
    """Repository for Task operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Task, session)

    def _open_query(self):
        return self._base_query().where(Task.status.notin_(CLOSED_TASK_STATUSES))

    async def find_dependents(self, task_id: uuid.UUID) -> List[Task]:
        """Open tasks whose blocked_by list contains task_id."""
        result = await self.session.exec(self._open_query().order_by(Task.created_at))
        key = str(task_id)
        return [task for task in result.all() if key in (task.blocked_by or [])]

    async def open_tasks(self) -> List[Task]:
        """All non-terminal tasks in creation order, for rebuilding the priority index."""
        result = await self.session.exec(self._open_query().order_by(Task.created_at))
        return result.all()

    async def list_filtered(
        self,
        assigned_to: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        type: Optional[str] = None,
        lead_id: Optional[uuid.UUID] = None,
        due_before: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20
    ) -> dict:
        query = self._base_query()
        if due_before is not None:
            query = query.where(Task.due_date <= due_before)
        filters = {
            "assigned_to": assigned_to,
            "status": status,
            "priority": priority,
            "type": type,
            "lead_id": lead_id,
        }
        query = self._apply_filters(query, filters)

        return await paginate(self.session, query.order_by(Task.due_date, Task.created_at), page, limit)

    async def by_priority(self, priority: str, assigned_to: Optional[uuid.UUID] = None) -> List[Task]:
        """Open tasks of one priority, soonest due first and undated last."""
        query = self._open_query().where(Task.priority == priority)
        if assigned_to is not None:
            query = query.where(Task.assigned_to == assigned_to)
        result = await self.session.exec(query.order_by(Task.due_date.is_(None), Task.due_date, Task.created_at))
        return result.all()

    async def due_between(
        self,
        start: datetime,
        end: datetime,
        reminded_before: datetime,
        assigned_to: Optional[uuid.UUID] = None
    ) -> List[Task]:
        """Open tasks due in [start, end] not reminded since reminded_before."""
        query = self._open_query().where(
            Task.due_date >= start,
            Task.due_date <= end,
            or_(Task.last_reminder_sent.is_(None), Task.last_reminder_sent < reminded_before)
        )
        if assigned_to is not None:
            query = query.where(Task.assigned_to == assigned_to)
        result = await self.session.exec(query.order_by(Task.due_date))
        return result.all()

    async def overdue(self, now: datetime, assigned_to: Optional[uuid.UUID] = None) -> List[Task]:
        query = self._open_query().where(Task.due_date < now)
        if assigned_to is not None:
            query = query.where(Task.assigned_to == assigned_to)
        result = await self.session.exec(query.order_by(Task.due_date))
        return result.all()

    async def upcoming(self, now: datetime, until: datetime, assigned_to: Optional[uuid.UUID] = None) -> List[Task]:
        query = self._open_query().where(Task.due_date >= now, Task.due_date <= until)
        if assigned_to is not None:
            query = query.where(Task.assigned_to == assigned_to)
        result = await self.session.exec(query.order_by(Task.due_date))
        return result.all()

    async def escalation_candidates(
        self,
        high_cutoff: datetime,
        medium_cutoff: datetime,
        renotify_cutoff: datetime
    ) -> List[Task]:
        """
        Open tasks that are high/urgent and due before high_cutoff, or medium
        and due before medium_cutoff, and not escalated since renotify_cutoff.
        """
        query = self._open_query().where(
            or_(
                and_(Task.priority.in_(("high", "urgent")), Task.due_date < high_cutoff),
                and_(Task.priority == "medium", Task.due_date < medium_cutoff),
            ),
            or_(Task.escalated_at.is_(None), Task.escalated_at < renotify_cutoff)
        )
        result = await self.session.exec(query.order_by(Task.due_date))
        return result.all()

    async def stale_reminders(self, cutoff: datetime) -> List[Task]:
        query = self._open_query().where(
            Task.last_reminder_sent.is_not(None),
            Task.last_reminder_sent < cutoff
        )
        result = await self.session.exec(query)
        return result.all()

    async def statistics(self, assigned_to: uuid.UUID, since: Optional[datetime], now: datetime) -> dict:
        """Counts by status for tasks created since `since` (all time when None)."""
        query = select(Task.status, func.count()).where(
            Task.assigned_to == assigned_to,
            Task.deleted_at.is_(None)
        )
        if since is not None:
            query = query.where(Task.created_at >= since)
        query = query.group_by(Task.status)
        rows = (await self.session.exec(query)).all()
        by_status = {status: count for status, count in rows}

        overdue_query = select(func.count()).select_from(Task).where(
            Task.assigned_to == assigned_to,
            Task.deleted_at.is_(None),
            Task.status.notin_(CLOSED_TASK_STATUSES),
            Task.due_date < now
        )
        if since is not None:
            overdue_query = overdue_query.where(Task.created_at >= since)
        overdue = (await self.session.exec(overdue_query)).one()

        total = sum(by_status.values())
        completed = by_status.get(TaskStatus.COMPLETED.value, 0)
        return {
            "total": total,
            "by_status": by_status,
            "completed": completed,
            "overdue": overdue,
            "completion_rate": completed / total if total else 0.0,
        }
