"""
Followup repository.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func, or_, and_

from followup_engine.core.pagination import paginate
from followup_engine.models.enums import FollowupStatus, TERMINAL_FOLLOWUP_STATUSES
from followup_engine.models.followup import Followup
from followup_engine.repositories.base import BaseRepository

# Statuses an agent has not yet picked up; these can go overdue.
WAITING_STATUSES = (
    FollowupStatus.PENDING.value,
    FollowupStatus.SCHEDULED.value,
    FollowupStatus.RESCHEDULED.value,
    FollowupStatus.OVERDUE.value,
)


class FollowupRepository(BaseRepository[Followup]):
    """Repository for Followup operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Followup, session)

    def _open_query(self):
        return self._base_query().where(Followup.status.notin_(TERMINAL_FOLLOWUP_STATUSES))

    async def open_for_enrollment(self, enrollment_id: uuid.UUID) -> List[Followup]:
        query = self._open_query().where(Followup.enrollment_id == enrollment_id)
        result = await self.session.exec(query)
        return result.all()

    async def list_filtered(
        self,
        assigned_to: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        lead_id: Optional[uuid.UUID] = None,
        type: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> dict:
        query = self._apply_filters(self._base_query(), {
            "assigned_to": assigned_to,
            "status": status,
            "lead_id": lead_id,
            "type": type,
        })
        return await paginate(self.session, query.order_by(Followup.scheduled_for), page, limit)

    async def due_between(self, start: datetime, end: datetime, reminded_before: datetime) -> List[Followup]:
        """Waiting followups in [start, end] with no reminder, or one older than reminded_before."""
        query = self._open_query().where(
            Followup.status.in_(WAITING_STATUSES),
            Followup.scheduled_for >= start,
            Followup.scheduled_for <= end,
            or_(
                Followup.reminder_sent == False,
                Followup.reminder_sent_at.is_(None),
                Followup.reminder_sent_at < reminded_before
            )
        )
        result = await self.session.exec(query.order_by(Followup.scheduled_for))
        return result.all()

    async def overdue(self, now: datetime, assigned_to: Optional[uuid.UUID] = None) -> List[Followup]:
        query = self._open_query().where(
            Followup.status.in_(WAITING_STATUSES),
            Followup.scheduled_for < now
        )
        if assigned_to is not None:
            query = query.where(Followup.assigned_to == assigned_to)
        result = await self.session.exec(query.order_by(Followup.scheduled_for))
        return result.all()

    async def upcoming(self, now: datetime, until: datetime, assigned_to: Optional[uuid.UUID] = None) -> List[Followup]:
        query = self._open_query().where(
            Followup.scheduled_for >= now,
            Followup.scheduled_for <= until
        )
        if assigned_to is not None:
            query = query.where(Followup.assigned_to == assigned_to)
        result = await self.session.exec(query.order_by(Followup.scheduled_for))
        return result.all()

    async def escalation_candidates(
        self,
        high_cutoff: datetime,
        medium_cutoff: datetime,
        reschedule_threshold: int,
        renotify_cutoff: datetime
    ) -> List[Followup]:
        query = self._open_query().where(
            or_(
                and_(Followup.priority.in_(("high", "urgent")), Followup.scheduled_for < high_cutoff),
                and_(Followup.priority == "medium", Followup.scheduled_for < medium_cutoff),
                Followup.reschedule_count >= reschedule_threshold,
            ),
            or_(Followup.escalated_at.is_(None), Followup.escalated_at < renotify_cutoff)
        )
        result = await self.session.exec(query.order_by(Followup.scheduled_for))
        return result.all()

    async def stale_reminders(self, cutoff: datetime) -> List[Followup]:
        query = self._open_query().where(
            Followup.reminder_sent == True,
            or_(Followup.reminder_sent_at.is_(None), Followup.reminder_sent_at < cutoff)
        )
        result = await self.session.exec(query)
        return result.all()

    async def statistics(
        self,
        assigned_to: uuid.UUID,
        since: Optional[datetime],
        now: datetime,
        upcoming_until: datetime
    ) -> dict:
        """
        Followup counts for one assignee. total counts followups created since
        `since` and completed counts those completed since then (all time when
        None); overdue and upcoming describe the open followups right now.
        """
        base = self._base_query().where(Followup.assigned_to == assigned_to)

        created = base if since is None else base.where(Followup.created_at >= since)
        total = (await self.session.exec(
            select(func.count()).select_from(created.subquery())
        )).one()

        completed_query = base.where(Followup.status == FollowupStatus.COMPLETED.value)
        if since is not None:
            completed_query = completed_query.where(Followup.completed_at >= since)
        completed = (await self.session.exec(completed_query)).all()

        overdue = (await self.session.exec(select(func.count()).select_from(
            self._open_query().where(
                Followup.assigned_to == assigned_to,
                Followup.scheduled_for < now
            ).subquery()
        ))).one()
        upcoming = (await self.session.exec(select(func.count()).select_from(
            self._open_query().where(
                Followup.assigned_to == assigned_to,
                Followup.scheduled_for >= now,
                Followup.scheduled_for <= upcoming_until
            ).subquery()
        ))).one()

        by_outcome = {}
        hours = []
        for followup in completed:
            if followup.outcome:
                by_outcome[followup.outcome] = by_outcome.get(followup.outcome, 0) + 1
            if followup.completed_at:
                hours.append(abs((followup.completed_at - followup.scheduled_for).total_seconds()) / 3600)

        return {
            "total": total,
            "completed": len(completed),
            "overdue": overdue,
            "upcoming": upcoming,
            "completion_rate": len(completed) / total if total else 0.0,
            "average_completion_hours": round(sum(hours) / len(hours), 1) if hours else 0.0,
            "by_outcome": by_outcome,
        }
