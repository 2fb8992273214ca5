"""
Followup service - scheduling, rescheduling and completion of lead followups.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.context import EngineContext
from followup_engine.core.events import FollowupCompleted, FollowupCreated, FollowupRescheduled
from followup_engine.core.exceptions import (
    FollowupEngineError,
    raise_invalid_transition,
    raise_not_found,
    raise_validation_error,
)
from followup_engine.models.activity import ActivityLog, Actions
from followup_engine.models.enums import CreatedVia, FollowupStatus, TERMINAL_FOLLOWUP_STATUSES, TriggerEvent
from followup_engine.models.followup import Followup
from followup_engine.repositories.activity_repo import ActivityLogRepository
from followup_engine.repositories.followup_repo import FollowupRepository
from followup_engine.repositories.lead_repo import CallRepository, LeadRepository
from followup_engine.repositories.user_repo import UserRepository
from followup_engine.services.schedule_rules import default_followup_time, parse_datetime, resolve_timezone
from followup_engine.services.task_service import STATS_TIMEFRAMES

logger = logging.getLogger(__name__)

_LINK_FIELDS = ("automation_rule_id", "sequence_id", "sequence_step", "enrollment_id")
_UPDATE_FIELDS = ("title", "description", "type", "priority", "duration", "assigned_to", "timezone")

_PENDING, _SCHEDULED, _IN_PROGRESS, _CANCELLED, _OVERDUE, _RESCHEDULED = (
    FollowupStatus.PENDING.value,
    FollowupStatus.SCHEDULED.value,
    FollowupStatus.IN_PROGRESS.value,
    FollowupStatus.CANCELLED.value,
    FollowupStatus.OVERDUE.value,
    FollowupStatus.RESCHEDULED.value,
)

# Status moves allowed through a plain update. Completion and rescheduling
# have their own operations.
UPDATE_TRANSITIONS = {
    _PENDING: {_SCHEDULED, _IN_PROGRESS, _CANCELLED},
    _SCHEDULED: {_IN_PROGRESS, _CANCELLED},
    _IN_PROGRESS: {_CANCELLED},
    _OVERDUE: {_IN_PROGRESS, _CANCELLED},
    _RESCHEDULED: {_SCHEDULED, _IN_PROGRESS, _CANCELLED},
}


class FollowupService:
    """Service for followup operations."""

    def __init__(self, session: AsyncSession, context: EngineContext):
        self.session = session
        self.context = context
        self.followup_repo = FollowupRepository(session)
        self.lead_repo = LeadRepository(session)
        self.call_repo = CallRepository(session)
        self.user_repo = UserRepository(session)
        self.activity_repo = ActivityLogRepository(session)

    def _now(self) -> datetime:
        return self.context.now()

    async def _log(self, action: str, followup: Followup, actor_id, description: str, meta: Optional[dict] = None):
        await self.activity_repo.log(
            action=action,
            entity_type="followup",
            entity_id=followup.id,
            actor_id=actor_id,
            description=description,
            meta_data=meta
        )

    async def get_followup(self, followup_id: uuid.UUID) -> Followup:
        followup = await self.followup_repo.get(followup_id)
        if not followup:
            raise_not_found("Followup", str(followup_id))
        return followup

    async def get_followup_activity(self, followup_id: uuid.UUID, limit: int = 50) -> List[ActivityLog]:
        followup = await self.get_followup(followup_id)
        return await self.activity_repo.history("followup", followup.id, limit)

    async def create_followup(
        self,
        data: Dict[str, Any],
        user_id: Optional[uuid.UUID],
        created_via: str = CreatedVia.MANUAL.value
    ) -> Followup:
        """
        Create a followup. lead_id is required and scheduled_for must be in
        the future; without a date, a call's outcome picks the default delay.
        """
        if not data.get("lead_id"):
            raise_validation_error("lead_id is required", "lead_id")
        lead = await self.lead_repo.get(data["lead_id"])
        if not lead:
            raise_not_found("Lead", str(data["lead_id"]))

        assigned_to = data.get("assigned_to") or user_id
        if not assigned_to:
            raise_validation_error("assigned_to is required", "assigned_to")
        if not await self.user_repo.exists(assigned_to):
            raise_not_found("User", str(assigned_to))

        now = self._now()
        tz_name = data.get("timezone") or self.context.settings.DEFAULT_TIMEZONE
        scheduled_for = data.get("scheduled_for")
        if scheduled_for is None:
            if not data.get("call_id"):
                raise_validation_error("scheduled_for is required", "scheduled_for")
            call = await self.call_repo.get(data["call_id"])
            if not call:
                raise_not_found("Call", str(data["call_id"]))
            scheduled_for = default_followup_time(data.get("call_outcome") or call.outcome, now, tz_name)
        scheduled_for = parse_datetime(scheduled_for)
        if scheduled_for <= now:
            raise_validation_error("scheduled_for must be in the future", "scheduled_for")

        followup_type = data.get("type") or "call"
        title = (data.get("title") or "").strip() or f"{followup_type.replace('_', ' ').title()} with {lead.name}"

        values = {
            "lead_id": lead.id,
            "call_id": data.get("call_id"),
            "assigned_to": assigned_to,
            "created_by": user_id,
            "type": followup_type,
            "priority": data.get("priority") or "medium",
            "title": title,
            "description": data.get("description"),
            "scheduled_for": scheduled_for,
            "duration": data.get("duration") or 30,
            "timezone": tz_name,
            "status": FollowupStatus.PENDING.value,
            "created_via": created_via,
        }
        for field in _LINK_FIELDS:
            if data.get(field) is not None:
                values[field] = data[field]

        followup = await self.followup_repo.create(values)
        logger.info(f"Followup {followup.id} created ({created_via}) for lead {lead.id} at {scheduled_for}")

        await self._log(
            Actions.FOLLOWUP_CREATED, followup, user_id,
            f"Followup '{followup.title}' scheduled for {scheduled_for:%Y-%m-%d %H:%M}",
            {"created_via": created_via, "type": followup.type}
        )
        await self.context.events.publish(
            FollowupCreated(actor_id=user_id, followup_id=followup.id, lead_id=lead.id, created_via=created_via)
        )
        return followup

    async def bulk_create_followups(self, items: List[Dict[str, Any]], user_id: uuid.UUID) -> Dict[str, Any]:
        """Create many followups; a failing item is reported, not fatal."""
        results = []
        for index, item in enumerate(items):
            try:
                followup = await self.create_followup(item, user_id)
                results.append({"index": index, "success": True, "followup_id": followup.id, "error": None})
            except FollowupEngineError as e:
                logger.warning(f"Bulk followup {index} rejected: {e.message}")
                results.append({"index": index, "success": False, "followup_id": None, "error": e.message})
            except Exception as e:
                logger.exception(f"Bulk followup {index} failed")
                await self.session.rollback()
                results.append({"index": index, "success": False, "followup_id": None, "error": str(e)})
        created = sum(1 for r in results if r["success"])
        return {"created": created, "failed": len(results) - created, "results": results}

    async def create_followups_from_call(
        self,
        call_id: uuid.UUID,
        outcome: Optional[str],
        user_id: uuid.UUID,
        options: Optional[Dict[str, Any]] = None,
        create_manual: bool = False
    ) -> List[Followup]:
        """
        Fire call_outcome rules for a finished call and return the followups
        they created. A followup is scheduled directly when no rule created
        one, or when create_manual is set; options fill in its fields and a
        missing date falls back to the outcome's default delay.
        """
        from followup_engine.services.automation_service import AutomationService, call_context

        call = await self.call_repo.get(call_id)
        if not call:
            raise_not_found("Call", str(call_id))
        outcome = outcome or call.outcome
        lead = await self.lead_repo.get(call.lead_id)
        # Plain values survive a rollback inside rule evaluation
        lead_id = call.lead_id
        context = call_context(call, lead, outcome, user_id)

        results = await AutomationService(self.session, self.context).evaluate(
            TriggerEvent.CALL_OUTCOME.value, context, user_id
        )
        followups = []
        for result in results:
            if result["status"] == "created" and result.get("entity_type") == "followup":
                followups.append(await self.followup_repo.get(result["entity_id"]))

        if create_manual or not followups:
            data = {key: value for key, value in (options or {}).items() if value is not None}
            data.update({"lead_id": lead_id, "call_id": call_id, "call_outcome": outcome})
            followups.append(await self.create_followup(data, user_id, created_via=CreatedVia.CALL_OUTCOME.value))

        logger.info(f"Call {call_id} ({outcome}) produced {len(followups)} followup(s)")
        return followups

    async def update_followup(self, followup_id: uuid.UUID, patch: Dict[str, Any], user_id: uuid.UUID) -> Followup:
        """
        Edit a followup's details or move its status. Everything is validated
        before anything changes; dates move only through rescheduling.
        """
        followup = await self.get_followup(followup_id)
        target = patch.get("status")
        self._ensure_open(followup, target or followup.status)

        if target is not None and target != followup.status:
            if target not in {s.value for s in FollowupStatus}:
                raise_validation_error(f"Unknown status '{target}'", "status")
            if target == FollowupStatus.COMPLETED.value:
                raise_invalid_transition(followup.status, target, "use complete to record an outcome")
            if target == FollowupStatus.RESCHEDULED.value:
                raise_invalid_transition(followup.status, target, "use reschedule to move the date")
            if target not in UPDATE_TRANSITIONS.get(followup.status, set()):
                raise_invalid_transition(followup.status, target)
        if patch.get("title") is not None and not patch["title"].strip():
            raise_validation_error("Title is required", "title")
        if patch.get("assigned_to") is not None and not await self.user_repo.exists(patch["assigned_to"]):
            raise_not_found("User", str(patch["assigned_to"]))
        if patch.get("timezone") is not None:
            resolve_timezone(patch["timezone"])

        changes = []
        for field in _UPDATE_FIELDS:
            value = patch.get(field)
            if value is not None and value != getattr(followup, field):
                setattr(followup, field, value.strip() if field == "title" else value)
                changes.append(field)
        previous_status = followup.status
        if target is not None and target != followup.status:
            followup.status = target
            changes.append("status")
        if not changes:
            return followup

        followup = await self.followup_repo.save(followup)
        await self._log(
            Actions.FOLLOWUP_UPDATED, followup, user_id,
            f"Followup '{followup.title}' updated",
            {"changes": changes, "from_status": previous_status, "to_status": followup.status}
        )
        return followup

    async def get_followup_statistics(self, user_id: uuid.UUID, timeframe: str = "month") -> Dict[str, Any]:
        if timeframe not in STATS_TIMEFRAMES:
            raise_validation_error(
                f"Unknown timeframe '{timeframe}' (expected one of {', '.join(STATS_TIMEFRAMES)})",
                "timeframe"
            )
        now = self._now()
        window = STATS_TIMEFRAMES[timeframe]
        since = now - window if window else None
        stats = await self.followup_repo.statistics(user_id, since, now, now + timedelta(days=7))
        stats["timeframe"] = timeframe
        return stats

    async def list_followups(self, page: int = 1, limit: int = 20, **filters) -> dict:
        return await self.followup_repo.list_filtered(page=page, limit=limit, **filters)

    async def get_overdue_followups(self, user_id: Optional[uuid.UUID] = None) -> List[Followup]:
        return await self.followup_repo.overdue(self._now(), assigned_to=user_id)

    async def get_upcoming_followups(self, user_id: Optional[uuid.UUID], days: int = 7) -> List[Followup]:
        now = self._now()
        return await self.followup_repo.upcoming(now, now + timedelta(days=days), assigned_to=user_id)

    def _ensure_open(self, followup: Followup, target: str) -> None:
        if followup.status in TERMINAL_FOLLOWUP_STATUSES:
            raise_invalid_transition(followup.status, target, "completed and cancelled followups are final")

    async def reschedule_followup(
        self,
        followup_id: uuid.UUID,
        new_date: Any,
        reason: Optional[str],
        user_id: uuid.UUID
    ) -> Followup:
        from followup_engine.services.sequence_service import SequenceService

        followup = await self.get_followup(followup_id)
        self._ensure_open(followup, FollowupStatus.RESCHEDULED.value)
        now = self._now()
        new_date = parse_datetime(new_date)
        if new_date <= now:
            raise_validation_error("New date must be in the future", "new_date")

        previous = followup.scheduled_for
        followup.scheduled_for = new_date
        followup.status = FollowupStatus.RESCHEDULED.value
        followup.reschedule_count += 1
        followup.reschedule_history = list(followup.reschedule_history or []) + [{
            "from": previous.isoformat(),
            "to": new_date.isoformat(),
            "reason": reason,
            "by": str(user_id) if user_id else None,
            "at": now.isoformat(),
        }]
        followup.reminder_sent = False
        followup.reminder_sent_at = None
        followup.overdue_notified_at = None
        followup = await self.followup_repo.save(followup)

        await self._log(
            Actions.FOLLOWUP_RESCHEDULED, followup, user_id,
            f"Followup '{followup.title}' rescheduled to {new_date:%Y-%m-%d %H:%M}",
            {"from": previous.isoformat(), "to": new_date.isoformat(), "reason": reason,
             "reschedule_count": followup.reschedule_count}
        )
        await self.context.events.publish(FollowupRescheduled(
            actor_id=user_id, followup_id=followup.id, previous_date=previous, new_date=new_date, reason=reason
        ))

        if followup.enrollment_id:
            await SequenceService(self.session, self.context).handle_followup_rescheduled(followup, user_id)
        return followup

    async def complete_followup(
        self,
        followup_id: uuid.UUID,
        outcome: Optional[str],
        notes: Optional[str],
        user_id: uuid.UUID
    ) -> Followup:
        """Complete a followup, advance its sequence and fire followup_completed rules."""
        from followup_engine.services.automation_service import AutomationService
        from followup_engine.services.sequence_service import SequenceService

        followup = await self.get_followup(followup_id)
        self._ensure_open(followup, FollowupStatus.COMPLETED.value)

        followup.status = FollowupStatus.COMPLETED.value
        followup.outcome = outcome
        followup.outcome_notes = notes
        followup.completed_at = self._now()
        followup.completed_by = user_id
        followup = await self.followup_repo.save(followup)

        await self._log(
            Actions.FOLLOWUP_COMPLETED, followup, user_id,
            f"Followup '{followup.title}' completed ({outcome or 'no outcome'})",
            {"outcome": outcome}
        )
        await self.context.events.publish(
            FollowupCompleted(actor_id=user_id, followup_id=followup.id, outcome=outcome)
        )

        if followup.enrollment_id:
            await SequenceService(self.session, self.context).handle_followup_completed(followup, user_id)

        await AutomationService(self.session, self.context).evaluate(
            TriggerEvent.FOLLOWUP_COMPLETED.value,
            {
                "followup_id": followup.id,
                "followup_type": followup.type,
                "lead_id": followup.lead_id,
                "outcome": outcome,
                "user_id": user_id,
                "sequence_id": followup.sequence_id,
            },
            user_id
        )
        return followup

    async def cancel_followup(self, followup_id: uuid.UUID, reason: Optional[str], user_id: Optional[uuid.UUID]) -> Followup:
        followup = await self.get_followup(followup_id)
        self._ensure_open(followup, FollowupStatus.CANCELLED.value)

        followup.status = FollowupStatus.CANCELLED.value
        followup.outcome_notes = reason or followup.outcome_notes
        followup = await self.followup_repo.save(followup)

        await self._log(
            Actions.FOLLOWUP_CANCELLED, followup, user_id,
            f"Followup '{followup.title}' cancelled",
            {"reason": reason}
        )
        return followup
