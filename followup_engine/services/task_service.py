"""
Task service - task lifecycle, assignment, dependencies and recurrence.

Every mutation is persisted first, then reflected in the priority index and
published on the event bus.
"""
import calendar
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.context import EngineContext
from followup_engine.core.events import (
    TaskAssigned,
    TaskCompleted,
    TaskCreated,
    TaskEscalated,
    TaskPriorityChanged,
    TaskStarted,
    TaskUnblocked,
)
from followup_engine.core.exceptions import (
    FollowupEngineError,
    raise_invalid_transition,
    raise_not_found,
    raise_validation_error,
)
from followup_engine.models.activity import ActivityLog, Actions
from followup_engine.models.enums import CLOSED_TASK_STATUSES, Priority, TaskStatus, TaskType
from followup_engine.models.task import Task
from followup_engine.repositories.activity_repo import ActivityLogRepository
from followup_engine.repositories.followup_repo import FollowupRepository
from followup_engine.repositories.lead_repo import CallRepository, LeadRepository
from followup_engine.repositories.task_repo import TaskRepository
from followup_engine.repositories.user_repo import UserRepository
from followup_engine.services import task_states
from followup_engine.services.schedule_rules import call_outcome_template, parse_datetime

logger = logging.getLogger(__name__)

# Followup types that have a task type of the same name
_SHARED_TYPES = {"call", "email", "meeting", "demo", "proposal", "contract"}

STATS_TIMEFRAMES = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "quarter": timedelta(days=90),
    "year": timedelta(days=365),
    "all": None,
}

_CREATE_FIELDS = (
    "title", "description", "type", "category", "priority", "lead_id", "call_id",
    "followup_id", "parent_task_id", "estimated_duration", "reminder_settings",
    "tags", "custom_fields", "recurrence",
)
_PATCH_FIELDS = (
    "title", "description", "type", "category", "estimated_duration",
    "reminder_settings", "tags", "custom_fields",
)


def task_type_for_followup(followup_type: Optional[str]) -> str:
    if followup_type in _SHARED_TYPES:
        return followup_type
    return TaskType.FOLLOW_UP.value


def next_occurrence(base: datetime, recurrence: Dict[str, Any]) -> datetime:
    """Shift base by one recurrence period; monthly clamps to the month's last day."""
    frequency = recurrence.get("frequency")
    interval = int(recurrence.get("interval") or 1)
    if frequency == "daily":
        return base + timedelta(days=interval)
    if frequency == "weekly":
        return base + timedelta(weeks=interval)
    if frequency == "monthly":
        month_index = base.month - 1 + interval
        year = base.year + month_index // 12
        month = month_index % 12 + 1
        day = min(base.day, calendar.monthrange(year, month)[1])
        return base.replace(year=year, month=month, day=day)
    raise_validation_error(f"Unknown recurrence frequency '{frequency}'", "recurrence")


def _history(task: Task, key: str, entry: Dict[str, Any]) -> None:
    # Reassign so the JSON column is flagged dirty
    meta = dict(task.meta_data or {})
    meta[key] = list(meta.get(key, [])) + [entry]
    task.meta_data = meta


class TaskService:
    """Service for task operations."""

    def __init__(self, session: AsyncSession, context: EngineContext):
        self.session = session
        self.context = context
        self.task_repo = TaskRepository(session)
        self.user_repo = UserRepository(session)
        self.lead_repo = LeadRepository(session)
        self.call_repo = CallRepository(session)
        self.followup_repo = FollowupRepository(session)
        self.activity_repo = ActivityLogRepository(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self.context.now()

    async def _log(self, action: str, task: Task, actor_id, description: str, meta: Optional[dict] = None):
        await self.activity_repo.log(
            action=action,
            entity_type="task",
            entity_id=task.id,
            actor_id=actor_id,
            description=description,
            meta_data=meta
        )

    async def _require_user(self, user_id: uuid.UUID):
        user = await self.user_repo.get(user_id)
        if not user:
            raise_not_found("User", str(user_id))
        return user

    async def _validate_blockers(self, blocked_by: List[Any], task_id: Optional[uuid.UUID] = None) -> List[str]:
        """Resolve blocker ids; completed blockers are dropped."""
        result = []
        for raw in blocked_by or []:
            try:
                blocker_id = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
            except ValueError:
                raise_validation_error(f"Invalid task id '{raw}'", "blocked_by")
            if task_id is not None and blocker_id == task_id:
                raise_validation_error("A task cannot block itself", "blocked_by")
            blocker = await self.task_repo.get(blocker_id)
            if not blocker:
                raise_not_found("Task", str(blocker_id))
            if blocker.status == TaskStatus.COMPLETED.value:
                continue
            key = str(blocker_id)
            if key not in result:
                result.append(key)
        return result

    def _reindex(self, task: Task) -> None:
        self.context.scheduler.index(task, self._now())

    async def get_task(self, task_id: uuid.UUID) -> Task:
        task = await self.task_repo.get(task_id)
        if not task:
            raise_not_found("Task", str(task_id))
        return task

    async def get_task_activity(self, task_id: uuid.UUID, limit: int = 50) -> List[ActivityLog]:
        task = await self.get_task(task_id)
        return await self.activity_repo.history("task", task.id, limit)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_task(
        self,
        data: Dict[str, Any],
        user_id: uuid.UUID,
        source: str = "manual",
        notify: bool = True
    ) -> Task:
        """Create a task. Tasks start pending even when blocked."""
        title = (data.get("title") or "").strip()
        if not title:
            raise_validation_error("Title is required", "title")

        assigned_to = data.get("assigned_to") or user_id
        await self._require_user(assigned_to)

        if data.get("parent_task_id") and not await self.task_repo.exists(data["parent_task_id"]):
            raise_not_found("Task", str(data["parent_task_id"]))
        if data.get("lead_id") and not await self.lead_repo.exists(data["lead_id"]):
            raise_not_found("Lead", str(data["lead_id"]))

        values = {field: data[field] for field in _CREATE_FIELDS if data.get(field) is not None}
        values["title"] = title
        values["assigned_to"] = assigned_to
        values["created_by"] = user_id
        values["status"] = TaskStatus.PENDING.value
        values["blocked_by"] = await self._validate_blockers(data.get("blocked_by"))
        values["collaborators"] = [str(u) for u in data.get("collaborators") or []]
        values["watchers"] = [str(u) for u in data.get("watchers") or []]
        if data.get("due_date") is not None:
            values["due_date"] = parse_datetime(data["due_date"])
        if data.get("is_automated"):
            values["is_automated"] = True
            values["automation_rule_id"] = data.get("automation_rule_id")
        if data.get("meta_data"):
            values["meta_data"] = dict(data["meta_data"])

        task = await self.task_repo.create(values)
        logger.info(f"Task {task.id} created ({source}) for {task.assigned_to}")

        await self._log(
            Actions.TASK_CREATED, task, user_id,
            f"Task '{task.title}' created",
            {"source": source, "priority": task.priority, "type": task.type}
        )
        self._reindex(task)
        await self.context.events.publish(
            TaskCreated(actor_id=user_id, task_id=task.id, assignee_id=task.assigned_to, source=source)
        )
        if notify and task.assigned_to != user_id:
            await self.context.notifications.assignment(task, assigned_by=user_id)
        return task

    async def bulk_create_tasks(self, items: List[Dict[str, Any]], user_id: uuid.UUID) -> Dict[str, Any]:
        """Create many tasks; a failing item is reported, not fatal."""
        results = []
        for index, item in enumerate(items):
            try:
                task = await self.create_task(item, user_id, source="bulk")
                results.append({"index": index, "success": True, "task_id": task.id, "error": None})
            except FollowupEngineError as e:
                logger.warning(f"Bulk task {index} rejected: {e.message}")
                results.append({"index": index, "success": False, "task_id": None, "error": e.message})
            except Exception as e:
                logger.exception(f"Bulk task {index} failed")
                await self.session.rollback()
                results.append({"index": index, "success": False, "task_id": None, "error": str(e)})
        created = sum(1 for r in results if r["success"])
        return {"created": created, "failed": len(results) - created, "results": results}

    async def create_task_from_call_outcome(
        self,
        call_id: uuid.UUID,
        outcome: Optional[str],
        user_id: uuid.UUID,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Task:
        """
        Turn a finished call into work. A matching create_task automation rule
        wins; otherwise the builtin template for the outcome is used.
        """
        from followup_engine.services.automation_service import AutomationService

        call = await self.call_repo.get(call_id)
        if not call:
            raise_not_found("Call", str(call_id))
        outcome = outcome or call.outcome
        lead = await self.lead_repo.get(call.lead_id)
        # Plain values survive a rollback inside rule evaluation
        lead_id, lead_name = call.lead_id, (lead.name if lead else None)

        automation = AutomationService(self.session, self.context)
        rule_task = await automation.process_call_outcome(call, lead, outcome, user_id)
        if rule_task is not None:
            return rule_task

        now = self._now()
        data = call_outcome_template(outcome, lead_name, now)
        data.update({
            "lead_id": lead_id,
            "call_id": call_id,
            "is_automated": True,
            "meta_data": {"call_outcome": outcome},
        })
        for key, value in (overrides or {}).items():
            if value is not None:
                data[key] = value
        return await self.create_task(data, user_id, source="call_outcome")

    async def create_task_from_followup(
        self,
        followup_id: uuid.UUID,
        user_id: uuid.UUID,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Task:
        followup = await self.followup_repo.get(followup_id)
        if not followup:
            raise_not_found("Followup", str(followup_id))

        data = {
            "title": followup.title,
            "description": followup.description,
            "type": task_type_for_followup(followup.type),
            "priority": followup.priority,
            "assigned_to": followup.assigned_to,
            "lead_id": followup.lead_id,
            "call_id": followup.call_id,
            "followup_id": followup.id,
            "due_date": followup.scheduled_for,
            "estimated_duration": followup.duration,
        }
        for key, value in (overrides or {}).items():
            if value is not None:
                data[key] = value
        return await self.create_task(data, user_id, source="followup")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_tasks(self, page: int = 1, limit: int = 20, **filters) -> dict:
        return await self.task_repo.list_filtered(page=page, limit=limit, **filters)

    async def get_next_task(self, user_id: uuid.UUID) -> Tuple[Optional[Task], Optional[int]]:
        """Head of the user's ranking. Stale index entries are dropped on the way."""
        scheduler = self.context.scheduler
        while True:
            entry = scheduler.next(user_id)
            if entry is None:
                return None, None
            task = await self.task_repo.get(entry.task_id)
            if task and task.assigned_to == user_id and task_states.is_workable(task):
                return task, entry.score
            scheduler.remove(entry.task_id)
            if task:
                self._reindex(task)

    async def get_tasks_by_priority(self, priority: str, user_id: Optional[uuid.UUID] = None) -> List[Task]:
        if priority not in {p.value for p in Priority}:
            raise_validation_error(f"Unknown priority '{priority}'", "priority")
        return await self.task_repo.by_priority(priority, assigned_to=user_id)

    async def get_overdue_tasks(self, user_id: Optional[uuid.UUID] = None) -> List[Task]:
        return await self.task_repo.overdue(self._now(), assigned_to=user_id)

    async def get_upcoming_tasks(self, user_id: uuid.UUID, days: int = 7) -> List[Task]:
        now = self._now()
        return await self.task_repo.upcoming(now, now + timedelta(days=days), assigned_to=user_id)

    async def get_task_statistics(self, user_id: uuid.UUID, timeframe: str = "month") -> Dict[str, Any]:
        if timeframe not in STATS_TIMEFRAMES:
            raise_validation_error(
                f"Unknown timeframe '{timeframe}' (expected one of {', '.join(STATS_TIMEFRAMES)})",
                "timeframe"
            )
        now = self._now()
        window = STATS_TIMEFRAMES[timeframe]
        since = now - window if window else None
        stats = await self.task_repo.statistics(user_id, since, now)
        stats["timeframe"] = timeframe
        return stats

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_task(self, task_id: uuid.UUID, patch: Dict[str, Any], user_id: uuid.UUID) -> Task:
        """Apply a partial update. Everything is validated before anything changes."""
        task = await self.get_task(task_id)

        target = patch.get("status")
        if task.status == TaskStatus.COMPLETED.value and any(
            patch.get(field) is not None for field in ("due_date", "blocked_by", "progress_percentage")
        ):
            raise_invalid_transition(task.status, task.status, "completed tasks cannot be rescheduled or re-blocked")
        blocked_by = None
        if patch.get("blocked_by") is not None:
            blocked_by = await self._validate_blockers(patch["blocked_by"], task.id)
        # Checked against the blockers the task will have after the patch
        if target is not None and target != task.status:
            task_states.check_transition(task, target, blocked_by)
        if patch.get("progress_percentage") is not None and target != TaskStatus.COMPLETED.value:
            task_states.validate_progress(task, patch["progress_percentage"])
        if patch.get("title") is not None and not patch["title"].strip():
            raise_validation_error("Title is required", "title")
        due_date = parse_datetime(patch["due_date"]) if patch.get("due_date") is not None else None

        changes = []
        for field in _PATCH_FIELDS:
            if patch.get(field) is not None:
                setattr(task, field, patch[field])
                changes.append(field)
        if due_date is not None:
            task.due_date = due_date
            changes.append("due_date")
        if blocked_by is not None:
            task.blocked_by = blocked_by
            changes.append("blocked_by")
        if patch.get("progress_percentage") is not None and target != TaskStatus.COMPLETED.value:
            task.progress_percentage = patch["progress_percentage"]
            changes.append("progress_percentage")

        previous_status = task.status
        completed = False
        if target is not None and target != task.status:
            if target == TaskStatus.COMPLETED.value:
                task_states.mark_completed(task, self._now(), user_id=user_id)
                completed = True
            else:
                task_states.apply_transition(task, target, self._now(), user_id)
            changes.append("status")

        task = await self.task_repo.save(task)
        await self._log(
            Actions.TASK_UPDATED, task, user_id,
            f"Task '{task.title}' updated",
            {"changes": changes, "from_status": previous_status, "to_status": task.status}
        )

        if completed:
            await self._after_completion(task, user_id)
        else:
            self._reindex(task)
            if previous_status != task.status and task.status == TaskStatus.IN_PROGRESS.value:
                await self.context.events.publish(TaskStarted(actor_id=user_id, task_id=task.id))
        return task

    async def assign_task(
        self,
        task_id: uuid.UUID,
        assignee_id: uuid.UUID,
        assigned_by: uuid.UUID,
        reason: Optional[str] = None
    ) -> Task:
        task = await self.get_task(task_id)
        if task.status in CLOSED_TASK_STATUSES:
            raise_invalid_transition(task.status, task.status, "closed tasks cannot be reassigned")
        assignee = await self._require_user(assignee_id)
        if not assignee.is_active:
            raise_validation_error("Cannot assign to an inactive user", "assigned_to")

        previous = task.assigned_to
        task.assigned_to = assignee_id
        _history(task, "assignment_history", {
            "from": str(previous),
            "to": str(assignee_id),
            "by": str(assigned_by),
            "reason": reason,
            "at": self._now().isoformat(),
        })
        task = await self.task_repo.save(task)

        await self._log(
            Actions.TASK_ASSIGNED, task, assigned_by,
            f"Task '{task.title}' assigned to {assignee.display_name}",
            {"from": str(previous), "to": str(assignee_id), "reason": reason}
        )
        self._reindex(task)
        await self.context.events.publish(
            TaskAssigned(actor_id=assigned_by, task_id=task.id, previous_assignee_id=previous, assignee_id=assignee_id)
        )
        await self.context.notifications.assignment(task, assigned_by=assigned_by)
        return task

    async def start_task(self, task_id: uuid.UUID, user_id: uuid.UUID) -> Task:
        task = await self.get_task(task_id)
        if not task_states.can_start(task):
            reason = (
                f"blocked by {len(task.blocked_by)} unfinished task(s)"
                if task.blocked_by else "task cannot be started from this status"
            )
            raise_invalid_transition(task.status, TaskStatus.IN_PROGRESS.value, reason)

        task_states.apply_transition(task, TaskStatus.IN_PROGRESS.value, self._now(), user_id)
        task = await self.task_repo.save(task)

        await self._log(Actions.TASK_STARTED, task, user_id, f"Task '{task.title}' started")
        self._reindex(task)
        await self.context.events.publish(TaskStarted(actor_id=user_id, task_id=task.id))
        return task

    async def complete_task(
        self,
        task_id: uuid.UUID,
        outcome: Optional[str],
        notes: Optional[str],
        user_id: uuid.UUID
    ) -> Task:
        task = await self.get_task(task_id)
        task_states.mark_completed(task, self._now(), outcome=outcome, notes=notes, user_id=user_id)
        task = await self.task_repo.save(task)

        await self._log(
            Actions.TASK_COMPLETED, task, user_id,
            f"Task '{task.title}' completed",
            {"outcome": outcome, "actual_duration": task.actual_duration}
        )
        await self._after_completion(task, user_id)
        return task

    async def _after_completion(self, task: Task, user_id: uuid.UUID) -> None:
        self.context.scheduler.remove(task.id, task.assigned_to)
        await self._unblock_dependents(task, user_id)
        if task.recurrence:
            await self._spawn_recurrence(task, user_id)
        await self.context.events.publish(TaskCompleted(actor_id=user_id, task_id=task.id, outcome=task.outcome))

    async def _unblock_dependents(self, task: Task, user_id: uuid.UUID) -> None:
        key = str(task.id)
        for dependent in await self.task_repo.find_dependents(task.id):
            dependent.blocked_by = [b for b in dependent.blocked_by if b != key]
            unblocked = not dependent.blocked_by
            if unblocked and dependent.status == TaskStatus.BLOCKED.value:
                dependent.status = TaskStatus.PENDING.value
            dependent = await self.task_repo.save(dependent)
            self._reindex(dependent)
            if unblocked:
                await self._log(
                    Actions.TASK_UNBLOCKED, dependent, user_id,
                    f"Task '{dependent.title}' unblocked by completion of '{task.title}'",
                    {"completed_task_id": key}
                )
                await self.context.events.publish(TaskUnblocked(actor_id=user_id, task_id=dependent.id))

    async def _spawn_recurrence(self, task: Task, user_id: uuid.UUID) -> Task:
        base = task.due_date or task.completed_at
        data = {
            "title": task.title,
            "description": task.description,
            "type": task.type,
            "category": task.category,
            "priority": task.priority,
            "assigned_to": task.assigned_to,
            "lead_id": task.lead_id,
            "estimated_duration": task.estimated_duration,
            "reminder_settings": task.reminder_settings,
            "tags": list(task.tags or []),
            "recurrence": task.recurrence,
            "due_date": next_occurrence(base, task.recurrence),
            "meta_data": {"recurred_from": str(task.id)},
        }
        next_task = await self.create_task(data, task.created_by, source="recurrence", notify=False)
        logger.info(f"Recurring task {task.id} spawned {next_task.id}")
        return next_task

    async def escalate_task(
        self,
        task_id: uuid.UUID,
        escalate_to: uuid.UUID,
        reason: str,
        user_id: Optional[uuid.UUID],
        require_delivery: bool = False
    ) -> Optional[Task]:
        """
        Escalate a task to another user, normally a manager.

        The target is notified before the escalation is recorded. With
        require_delivery, a failed notification records nothing and None is
        returned, so the escalation sweep retries it on its next run.
        """
        task = await self.get_task(task_id)
        if task.status in CLOSED_TASK_STATUSES:
            raise_invalid_transition(task.status, task.status, "closed tasks cannot be escalated")
        target = await self._require_user(escalate_to)

        delivered = await self.context.notifications.escalation(task, escalate_to, reason)
        if not delivered and require_delivery:
            logger.warning(f"Escalation of task {task.id} to {escalate_to} not delivered; left for retry")
            return None

        now = self._now()
        task.escalated_at = now
        task.escalated_to = escalate_to
        task.escalation_reason = reason
        _history(task, "escalation_history", {
            "at": now.isoformat(),
            "to": str(escalate_to),
            "by": str(user_id) if user_id else None,
            "reason": reason,
        })
        task = await self.task_repo.save(task)

        await self._log(
            Actions.TASK_ESCALATED, task, user_id,
            f"Task '{task.title}' escalated to {target.display_name}",
            {"reason": reason, "escalated_to": str(escalate_to)}
        )
        await self.context.events.publish(
            TaskEscalated(actor_id=user_id, task_id=task.id, escalated_to=escalate_to, reason=reason)
        )
        return task

    async def update_task_priority(
        self,
        task_id: uuid.UUID,
        priority: str,
        user_id: uuid.UUID,
        reason: Optional[str] = None
    ) -> Task:
        if priority not in {p.value for p in Priority}:
            raise_validation_error(f"Unknown priority '{priority}'", "priority")
        task = await self.get_task(task_id)
        previous = task.priority
        if previous == priority:
            return task

        task.priority = priority
        _history(task, "priority_history", {
            "from": previous,
            "to": priority,
            "by": str(user_id),
            "reason": reason,
            "at": self._now().isoformat(),
        })
        task = await self.task_repo.save(task)

        await self._log(
            Actions.TASK_PRIORITY_CHANGED, task, user_id,
            f"Task '{task.title}' priority {previous} -> {priority}",
            {"from": previous, "to": priority, "reason": reason}
        )
        self._reindex(task)
        await self.context.events.publish(
            TaskPriorityChanged(actor_id=user_id, task_id=task.id, previous_priority=previous, priority=priority)
        )
        return task

    async def add_collaborator(self, task_id: uuid.UUID, collaborator_id: uuid.UUID, user_id: uuid.UUID) -> Task:
        return await self._add_member(task_id, collaborator_id, user_id, "collaborators", Actions.COLLABORATOR_ADDED)

    async def add_watcher(self, task_id: uuid.UUID, watcher_id: uuid.UUID, user_id: uuid.UUID) -> Task:
        return await self._add_member(task_id, watcher_id, user_id, "watchers", Actions.WATCHER_ADDED)

    async def _add_member(self, task_id, member_id, user_id, field: str, action: str) -> Task:
        task = await self.get_task(task_id)
        member = await self._require_user(member_id)
        members = list(getattr(task, field) or [])
        if str(member_id) in members:
            return task

        setattr(task, field, members + [str(member_id)])
        task = await self.task_repo.save(task)
        await self._log(
            action, task, user_id,
            f"{member.display_name} added to '{task.title}' {field}",
            {"user_id": str(member_id)}
        )
        return task

    async def delete_task(self, task_id: uuid.UUID, user_id: uuid.UUID) -> None:
        task = await self.get_task(task_id)
        await self.task_repo.soft_delete(task.id)
        self.context.scheduler.remove(task.id, task.assigned_to)
        await self._log(Actions.TASK_DELETED, task, user_id, f"Task '{task.title}' deleted")
