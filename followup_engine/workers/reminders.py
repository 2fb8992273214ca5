"""
Reminder & escalation processor.

Each public coroutine is one periodic worker run: it opens its own session,
scans the store, and returns a WorkerResult. A failure on one item is logged
with the item id and does not stop the rest of the run.
"""
import logging
import uuid
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.config import Settings
from followup_engine.core.context import EngineContext
from followup_engine.core.exceptions import EscalationTargetUnresolvable
from followup_engine.models.activity import Actions
from followup_engine.models.enums import FollowupStatus, TERMINAL_FOLLOWUP_STATUSES
from followup_engine.models.followup import Followup
from followup_engine.repositories.activity_repo import ActivityLogRepository
from followup_engine.repositories.followup_repo import FollowupRepository
from followup_engine.repositories.task_repo import TaskRepository
from followup_engine.repositories.user_repo import UserRepository
from followup_engine.schemas.worker import WorkerResult
from followup_engine.services.sequence_service import SequenceService
from followup_engine.services.task_service import TaskService
from followup_engine.workers.periodic import PeriodicWorker

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def reminders_enabled(task) -> bool:
    return bool((task.reminder_settings or {}).get("enabled", True))


def escalation_reason(item, now: datetime, settings: Settings) -> str:
    """Human-readable reason built from whichever escalation rules matched."""
    kind = "followup" if isinstance(item, Followup) else "task"
    due = item.scheduled_for if kind == "followup" else item.due_date
    hours_overdue = (now - due).total_seconds() / 3600 if due and due < now else 0
    reasons = []

    if item.priority in ("high", "urgent") and hours_overdue > settings.ESCALATION_HIGH_PRIORITY_HOURS:
        reasons.append(f"{item.priority.title()} priority {kind} is {int(hours_overdue)} hours overdue")
    elif item.priority == "medium" and hours_overdue > settings.ESCALATION_MEDIUM_PRIORITY_HOURS:
        reasons.append(f"Medium priority {kind} is {int(hours_overdue)} hours overdue")

    reschedules = getattr(item, "reschedule_count", 0) or 0
    if reschedules >= settings.ESCALATION_RESCHEDULE_THRESHOLD:
        reasons.append(f"{kind.title()} has been rescheduled {reschedules} times")

    return "; ".join(reasons) or "Automatic escalation based on business rules"


class ReminderProcessor:
    """Scans due, overdue and neglected items and drives notifications."""

    def __init__(self, context: EngineContext, session_factory: SessionFactory):
        self.context = context
        self.session_factory = session_factory

    @property
    def settings(self) -> Settings:
        return self.context.settings

    def _finish(self, result: WorkerResult) -> WorkerResult:
        logger.info(
            f"Worker {result.worker} done: processed={result.processed} "
            f"failed={result.failed} skipped={result.skipped}"
        )
        return result

    async def send_immediate_reminders(self) -> WorkerResult:
        result = WorkerResult(worker="immediate_reminders")
        now = self.context.now()
        window_end = now + timedelta(minutes=self.settings.REMINDER_WINDOW_MINUTES)
        reminded_before = now - timedelta(minutes=self.settings.REMINDER_MIN_GAP_MINUTES)
        logger.info(f"Sending reminders for items due before {window_end}")

        async with self.session_factory() as session:
            followup_repo = FollowupRepository(session)
            task_repo = TaskRepository(session)

            followup_ids = [f.id for f in await followup_repo.due_between(now, window_end, reminded_before)]
            for followup_id in followup_ids:
                try:
                    followup = await followup_repo.get(followup_id)
                    if not await self.context.notifications.reminder(followup):
                        result.failed += 1
                        continue
                    followup.reminder_sent = True
                    followup.reminder_sent_at = now
                    await followup_repo.save(followup)
                    result.processed += 1
                except Exception as e:
                    logger.error(f"Reminder failed for followup {followup_id}: {e}")
                    await session.rollback()
                    result.failed += 1

            task_ids = [
                t.id for t in await task_repo.due_between(now, window_end, reminded_before)
                if reminders_enabled(t)
            ]
            for task_id in task_ids:
                try:
                    task = await task_repo.get(task_id)
                    if not await self.context.notifications.reminder(task):
                        result.failed += 1
                        continue
                    task.last_reminder_sent = now
                    await task_repo.save(task)
                    result.processed += 1
                except Exception as e:
                    logger.error(f"Reminder failed for task {task_id}: {e}")
                    await session.rollback()
                    result.failed += 1

        return self._finish(result)

    async def process_overdue(self) -> WorkerResult:
        """Mark past-due followups overdue and notify, at most once per re-notify gap."""
        result = WorkerResult(worker="overdue_sweep")
        now = self.context.now()
        renotify_cutoff = now - timedelta(hours=self.settings.OVERDUE_RENOTIFY_HOURS)

        def due_for_notice(item) -> bool:
            return item.overdue_notified_at is None or item.overdue_notified_at < renotify_cutoff

        async with self.session_factory() as session:
            followup_repo = FollowupRepository(session)
            task_repo = TaskRepository(session)

            followup_ids = [f.id for f in await followup_repo.overdue(now)]
            for followup_id in followup_ids:
                try:
                    followup = await followup_repo.get(followup_id)
                    followup.status = FollowupStatus.OVERDUE.value
                    if due_for_notice(followup):
                        if await self.context.notifications.overdue(followup):
                            followup.overdue_notified_at = now
                            result.processed += 1
                        else:
                            result.failed += 1
                    else:
                        result.skipped += 1
                    await followup_repo.save(followup)
                except Exception as e:
                    logger.error(f"Overdue processing failed for followup {followup_id}: {e}")
                    await session.rollback()
                    result.failed += 1

            task_ids = [t.id for t in await task_repo.overdue(now)]
            for task_id in task_ids:
                try:
                    task = await task_repo.get(task_id)
                    if task.followup_id:
                        followup = await followup_repo.get(task.followup_id)
                        if (followup and followup.status not in TERMINAL_FOLLOWUP_STATUSES
                                and followup.status != FollowupStatus.OVERDUE.value):
                            followup.status = FollowupStatus.OVERDUE.value
                            await followup_repo.save(followup)
                    if not due_for_notice(task):
                        result.skipped += 1
                        continue
                    if await self.context.notifications.overdue(task):
                        task.overdue_notified_at = now
                        await task_repo.save(task)
                        result.processed += 1
                    else:
                        result.failed += 1
                except Exception as e:
                    logger.error(f"Overdue processing failed for task {task_id}: {e}")
                    await session.rollback()
                    result.failed += 1

        self.context.scheduler.refresh(now)
        result.details["overdue_followups"] = len(followup_ids)
        result.details["overdue_tasks"] = len(task_ids)
        return self._finish(result)

    async def send_daily_digest(self) -> WorkerResult:
        result = WorkerResult(worker="daily_digest")
        now = self.context.now()
        end_of_day = datetime.combine(now.date(), time.max)

        async with self.session_factory() as session:
            user_repo = UserRepository(session)
            task_repo = TaskRepository(session)
            followup_repo = FollowupRepository(session)

            user_ids = [u.id for u in await user_repo.digest_recipients()]
            for user_id in user_ids:
                try:
                    due_today = (
                        await task_repo.upcoming(now, end_of_day, assigned_to=user_id)
                        + await followup_repo.upcoming(now, end_of_day, assigned_to=user_id)
                    )
                    overdue = (
                        await task_repo.overdue(now, assigned_to=user_id)
                        + await followup_repo.overdue(now, assigned_to=user_id)
                    )
                    if await self.context.notifications.digest(user_id, due_today, overdue):
                        result.processed += 1
                    else:
                        result.failed += 1
                except Exception as e:
                    logger.error(f"Digest failed for user {user_id}: {e}")
                    result.failed += 1

        return self._finish(result)

    async def _escalation_target(self, user_repo: UserRepository, item) -> uuid.UUID:
        manager = await user_repo.get_manager(item.assigned_to) if item.assigned_to else None
        if manager is None:
            raise EscalationTargetUnresolvable(item.id, item.assigned_to)
        return manager.id

    async def process_escalations(self) -> WorkerResult:
        """Escalate neglected items to the assignee's manager; skip when there is none."""
        result = WorkerResult(worker="escalation")
        now = self.context.now()
        high_cutoff = now - timedelta(hours=self.settings.ESCALATION_HIGH_PRIORITY_HOURS)
        medium_cutoff = now - timedelta(hours=self.settings.ESCALATION_MEDIUM_PRIORITY_HOURS)
        renotify_cutoff = now - timedelta(hours=self.settings.ESCALATION_RENOTIFY_HOURS)

        async with self.session_factory() as session:
            user_repo = UserRepository(session)
            followup_repo = FollowupRepository(session)
            task_repo = TaskRepository(session)
            activity_repo = ActivityLogRepository(session)
            task_service = TaskService(session, self.context)

            followup_ids = [f.id for f in await followup_repo.escalation_candidates(
                high_cutoff, medium_cutoff, self.settings.ESCALATION_RESCHEDULE_THRESHOLD, renotify_cutoff
            )]
            for followup_id in followup_ids:
                try:
                    followup = await followup_repo.get(followup_id)
                    manager_id = await self._escalation_target(user_repo, followup)
                    reason = escalation_reason(followup, now, self.settings)
                    if not await self.context.notifications.escalation(followup, manager_id, reason):
                        result.failed += 1
                        continue
                    followup.escalated_at = now
                    followup.escalated_to = manager_id
                    await followup_repo.save(followup)
                    await activity_repo.log(
                        action=Actions.FOLLOWUP_ESCALATED,
                        entity_type="followup",
                        entity_id=followup.id,
                        actor_id=None,
                        description=f"Followup '{followup.title}' escalated: {reason}",
                        meta_data={"escalated_to": str(manager_id), "reason": reason}
                    )
                    result.processed += 1
                except EscalationTargetUnresolvable as e:
                    logger.warning(e.message)
                    result.skipped += 1
                except Exception as e:
                    logger.error(f"Escalation failed for followup {followup_id}: {e}")
                    await session.rollback()
                    result.failed += 1

            task_ids = [t.id for t in await task_repo.escalation_candidates(high_cutoff, medium_cutoff, renotify_cutoff)]
            for task_id in task_ids:
                try:
                    task = await task_repo.get(task_id)
                    manager_id = await self._escalation_target(user_repo, task)
                    reason = escalation_reason(task, now, self.settings)
                    escalated = await task_service.escalate_task(
                        task_id, manager_id, reason, None, require_delivery=True
                    )
                    if escalated is None:
                        result.failed += 1
                        continue
                    result.processed += 1
                except EscalationTargetUnresolvable as e:
                    logger.warning(e.message)
                    result.skipped += 1
                except Exception as e:
                    logger.error(f"Escalation failed for task {task_id}: {e}")
                    await session.rollback()
                    result.failed += 1

        return self._finish(result)

    async def cleanup_stale_reminders(self) -> WorkerResult:
        """Clear old reminder flags so long-open items become eligible again."""
        result = WorkerResult(worker="cleanup")
        cutoff = self.context.now() - timedelta(days=self.settings.STALE_REMINDER_DAYS)

        async with self.session_factory() as session:
            followup_repo = FollowupRepository(session)
            task_repo = TaskRepository(session)

            for followup in await followup_repo.stale_reminders(cutoff):
                followup.reminder_sent = False
                followup.reminder_sent_at = None
                session.add(followup)
                result.processed += 1
            for task in await task_repo.stale_reminders(cutoff):
                task.last_reminder_sent = None
                session.add(task)
                result.processed += 1
            await session.commit()

        return self._finish(result)

    async def process_sequence_exits(self) -> WorkerResult:
        result = WorkerResult(worker="sequence_exits")

        async with self.session_factory() as session:
            service = SequenceService(session, self.context)
            enrollment_ids = [e.id for e in await service.inactive_enrollments()]
            for enrollment_id in enrollment_ids:
                try:
                    await service.exit_enrollment(enrollment_id, "inactivity", None)
                    result.processed += 1
                except Exception as e:
                    logger.error(f"Inactivity exit failed for enrollment {enrollment_id}: {e}")
                    await session.rollback()
                    result.failed += 1

        return self._finish(result)


def build_workers(processor: ReminderProcessor, settings: Optional[Settings] = None) -> List[PeriodicWorker]:
    """The worker table; schedules come from settings."""
    settings = settings or processor.settings
    clock = processor.context.clock
    return [
        PeriodicWorker(
            "immediate_reminders", processor.send_immediate_reminders,
            interval=timedelta(minutes=settings.IMMEDIATE_REMINDER_INTERVAL_MINUTES), clock=clock
        ),
        PeriodicWorker(
            "overdue_sweep", processor.process_overdue,
            interval=timedelta(minutes=settings.OVERDUE_SWEEP_INTERVAL_MINUTES), clock=clock
        ),
        PeriodicWorker(
            "daily_digest", processor.send_daily_digest,
            daily_at=time(settings.DAILY_DIGEST_HOUR, settings.DAILY_DIGEST_MINUTE), clock=clock
        ),
        PeriodicWorker(
            "escalation", processor.process_escalations,
            interval=timedelta(minutes=settings.ESCALATION_INTERVAL_MINUTES), clock=clock
        ),
        PeriodicWorker(
            "cleanup", processor.cleanup_stale_reminders,
            interval=timedelta(minutes=settings.CLEANUP_INTERVAL_MINUTES), clock=clock
        ),
        PeriodicWorker(
            "sequence_exits", processor.process_sequence_exits,
            interval=timedelta(minutes=settings.SEQUENCE_EXIT_INTERVAL_MINUTES), clock=clock
        ),
    ]
