import asyncio
from datetime import time, timedelta

import pytest
import pytest_asyncio

from followup_engine.core.exceptions import NotFoundError, ValidationError
from followup_engine.models.followup import Followup
from followup_engine.models.sequence import SequenceEnrollment
from followup_engine.models.task import Task
from followup_engine.schemas.worker import WorkerResult
from followup_engine.services.sequence_service import SequenceService
from followup_engine.workers.periodic import PeriodicWorker, WorkerRunner
from followup_engine.workers.reminders import ReminderProcessor, build_workers, escalation_reason

from tests.conftest import NOW


@pytest.fixture
def processor(context, session_factory):
    return ReminderProcessor(context, session_factory)


async def add(session, obj):
    session.add(obj)
    await session.commit()
    await session.refresh(obj)
    return obj


async def reload(session_factory, model, id):
    async with session_factory() as fresh:
        return await fresh.get(model, id)


def followup_for(lead, assignee, when, **extra):
    return Followup(lead_id=lead.id, assigned_to=assignee.id, title="Check in", scheduled_for=when, **extra)


def task_for(assignee, due, **extra):
    return Task(title="Send pricing", assigned_to=assignee.id, created_by=assignee.id, due_date=due, **extra)


# ----------------------------------------------------------------------
# PeriodicWorker / WorkerRunner
# ----------------------------------------------------------------------

def test_worker_needs_exactly_one_schedule():
    async def noop():
        return WorkerResult(worker="noop")

    with pytest.raises(ValidationError):
        PeriodicWorker("noop", noop)
    with pytest.raises(ValidationError):
        PeriodicWorker("noop", noop, interval=timedelta(minutes=1), daily_at=time(8, 0))


def test_seconds_until_next():
    async def noop():
        return WorkerResult(worker="noop")

    every_five = PeriodicWorker("every_five", noop, interval=timedelta(minutes=5))
    assert every_five.seconds_until_next(NOW) == 300

    morning = PeriodicWorker("morning", noop, daily_at=time(8, 0))
    assert morning.seconds_until_next(NOW) == 22 * 3600
    assert morning.seconds_until_next(NOW.replace(hour=7, minute=30)) == 1800


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(clock):
    release = asyncio.Event()
    calls = []

    async def slow():
        calls.append(1)
        await release.wait()
        return WorkerResult(worker="slow", processed=1)

    worker = PeriodicWorker("slow", slow, interval=timedelta(minutes=1), clock=clock)
    runner = WorkerRunner([worker])
    first = asyncio.create_task(worker.run_once())
    await asyncio.sleep(0)

    assert worker.running is True
    assert await worker.run_once() is None
    skipped = await runner.run_once("slow")
    assert skipped.skipped == 1
    assert skipped.details == {"reason": "already running"}

    release.set()
    result = await first
    assert result.processed == 1
    assert calls == [1]
    assert worker.running is False
    assert worker.last_run_at == NOW


@pytest.mark.asyncio
async def test_guard_cleared_after_failure():
    async def broken():
        raise RuntimeError("boom")

    worker = PeriodicWorker("broken", broken, interval=timedelta(minutes=1))

    with pytest.raises(RuntimeError):
        await worker.run_once()
    assert worker.running is False
    assert worker.last_run_at is not None


@pytest.mark.asyncio
async def test_runner_start_stop_and_lookup():
    async def noop():
        return WorkerResult(worker="noop")

    runner = WorkerRunner([PeriodicWorker("noop", noop, interval=timedelta(hours=1))])

    with pytest.raises(NotFoundError):
        runner.get("missing")

    runner.start()
    assert runner.started is True
    await runner.stop()
    assert runner.started is False
    assert runner.status()[0]["name"] == "noop"


@pytest.mark.asyncio
async def test_build_workers_table(processor):
    workers = {w.name: w for w in build_workers(processor)}

    assert set(workers) == {
        "immediate_reminders", "overdue_sweep", "daily_digest",
        "escalation", "cleanup", "sequence_exits",
    }
    assert workers["immediate_reminders"].interval == timedelta(minutes=5)
    assert workers["overdue_sweep"].interval == timedelta(minutes=30)
    assert workers["daily_digest"].daily_at == time(8, 0)
    assert workers["escalation"].interval == timedelta(hours=1)


# ----------------------------------------------------------------------
# Reminders
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_immediate_reminders_sent_once(processor, session, session_factory, dispatcher, lead, agent):
    followup = await add(session, followup_for(lead, agent, NOW + timedelta(minutes=10)))
    task = await add(session, task_for(agent, NOW + timedelta(minutes=5)))
    await add(session, followup_for(lead, agent, NOW + timedelta(hours=2)))

    result = await processor.send_immediate_reminders()

    assert result.processed == 2
    assert {p["item_id"] for _, _, p in dispatcher.of_kind("reminder")} == {followup.id, task.id}
    stored = await reload(session_factory, Followup, followup.id)
    assert stored.reminder_sent is True
    assert stored.reminder_sent_at == NOW
    assert (await reload(session_factory, Task, task.id)).last_reminder_sent == NOW

    again = await processor.send_immediate_reminders()
    assert again.processed == 0
    assert len(dispatcher.of_kind("reminder")) == 2


@pytest.mark.asyncio
async def test_task_reminder_opt_out(processor, session, dispatcher, agent):
    await add(session, task_for(agent, NOW + timedelta(minutes=5), reminder_settings={"enabled": False}))

    result = await processor.send_immediate_reminders()

    assert result.processed == 0
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_failed_reminder_is_retried(processor, session, session_factory, dispatcher, lead, agent):
    followup = await add(session, followup_for(lead, agent, NOW + timedelta(minutes=10)))
    dispatcher.fail = True

    result = await processor.send_immediate_reminders()

    assert result.failed == 1
    assert (await reload(session_factory, Followup, followup.id)).reminder_sent is False

    dispatcher.fail = False
    assert (await processor.send_immediate_reminders()).processed == 1


# ----------------------------------------------------------------------
# Overdue sweep
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_overdue_task_marks_linked_followup(processor, session, session_factory, clock, dispatcher, lead, agent):
    followup = await add(session, followup_for(lead, agent, NOW + timedelta(days=1)))
    task = await add(session, task_for(agent, NOW - timedelta(days=1), followup_id=followup.id))

    result = await processor.process_overdue()

    assert result.processed == 1
    assert result.details == {"overdue_followups": 0, "overdue_tasks": 1}
    assert (await reload(session_factory, Followup, followup.id)).status == "overdue"
    assert [p["item_id"] for _, _, p in dispatcher.of_kind("overdue")] == [task.id]

    clock.advance(hours=3)
    rerun = await processor.process_overdue()
    assert rerun.skipped == 1
    assert len(dispatcher.of_kind("overdue")) == 1

    clock.advance(hours=2)
    await processor.process_overdue()
    assert len(dispatcher.of_kind("overdue")) == 2


@pytest.mark.asyncio
async def test_past_due_followup_goes_overdue(processor, session, session_factory, dispatcher, lead, agent):
    followup = await add(session, followup_for(lead, agent, NOW - timedelta(hours=1)))
    done = await add(session, followup_for(lead, agent, NOW - timedelta(hours=1), status="completed"))

    await processor.process_overdue()

    stored = await reload(session_factory, Followup, followup.id)
    assert stored.status == "overdue"
    assert stored.overdue_notified_at == NOW
    assert (await reload(session_factory, Followup, done.id)).status == "completed"
    assert len(dispatcher.of_kind("overdue")) == 1


# ----------------------------------------------------------------------
# Escalation
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_overdue_high_priority_escalates_to_manager(
    processor, session, session_factory, dispatcher, lead, agent, manager
):
    followup = await add(session, followup_for(lead, agent, NOW - timedelta(hours=3), priority="high"))
    task = await add(session, task_for(agent, NOW - timedelta(hours=3), priority="urgent"))

    result = await processor.process_escalations()

    assert result.processed == 2
    sent = dispatcher.of_kind("escalation")
    assert {recipient for _, recipient, _ in sent} == {manager.id}
    reasons = {p["item_id"]: p["reason"] for _, _, p in sent}
    assert reasons[followup.id] == "High priority followup is 3 hours overdue"
    assert reasons[task.id] == "Urgent priority task is 3 hours overdue"

    stored = await reload(session_factory, Followup, followup.id)
    assert stored.escalated_to == manager.id
    stored_task = await reload(session_factory, Task, task.id)
    assert stored_task.escalated_to == manager.id
    assert stored_task.escalation_reason == reasons[task.id]

    again = await processor.process_escalations()
    assert again.processed == 0


@pytest.mark.asyncio
async def test_undelivered_task_escalation_is_retried(
    processor, session, session_factory, dispatcher, agent, manager
):
    task = await add(session, task_for(agent, NOW - timedelta(hours=3), priority="high"))
    dispatcher.fail = True

    result = await processor.process_escalations()

    assert result.processed == 0
    assert result.failed == 1
    stored = await reload(session_factory, Task, task.id)
    assert stored.escalated_at is None
    assert stored.escalated_to is None

    dispatcher.fail = False
    again = await processor.process_escalations()

    assert again.processed == 1
    assert [recipient for _, recipient, _ in dispatcher.of_kind("escalation")] == [manager.id]
    stored = await reload(session_factory, Task, task.id)
    assert stored.escalated_to == manager.id


@pytest.mark.asyncio
async def test_escalation_skips_assignee_without_manager(processor, session, dispatcher, lead, manager):
    await add(session, followup_for(lead, manager, NOW - timedelta(hours=3), priority="high"))

    result = await processor.process_escalations()

    assert result.skipped == 1
    assert result.processed == 0
    assert dispatcher.of_kind("escalation") == []


@pytest.mark.asyncio
async def test_reschedule_count_escalates(processor, session, dispatcher, context, lead, agent):
    followup = await add(session, followup_for(lead, agent, NOW + timedelta(days=1), reschedule_count=3))

    await processor.process_escalations()

    assert dispatcher.of_kind("escalation")[0][2]["reason"] == "Followup has been rescheduled 3 times"
    assert escalation_reason(followup, NOW, context.settings) == "Followup has been rescheduled 3 times"


@pytest.mark.asyncio
async def test_escalation_reason_fallback(context, lead, agent):
    followup = followup_for(lead, agent, NOW + timedelta(days=1), priority="low")
    assert escalation_reason(followup, NOW, context.settings) == "Automatic escalation based on business rules"


# ----------------------------------------------------------------------
# Digest, cleanup, sequence exits
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_daily_digest(processor, session, dispatcher, users, lead, agent):
    await add(session, followup_for(lead, agent, NOW + timedelta(hours=3)))
    await add(session, task_for(agent, NOW + timedelta(hours=1)))
    await add(session, task_for(agent, NOW - timedelta(days=2)))
    await add(session, followup_for(lead, agent, NOW + timedelta(days=1)))

    result = await processor.send_daily_digest()

    assert result.processed == 3
    digests = {recipient: payload for _, recipient, payload in dispatcher.of_kind("digest")}
    assert len(digests[agent.id]["due_today"]) == 2
    assert len(digests[agent.id]["overdue"]) == 1
    assert digests[users["manager"].id]["message"] == "0 due today, 0 overdue"


@pytest.mark.asyncio
async def test_cleanup_stale_reminders(processor, session, session_factory, lead, agent):
    stale = NOW - timedelta(days=31)
    followup = await add(session, followup_for(
        lead, agent, NOW + timedelta(days=1), reminder_sent=True, reminder_sent_at=stale
    ))
    recent = await add(session, followup_for(
        lead, agent, NOW + timedelta(days=1), reminder_sent=True, reminder_sent_at=NOW - timedelta(days=1)
    ))
    task = await add(session, task_for(agent, NOW + timedelta(days=1), last_reminder_sent=stale))

    result = await processor.cleanup_stale_reminders()

    assert result.processed == 2
    stored = await reload(session_factory, Followup, followup.id)
    assert stored.reminder_sent is False
    assert stored.reminder_sent_at is None
    assert (await reload(session_factory, Followup, recent.id)).reminder_sent is True
    assert (await reload(session_factory, Task, task.id)).last_reminder_sent is None


@pytest_asyncio.fixture
async def quiet_enrollment(session, context, lead, agent):
    service = SequenceService(session, context)
    sequence = await service.create_sequence({
        "name": "Quiet",
        "steps": [{"order": 1, "title": "Touch base", "timing": {"delay": 30, "unit": "days"}}],
        "exit_conditions": {"inactivity_days": 7},
    }, agent.id)
    return await service.enroll(sequence.id, lead.id, agent.id)


@pytest.mark.asyncio
async def test_inactive_enrollment_exits(processor, session_factory, clock, quiet_enrollment):
    assert (await processor.process_sequence_exits()).processed == 0

    clock.advance(days=8)
    result = await processor.process_sequence_exits()

    assert result.processed == 1
    stored = await reload(session_factory, SequenceEnrollment, quiet_enrollment.id)
    assert stored.status == "exited"
    assert stored.exit_reason == "inactivity"
