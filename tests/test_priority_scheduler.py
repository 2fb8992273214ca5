import uuid
from datetime import datetime, timedelta

import pytest

from followup_engine.models.task import Task
from followup_engine.services.priority_scheduler import PriorityScheduler, priority_score, urgency_score

NOW = datetime(2025, 3, 5, 10, 0)
AGENT = uuid.uuid4()


def make_task(priority="medium", due=None, status="pending", **kwargs) -> Task:
    return Task(
        title=f"{priority} task",
        assigned_to=kwargs.pop("assigned_to", AGENT),
        created_by=AGENT,
        priority=priority,
        due_date=due,
        status=status,
        **kwargs
    )


@pytest.fixture
def scheduler():
    return PriorityScheduler(clock=lambda: NOW)


@pytest.mark.parametrize("due", [
    None,
    NOW - timedelta(hours=1),
    NOW + timedelta(hours=2),
    NOW + timedelta(hours=12),
    NOW + timedelta(days=2),
    NOW + timedelta(days=10),
])
def test_score_is_monotonic_in_priority(due):
    scores = [priority_score(p, due, NOW) for p in ("urgent", "high", "medium", "low")]
    assert scores == sorted(scores, reverse=True)
    assert len(set(scores)) == 4


@pytest.mark.parametrize("due, expected", [
    (None, 0),
    (NOW - timedelta(minutes=1), 100),
    (NOW + timedelta(hours=4), 50),
    (NOW + timedelta(hours=5), 25),
    (NOW + timedelta(hours=24), 25),
    (NOW + timedelta(days=3), 10),
    (NOW + timedelta(days=4), 1),
])
def test_urgency_buckets(due, expected):
    assert urgency_score(due, NOW) == expected


def test_next_returns_highest_score(scheduler):
    low = make_task("low", NOW + timedelta(days=5))
    urgent = make_task("urgent", NOW + timedelta(days=5))
    overdue_medium = make_task("medium", NOW - timedelta(hours=2))
    for task in (low, urgent, overdue_medium):
        scheduler.index(task)

    ranked = [entry.task_id for entry in scheduler.ranked(AGENT)]
    assert ranked == [overdue_medium.id, urgent.id, low.id]
    assert scheduler.next(AGENT).task_id == overdue_medium.id


def test_ties_break_on_due_date_then_insertion_order(scheduler):
    later = make_task("high", NOW + timedelta(days=6))
    sooner = make_task("high", NOW + timedelta(days=5))
    no_due_first = make_task("high", None)
    no_due_second = make_task("high", None)
    for task in (later, sooner, no_due_first, no_due_second):
        scheduler.index(task)

    # no due date scores lower (urgency 0) than a distant due date (urgency 1)
    ranked = [entry.task_id for entry in scheduler.ranked(AGENT)]
    assert ranked == [sooner.id, later.id, no_due_first.id, no_due_second.id]


def test_reindex_keeps_insertion_order(scheduler):
    first = make_task("medium", None)
    second = make_task("medium", None)
    scheduler.index(first)
    scheduler.index(second)

    scheduler.index(first)

    assert [e.task_id for e in scheduler.ranked(AGENT)] == [first.id, second.id]
    assert len(scheduler) == 2


def test_priority_change_moves_task(scheduler):
    a = make_task("low", None)
    b = make_task("medium", None)
    scheduler.index(a)
    scheduler.index(b)
    assert scheduler.next(AGENT).task_id == b.id

    a.priority = "urgent"
    scheduler.index(a)
    assert scheduler.next(AGENT).task_id == a.id


def test_reassignment_moves_task_between_queues(scheduler):
    other = uuid.uuid4()
    task = make_task("high", None)
    scheduler.index(task)

    task.assigned_to = other
    scheduler.index(task)

    assert scheduler.next(AGENT) is None
    assert scheduler.next(other).task_id == task.id


def test_unworkable_tasks_are_not_indexed(scheduler):
    blocked = make_task("urgent", None, blocked_by=[str(uuid.uuid4())])
    on_hold = make_task("urgent", None, status="on_hold")
    assert scheduler.index(blocked) is None
    assert scheduler.index(on_hold) is None
    assert scheduler.next(AGENT) is None


def test_completed_task_drops_out_on_reindex(scheduler):
    task = make_task("high", None)
    scheduler.index(task)
    task.status = "completed"
    scheduler.index(task)
    assert not scheduler.contains(task.id)


def test_remove(scheduler):
    task = make_task("high", None)
    scheduler.index(task)
    assert scheduler.remove(task.id, AGENT) is True
    assert scheduler.remove(task.id, AGENT) is False
    assert scheduler.next(AGENT) is None


def test_refresh_rescoring_as_time_passes(scheduler):
    soon = make_task("low", NOW + timedelta(days=2))
    steady = make_task("medium", NOW + timedelta(days=10))
    scheduler.index(soon)
    scheduler.index(steady)
    assert scheduler.next(AGENT).task_id == steady.id

    scheduler.refresh(NOW + timedelta(days=2, hours=1))

    head = scheduler.next(AGENT)
    assert head.task_id == soon.id
    assert head.score == 10 + 100


@pytest.mark.asyncio
async def test_rebuild_from_store(session, context, agent):
    from followup_engine.services.task_service import TaskService

    service = TaskService(session, context)
    kept = await service.create_task({"title": "Open", "priority": "high"}, agent.id)
    blocked = await service.create_task({"title": "Blocked", "blocked_by": [kept.id]}, agent.id)
    assert blocked.blocked_by == [str(kept.id)]

    fresh = PriorityScheduler(clock=context.clock)
    count = await fresh.rebuild_from(session)

    assert count == 1
    assert fresh.next(agent.id).task_id == kept.id
