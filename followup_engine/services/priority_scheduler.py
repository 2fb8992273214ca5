"""
Priority scheduler - a derived, per-assignee ranking of workable tasks.

The index is process-local and rebuildable from the store; it is never the
record of truth. Each assignee's entries are kept sorted so the next task is
always the head of the list.
"""
import bisect
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.clock import Clock, utcnow
from followup_engine.models.task import Task
from followup_engine.repositories.task_repo import TaskRepository
from followup_engine.services.task_states import is_workable

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS = {
    "urgent": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}


def priority_weight(priority: str) -> int:
    return PRIORITY_WEIGHTS.get(priority, PRIORITY_WEIGHTS["medium"])


def urgency_score(due_date: Optional[datetime], now: datetime) -> int:
    if due_date is None:
        return 0
    remaining = due_date - now
    if remaining < timedelta(0):
        return 100
    if remaining <= timedelta(hours=4):
        return 50
    if remaining <= timedelta(hours=24):
        return 25
    if remaining <= timedelta(days=3):
        return 10
    return 1


def priority_score(priority: str, due_date: Optional[datetime], now: datetime) -> int:
    return priority_weight(priority) * 10 + urgency_score(due_date, now)


@dataclass(order=True)
class RankedTask:
    sort_key: Tuple = field(compare=True)
    task_id: uuid.UUID = field(compare=False)
    assignee_id: uuid.UUID = field(compare=False)
    score: int = field(compare=False)
    priority: str = field(compare=False)
    due_date: Optional[datetime] = field(compare=False)
    seq: int = field(compare=False)


class PriorityScheduler:
    """
    Per-assignee ranking of workable tasks.

    Ties on score break on earliest due date (tasks without one last), then
    on insertion order, which survives re-indexing.
    """

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self._queues: Dict[uuid.UUID, List[RankedTask]] = {}
        self._entries: Dict[uuid.UUID, RankedTask] = {}
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def _make_entry(self, task: Task, seq: int, now: datetime) -> RankedTask:
        score = priority_score(task.priority, task.due_date, now)
        no_due = task.due_date is None
        sort_key = (-score, no_due, task.due_date or datetime.max, seq)
        return RankedTask(
            sort_key=sort_key,
            task_id=task.id,
            assignee_id=task.assigned_to,
            score=score,
            priority=task.priority,
            due_date=task.due_date,
            seq=seq,
        )

    def _discard(self, task_id: uuid.UUID) -> Optional[RankedTask]:
        entry = self._entries.pop(task_id, None)
        if entry is None:
            return None
        queue = self._queues.get(entry.assignee_id, [])
        pos = bisect.bisect_left(queue, entry)
        if pos < len(queue) and queue[pos].task_id == task_id:
            queue.pop(pos)
        else:
            queue.remove(entry)
        if not queue:
            self._queues.pop(entry.assignee_id, None)
        return entry

    def index(self, task: Task, now: Optional[datetime] = None) -> Optional[RankedTask]:
        """(Re)insert a task; tasks that are not workable are dropped instead."""
        previous = self._discard(task.id)
        if not is_workable(task):
            return None
        seq = previous.seq if previous else next(self._seq)
        entry = self._make_entry(task, seq, now or self.clock())
        bisect.insort(self._queues.setdefault(task.assigned_to, []), entry)
        self._entries[task.id] = entry
        return entry

    def remove(self, task_id: uuid.UUID, assignee_id: Optional[uuid.UUID] = None) -> bool:
        return self._discard(task_id) is not None

    def next(self, assignee_id: uuid.UUID) -> Optional[RankedTask]:
        queue = self._queues.get(assignee_id)
        return queue[0] if queue else None

    def ranked(self, assignee_id: uuid.UUID) -> List[RankedTask]:
        return list(self._queues.get(assignee_id, []))

    def contains(self, task_id: uuid.UUID) -> bool:
        return task_id in self._entries

    def refresh(self, now: Optional[datetime] = None) -> None:
        """Re-score every entry; urgency drifts as due dates approach."""
        now = now or self.clock()
        for assignee_id, queue in list(self._queues.items()):
            rescored = []
            for entry in queue:
                score = priority_score(entry.priority, entry.due_date, now)
                entry.score = score
                entry.sort_key = (-score, entry.due_date is None, entry.due_date or datetime.max, entry.seq)
                rescored.append(entry)
            rescored.sort()
            self._queues[assignee_id] = rescored

    def clear(self) -> None:
        self._queues.clear()
        self._entries.clear()

    async def rebuild_from(self, session: AsyncSession) -> int:
        """Drop the index and re-index every open task from the store."""
        self.clear()
        now = self.clock()
        tasks = await TaskRepository(session).open_tasks()
        for task in tasks:
            self.index(task, now)
        logger.info(f"Priority index rebuilt: {len(self._entries)} workable tasks across {len(self._queues)} assignees")
        return len(self._entries)
