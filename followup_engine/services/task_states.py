"""
Task status state machine.

``completed`` is terminal. Every mutation helper either applies the whole
change or raises before touching the task.
"""
from datetime import datetime
from typing import List, Optional

from followup_engine.core.exceptions import raise_invalid_transition, raise_validation_error
from followup_engine.models.enums import TaskStatus
from followup_engine.models.task import Task

P, IP, C, X, B, H, D = (
    TaskStatus.PENDING.value,
    TaskStatus.IN_PROGRESS.value,
    TaskStatus.COMPLETED.value,
    TaskStatus.CANCELLED.value,
    TaskStatus.BLOCKED.value,
    TaskStatus.ON_HOLD.value,
    TaskStatus.DEFERRED.value,
)

VALID_TRANSITIONS = {
    P: {IP, X, B, H},
    IP: {C, X, B, H, D},
    C: set(),
    X: {P},
    B: {P, IP, X},
    H: {P, IP, X},
    D: {P, X},
}


def is_valid_transition(current: str, target: str) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def can_start(task: Task) -> bool:
    """A task can start only with no blockers and a legal move to in_progress."""
    if task.blocked_by:
        return False
    return is_valid_transition(task.status, IP)


def is_workable(task: Task) -> bool:
    """Whether the task belongs in an agent's work queue."""
    return (
        task.deleted_at is None
        and task.status in (P, IP)
        and not task.blocked_by
    )


def check_transition(task: Task, target: str, blocked_by: Optional[List[str]] = None) -> None:
    """
    Raise InvalidStateTransition unless task may move to target.
    blocked_by, when given, replaces the task's current blockers in the check.
    """
    if target not in VALID_TRANSITIONS:
        raise_validation_error(f"Unknown status '{target}'", "status")
    if task.status == C:
        raise_invalid_transition(task.status, target, "completed tasks are terminal")
    if not is_valid_transition(task.status, target):
        raise_invalid_transition(task.status, target)
    blockers = task.blocked_by if blocked_by is None else blocked_by
    if target == IP and blockers:
        raise_invalid_transition(
            task.status, target, f"blocked by {len(blockers)} unfinished task(s)"
        )


def apply_transition(task: Task, target: str, now: datetime, user_id=None) -> None:
    """
    Move task to target. Same-status requests are no-ops.
    Completion must go through mark_completed so the outcome fields are set together.
    """
    if target == task.status:
        return
    if target == C:
        mark_completed(task, now, user_id=user_id)
        return
    check_transition(task, target)
    task.status = target
    if target == IP and task.started_at is None:
        task.started_at = now
        task.started_by = user_id


def mark_completed(
    task: Task,
    now: datetime,
    outcome: Optional[str] = None,
    notes: Optional[str] = None,
    user_id=None
) -> None:
    """Atomically complete a task. Requires status in_progress."""
    check_transition(task, C)

    completed_at = now
    if task.started_at and completed_at < task.started_at:
        completed_at = task.started_at

    task.status = C
    task.completed_at = completed_at
    task.completed_by = user_id
    task.outcome = outcome
    task.outcome_notes = notes
    task.progress_percentage = 100
    if task.started_at:
        task.actual_duration = int((completed_at - task.started_at).total_seconds() // 60)


def validate_progress(task: Task, progress: int) -> None:
    if progress < 0 or progress > 100:
        raise_validation_error("Progress must be between 0 and 100", "progress_percentage")
    if progress == 100 and task.status != C:
        raise_validation_error("Progress can only reach 100 when the task is completed", "progress_percentage")
