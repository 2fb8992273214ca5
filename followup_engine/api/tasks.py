"""
Tasks API routes.
"""
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.api.deps import get_context, get_current_user
from followup_engine.core.context import EngineContext
from followup_engine.database import get_session
from followup_engine.models.enums import Priority
from followup_engine.models.user import User
from followup_engine.schemas.common import ERROR_RESPONSES, ActivityEntry, MessageResponse, PaginatedResponse
from followup_engine.schemas.task import (
    BulkTaskCreate, BulkTaskResponse, NextTaskResponse, TaskAssign, TaskComplete,
    TaskCreate, TaskEscalate, TaskFromCall, TaskFromFollowup, TaskPriorityUpdate,
    TaskResponse, TaskStatistics, TaskUpdate, UserReference
)
from followup_engine.services.task_service import TaskService

router = APIRouter(prefix="/api/tasks", tags=["tasks"], responses=ERROR_RESPONSES)


@router.post("/", response_model=TaskResponse, status_code=201)
async def create_task(
    task_data: TaskCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Create a task. Defaults to the caller as assignee."""
    service = TaskService(session, context)
    return await service.create_task(task_data.model_dump(), current_user.id)


@router.get("/", response_model=PaginatedResponse[TaskResponse])
async def list_tasks(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    assigned_to: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    type: Optional[str] = None,
    lead_id: Optional[uuid.UUID] = None,
    due_before: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """List tasks with filtering and pagination."""
    service = TaskService(session, context)
    return await service.list_tasks(
        page=page,
        limit=limit,
        assigned_to=assigned_to,
        status=status,
        priority=priority,
        type=type,
        lead_id=lead_id,
        due_before=due_before
    )


@router.get("/next", response_model=NextTaskResponse)
async def get_next_task(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Highest-ranked workable task for the caller."""
    service = TaskService(session, context)
    task, score = await service.get_next_task(current_user.id)
    return {"task": task, "score": score}


@router.get("/overdue", response_model=List[TaskResponse])
async def get_overdue_tasks(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.get_overdue_tasks(current_user.id)


@router.get("/upcoming", response_model=List[TaskResponse])
async def get_upcoming_tasks(
    days: int = Query(7, ge=1, le=90),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.get_upcoming_tasks(current_user.id, days)


@router.get("/priority/{priority}", response_model=List[TaskResponse])
async def get_tasks_by_priority(
    priority: Priority,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """The caller's open tasks of one priority, soonest due first."""
    service = TaskService(session, context)
    return await service.get_tasks_by_priority(priority.value, current_user.id)


@router.get("/stats", response_model=TaskStatistics)
async def get_task_statistics(
    timeframe: str = "month",
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Counts by status and completion rate for the caller."""
    service = TaskService(session, context)
    return await service.get_task_statistics(current_user.id, timeframe)


@router.post("/from-call", response_model=TaskResponse, status_code=201)
async def create_task_from_call(
    data: TaskFromCall,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Create the followup task for a finished call."""
    service = TaskService(session, context)
    overrides = data.overrides.model_dump() if data.overrides else None
    return await service.create_task_from_call_outcome(data.call_id, data.outcome, current_user.id, overrides)


@router.post("/from-followup", response_model=TaskResponse, status_code=201)
async def create_task_from_followup(
    data: TaskFromFollowup,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    overrides = data.overrides.model_dump() if data.overrides else None
    return await service.create_task_from_followup(data.followup_id, current_user.id, overrides)


@router.post("/bulk", response_model=BulkTaskResponse, status_code=201)
async def bulk_create_tasks(
    data: BulkTaskCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Create many tasks; failures are reported per item."""
    service = TaskService(session, context)
    return await service.bulk_create_tasks([t.model_dump() for t in data.tasks], current_user.id)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.get_task(task_id)


@router.get("/{task_id}/activity", response_model=List[ActivityEntry])
async def get_task_activity(
    task_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Audit trail for a task, newest first."""
    service = TaskService(session, context)
    return await service.get_task_activity(task_id, limit)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: uuid.UUID,
    task_data: TaskUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.update_task(task_id, task_data.model_dump(exclude_unset=True), current_user.id)


@router.delete("/{task_id}", response_model=MessageResponse)
async def delete_task(
    task_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    await service.delete_task(task_id, current_user.id)
    return {"message": "Task deleted"}


@router.post("/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    task_id: uuid.UUID,
    data: TaskAssign,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.assign_task(task_id, data.assigned_to, current_user.id, data.reason)


@router.post("/{task_id}/start", response_model=TaskResponse)
async def start_task(
    task_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.start_task(task_id, current_user.id)


@router.post("/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    task_id: uuid.UUID,
    data: TaskComplete,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Complete a task; unblocks dependents and spawns the next recurrence."""
    service = TaskService(session, context)
    return await service.complete_task(task_id, data.outcome, data.notes, current_user.id)


@router.post("/{task_id}/escalate", response_model=TaskResponse)
async def escalate_task(
    task_id: uuid.UUID,
    data: TaskEscalate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.escalate_task(task_id, data.escalate_to, data.reason, current_user.id)


@router.patch("/{task_id}/priority", response_model=TaskResponse)
async def update_task_priority(
    task_id: uuid.UUID,
    data: TaskPriorityUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.update_task_priority(task_id, data.priority, current_user.id, data.reason)


@router.post("/{task_id}/collaborators", response_model=TaskResponse)
async def add_collaborator(
    task_id: uuid.UUID,
    data: UserReference,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.add_collaborator(task_id, data.user_id, current_user.id)


@router.post("/{task_id}/watchers", response_model=TaskResponse)
async def add_watcher(
    task_id: uuid.UUID,
    data: UserReference,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = TaskService(session, context)
    return await service.add_watcher(task_id, data.user_id, current_user.id)
