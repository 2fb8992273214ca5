"""
Followups API routes.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.api.deps import get_context, get_current_user
from followup_engine.core.context import EngineContext
from followup_engine.database import get_session
from followup_engine.models.user import User
from followup_engine.schemas.common import ERROR_RESPONSES, ActivityEntry, PaginatedResponse
from followup_engine.schemas.followup import (
    BulkFollowupCreate, BulkFollowupResponse, FollowupCancel, FollowupComplete, FollowupCreate,
    FollowupFromCall, FollowupReschedule, FollowupResponse, FollowupStatistics, FollowupUpdate
)
from followup_engine.services.followup_service import FollowupService

router = APIRouter(prefix="/api/followups", tags=["followups"], responses=ERROR_RESPONSES)


@router.post("/", response_model=FollowupResponse, status_code=201)
async def create_followup(
    followup_data: FollowupCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Schedule a followup with a lead."""
    service = FollowupService(session, context)
    return await service.create_followup(followup_data.model_dump(), current_user.id)


@router.get("/", response_model=PaginatedResponse[FollowupResponse])
async def list_followups(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    assigned_to: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    lead_id: Optional[uuid.UUID] = None,
    type: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.list_followups(
        page=page, limit=limit, assigned_to=assigned_to, status=status, lead_id=lead_id, type=type
    )


@router.get("/overdue", response_model=List[FollowupResponse])
async def get_overdue_followups(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.get_overdue_followups(current_user.id)


@router.get("/upcoming", response_model=List[FollowupResponse])
async def get_upcoming_followups(
    days: int = Query(7, ge=1, le=90),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.get_upcoming_followups(current_user.id, days)


@router.get("/stats", response_model=FollowupStatistics)
async def get_followup_statistics(
    timeframe: str = "month",
    user_id: Optional[uuid.UUID] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Completion and outcome figures; defaults to the caller."""
    service = FollowupService(session, context)
    return await service.get_followup_statistics(user_id or current_user.id, timeframe)


@router.post("/from-call", response_model=List[FollowupResponse], status_code=201)
async def create_followups_from_call(
    data: FollowupFromCall,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Run call_outcome rules for a call; schedules one directly when no rule fires."""
    service = FollowupService(session, context)
    options = data.options.model_dump() if data.options else None
    return await service.create_followups_from_call(
        data.call_id, data.outcome, current_user.id, options, data.create_manual
    )


@router.post("/bulk", response_model=BulkFollowupResponse, status_code=201)
async def bulk_create_followups(
    data: BulkFollowupCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Create many followups; failures are reported per item."""
    service = FollowupService(session, context)
    return await service.bulk_create_followups([f.model_dump() for f in data.followups], current_user.id)


@router.get("/{followup_id}", response_model=FollowupResponse)
async def get_followup(
    followup_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.get_followup(followup_id)


@router.patch("/{followup_id}", response_model=FollowupResponse)
async def update_followup(
    followup_id: uuid.UUID,
    data: FollowupUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.update_followup(followup_id, data.model_dump(exclude_unset=True), current_user.id)


@router.get("/{followup_id}/activity", response_model=List[ActivityEntry])
async def get_followup_activity(
    followup_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.get_followup_activity(followup_id, limit)


@router.post("/{followup_id}/reschedule", response_model=FollowupResponse)
async def reschedule_followup(
    followup_id: uuid.UUID,
    data: FollowupReschedule,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Move a followup to a new future date; resets its reminder."""
    service = FollowupService(session, context)
    return await service.reschedule_followup(followup_id, data.new_date, data.reason, current_user.id)


@router.post("/{followup_id}/complete", response_model=FollowupResponse)
async def complete_followup(
    followup_id: uuid.UUID,
    data: FollowupComplete,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Record an outcome; advances any sequence the followup belongs to."""
    service = FollowupService(session, context)
    return await service.complete_followup(followup_id, data.outcome, data.notes, current_user.id)


@router.post("/{followup_id}/cancel", response_model=FollowupResponse)
async def cancel_followup(
    followup_id: uuid.UUID,
    data: FollowupCancel,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = FollowupService(session, context)
    return await service.cancel_followup(followup_id, data.reason, current_user.id)
