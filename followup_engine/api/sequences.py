"""
Followup sequence API routes.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.api.deps import get_context, get_current_user
from followup_engine.core.context import EngineContext
from followup_engine.database import get_session
from followup_engine.models.user import User
from followup_engine.schemas.common import ERROR_RESPONSES, MessageResponse
from followup_engine.schemas.sequence import (
    EnrollmentResponse, EnrollRequest, ExitRequest, SequenceCreate,
    SequenceResponse, SequenceStats, SequenceUpdate
)
from followup_engine.services.sequence_service import SequenceService

router = APIRouter(prefix="/api/sequences", tags=["sequences"], responses=ERROR_RESPONSES)


@router.post("/", response_model=SequenceResponse, status_code=201)
async def create_sequence(
    sequence_data: SequenceCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    return await service.create_sequence(sequence_data.model_dump(mode="json"), current_user.id)


@router.get("/", response_model=List[SequenceResponse])
async def list_sequences(
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    return await service.list_sequences(category, is_active)


@router.post("/enrollments/{enrollment_id}/exit", response_model=EnrollmentResponse)
async def exit_enrollment(
    enrollment_id: uuid.UUID,
    data: ExitRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Stop an active enrollment and cancel its open followups."""
    service = SequenceService(session, context)
    return await service.exit_enrollment(enrollment_id, data.reason, current_user.id)


@router.get("/{sequence_id}", response_model=SequenceResponse)
async def get_sequence(
    sequence_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    return await service.get_sequence(sequence_id)


@router.patch("/{sequence_id}", response_model=SequenceResponse)
async def update_sequence(
    sequence_id: uuid.UUID,
    sequence_data: SequenceUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    return await service.update_sequence(
        sequence_id, sequence_data.model_dump(mode="json", exclude_unset=True), current_user.id
    )


@router.delete("/{sequence_id}", response_model=MessageResponse)
async def delete_sequence(
    sequence_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    await service.delete_sequence(sequence_id, current_user.id)
    return {"message": "Sequence deleted"}


@router.post("/{sequence_id}/enroll", response_model=EnrollmentResponse, status_code=201)
async def enroll_lead(
    sequence_id: uuid.UUID,
    data: EnrollRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Enroll a lead; the first step's followup is scheduled immediately."""
    service = SequenceService(session, context)
    return await service.enroll(
        sequence_id, data.lead_id, data.user_id or current_user.id, data.start_step, actor_id=current_user.id
    )


@router.get("/{sequence_id}/stats", response_model=SequenceStats)
async def get_sequence_stats(
    sequence_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    return await service.get_stats(sequence_id)


@router.get("/{sequence_id}/enrollments", response_model=List[EnrollmentResponse])
async def list_enrollments(
    sequence_id: uuid.UUID,
    status: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = SequenceService(session, context)
    return await service.list_enrollments(sequence_id, status)
