"""
Automation API routes - rule CRUD and manual trigger events.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.api.deps import get_context, get_current_user
from followup_engine.core.context import EngineContext
from followup_engine.database import get_session
from followup_engine.models.user import User
from followup_engine.schemas.automation import (
    AutomationEvent, EvaluationResponse, RuleCreate, RuleResponse, RuleUpdate
)
from followup_engine.schemas.common import ERROR_RESPONSES, MessageResponse
from followup_engine.services.automation_service import AutomationService

router = APIRouter(prefix="/api/automation", tags=["automation"], responses=ERROR_RESPONSES)


@router.post("/rules", response_model=RuleResponse, status_code=201)
async def create_rule(
    rule_data: RuleCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = AutomationService(session, context)
    return await service.create_rule(rule_data.model_dump(mode="json"), current_user.id)


@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(
    trigger_event: Optional[str] = None,
    is_active: Optional[bool] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = AutomationService(session, context)
    return await service.list_rules(trigger_event, is_active)


@router.get("/rules/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = AutomationService(session, context)
    return await service.get_rule(rule_id)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: uuid.UUID,
    rule_data: RuleUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = AutomationService(session, context)
    return await service.update_rule(rule_id, rule_data.model_dump(mode="json", exclude_unset=True), current_user.id)


@router.delete("/rules/{rule_id}", response_model=MessageResponse)
async def delete_rule(
    rule_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    service = AutomationService(session, context)
    await service.delete_rule(rule_id, current_user.id)
    return {"message": "Automation rule deleted"}


@router.post("/events", response_model=EvaluationResponse)
async def fire_event(
    event: AutomationEvent,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    context: EngineContext = Depends(get_context)
):
    """Evaluate every active rule for a trigger event."""
    service = AutomationService(session, context)
    results = await service.evaluate(event.trigger_event, event.context, current_user.id)
    return {"trigger_event": event.trigger_event, "matched": len(results), "results": results}
