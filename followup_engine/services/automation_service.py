"""
Automation service - rule CRUD and the rule evaluation engine.

A rule fires when it is active, every condition matches the event context
exactly, and its cooldown and per-lead cap allow it. The claim (checks plus
counter updates) happens under a row lock in its own transaction, so two
concurrent triggers cannot both pass the cooldown.
"""
import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.context import EngineContext
from followup_engine.core.exceptions import (
    FollowupEngineError,
    RuleCooldownActive,
    raise_not_found,
    raise_validation_error,
)
from followup_engine.models.activity import Actions
from followup_engine.models.automation import AutomationRule, AutomationExecution
from followup_engine.models.enums import (
    AssignmentFallback,
    AssignmentType,
    CreatedVia,
    RuleAction,
    TriggerEvent,
)
from followup_engine.models.lead import Call, Lead
from followup_engine.repositories.activity_repo import ActivityLogRepository
from followup_engine.repositories.automation_repo import AutomationExecutionRepository, AutomationRuleRepository
from followup_engine.repositories.lead_repo import LeadRepository
from followup_engine.repositories.task_repo import TaskRepository
from followup_engine.repositories.user_repo import UserRepository
from followup_engine.services.schedule_rules import compute_scheduled_time, interpolate

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def conditions_match(conditions: Optional[Dict[str, Any]], context: Dict[str, Any]) -> bool:
    """Exact-match predicate: every key must be present in context with an equal value."""
    for key, expected in (conditions or {}).items():
        if key not in context:
            return False
        if _normalize(context[key]) != _normalize(expected):
            return False
    return True


def call_context(call: Call, lead: Optional[Lead], outcome: Optional[str], user_id) -> Dict[str, Any]:
    """Rule evaluation context for a finished call."""
    return {
        "call_id": call.id,
        "lead_id": call.lead_id,
        "user_id": user_id,
        "outcome": outcome,
        "call_date": call.ended_at or call.started_at,
        "lead_name": lead.name if lead else None,
        "lead_company": lead.company if lead else None,
        "lead_status": lead.status if lead else None,
        "lead_score": lead.score if lead else None,
        "lead_territory": lead.territory if lead else None,
    }


class AutomationService:
    """Service for automation rules."""

    def __init__(self, session: AsyncSession, context: EngineContext):
        self.session = session
        self.context = context
        self.rule_repo = AutomationRuleRepository(session)
        self.execution_repo = AutomationExecutionRepository(session)
        self.user_repo = UserRepository(session)
        self.lead_repo = LeadRepository(session)
        self.task_repo = TaskRepository(session)
        self.activity_repo = ActivityLogRepository(session)

    def _now(self) -> datetime:
        return self.context.now()

    # ------------------------------------------------------------------
    # Rule CRUD
    # ------------------------------------------------------------------

    async def create_rule(self, data: Dict[str, Any], user_id: uuid.UUID) -> AutomationRule:
        self._validate_rule(data)
        rule = await self.rule_repo.create({**data, "created_by": user_id})
        await self.activity_repo.log(
            action=Actions.RULE_CREATED,
            entity_type="rule",
            entity_id=rule.id,
            actor_id=user_id,
            description=f"Automation rule '{rule.name}' created",
            meta_data={"trigger_event": rule.trigger_event, "action": rule.action}
        )
        return rule

    async def get_rule(self, rule_id: uuid.UUID) -> AutomationRule:
        rule = await self.rule_repo.get(rule_id)
        if not rule:
            raise_not_found("AutomationRule", str(rule_id))
        return rule

    async def list_rules(self, trigger_event: Optional[str] = None, is_active: Optional[bool] = None) -> List[AutomationRule]:
        return await self.rule_repo.list(
            filters={"trigger_event": trigger_event, "is_active": is_active},
            order_desc=False
        )

    async def update_rule(self, rule_id: uuid.UUID, patch: Dict[str, Any], user_id: uuid.UUID) -> AutomationRule:
        rule = await self.get_rule(rule_id)
        self._validate_rule({**rule.model_dump(), **{k: v for k, v in patch.items() if v is not None}})
        rule = await self.rule_repo.update(rule.id, patch)
        await self.activity_repo.log(
            action=Actions.RULE_UPDATED,
            entity_type="rule",
            entity_id=rule.id,
            actor_id=user_id,
            description=f"Automation rule '{rule.name}' updated",
            meta_data={"changes": [k for k, v in patch.items() if v is not None]}
        )
        return rule

    async def delete_rule(self, rule_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Delete a rule and its execution history."""
        rule = await self.get_rule(rule_id)
        name = rule.name
        for execution in await self.execution_repo.executions_for(rule.id):
            await self.session.delete(execution)
        await self.session.delete(rule)
        await self.session.commit()
        await self.activity_repo.log(
            action=Actions.RULE_DELETED,
            entity_type="rule",
            entity_id=rule_id,
            actor_id=user_id,
            description=f"Automation rule '{name}' deleted"
        )

    def _validate_rule(self, data: Dict[str, Any]) -> None:
        if data.get("trigger_event") not in {t.value for t in TriggerEvent}:
            raise_validation_error(f"Unknown trigger event '{data.get('trigger_event')}'", "trigger_event")
        if data.get("action", RuleAction.CREATE_FOLLOWUP.value) not in {a.value for a in RuleAction}:
            raise_validation_error(f"Unknown action '{data.get('action')}'", "action")
        assignment = data.get("assignment_rule") or {}
        if assignment.get("type") == AssignmentType.ROUND_ROBIN.value and not assignment.get("team_id"):
            raise_validation_error("Round-robin assignment needs a team_id", "assignment_rule")
        # Evaluating once surfaces bad units, types and timezones at save time
        compute_scheduled_time(data.get("schedule_rule"), self._now())

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(
        self,
        trigger_event: str,
        context: Dict[str, Any],
        user_id: Optional[uuid.UUID] = None
    ) -> List[Dict[str, Any]]:
        """
        Run every active rule for trigger_event against context.
        Returns one result per matching rule: created, skipped or failed.
        """
        trigger_event = _normalize(trigger_event)
        user_id = user_id or _as_uuid(context.get("user_id"))
        lead_id = _as_uuid(context.get("lead_id"))
        results = []

        # Rules are reloaded each pass; a rollback expires everything in the session
        for rule_id in await self.rule_repo.active_rule_ids_for(trigger_event):
            rule = await self.rule_repo.get_fresh(rule_id)
            if rule is None or not conditions_match(rule.conditions, context):
                continue
            rule_name = rule.name

            try:
                execution_id = await self._claim(rule_id, lead_id, trigger_event)
            except RuleCooldownActive as e:
                logger.debug(f"Skipping rule {rule_id}: {e.message}")
                results.append({"rule_id": rule_id, "status": "skipped", "error": e.message})
                continue

            try:
                entity_type, entity = await self._execute(rule, context, user_id, lead_id)
                entity_id = entity.id
            except FollowupEngineError as e:
                logger.warning(f"Rule {rule_id} failed for {trigger_event}: {e.message}")
                await self._record_failure(execution_id, e.message)
                results.append({"rule_id": rule_id, "status": "failed", "error": e.message})
                continue
            except Exception as e:
                logger.exception(f"Rule {rule_id} crashed for {trigger_event}")
                await self.session.rollback()
                await self._record_failure(execution_id, str(e))
                results.append({"rule_id": rule_id, "status": "failed", "error": str(e)})
                continue

            await self._record_success(rule_id, execution_id, entity_type, entity_id)
            logger.info(f"Rule '{rule_name}' created {entity_type} {entity_id}")
            results.append({
                "rule_id": rule_id,
                "status": "created",
                "entity_type": entity_type,
                "entity_id": entity_id,
            })
        return results

    async def _claim(self, rule_id: uuid.UUID, lead_id: Optional[uuid.UUID], trigger_event: str) -> uuid.UUID:
        """
        Check limits and count the execution in one locked transaction.
        A refused claim commits the empty transaction to release the lock.
        """
        rule = await self.rule_repo.lock_rule(rule_id)
        if rule is None or not rule.is_active:
            await self.session.commit()
            raise RuleCooldownActive(str(rule_id), message=f"Automation rule '{rule_id}' is no longer active")

        now = self._now()
        if rule.cooldown_period:
            if lead_id is not None:
                last = await self.execution_repo.last_for(rule.id, lead_id)
                last_time = last.executed_at if last else None
            else:
                last_time = rule.last_executed
            if last_time and now < last_time + timedelta(hours=rule.cooldown_period):
                await self.session.commit()
                raise RuleCooldownActive(str(rule_id), str(lead_id) if lead_id else None)

        if rule.max_executions_per_lead and lead_id is not None:
            count = await self.execution_repo.count_for(rule.id, lead_id)
            if count >= rule.max_executions_per_lead:
                await self.session.commit()
                raise RuleCooldownActive(
                    str(rule_id), str(lead_id),
                    message=f"Automation rule '{rule_id}' reached {count} executions for lead '{lead_id}'"
                )

        execution = AutomationExecution(
            rule_id=rule.id,
            lead_id=lead_id,
            trigger_event=trigger_event,
            executed_at=now
        )
        rule.execution_count += 1
        rule.last_executed = now
        self.session.add(execution)
        self.session.add(rule)
        await self.session.commit()
        return execution.id

    async def _record_success(self, rule_id: uuid.UUID, execution_id: uuid.UUID, entity_type: str, entity_id: uuid.UUID):
        rule = await self.rule_repo.lock_rule(rule_id)
        execution = await self.execution_repo.get(execution_id)
        rule.success_count += 1
        execution.success = True
        execution.created_entity_type = entity_type
        execution.created_entity_id = entity_id
        self.session.add(rule)
        self.session.add(execution)
        await self.session.commit()

    async def _record_failure(self, execution_id: uuid.UUID, error: str):
        execution = await self.execution_repo.get(execution_id)
        if execution:
            execution.error = error[:500]
            await self.execution_repo.save(execution)

    async def _template_variables(self, context: Dict[str, Any], lead: Optional[Lead], user_id) -> Dict[str, Any]:
        user = await self.user_repo.get(user_id) if user_id else None
        call_date = context.get("call_date")
        if isinstance(call_date, datetime):
            call_date = call_date.strftime("%Y-%m-%d")
        return {
            "leadName": lead.name if lead else context.get("lead_name"),
            "leadCompany": lead.company if lead else context.get("lead_company"),
            "outcome": _normalize(context.get("outcome")),
            "callDate": call_date,
            "userName": user.display_name if user else None,
        }

    async def _execute(
        self,
        rule: AutomationRule,
        context: Dict[str, Any],
        user_id: Optional[uuid.UUID],
        lead_id: Optional[uuid.UUID]
    ) -> Tuple[str, Any]:
        from followup_engine.services.followup_service import FollowupService
        from followup_engine.services.task_service import TaskService, task_type_for_followup

        lead = await self.lead_repo.get(lead_id) if lead_id else None
        assignee = await self.resolve_assignee(rule, context, lead, user_id)
        variables = await self._template_variables(context, lead, user_id)
        template = rule.template or {}
        default_title = f"{rule.followup_type.replace('_', ' ').title()} with {variables['leadName'] or 'prospect'}"
        title = interpolate(template.get("title"), variables) or default_title
        description = interpolate(template.get("description"), variables)

        now = self._now()
        scheduled = compute_scheduled_time(rule.schedule_rule, now)
        if scheduled <= now:
            scheduled = now + timedelta(minutes=self.context.settings.MIN_SCHEDULE_LEAD_MINUTES)
        actor = user_id or assignee

        if rule.action == RuleAction.CREATE_TASK.value:
            task = await TaskService(self.session, self.context).create_task({
                "title": title,
                "description": description,
                "type": task_type_for_followup(rule.followup_type),
                "priority": rule.priority,
                "assigned_to": assignee,
                "lead_id": lead_id,
                "call_id": _as_uuid(context.get("call_id")),
                "due_date": scheduled,
                "is_automated": True,
                "automation_rule_id": rule.id,
                "meta_data": {"trigger_event": rule.trigger_event},
            }, actor, source="automation")
            return "task", task

        followup = await FollowupService(self.session, self.context).create_followup({
            "lead_id": lead_id,
            "call_id": _as_uuid(context.get("call_id")),
            "assigned_to": assignee,
            "type": rule.followup_type,
            "priority": rule.priority,
            "title": title,
            "description": description,
            "scheduled_for": scheduled,
            "timezone": (rule.schedule_rule or {}).get("timezone"),
            "automation_rule_id": rule.id,
        }, actor, created_via=CreatedVia.AUTOMATION.value)
        return "followup", followup

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def _rotate(self, rule_id: uuid.UUID, key: str, candidates: List[Any]) -> Any:
        """Pick the next candidate for key; the cursor is persisted on the rule."""
        rule = await self.rule_repo.lock_rule(rule_id)
        state = dict(rule.assignment_state or {})
        index = int(state.get(key, 0)) % len(candidates)
        state[key] = index + 1
        rule.assignment_state = state
        self.session.add(rule)
        await self.session.commit()
        return candidates[index]

    async def resolve_assignee(
        self,
        rule: AutomationRule,
        context: Dict[str, Any],
        lead: Optional[Lead],
        user_id: Optional[uuid.UUID]
    ) -> uuid.UUID:
        assignment = rule.assignment_rule or {}
        strategy = assignment.get("type", AssignmentType.ORIGINAL_USER.value)
        original = _as_uuid(context.get("user_id")) or user_id
        chosen = None

        if strategy == AssignmentType.ROUND_ROBIN.value:
            team_id = _as_uuid(assignment.get("team_id"))
            members = await self.user_repo.team_members(team_id) if team_id else []
            if members:
                chosen = (await self._rotate(rule.id, "round_robin", members)).id
        elif strategy == AssignmentType.TERRITORY.value:
            territory = (lead.territory if lead else None) or context.get("lead_territory")
            candidates = await self.user_repo.in_territory(territory) if territory else []
            if candidates:
                chosen = (await self._rotate(rule.id, f"territory:{territory}", candidates)).id
        elif strategy == AssignmentType.SKILL_BASED.value:
            candidates = [u for u in await self.user_repo.list_active() if rule.followup_type in (u.skills or [])]
            if candidates:
                chosen = (await self._rotate(rule.id, f"skill:{rule.followup_type}", candidates)).id
        elif original and await self.user_repo.get_active(original):
            chosen = original

        if chosen is None:
            if assignment.get("fallback") == AssignmentFallback.MANAGER.value and original:
                manager = await self.user_repo.get_manager(original)
                chosen = manager.id if manager else None
            if chosen is None:
                chosen = original

        if chosen is None:
            raise_validation_error(f"Rule '{rule.name}' could not resolve an assignee", "assignment_rule")
        return chosen

    # ------------------------------------------------------------------
    # Call outcomes
    # ------------------------------------------------------------------

    async def process_call_outcome(
        self,
        call: Call,
        lead: Optional[Lead],
        outcome: Optional[str],
        user_id: uuid.UUID
    ):
        """
        Fire call_completed and call_outcome rules for a finished call.
        Returns the task created by a create_task call_outcome rule, if any.
        """
        context = call_context(call, lead, outcome, user_id)
        await self.evaluate(TriggerEvent.CALL_COMPLETED.value, context, user_id)
        results = await self.evaluate(TriggerEvent.CALL_OUTCOME.value, context, user_id)
        for result in results:
            if result["status"] == "created" and result.get("entity_type") == "task":
                return await self.task_repo.get(result["entity_id"])
        return None
