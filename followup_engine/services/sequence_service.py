"""
Sequence service - followup sequence CRUD and the enrollment engine.

An enrollment advances one step at a time: each step materializes one
followup, and completing that followup schedules the next step, finishes the
enrollment, or exits it when an exit condition matches.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.context import EngineContext
from followup_engine.core.events import EnrollmentAdvanced, EnrollmentCreated, EnrollmentFinished
from followup_engine.core.exceptions import (
    raise_invalid_transition,
    raise_not_found,
    raise_validation_error,
)
from followup_engine.models.activity import Actions
from followup_engine.models.enums import CreatedVia, EnrollmentStatus, FollowupStatus
from followup_engine.models.followup import Followup
from followup_engine.models.lead import Lead
from followup_engine.models.sequence import FollowupSequence, SequenceEnrollment
from followup_engine.repositories.activity_repo import ActivityLogRepository
from followup_engine.repositories.followup_repo import FollowupRepository
from followup_engine.repositories.lead_repo import LeadRepository
from followup_engine.repositories.sequence_repo import EnrollmentRepository, SequenceRepository
from followup_engine.repositories.user_repo import UserRepository
from followup_engine.services.schedule_rules import compute_step_time, interpolate

logger = logging.getLogger(__name__)

DEFAULT_EXIT_OUTCOMES = ["closed_won", "closed_lost", "unsubscribed"]
DEFAULT_MAX_RESCHEDULES = 3


def validate_steps(steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Steps must carry unique orders forming 1..n. Returns them sorted."""
    if not steps:
        raise_validation_error("A sequence needs at least one step", "steps")
    orders = [step.get("order") for step in steps]
    if any(not isinstance(order, int) for order in orders):
        raise_validation_error("Every step needs an integer order", "steps")
    if sorted(orders) != list(range(1, len(steps) + 1)):
        raise_validation_error(
            f"Step orders must be unique and run from 1 to {len(steps)}, got {sorted(orders)}",
            "steps"
        )
    for step in steps:
        if not (step.get("title") or "").strip():
            raise_validation_error(f"Step {step['order']} needs a title", "steps")
    return sorted(steps, key=lambda step: step["order"])


def exit_outcomes(sequence: FollowupSequence) -> List[str]:
    return (sequence.exit_conditions or {}).get("outcomes", DEFAULT_EXIT_OUTCOMES)


class SequenceService:
    """Service for followup sequences and enrollments."""

    def __init__(self, session: AsyncSession, context: EngineContext):
        self.session = session
        self.context = context
        self.sequence_repo = SequenceRepository(session)
        self.enrollment_repo = EnrollmentRepository(session)
        self.followup_repo = FollowupRepository(session)
        self.lead_repo = LeadRepository(session)
        self.user_repo = UserRepository(session)
        self.activity_repo = ActivityLogRepository(session)

    def _now(self) -> datetime:
        return self.context.now()

    async def _log(self, action: str, entity_type: str, entity_id, actor_id, description: str, meta: Optional[dict] = None):
        await self.activity_repo.log(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            description=description,
            meta_data=meta
        )

    # ------------------------------------------------------------------
    # Sequence CRUD
    # ------------------------------------------------------------------

    async def create_sequence(self, data: Dict[str, Any], user_id: uuid.UUID) -> FollowupSequence:
        steps = validate_steps(data.get("steps") or [])
        values = {**data, "steps": steps, "total_steps": len(steps), "created_by": user_id}
        sequence = await self.sequence_repo.create(values)
        await self._log(
            Actions.SEQUENCE_CREATED, "sequence", sequence.id, user_id,
            f"Sequence '{sequence.name}' created with {sequence.total_steps} steps"
        )
        return sequence

    async def get_sequence(self, sequence_id: uuid.UUID) -> FollowupSequence:
        sequence = await self.sequence_repo.get(sequence_id)
        if not sequence:
            raise_not_found("Sequence", str(sequence_id))
        return sequence

    async def list_sequences(self, category: Optional[str] = None, is_active: Optional[bool] = None) -> List[FollowupSequence]:
        return await self.sequence_repo.list(filters={"category": category, "is_active": is_active})

    async def update_sequence(self, sequence_id: uuid.UUID, patch: Dict[str, Any], user_id: uuid.UUID) -> FollowupSequence:
        sequence = await self.get_sequence(sequence_id)
        patch = {k: v for k, v in patch.items() if v is not None}
        if "steps" in patch:
            patch["steps"] = validate_steps(patch["steps"])
            patch["total_steps"] = len(patch["steps"])
        sequence = await self.sequence_repo.update(sequence.id, patch)
        await self._log(
            Actions.SEQUENCE_UPDATED, "sequence", sequence.id, user_id,
            f"Sequence '{sequence.name}' updated",
            {"changes": list(patch.keys())}
        )
        return sequence

    async def delete_sequence(self, sequence_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Soft-delete; refused while any enrollment is active."""
        sequence = await self.get_sequence(sequence_id)
        active = await self.enrollment_repo.count_active(sequence.id)
        if active:
            raise_invalid_transition(
                "active", "deleted", f"sequence has {active} active enrollment(s)"
            )
        await self.sequence_repo.soft_delete(sequence.id)
        await self._log(Actions.SEQUENCE_DELETED, "sequence", sequence.id, user_id, f"Sequence '{sequence.name}' deleted")

    async def get_stats(self, sequence_id: uuid.UUID) -> Dict[str, Any]:
        sequence = await self.get_sequence(sequence_id)
        enrollments = await self.enrollment_repo.for_sequence(sequence.id)
        return {
            "sequence_id": sequence.id,
            "enrollment_count": sequence.enrollment_count,
            "active": sum(1 for e in enrollments if e.status == EnrollmentStatus.ACTIVE.value),
            "exited": sum(1 for e in enrollments if e.status == EnrollmentStatus.EXITED.value),
            "completion_count": sequence.completion_count,
            "conversion_count": sequence.conversion_count,
            "completion_rate": sequence.completion_rate,
            "conversion_rate": sequence.conversion_rate,
        }

    async def list_enrollments(self, sequence_id: uuid.UUID, status: Optional[str] = None) -> List[SequenceEnrollment]:
        await self.get_sequence(sequence_id)
        return await self.enrollment_repo.for_sequence(sequence_id, status)

    async def get_enrollment(self, enrollment_id: uuid.UUID) -> SequenceEnrollment:
        enrollment = await self.enrollment_repo.get(enrollment_id)
        if not enrollment:
            raise_not_found("Enrollment", str(enrollment_id))
        return enrollment

    # ------------------------------------------------------------------
    # Enrollment engine
    # ------------------------------------------------------------------

    async def enroll(
        self,
        sequence_id: uuid.UUID,
        lead_id: uuid.UUID,
        user_id: uuid.UUID,
        start_step: int = 1,
        actor_id: Optional[uuid.UUID] = None
    ) -> SequenceEnrollment:
        actor_id = actor_id or user_id
        sequence = await self.get_sequence(sequence_id)
        if not sequence.is_active:
            raise_validation_error(f"Sequence '{sequence.name}' is not active", "sequence_id")
        lead = await self.lead_repo.get(lead_id)
        if not lead:
            raise_not_found("Lead", str(lead_id))
        if not await self.user_repo.exists(user_id):
            raise_not_found("User", str(user_id))
        step = sequence.get_step(start_step)
        if step is None:
            raise_validation_error(
                f"Start step must be between 1 and {sequence.total_steps}", "start_step"
            )
        if await self.enrollment_repo.active_enrollment_for(sequence.id, lead.id):
            raise_validation_error(f"Lead is already enrolled in '{sequence.name}'", "lead_id")

        now = self._now()
        enrollment = await self.enrollment_repo.create({
            "sequence_id": sequence.id,
            "lead_id": lead.id,
            "user_id": user_id,
            "current_step": start_step,
            "status": EnrollmentStatus.ACTIVE.value,
            "enrolled_at": now,
            "last_activity_at": now,
        })
        sequence.enrollment_count += 1
        await self.sequence_repo.save(sequence)

        await self._create_step_followup(sequence, enrollment, lead, step, now, actor_id)

        await self._log(
            Actions.LEAD_ENROLLED, "enrollment", enrollment.id, actor_id,
            f"Lead '{lead.name}' enrolled in '{sequence.name}'",
            {"sequence_id": str(sequence.id), "start_step": start_step}
        )
        await self.context.events.publish(EnrollmentCreated(
            actor_id=actor_id, enrollment_id=enrollment.id, sequence_id=sequence.id, lead_id=lead.id
        ))
        logger.info(f"Lead {lead.id} enrolled in sequence {sequence.id} at step {start_step}")
        return enrollment

    async def _create_step_followup(
        self,
        sequence: FollowupSequence,
        enrollment: SequenceEnrollment,
        lead: Optional[Lead],
        step: Dict[str, Any],
        base_time: datetime,
        actor_id: Optional[uuid.UUID]
    ) -> Followup:
        from followup_engine.services.followup_service import FollowupService

        settings = self.context.settings
        tz_name = (step.get("timing") or {}).get("timezone") or settings.DEFAULT_TIMEZONE
        scheduled = compute_step_time(step.get("timing"), base_time, tz_name)
        now = self._now()
        if scheduled <= now:
            scheduled = now + timedelta(minutes=settings.MIN_SCHEDULE_LEAD_MINUTES)

        variables = {
            "leadName": (lead.name if lead else None) or "there",
            "stepNumber": step["order"],
            "sequenceName": sequence.name,
        }
        return await FollowupService(self.session, self.context).create_followup({
            "lead_id": enrollment.lead_id,
            "assigned_to": enrollment.user_id,
            "type": step.get("type") or "call",
            "priority": step.get("priority") or "medium",
            "title": interpolate(step.get("title"), variables),
            "description": interpolate(step.get("description"), variables),
            "scheduled_for": scheduled,
            "timezone": tz_name,
            "sequence_id": sequence.id,
            "sequence_step": step["order"],
            "enrollment_id": enrollment.id,
        }, actor_id, created_via=CreatedVia.SEQUENCE.value)

    async def handle_followup_completed(self, followup: Followup, user_id: Optional[uuid.UUID]) -> Optional[SequenceEnrollment]:
        """Advance, complete or exit the enrollment the followup belongs to."""
        enrollment = await self.enrollment_repo.get(followup.enrollment_id)
        if not enrollment or enrollment.status != EnrollmentStatus.ACTIVE.value:
            return enrollment
        if followup.sequence_step != enrollment.current_step:
            logger.info(f"Ignoring completion of stale step {followup.sequence_step} for enrollment {enrollment.id}")
            return enrollment

        sequence = await self.sequence_repo.get(enrollment.sequence_id)
        if not sequence:
            return await self._finish(enrollment, EnrollmentStatus.EXITED.value, "sequence_deleted", user_id)

        now = self._now()
        outcome = followup.outcome
        enrollment.last_activity_at = now

        if outcome and outcome in (sequence.conversion_outcomes or []) and not enrollment.converted:
            enrollment.converted = True
            sequence.conversion_count += 1
            await self.sequence_repo.save(sequence)

        if outcome and outcome in exit_outcomes(sequence):
            return await self._finish(enrollment, EnrollmentStatus.EXITED.value, f"outcome:{outcome}", user_id)

        next_step = sequence.get_next_step(enrollment.current_step)
        if next_step is None:
            sequence.completion_count += 1
            await self.sequence_repo.save(sequence)
            return await self._finish(enrollment, EnrollmentStatus.COMPLETED.value, None, user_id)

        lead = await self.lead_repo.get(enrollment.lead_id)
        await self._create_step_followup(sequence, enrollment, lead, next_step, now, user_id)
        enrollment.current_step = next_step["order"]
        enrollment = await self.enrollment_repo.save(enrollment)
        await self.context.events.publish(EnrollmentAdvanced(
            actor_id=user_id, enrollment_id=enrollment.id, current_step=enrollment.current_step
        ))
        return enrollment

    async def handle_followup_rescheduled(self, followup: Followup, user_id: Optional[uuid.UUID]) -> Optional[SequenceEnrollment]:
        """Exit the enrollment once a step has been rescheduled past the cap."""
        enrollment = await self.enrollment_repo.get(followup.enrollment_id)
        if not enrollment or enrollment.status != EnrollmentStatus.ACTIVE.value:
            return enrollment
        sequence = await self.sequence_repo.get(enrollment.sequence_id)
        conditions = (sequence.exit_conditions or {}) if sequence else {}
        cap = conditions.get("max_reschedules", DEFAULT_MAX_RESCHEDULES)

        enrollment.last_activity_at = self._now()
        if cap is not None and followup.reschedule_count > cap:
            return await self._finish(enrollment, EnrollmentStatus.EXITED.value, "reschedule_limit", user_id)
        return await self.enrollment_repo.save(enrollment)

    async def exit_enrollment(self, enrollment_id: uuid.UUID, reason: str, user_id: Optional[uuid.UUID]) -> SequenceEnrollment:
        enrollment = await self.get_enrollment(enrollment_id)
        if enrollment.status != EnrollmentStatus.ACTIVE.value:
            raise_invalid_transition(enrollment.status, EnrollmentStatus.EXITED.value, "enrollment is not active")
        return await self._finish(enrollment, EnrollmentStatus.EXITED.value, reason, user_id)

    async def inactive_enrollments(self) -> List[SequenceEnrollment]:
        """Active enrollments idle for longer than their sequence's inactivity_days."""
        now = self._now()
        sequences: Dict[uuid.UUID, Optional[FollowupSequence]] = {}
        stale = []
        for enrollment in await self.enrollment_repo.all_active():
            if enrollment.sequence_id not in sequences:
                sequences[enrollment.sequence_id] = await self.sequence_repo.get(enrollment.sequence_id)
            sequence = sequences[enrollment.sequence_id]
            days = (sequence.exit_conditions or {}).get("inactivity_days") if sequence else None
            if days and enrollment.last_activity_at < now - timedelta(days=days):
                stale.append(enrollment)
        return stale

    async def _finish(
        self,
        enrollment: SequenceEnrollment,
        status: str,
        reason: Optional[str],
        user_id: Optional[uuid.UUID]
    ) -> SequenceEnrollment:
        now = self._now()
        enrollment.status = status
        enrollment.exit_reason = reason
        enrollment.finished_at = now
        enrollment.last_activity_at = now
        enrollment = await self.enrollment_repo.save(enrollment)

        cancelled = 0
        if status == EnrollmentStatus.EXITED.value:
            for followup in await self.followup_repo.open_for_enrollment(enrollment.id):
                followup.status = FollowupStatus.CANCELLED.value
                followup.outcome_notes = f"Sequence exited: {reason}"
                await self.followup_repo.save(followup)
                cancelled += 1

        action = Actions.ENROLLMENT_COMPLETED if status == EnrollmentStatus.COMPLETED.value else Actions.ENROLLMENT_EXITED
        await self._log(
            action, "enrollment", enrollment.id, user_id,
            f"Enrollment {status}" + (f" ({reason})" if reason else ""),
            {"reason": reason, "cancelled_followups": cancelled}
        )
        await self.context.events.publish(EnrollmentFinished(
            actor_id=user_id, enrollment_id=enrollment.id, status=status, reason=reason
        ))
        logger.info(f"Enrollment {enrollment.id} {status} ({reason or 'all steps done'})")
        return enrollment
