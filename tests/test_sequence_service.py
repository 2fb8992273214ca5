from datetime import datetime

import pytest
import pytest_asyncio

from followup_engine.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from followup_engine.models.lead import Lead
from followup_engine.services.followup_service import FollowupService
from followup_engine.services.sequence_service import SequenceService, validate_steps


def step(order, title=None, delay=1, **extra):
    data = {
        "order": order,
        "type": "call",
        "title": title or "Step {{stepNumber}} for {{leadName}}",
        "timing": {"delay": delay, "unit": "days", "business_hours_only": True},
    }
    data.update(extra)
    return data


@pytest.fixture
def service(session, context):
    return SequenceService(session, context)


@pytest.fixture
def followups(session, context):
    return FollowupService(session, context)


@pytest_asyncio.fixture
async def sequence(service, agent):
    return await service.create_sequence({
        "name": "New lead nurture",
        "steps": [step(3), step(1), step(2)],
        "conversion_outcomes": ["interested"],
    }, agent.id)


async def open_step(service, enrollment):
    items = await service.followup_repo.open_for_enrollment(enrollment.id)
    assert len(items) == 1
    return items[0]


def test_validate_steps_sorts_by_order():
    ordered = validate_steps([step(2), step(1)])
    assert [s["order"] for s in ordered] == [1, 2]


@pytest.mark.parametrize("steps", [
    [],
    [step(1), step(1)],
    [step(1), step(3)],
    [step(0)],
    [step(1, title="  ")],
    [{"title": "No order"}],
])
def test_validate_steps_rejects(steps):
    with pytest.raises(ValidationError):
        validate_steps(steps)


@pytest.mark.asyncio
async def test_create_sequence_counts_steps(sequence):
    assert sequence.total_steps == 3
    assert [s["order"] for s in sequence.steps] == [1, 2, 3]


@pytest.mark.asyncio
async def test_friday_afternoon_enrollment_lands_on_monday(service, clock, sequence, lead, agent):
    clock.set(datetime(2025, 3, 7, 16, 0))

    enrollment = await service.enroll(sequence.id, lead.id, agent.id)

    followup = await open_step(service, enrollment)
    assert followup.scheduled_for == datetime(2025, 3, 10, 9, 0)
    assert followup.sequence_step == 1
    assert followup.created_via == "sequence"
    assert followup.title == "Step 1 for Dana Prospect"
    assert enrollment.current_step == 1
    assert enrollment.status == "active"


@pytest.mark.asyncio
async def test_enrollment_walks_every_step(service, followups, sequence, lead, agent):
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)

    for expected_step in (1, 2, 3):
        followup = await open_step(service, enrollment)
        assert followup.sequence_step == expected_step
        await followups.complete_followup(followup.id, "successful", None, agent.id)

    enrollment = await service.get_enrollment(enrollment.id)
    assert enrollment.status == "completed"
    assert enrollment.finished_at is not None
    assert await service.followup_repo.open_for_enrollment(enrollment.id) == []

    stats = await service.get_stats(sequence.id)
    assert stats["enrollment_count"] == 1
    assert stats["completion_count"] == 1
    assert stats["completion_rate"] == 1.0
    assert stats["active"] == 0


@pytest.mark.asyncio
async def test_start_step_and_double_enrollment(service, sequence, lead, agent):
    with pytest.raises(ValidationError):
        await service.enroll(sequence.id, lead.id, agent.id, start_step=4)

    enrollment = await service.enroll(sequence.id, lead.id, agent.id, start_step=2)
    assert enrollment.current_step == 2

    with pytest.raises(ValidationError):
        await service.enroll(sequence.id, lead.id, agent.id)


@pytest.mark.asyncio
async def test_inactive_sequence_refuses_enrollment(service, sequence, lead, agent):
    await service.update_sequence(sequence.id, {"is_active": False}, agent.id)
    with pytest.raises(ValidationError):
        await service.enroll(sequence.id, lead.id, agent.id)


@pytest.mark.asyncio
async def test_exit_outcome_cancels_enrollment(service, followups, sequence, lead, agent):
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)
    followup = await open_step(service, enrollment)

    await followups.complete_followup(followup.id, "closed_lost", None, agent.id)

    enrollment = await service.get_enrollment(enrollment.id)
    assert enrollment.status == "exited"
    assert enrollment.exit_reason == "outcome:closed_lost"
    assert enrollment.current_step == 1
    assert await service.followup_repo.open_for_enrollment(enrollment.id) == []


@pytest.mark.asyncio
async def test_conversion_counted_once(service, followups, sequence, lead, agent):
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)

    for _ in range(2):
        followup = await open_step(service, enrollment)
        await followups.complete_followup(followup.id, "interested", None, agent.id)

    enrollment = await service.get_enrollment(enrollment.id)
    assert enrollment.converted is True
    assert enrollment.current_step == 3
    sequence = await service.get_sequence(sequence.id)
    assert sequence.conversion_count == 1


@pytest.mark.asyncio
async def test_reschedule_cap_exits_enrollment(service, followups, clock, agent, lead):
    sequence = await service.create_sequence({
        "name": "Short leash",
        "steps": [step(1), step(2)],
        "exit_conditions": {"max_reschedules": 1},
    }, agent.id)
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)
    followup = await open_step(service, enrollment)

    await followups.reschedule_followup(followup.id, datetime(2025, 3, 12, 10, 0), None, agent.id)
    enrollment = await service.get_enrollment(enrollment.id)
    assert enrollment.status == "active"

    followup = await followups.reschedule_followup(followup.id, datetime(2025, 3, 13, 10, 0), None, agent.id)

    enrollment = await service.get_enrollment(enrollment.id)
    assert enrollment.status == "exited"
    assert enrollment.exit_reason == "reschedule_limit"
    assert followup.status == "cancelled"


@pytest.mark.asyncio
async def test_manual_exit(service, sequence, lead, agent):
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)

    enrollment = await service.exit_enrollment(enrollment.id, "manual", agent.id)

    assert enrollment.status == "exited"
    assert enrollment.exit_reason == "manual"
    with pytest.raises(InvalidStateTransition):
        await service.exit_enrollment(enrollment.id, "manual", agent.id)


@pytest.mark.asyncio
async def test_delete_refused_while_enrolled(service, sequence, lead, agent):
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)

    with pytest.raises(InvalidStateTransition) as exc:
        await service.delete_sequence(sequence.id, agent.id)
    assert exc.value.status_code == 409

    await service.exit_enrollment(enrollment.id, "manual", agent.id)
    await service.delete_sequence(sequence.id, agent.id)
    with pytest.raises(NotFoundError):
        await service.get_sequence(sequence.id)


@pytest.mark.asyncio
async def test_inactive_enrollments(service, session, clock, agent, lead):
    sequence = await service.create_sequence({
        "name": "Goes quiet",
        "steps": [step(1, delay=30)],
        "exit_conditions": {"inactivity_days": 7},
    }, agent.id)
    other = Lead(name="Other Prospect")
    session.add(other)
    await session.commit()
    await session.refresh(other)

    quiet = await service.enroll(sequence.id, lead.id, agent.id)
    clock.advance(days=5)
    await service.enroll(sequence.id, other.id, agent.id)
    clock.advance(days=3)

    assert [e.id for e in await service.inactive_enrollments()] == [quiet.id]


@pytest.mark.asyncio
async def test_list_enrollments_by_status(service, sequence, lead, agent):
    enrollment = await service.enroll(sequence.id, lead.id, agent.id)

    assert [e.id for e in await service.list_enrollments(sequence.id, "active")] == [enrollment.id]
    assert await service.list_enrollments(sequence.id, "completed") == []
