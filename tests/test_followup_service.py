from datetime import datetime, timedelta

import pytest

from followup_engine.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from followup_engine.repositories.activity_repo import ActivityLogRepository
from followup_engine.services.automation_service import AutomationService
from followup_engine.services.followup_service import FollowupService

from tests.conftest import NOW


@pytest.fixture
def service(session, context):
    return FollowupService(session, context)


async def schedule(service, lead, agent, **overrides):
    data = {"lead_id": lead.id, "scheduled_for": NOW + timedelta(days=1)}
    data.update(overrides)
    return await service.create_followup(data, agent.id)


@pytest.mark.asyncio
async def test_create_followup_defaults(service, context, lead, agent):
    followup = await schedule(service, lead, agent, type="meeting")

    assert followup.status == "pending"
    assert followup.assigned_to == agent.id
    assert followup.title == "Meeting with Dana Prospect"
    assert followup.created_via == "manual"
    assert followup.reschedule_count == 0
    assert context.metrics.counts["FollowupCreated"] == 1


@pytest.mark.asyncio
async def test_scheduled_for_must_be_in_the_future(service, lead, agent):
    with pytest.raises(ValidationError):
        await schedule(service, lead, agent, scheduled_for=NOW)
    with pytest.raises(ValidationError):
        await schedule(service, lead, agent, scheduled_for=NOW - timedelta(minutes=1))


@pytest.mark.asyncio
async def test_lead_is_required(service, agent):
    with pytest.raises(ValidationError):
        await service.create_followup({"scheduled_for": NOW + timedelta(days=1)}, agent.id)
    with pytest.raises(NotFoundError):
        await service.create_followup({"lead_id": agent.id, "scheduled_for": NOW + timedelta(days=1)}, agent.id)


@pytest.mark.asyncio
async def test_call_outcome_picks_default_date(service, lead, agent, call):
    followup = await service.create_followup({"lead_id": lead.id, "call_id": call.id}, agent.id)
    # callback_requested waits four hours, inside business hours
    assert followup.scheduled_for == datetime(2025, 3, 5, 14, 0)


@pytest.mark.asyncio
async def test_date_required_without_call(service, lead, agent):
    with pytest.raises(ValidationError):
        await service.create_followup({"lead_id": lead.id}, agent.id)


@pytest.mark.asyncio
async def test_reschedule_tracks_history_and_resets_reminder(service, context, lead, agent):
    followup = await schedule(service, lead, agent)
    followup.reminder_sent = True
    followup.reminder_sent_at = NOW
    original = followup.scheduled_for

    first = NOW + timedelta(days=3)
    second = NOW + timedelta(days=5)
    await service.reschedule_followup(followup.id, first, "travelling", agent.id)
    followup = await service.reschedule_followup(followup.id, second, None, agent.id)

    assert followup.status == "rescheduled"
    assert followup.scheduled_for == second
    assert followup.reschedule_count == 2
    assert [h["to"] for h in followup.reschedule_history] == [first.isoformat(), second.isoformat()]
    assert followup.reschedule_history[0]["from"] == original.isoformat()
    assert followup.reschedule_history[0]["reason"] == "travelling"
    assert followup.reminder_sent is False
    assert followup.reminder_sent_at is None
    assert context.metrics.counts["FollowupRescheduled"] == 2


@pytest.mark.asyncio
async def test_reschedule_into_the_past_rejected(service, lead, agent):
    followup = await schedule(service, lead, agent)
    with pytest.raises(ValidationError):
        await service.reschedule_followup(followup.id, NOW - timedelta(hours=1), None, agent.id)
    followup = await service.get_followup(followup.id)
    assert followup.reschedule_count == 0


@pytest.mark.asyncio
async def test_terminal_followups_cannot_change(service, lead, agent):
    done = await schedule(service, lead, agent)
    await service.complete_followup(done.id, "successful", "Went well", agent.id)
    cancelled = await schedule(service, lead, agent)
    await service.cancel_followup(cancelled.id, "lead went cold", agent.id)

    for followup in (done, cancelled):
        with pytest.raises(InvalidStateTransition):
            await service.reschedule_followup(followup.id, NOW + timedelta(days=2), None, agent.id)
        with pytest.raises(InvalidStateTransition):
            await service.complete_followup(followup.id, "successful", None, agent.id)


@pytest.mark.asyncio
async def test_complete_records_outcome(service, lead, agent):
    followup = await schedule(service, lead, agent)
    followup = await service.complete_followup(followup.id, "meeting_scheduled", "Tuesday 2pm", agent.id)

    assert followup.status == "completed"
    assert followup.outcome == "meeting_scheduled"
    assert followup.outcome_notes == "Tuesday 2pm"
    assert followup.completed_at == NOW
    assert followup.completed_by == agent.id


@pytest.mark.asyncio
async def test_completion_fires_followup_completed_rules(service, session, context, lead, agent):
    await AutomationService(session, context).create_rule({
        "name": "Demo after interest",
        "trigger_event": "followup_completed",
        "conditions": {"outcome": "demo_scheduled"},
        "followup_type": "demo",
        "priority": "high",
        "schedule_rule": {"type": "relative", "value": 2, "unit": "days"},
    }, agent.id)
    followup = await schedule(service, lead, agent)

    await service.complete_followup(followup.id, "demo_scheduled", None, agent.id)

    page = await service.list_followups(lead_id=lead.id, type="demo")
    assert page["total"] == 1
    created = page["items"][0]
    assert created.created_via == "automation"
    assert created.scheduled_for == NOW + timedelta(days=2)


@pytest.mark.asyncio
async def test_overdue_and_upcoming(service, clock, lead, agent):
    tomorrow = await schedule(service, lead, agent)
    next_week = await schedule(service, lead, agent, scheduled_for=NOW + timedelta(days=6))
    clock.advance(days=2)

    assert [f.id for f in await service.get_overdue_followups(agent.id)] == [tomorrow.id]
    assert [f.id for f in await service.get_upcoming_followups(agent.id, days=7)] == [next_week.id]


@pytest.mark.asyncio
async def test_update_followup_edits_details_and_status(service, session, users, lead):
    agent, agent2 = users["agent"], users["agent2"]
    followup = await schedule(service, lead, agent)

    followup = await service.update_followup(
        followup.id,
        {"title": " Pricing call ", "priority": "high", "assigned_to": agent2.id, "status": "scheduled"},
        agent.id
    )

    assert followup.title == "Pricing call"
    assert followup.priority == "high"
    assert followup.assigned_to == agent2.id
    assert followup.status == "scheduled"
    assert followup.scheduled_for == NOW + timedelta(days=1)
    logs = await ActivityLogRepository(session).history("followup", followup.id)
    updated = [log for log in logs if log.action == "followup_updated"]
    assert len(updated) == 1
    assert updated[0].meta_data["to_status"] == "scheduled"
    assert set(updated[0].meta_data["changes"]) == {"title", "priority", "assigned_to", "status"}


@pytest.mark.asyncio
async def test_update_followup_rejects_moves_with_their_own_operation(service, lead, agent):
    followup = await schedule(service, lead, agent)

    for status in ("completed", "rescheduled"):
        with pytest.raises(InvalidStateTransition):
            await service.update_followup(followup.id, {"title": "Renamed", "status": status}, agent.id)
    await service.update_followup(followup.id, {"status": "scheduled"}, agent.id)
    with pytest.raises(InvalidStateTransition):
        await service.update_followup(followup.id, {"status": "pending"}, agent.id)
    with pytest.raises(NotFoundError):
        await service.update_followup(followup.id, {"assigned_to": lead.id}, agent.id)
    with pytest.raises(ValidationError):
        await service.update_followup(followup.id, {"timezone": "Mars/Olympus"}, agent.id)

    followup = await service.get_followup(followup.id)
    assert followup.title == "Call with Dana Prospect"
    assert followup.status == "scheduled"


@pytest.mark.asyncio
async def test_cancelled_followup_cannot_be_updated(service, lead, agent):
    followup = await schedule(service, lead, agent)
    await service.update_followup(followup.id, {"status": "cancelled"}, agent.id)

    with pytest.raises(InvalidStateTransition):
        await service.update_followup(followup.id, {"title": "Revive"}, agent.id)


@pytest.mark.asyncio
async def test_bulk_create_followups_reports_each_item(service, lead, agent):
    result = await service.bulk_create_followups([
        {"lead_id": lead.id, "scheduled_for": NOW + timedelta(days=1)},
        {"lead_id": lead.id, "scheduled_for": NOW - timedelta(days=1)},
        {"lead_id": agent.id, "scheduled_for": NOW + timedelta(days=1)},
    ], agent.id)

    assert result["created"] == 1
    assert result["failed"] == 2
    assert [r["success"] for r in result["results"]] == [True, False, False]
    assert "future" in result["results"][1]["error"]
    assert result["results"][0]["followup_id"] is not None


@pytest.mark.asyncio
async def test_followups_from_call_without_rules(service, call, lead, agent):
    followups = await service.create_followups_from_call(call.id, None, agent.id)

    assert len(followups) == 1
    followup = followups[0]
    assert followup.call_id == call.id
    assert followup.lead_id == lead.id
    assert followup.created_via == "call_outcome"
    # callback_requested waits four hours
    assert followup.scheduled_for == datetime(2025, 3, 5, 14, 0)


@pytest.mark.asyncio
async def test_followups_from_call_prefer_matching_rules(service, session, context, call, agent):
    await AutomationService(session, context).create_rule({
        "name": "Callback quickly",
        "trigger_event": "call_outcome",
        "conditions": {"outcome": "callback_requested"},
        "followup_type": "call",
        "priority": "high",
        "schedule_rule": {"type": "relative", "value": 2, "unit": "hours"},
    }, agent.id)

    followups = await service.create_followups_from_call(call.id, None, agent.id)

    assert [f.created_via for f in followups] == ["automation"]
    assert followups[0].scheduled_for == NOW + timedelta(hours=2)
    assert followups[0].call_id == call.id

    followups = await service.create_followups_from_call(
        call.id, None, agent.id, {"title": "Send recap", "type": "email"}, create_manual=True
    )
    assert [f.created_via for f in followups] == ["automation", "call_outcome"]
    assert followups[1].title == "Send recap"
    assert followups[1].type == "email"


@pytest.mark.asyncio
async def test_followups_from_unknown_call(service, agent):
    with pytest.raises(NotFoundError):
        await service.create_followups_from_call(agent.id, "no_answer", agent.id)


@pytest.mark.asyncio
async def test_followup_statistics(service, clock, lead, agent):
    done = await schedule(service, lead, agent)
    await schedule(service, lead, agent, scheduled_for=NOW + timedelta(days=2))
    await schedule(service, lead, agent, scheduled_for=NOW + timedelta(days=9))
    await service.complete_followup(done.id, "successful", None, agent.id)
    clock.advance(days=3)

    stats = await service.get_followup_statistics(agent.id, "month")

    assert stats["timeframe"] == "month"
    assert stats["total"] == 3
    assert stats["completed"] == 1
    assert stats["overdue"] == 1
    assert stats["upcoming"] == 1
    assert stats["completion_rate"] == pytest.approx(1 / 3)
    assert stats["average_completion_hours"] == 24.0
    assert stats["by_outcome"] == {"successful": 1}

    with pytest.raises(ValidationError):
        await service.get_followup_statistics(agent.id, "fortnight")
