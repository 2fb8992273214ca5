from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from followup_engine.core.security import create_access_token
from followup_engine.database import get_session
from followup_engine.main import app
from followup_engine.workers.periodic import WorkerRunner
from followup_engine.workers.reminders import ReminderProcessor, build_workers

from tests.conftest import NOW


@pytest_asyncio.fixture
async def client(context, session_factory, users):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.state.context = context
    app.state.workers = WorkerRunner(build_workers(ReminderProcessor(context, session_factory)))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth(agent):
    token = create_access_token({"user_id": str(agent.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_requires_token(client):
    response = await client.get("/api/tasks/")
    assert response.status_code == 401

    response = await client.get("/api/tasks/", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_then_next(client, auth, agent):
    due = (NOW + timedelta(days=1)).isoformat()
    response = await client.post("/api/tasks/", json={"title": "Send proposal", "priority": "high", "due_date": due}, headers=auth)

    assert response.status_code == 201
    created = response.json()
    assert created["assigned_to"] == str(agent.id)
    assert created["status"] == "pending"

    response = await client.get("/api/tasks/next", headers=auth)
    assert response.status_code == 200
    assert response.json()["task"]["id"] == created["id"]
    assert response.json()["score"] > 0


@pytest.mark.asyncio
async def test_start_blocked_task_conflicts(client, auth):
    blocker = (await client.post("/api/tasks/", json={"title": "Get approval"}, headers=auth)).json()
    blocked = (await client.post(
        "/api/tasks/", json={"title": "Send contract", "blocked_by": [blocker["id"]]}, headers=auth
    )).json()
    assert blocked["status"] == "pending"
    assert blocked["blocked_by"] == [blocker["id"]]

    response = await client.post(f"/api/tasks/{blocked['id']}/start", headers=auth)

    assert response.status_code == 409
    assert "blocked by 1 unfinished task" in response.json()["detail"]


@pytest.mark.asyncio
async def test_validation_errors(client, auth, lead):
    response = await client.post("/api/tasks/", json={"title": ""}, headers=auth)
    assert response.status_code == 422

    past = (NOW - timedelta(hours=1)).isoformat()
    response = await client.post("/api/followups/", json={"lead_id": str(lead.id), "scheduled_for": past}, headers=auth)
    assert response.status_code == 422
    assert "future" in response.json()["detail"]


@pytest.mark.asyncio
async def test_missing_task_is_404(client, auth):
    response = await client.get("/api/tasks/00000000-0000-0000-0000-000000000000", headers=auth)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_workers_status_and_manual_run(client, auth):
    response = await client.get("/api/workers/", headers=auth)
    assert response.status_code == 200
    assert len(response.json()) == 6

    response = await client.post("/api/workers/cleanup/run", headers=auth)
    assert response.status_code == 200
    assert response.json()["worker"] == "cleanup"

    response = await client.post("/api/workers/nope/run", headers=auth)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["workers_running"] is False
    assert body["indexed_tasks"] == 0


@pytest.mark.asyncio
async def test_task_activity_trail(client, auth, agent):
    task = (await client.post("/api/tasks/", json={"title": "Call back"}, headers=auth)).json()
    await client.post(f"/api/tasks/{task['id']}/start", headers=auth)

    response = await client.get(f"/api/tasks/{task['id']}/activity", headers=auth)

    assert response.status_code == 200
    actions = {entry["action"] for entry in response.json()}
    assert actions == {"task_created", "task_started"}
    assert all(entry["actor_id"] == str(agent.id) for entry in response.json())


@pytest.mark.asyncio
async def test_followup_routes(client, auth, lead, call):
    tomorrow = (NOW + timedelta(days=1)).isoformat()
    response = await client.post("/api/followups/bulk", json={"followups": [
        {"lead_id": str(lead.id), "scheduled_for": tomorrow},
        {"lead_id": str(lead.id), "scheduled_for": (NOW - timedelta(days=1)).isoformat()},
    ]}, headers=auth)
    assert response.status_code == 201
    body = response.json()
    assert (body["created"], body["failed"]) == (1, 1)
    followup_id = body["results"][0]["followup_id"]

    response = await client.patch(f"/api/followups/{followup_id}", json={"status": "scheduled"}, headers=auth)
    assert response.status_code == 200
    assert response.json()["status"] == "scheduled"

    response = await client.patch(f"/api/followups/{followup_id}", json={"status": "completed"}, headers=auth)
    assert response.status_code == 409

    response = await client.post("/api/followups/from-call", json={"call_id": str(call.id)}, headers=auth)
    assert response.status_code == 201
    assert [f["created_via"] for f in response.json()] == ["call_outcome"]

    response = await client.get("/api/followups/stats", params={"timeframe": "week"}, headers=auth)
    assert response.status_code == 200
    assert response.json()["total"] == 2
    assert response.json()["upcoming"] == 2


@pytest.mark.asyncio
async def test_tasks_by_priority_route(client, auth):
    await client.post("/api/tasks/", json={"title": "Urgent one", "priority": "urgent"}, headers=auth)
    await client.post("/api/tasks/", json={"title": "Low one", "priority": "low"}, headers=auth)

    response = await client.get("/api/tasks/priority/urgent", headers=auth)
    assert response.status_code == 200
    assert [t["title"] for t in response.json()] == ["Urgent one"]

    response = await client.get("/api/tasks/priority/critical", headers=auth)
    assert response.status_code == 422
