"""
Shared fixtures: an in-memory SQLite store with the real schema, a frozen
clock, a recording notification channel and a few seeded users, a lead and a call.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from followup_engine.config import Settings
from followup_engine.core.context import build_context
from followup_engine.database import create_session_factory, init_db
from followup_engine.models.lead import Call, Lead
from followup_engine.models.user import User
from followup_engine.services.integrations.base import NotificationDispatcher

# Wednesday, 10:00 UTC
NOW = datetime(2025, 3, 5, 10, 0)
TEAM_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification; can be switched to fail."""

    def __init__(self):
        self.sent: List[Tuple[str, uuid.UUID, Dict[str, Any]]] = []
        self.fail = False

    async def send(self, kind, recipient_id, payload) -> bool:
        if self.fail:
            raise RuntimeError("notification channel down")
        self.sent.append((kind, recipient_id, payload))
        return True

    def of_kind(self, kind: str) -> List[Tuple[str, uuid.UUID, Dict[str, Any]]]:
        return [n for n in self.sent if n[0] == kind]


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def settings():
    return Settings(WORKERS_ENABLED=False, NOTIFICATION_WEBHOOK_URL="")


@pytest.fixture
def context(settings, dispatcher, clock):
    return build_context(settings, dispatcher=dispatcher, clock=clock)


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session):
    """manager <- agent, agent2 (same team, territory west); manager has no manager."""
    manager = User(email="manager@example.com", full_name="Morgan Manager", team_id=None)
    session.add(manager)
    await session.commit()

    agent = User(
        email="agent@example.com",
        full_name="Alex Agent",
        manager_id=manager.id,
        team_id=TEAM_ID,
        territory="west",
        skills=["call"],
    )
    agent2 = User(
        email="agent2@example.com",
        full_name="Sam Second",
        manager_id=manager.id,
        team_id=TEAM_ID,
        territory="west",
        skills=["demo"],
    )
    session.add(agent)
    session.add(agent2)
    await session.commit()
    for user in (manager, agent, agent2):
        await session.refresh(user)
    return {"manager": manager, "agent": agent, "agent2": agent2}


@pytest.fixture
def agent(users):
    return users["agent"]


@pytest.fixture
def manager(users):
    return users["manager"]


@pytest_asyncio.fixture
async def lead(session, agent):
    lead = Lead(name="Dana Prospect", company="Acme Corp", territory="west", owner_id=agent.id)
    session.add(lead)
    await session.commit()
    await session.refresh(lead)
    return lead


@pytest_asyncio.fixture
async def call(session, lead, agent):
    call = Call(
        lead_id=lead.id,
        user_id=agent.id,
        outcome="callback_requested",
        started_at=NOW - timedelta(minutes=10),
        ended_at=NOW,
    )
    session.add(call)
    await session.commit()
    await session.refresh(call)
    return call
