"""
API dependencies - shared across all routes.
"""
import uuid
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.context import EngineContext
from followup_engine.core.exceptions import raise_unauthorized
from followup_engine.core.security import verify_token
from followup_engine.database import get_session
from followup_engine.models.user import User
from followup_engine.repositories.user_repo import UserRepository
from followup_engine.workers.periodic import WorkerRunner


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session)
) -> User:
    """Get current authenticated user from JWT token."""
    if credentials is None:
        raise_unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if not payload:
        raise_unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise_unauthorized("Could not validate credentials")

    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        raise_unauthorized("Could not validate credentials")

    user_repo = UserRepository(session)
    user = await user_repo.get(user_uuid)

    if not user:
        raise_unauthorized("User not found")

    if not user.is_active:
        raise_unauthorized("User account is deactivated")

    return user


def get_context(request: Request) -> EngineContext:
    """The engine context built at startup."""
    return request.app.state.context


def get_workers(request: Request) -> WorkerRunner:
    return request.app.state.workers
