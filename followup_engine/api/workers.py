"""
Background worker API routes - status and manual runs.
"""
from typing import List

from fastapi import APIRouter, Depends

from followup_engine.api.deps import get_current_user, get_workers
from followup_engine.models.user import User
from followup_engine.schemas.worker import WorkerResult, WorkerStatus
from followup_engine.workers.periodic import WorkerRunner

router = APIRouter(prefix="/api/workers", tags=["workers"])


@router.get("/", response_model=List[WorkerStatus])
async def list_workers(
    current_user: User = Depends(get_current_user),
    workers: WorkerRunner = Depends(get_workers)
):
    return workers.status()


@router.post("/{name}/run", response_model=WorkerResult)
async def run_worker(
    name: str,
    current_user: User = Depends(get_current_user),
    workers: WorkerRunner = Depends(get_workers)
):
    """Run one worker now. A run already in progress is reported as skipped."""
    return await workers.run_once(name)
