"""
Worker schemas.
"""
from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel


class WorkerResult(BaseModel):
    worker: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    details: Dict[str, Any] = {}


class WorkerStatus(BaseModel):
    name: str
    interval_seconds: Optional[float]
    daily_at: Optional[str]
    running: bool
    last_run_at: Optional[datetime]
    last_result: Optional[WorkerResult]
