"""
Common schemas used across multiple endpoints.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class MessageResponse(BaseModel):
    """Simple message response."""
    message: str

    class Config:
        json_schema_extra = {"example": {"message": "Task deleted"}}


class ErrorResponse(BaseModel):
    """Error body produced by the engine error handler."""
    detail: str

    class Config:
        json_schema_extra = {"example": {"detail": "Cannot transition from 'completed' to 'in_progress'"}}


# Domain errors documented on every router
ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response."""
    items: List[T]
    total: int
    page: int
    limit: int
    pages: int
    has_next: bool
    has_prev: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "1.0.0"
    workers_running: bool = False
    indexed_tasks: int = 0


class ActivityEntry(BaseModel):
    """One audit-trail row for a task or followup."""
    id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    meta_data: Dict[str, Any] = {}
    created_at: datetime

    class Config:
        from_attributes = True
