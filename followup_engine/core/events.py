"""
Domain events and the async publish/subscribe bus.

Every event is a frozen dataclass inheriting from ``EngineEvent``. Services
publish after the store has committed the change; subscribers (notification
fan-out, metrics) react. A failing subscriber is logged and skipped so it can
never break the operation that published the event.
"""
from __future__ import annotations

import inspect
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from followup_engine.core.clock import utcnow

logger = logging.getLogger(__name__)

Handler = Callable[["EngineEvent"], Any]  # sync or async callable


@dataclass(frozen=True)
class EngineEvent:
    """Base class for all engine events."""

    occurred_at: datetime = field(default_factory=utcnow)
    actor_id: Optional[uuid.UUID] = None


# Task lifecycle

@dataclass(frozen=True)
class TaskCreated(EngineEvent):
    task_id: Optional[uuid.UUID] = None
    assignee_id: Optional[uuid.UUID] = None
    source: str = "manual"  # manual, call_outcome, followup, automation, recurrence


@dataclass(frozen=True)
class TaskAssigned(EngineEvent):
    task_id: Optional[uuid.UUID] = None
    previous_assignee_id: Optional[uuid.UUID] = None
    assignee_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class TaskStarted(EngineEvent):
    task_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class TaskCompleted(EngineEvent):
    task_id: Optional[uuid.UUID] = None
    outcome: Optional[str] = None


@dataclass(frozen=True)
class TaskUnblocked(EngineEvent):
    task_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class TaskPriorityChanged(EngineEvent):
    task_id: Optional[uuid.UUID] = None
    previous_priority: Optional[str] = None
    priority: Optional[str] = None


@dataclass(frozen=True)
class TaskEscalated(EngineEvent):
    task_id: Optional[uuid.UUID] = None
    escalated_to: Optional[uuid.UUID] = None
    reason: str = ""


# Followup lifecycle

@dataclass(frozen=True)
class FollowupCreated(EngineEvent):
    followup_id: Optional[uuid.UUID] = None
    lead_id: Optional[uuid.UUID] = None
    created_via: str = "manual"


@dataclass(frozen=True)
class FollowupRescheduled(EngineEvent):
    followup_id: Optional[uuid.UUID] = None
    previous_date: Optional[datetime] = None
    new_date: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class FollowupCompleted(EngineEvent):
    followup_id: Optional[uuid.UUID] = None
    outcome: Optional[str] = None


# Sequence enrollment lifecycle

@dataclass(frozen=True)
class EnrollmentCreated(EngineEvent):
    enrollment_id: Optional[uuid.UUID] = None
    sequence_id: Optional[uuid.UUID] = None
    lead_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class EnrollmentAdvanced(EngineEvent):
    enrollment_id: Optional[uuid.UUID] = None
    current_step: int = 0


@dataclass(frozen=True)
class EnrollmentFinished(EngineEvent):
    enrollment_id: Optional[uuid.UUID] = None
    status: str = "completed"  # completed or exited
    reason: Optional[str] = None


class AsyncEventBus:
    """
    Async publish/subscribe for engine events.

    Handlers may be regular callables or coroutines; the bus awaits
    coroutines transparently. Global handlers run before typed handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[EngineEvent], list[Handler]] = defaultdict(list)
        self._global_handlers: list[Handler] = []

    def subscribe(self, event_type: type[EngineEvent], handler: Handler) -> None:
        """Register *handler* for *event_type*."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register *handler* for every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: type[EngineEvent], handler: Handler) -> bool:
        """Remove *handler* from *event_type*. Returns True if found."""
        try:
            self._handlers.get(event_type, []).remove(handler)
            return True
        except ValueError:
            return False

    async def publish(self, event: EngineEvent) -> None:
        """Publish *event* to all matching handlers."""
        handlers = list(self._global_handlers) + list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in handler {handler!r} for {type(event).__name__}")

    def handler_count(self, event_type: type[EngineEvent] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(hs) for hs in self._handlers.values()) + len(self._global_handlers)


class EngineMetrics:
    """Counts published events per type; subscribed to the bus at startup."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = defaultdict(int)

    def __call__(self, event: EngineEvent) -> None:
        self.counts[type(event).__name__] += 1

    def snapshot(self) -> dict[str, int]:
        return dict(self.counts)
