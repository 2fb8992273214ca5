"""
Engine context - the process-wide collaborators every service needs.

Built once at startup (or per test) and passed explicitly to services,
workers and API handlers.
"""
from dataclasses import dataclass, field
from typing import Optional

from followup_engine.config import Settings, settings as default_settings
from followup_engine.core.clock import Clock, utcnow
from followup_engine.core.events import AsyncEventBus, EngineMetrics
from followup_engine.services.integrations.base import NotificationDispatcher
from followup_engine.services.integrations.notifications import get_notification_dispatcher
from followup_engine.services.notification_service import NotificationService
from followup_engine.services.priority_scheduler import PriorityScheduler


@dataclass
class EngineContext:
    settings: Settings
    scheduler: PriorityScheduler
    notifications: NotificationService
    events: AsyncEventBus
    metrics: EngineMetrics
    clock: Clock = field(default=utcnow)

    def now(self):
        return self.clock()


def build_context(
    settings: Optional[Settings] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    clock: Clock = utcnow
) -> EngineContext:
    """Wire a fresh context. Metrics subscribe to every event."""
    events = AsyncEventBus()
    metrics = EngineMetrics()
    events.subscribe_all(metrics)
    return EngineContext(
        settings=settings or default_settings,
        scheduler=PriorityScheduler(clock=clock),
        notifications=NotificationService(dispatcher or get_notification_dispatcher()),
        events=events,
        metrics=metrics,
        clock=clock,
    )
