"""
Notification dispatcher implementations.
Log-only dispatcher by default; webhook dispatcher when a URL is configured.
"""
import logging
import uuid
from typing import Dict, Any, Optional

import httpx
from fastapi.encoders import jsonable_encoder

from followup_engine.config import settings
from followup_engine.services.integrations.base import NotificationDispatcher

logger = logging.getLogger(__name__)


class LoggingNotificationDispatcher(NotificationDispatcher):
    """
    Development dispatcher.
    Logs notifications instead of delivering them.
    """

    async def send(self, kind: str, recipient_id: uuid.UUID, payload: Dict[str, Any]) -> bool:
        logger.info(f"[NOTIFY] {kind} -> {recipient_id}: {payload.get('title') or payload.get('message', '')}")
        return True


class WebhookNotificationDispatcher(NotificationDispatcher):
    """
    POSTs ``{kind, recipient_id, payload}`` as JSON to a delivery service.
    """

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, kind: str, recipient_id: uuid.UUID, payload: Dict[str, Any]) -> bool:
        body = jsonable_encoder({
            "kind": kind,
            "recipient_id": recipient_id,
            "payload": payload,
        })
        response = await self.client.post(self.url, json=body)
        response.raise_for_status()
        return True

    async def aclose(self) -> None:
        await self.client.aclose()


# Dispatcher factory
_current_dispatcher: NotificationDispatcher = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the current dispatcher instance."""
    global _current_dispatcher
    if _current_dispatcher is None:
        if settings.NOTIFICATION_WEBHOOK_URL:
            _current_dispatcher = WebhookNotificationDispatcher(
                settings.NOTIFICATION_WEBHOOK_URL,
                timeout=settings.NOTIFICATION_WEBHOOK_TIMEOUT
            )
        else:
            _current_dispatcher = LoggingNotificationDispatcher()
    return _current_dispatcher
