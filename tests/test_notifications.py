import json
import uuid

import httpx
import pytest

from followup_engine.models.task import Task
from followup_engine.services.integrations import notifications
from followup_engine.services.integrations.notifications import (
    LoggingNotificationDispatcher,
    WebhookNotificationDispatcher,
    get_notification_dispatcher,
)
from followup_engine.services.notification_service import NotificationService

from tests.conftest import NOW


def webhook(status_code=200):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(status_code)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotificationDispatcher("http://notify.test/hook", client=client), received


@pytest.mark.asyncio
async def test_webhook_posts_json_envelope():
    dispatcher, received = webhook()
    recipient = uuid.uuid4()
    task = Task(title="Send pricing", assigned_to=recipient, created_by=recipient, due_date=NOW)

    assert await NotificationService(dispatcher).reminder(task) is True

    body = received[0]
    assert body["kind"] == "reminder"
    assert body["recipient_id"] == str(recipient)
    assert body["payload"]["item_type"] == "task"
    assert body["payload"]["due"] == "2025-03-05T10:00:00"
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_delivery_failure_reports_false():
    dispatcher, _ = webhook(status_code=503)
    service = NotificationService(dispatcher)

    assert await service.notify("digest", uuid.uuid4(), {"message": "hi"}) is False
    assert await service.notify("digest", None, {"message": "hi"}) is False
    await dispatcher.aclose()


def test_dispatcher_selection(monkeypatch):
    monkeypatch.setattr(notifications, "_current_dispatcher", None)
    monkeypatch.setattr(notifications.settings, "NOTIFICATION_WEBHOOK_URL", "")
    assert isinstance(get_notification_dispatcher(), LoggingNotificationDispatcher)

    monkeypatch.setattr(notifications, "_current_dispatcher", None)
    monkeypatch.setattr(notifications.settings, "NOTIFICATION_WEBHOOK_URL", "http://notify.test/hook")
    dispatcher = get_notification_dispatcher()
    assert isinstance(dispatcher, WebhookNotificationDispatcher)
    assert get_notification_dispatcher() is dispatcher
