"""
Base interfaces for integration providers.
"""
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Any


class NotificationDispatcher(ABC):
    """Base interface for notification delivery (email, push, SMS, webhooks)."""

    @abstractmethod
    async def send(
        self,
        kind: str,
        recipient_id: uuid.UUID,
        payload: Dict[str, Any]
    ) -> bool:
        """
        Deliver a notification.

        kind is one of reminder, overdue, digest, escalation, assignment.
        Returns True when the channel accepted the message; may raise on
        transport failure.
        """
        pass
