"""
Notification delivery boundary.

Notification records are persisted on the request together with the state
change. What happens here is delivery, which this service only hands off.
"""

import logging
from typing import Protocol

from .approval_engine import NotificationEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Notifier collaborator: queue a notice for delivery."""

    async def enqueue(self, notification: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Notifier that records each notice in the application log."""

    def __init__(self, channel: str = "in_app"):
        self.channel = channel

    async def enqueue(self, notification: NotificationEvent) -> None:
        # Delivery transport (email, push) plugs in here
        logger.info(
            f"[{self.channel.upper()}] To: {notification.recipient_id}, "
            f"Type: {notification.notification_type.value}, "
            f"Request: {notification.request_id}, Message: {notification.message}"
        )
