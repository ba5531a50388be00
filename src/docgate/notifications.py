"""Notification sinks. Nothing is delivered: messages are logged."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Fire-and-forget message delivery."""

    async def send(self, to_email: str, message: str) -> None:
        ...


class LoggingNotificationSink:
    """Mock email provider that writes each message to the log."""

    def __init__(self, preview_chars: int | None = None):
        self.preview_chars = preview_chars

    async def send(self, to_email: str, message: str) -> None:
        text = message
        if self.preview_chars is not None and len(message) > self.preview_chars:
            text = message[:self.preview_chars] + "..."
        logger.info(f"[MOCK NOTIFICATION] Message sent to {to_email}: {text}")


async def notify(sink: NotificationSink, to_email: str, message: str) -> None:
    """Send through ``sink`` without ever failing the caller."""
    try:
        await sink.send(to_email, message)
    except Exception:
        logger.exception(f"Failed to send notification to {to_email}")
