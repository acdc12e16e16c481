"""
Notification delivery.

The engine hands events to a Notifier after the state they describe has been
committed. Delivery is best-effort: callers log and swallow failures.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from .events import NotificationEvent


class Notifier(ABC):
    """Delivers notification events to recipients."""

    @abstractmethod
    def notify(
        self,
        event: NotificationEvent,
        recipients: list[str],
        template_data: dict[str, Any],
    ) -> None:
        """Send one event. May raise; the engine never lets that undo a commit."""


class LoggingNotifier(Notifier):
    """Writes each notification as a structured log event."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.logger = logger or structlog.get_logger(component="notifications")

    def notify(
        self,
        event: NotificationEvent,
        recipients: list[str],
        template_data: dict[str, Any],
    ) -> None:
        self.logger.info(
            "notification_sent",
            event_type=type(event).__name__,
            template=event.template_name,
            subject=event.subject,
            recipients=recipients,
            template_data=template_data,
        )


class NullNotifier(Notifier):
    """Discards every notification."""

    def notify(
        self,
        event: NotificationEvent,
        recipients: list[str],
        template_data: dict[str, Any],
    ) -> None:
        return None
