"""
Outbound notifications (status changes, match results).
"""

from .events import MatchFound, NotificationEvent, StatusChanged
from .notifier import LoggingNotifier, Notifier, NullNotifier

__all__ = [
    "LoggingNotifier",
    "MatchFound",
    "NotificationEvent",
    "Notifier",
    "NullNotifier",
    "StatusChanged",
]
