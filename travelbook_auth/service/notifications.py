from __future__ import annotations

from enum import Enum
from typing import Protocol

from travelbook_auth.logging import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notifier(Protocol):
    """Shows short messages to the signed-in user (toasts in the admin UI)."""

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None: ...


class LoggingNotifier:
    """Notifier used when no UI is attached; messages go to the log."""

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        logger.info("user_notification", message=message, level=NotificationLevel(level).value)
