"""
sgdea_services.notifications -- Notification delivery collaborators.

``NotificationSender`` is the narrow interface to whatever transport the
host uses (mail, in-app inbox).  Two implementations ship: one that
writes to the ``sgdea.notifications`` logger and one that keeps messages
in memory for inspection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID

from sgdea_kernel.domain.effects import NotificationPriority
from sgdea_kernel.logging_config import get_logger

logger = get_logger("notifications")


@runtime_checkable
class NotificationSender(Protocol):
    def notify(self, user_id: UUID, message: str, priority: NotificationPriority) -> None:
        ...


class LoggingNotificationSender:
    """Delivers by logging; the default when no transport is configured."""

    def notify(self, user_id: UUID, message: str, priority: NotificationPriority) -> None:
        logger.info(
            "notification_sent",
            extra={
                "user_id": str(user_id),
                "notification": message,
                "priority": NotificationPriority(priority).value,
            },
        )


@dataclass(frozen=True)
class SentNotification:
    user_id: UUID
    message: str
    priority: NotificationPriority


class RecordingNotificationSender:
    """Keeps every delivered notification in ``sent``."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    def notify(self, user_id: UUID, message: str, priority: NotificationPriority) -> None:
        self.sent.append(SentNotification(user_id, message, NotificationPriority(priority)))

    def for_user(self, user_id: UUID) -> list[SentNotification]:
        return [n for n in self.sent if n.user_id == user_id]
