from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock

from flask import current_app

from app.core.side_effects import dispatch_side_effect

logger = logging.getLogger(__name__)

EXTENSION_KEY = "notifications"


class NotificationService:
    """Transactional mail capability. Implementations must not raise for delivery problems they can absorb."""

    def send_account_created(self, user: dict, temporary_password: str) -> None:
        raise NotImplementedError


class LogNotificationService(NotificationService):
    def send_account_created(self, user: dict, temporary_password: str) -> None:
        logger.info(
            "Account created mail queued for user_id=%s role=%s",
            user["id"],
            user["role"],
        )


@dataclass
class SentMessage:
    kind: str
    to: str
    context: dict


@dataclass
class OutboxNotificationService(NotificationService):
    messages: list[SentMessage] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def send_account_created(self, user: dict, temporary_password: str) -> None:
        with self._lock:
            self.messages.append(
                SentMessage(
                    kind="account_created",
                    to=user["email"],
                    context={
                        "name": user["name"],
                        "role": user["role"],
                        "email": user["email"],
                        "password": temporary_password,
                    },
                )
            )


def notification_service() -> NotificationService:
    return current_app.extensions[EXTENSION_KEY]


def notify_account_created(user_payload: dict, temporary_password: str) -> None:
    service = notification_service()
    dispatch_side_effect(
        "account_created",
        service.send_account_created,
        user_payload,
        temporary_password,
    )
