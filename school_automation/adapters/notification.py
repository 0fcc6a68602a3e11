"""
NotificationSender protocol and the logging sender.

The school application's delivery channel is a logged placeholder; the
LoggingNotificationSender keeps that behaviour behind the protocol so a
real e-mail/SMS sender can be dropped in without touching the jobs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import uuid4

from school_kernel.logging_config import get_logger

from school_automation.domain.reminders import NotificationMessage

logger = get_logger("automation.notification")


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


@runtime_checkable
class NotificationSender(Protocol):
    def send(self, recipient: str, message: NotificationMessage) -> DeliveryResult:
        """Deliver one message.  Failures are reported, not raised."""
        ...


class LoggingNotificationSender:
    """Writes each notification to the structured log and reports success."""

    def send(self, recipient: str, message: NotificationMessage) -> DeliveryResult:
        message_id = f"msg_{uuid4().hex[:12]}"
        logger.info(
            "notification_sent",
            extra={
                "recipient": recipient,
                "subject": message.subject,
                "body": message.body,
                "message_id": message_id,
            },
        )
        return DeliveryResult(success=True, message_id=message_id)
