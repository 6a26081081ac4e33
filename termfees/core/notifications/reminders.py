"""Fee reminder delivery.

Reminders are fire-and-forget: a failed delivery is logged and reported to
the caller as ``False``, never raised into billing or payment code.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

logger = logging.getLogger(__name__)


class ReminderChannel(StrEnum):
    SMS = "sms"
    EMAIL = "email"


@dataclass(frozen=True)
class ReminderMessage:
    student_id: int
    channel: ReminderChannel
    recipient: str | None
    subject: str
    content: str


class ReminderSender(Protocol):
    """Transport for reminders (SMS gateway, SMTP, ...)."""

    async def send(self, message: ReminderMessage) -> None: ...


class LoggingReminderSender:
    """Default sender: writes the reminder to the log instead of delivering it."""

    async def send(self, message: ReminderMessage) -> None:
        logger.info(
            "Reminder via %s to student %s (%s): %s",
            message.channel,
            message.student_id,
            message.recipient or "no contact",
            message.subject,
        )


_default_sender: ReminderSender = LoggingReminderSender()


def get_reminder_sender() -> ReminderSender:
    return _default_sender


async def dispatch_reminder(sender: ReminderSender, message: ReminderMessage) -> bool:
    """Send one reminder; returns False instead of raising when delivery fails."""
    try:
        await sender.send(message)
    except Exception:
        logger.exception(
            "Reminder delivery failed for student %s via %s", message.student_id, message.channel
        )
        return False
    return True
