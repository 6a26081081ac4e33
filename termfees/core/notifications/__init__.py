from termfees.core.notifications.reminders import (
    LoggingReminderSender,
    ReminderChannel,
    ReminderMessage,
    ReminderSender,
    dispatch_reminder,
    get_reminder_sender,
)

__all__ = [
    "LoggingReminderSender",
    "ReminderChannel",
    "ReminderMessage",
    "ReminderSender",
    "dispatch_reminder",
    "get_reminder_sender",
]
