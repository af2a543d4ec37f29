"""Data models for ChoreFlow notifications"""
from choreflow.models.escalation import (
    EscalationAction,
    EscalationConfig,
    EscalationLevel,
    EscalationRecord,
)
from choreflow.models.notification import (
    EventType,
    NotificationRule,
    QueuedNotification,
    Severity,
    UserNotificationPreferences,
)
from choreflow.models.reminder import ReminderPattern, ReminderStrategy
from choreflow.models.task import RecurrenceRule, ScheduledTaskTemplate, Task

__all__ = [
    "EscalationAction",
    "EscalationConfig",
    "EscalationLevel",
    "EscalationRecord",
    "EventType",
    "NotificationRule",
    "QueuedNotification",
    "Severity",
    "UserNotificationPreferences",
    "ReminderPattern",
    "ReminderStrategy",
    "RecurrenceRule",
    "ScheduledTaskTemplate",
    "Task",
]
