"""Domain models and DTOs."""

from famtasks.domain.events import TaskEvent, TaskEventType
from famtasks.domain.reminder import (
    ClaimOutcome,
    FamilyReminderSettings,
    ReminderEvent,
    ReminderOverrides,
    ReminderState,
)
from famtasks.domain.task import (
    SYSTEM_ACTOR,
    Actor,
    RecurrenceFrequency,
    RecurrencePattern,
    Task,
    TaskCategory,
    TaskPriority,
    TaskStatus,
    ValidationStatus,
)
from famtasks.domain.template import RecurringTemplate


__all__ = [
    "SYSTEM_ACTOR",
    "Actor",
    "ClaimOutcome",
    "FamilyReminderSettings",
    "RecurrenceFrequency",
    "RecurrencePattern",
    "RecurringTemplate",
    "ReminderOverrides",
    "ReminderEvent",
    "ReminderState",
    "Task",
    "TaskCategory",
    "TaskEvent",
    "TaskEventType",
    "TaskPriority",
    "TaskStatus",
    "ValidationStatus",
]
