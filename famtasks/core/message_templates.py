"""Centralized message templates for task notifications.

All user-facing notification strings are defined here so wording can be
changed in one place.
"""


def task_reminder(*, task_title: str, due_time: str) -> str:
    return f"⏰ Reminder: *{task_title}* is due at {due_time}."


def task_escalation(*, task_title: str, assignee_name: str, level: int, overdue_minutes: int) -> str:
    return (
        f"⚠️ *{task_title}* assigned to {assignee_name} is {overdue_minutes} minutes overdue "
        f"(escalation level {level})."
    )


def already_completed(*, completed_by: str | None) -> str:
    return f"This task was already completed by {completed_by or 'someone else'}."


def already_updated() -> str:
    return "This task was already updated on another device."
