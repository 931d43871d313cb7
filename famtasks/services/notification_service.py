"""Notification dispatch: last status check before a reminder reaches the transport."""

import logging
from datetime import UTC

from famtasks.core import message_templates
from famtasks.core.logging import span
from famtasks.core.ports import NotificationTransport, TaskStore
from famtasks.domain.reminder import ReminderEvent
from famtasks.domain.task import Task


logger = logging.getLogger(__name__)


def render_reminder(event: ReminderEvent, task: Task) -> str:
    """Build the user-facing text for a reminder event."""
    if event.escalation_level == 0 or task.due_date is None:
        due_time = task.due_date.astimezone(UTC).strftime("%H:%M UTC") if task.due_date else "soon"
        return message_templates.task_reminder(task_title=task.title, due_time=due_time)

    due = task.due_date if task.due_date.tzinfo else task.due_date.replace(tzinfo=UTC)
    overdue_minutes = max(int((event.fired_at - due).total_seconds() // 60), 0)
    return message_templates.task_escalation(
        task_title=task.title,
        assignee_name=task.assigned_to or "nobody",
        level=event.escalation_level,
        overdue_minutes=overdue_minutes,
    )


class LoggingTransport:
    """Transport that only logs; stands in where no push provider is configured."""

    def __init__(self) -> None:
        self.sent: list[tuple[ReminderEvent, str]] = []

    async def send(self, event: ReminderEvent, task: Task) -> bool:
        text = render_reminder(event, task)
        self.sent.append((event, text))
        logger.info("Notify %s: %s", event.target_member_id, text)
        return True


class NotificationDispatcher:
    """Hands reminder events to the transport unless the task no longer needs them.

    The task is re-read right before delivery: a reminder computed on a tick
    that raced with completion or cancellation is suppressed here.
    """

    def __init__(self, *, tasks: TaskStore, transport: NotificationTransport) -> None:
        self._tasks = tasks
        self._transport = transport

    async def dispatch(self, event: ReminderEvent) -> bool:
        """Deliver ``event``; returns False when suppressed or delivery failed."""
        with span("notification_service.dispatch"):
            try:
                task = await self._tasks.get(event.task_id)
            except KeyError:
                logger.info("Task %s is gone; dropping reminder", event.task_id)
                return False

            if not task.is_open or not task.reminder_enabled:
                logger.info(
                    "Suppressing level %d reminder for task %s (status=%s)",
                    event.escalation_level,
                    task.id,
                    task.status,
                )
                return False

            try:
                delivered = await self._transport.send(event, task)
            except Exception:
                logger.exception("Failed to deliver reminder for task %s to %s", task.id, event.target_member_id)
                return False

            if not delivered:
                logger.warning("Transport declined reminder for task %s to %s", task.id, event.target_member_id)
            return delivered
