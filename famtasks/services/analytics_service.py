"""Analytics service for family task statistics.

This module provides functions for:
- Task counters and completion rate per family or member
- Listing overdue tasks
- Summarizing reminder escalations

Key Concepts:
- Overdue: an open task whose due date has passed.
- Completion rate: completed tasks as a share of all tasks that were not cancelled.
- Escalated: an open task whose reminder reached level 1 or higher.
"""

import logging
from datetime import UTC, datetime

from famtasks.core.logging import span
from famtasks.core.ports import TaskStore
from famtasks.domain.task import Task, TaskStatus, ValidationStatus
from famtasks.models.service_models import EscalationSummary, TaskStats


logger = logging.getLogger(__name__)


def _is_overdue(task: Task, now: datetime) -> bool:
    if not task.is_open or task.due_date is None:
        return False
    due = task.due_date if task.due_date.tzinfo else task.due_date.replace(tzinfo=UTC)
    return due < now


async def get_task_stats(
    *,
    store: TaskStore,
    family_id: str,
    member_id: str | None = None,
    now: datetime | None = None,
) -> TaskStats:
    """Count a family's tasks by status, optionally only those assigned to one member."""
    with span("analytics_service.get_task_stats"):
        now = now or datetime.now(UTC)
        tasks = await store.query_by_family(family_id)
        if member_id:
            tasks = [task for task in tasks if task.assigned_to == member_id]

        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1

        countable = len(tasks) - counts[TaskStatus.CANCELLED]
        completion_rate = round(counts[TaskStatus.COMPLETED] / countable * 100, 1) if countable else 0.0

        return TaskStats(
            total=len(tasks),
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            completed=counts[TaskStatus.COMPLETED],
            cancelled=counts[TaskStatus.CANCELLED],
            overdue=sum(1 for task in tasks if _is_overdue(task, now)),
            awaiting_validation=sum(1 for task in tasks if task.validation_status == ValidationStatus.PENDING),
            completion_rate=completion_rate,
        )


async def get_overdue_tasks(*, store: TaskStore, family_id: str, now: datetime | None = None) -> list[Task]:
    """Open tasks past their due date, most overdue first."""
    now = now or datetime.now(UTC)
    tasks = [task for task in await store.query_by_family(family_id) if _is_overdue(task, now)]
    tasks.sort(key=lambda task: task.due_date or now)
    logger.debug("Found %d overdue tasks in family %s", len(tasks), family_id)
    return tasks


async def get_escalation_summary(*, store: TaskStore, family_id: str) -> EscalationSummary:
    """Group the family's open tasks by reminder escalation level."""
    with span("analytics_service.get_escalation_summary"):
        by_level: dict[int, int] = {}
        escalated: list[str] = []
        for task in await store.query_by_family(family_id):
            if not task.is_open or not task.reminder_fired:
                continue
            by_level[task.escalation_level] = by_level.get(task.escalation_level, 0) + 1
            if task.escalation_level > 0:
                escalated.append(task.id)

        return EscalationSummary(
            family_id=family_id,
            total_escalated=len(escalated),
            by_level=by_level,
            escalated_task_ids=escalated,
        )
