"""Domain events emitted by task transitions."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

from famtasks.domain.task import Task, TaskStatus


class TaskEventType(StrEnum):
    """What happened to the task."""

    CREATED = "created"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REOPENED = "reopened"
    VALIDATED = "validated"


class TaskEvent(BaseModel):
    """A committed change to one task, carrying the task as stored after the change."""

    task_id: str
    family_id: str
    event_type: TaskEventType
    from_status: TaskStatus | None
    to_status: TaskStatus
    actor: str
    timestamp: datetime
    revision: int
    task: Task

    @classmethod
    def for_task(
        cls,
        task: Task,
        event_type: TaskEventType,
        *,
        actor: str,
        from_status: TaskStatus | None = None,
        timestamp: datetime | None = None,
    ) -> "TaskEvent":
        """Build the event for a change that produced ``task`` (as stored)."""
        return cls(
            task_id=task.id,
            family_id=task.family_id,
            event_type=event_type,
            from_status=from_status,
            to_status=task.status,
            actor=actor,
            timestamp=timestamp or task.updated_at,
            revision=task.revision,
            task=task,
        )
