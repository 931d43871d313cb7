"""Pydantic models for service layer return types.

These models give callers (the HTTP router, the sync coordinator, tests) a
typed outcome instead of raw task records.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from famtasks.domain.events import TaskEvent
from famtasks.domain.task import Task, TaskPriority


class TaskOperationResult(BaseModel):
    """Outcome of a lifecycle operation.

    ``already_processed`` marks an idempotent repeat: nothing was written, no
    event was published, and ``notice`` explains what the caller ran into.
    """

    task: Task
    event: TaskEvent | None = None
    already_processed: bool = False
    notice: str | None = None


class ReconcileResult(BaseModel):
    """Result of merging an authoritative task into a client's optimistic view."""

    task: Task
    notice: str | None = None
    already_processed: bool = False
    discarded_local: bool = False


class UpcomingOccurrence(BaseModel):
    """A future occurrence of a recurring template that has not been materialized yet."""

    template_id: str
    title: str
    scheduled_date: date
    due_date: datetime
    assigned_to: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM


class TaskStats(BaseModel):
    """Task counters for a family, optionally narrowed to one member."""

    total: int
    pending: int
    in_progress: int
    completed: int
    cancelled: int
    overdue: int
    awaiting_validation: int
    completion_rate: float = Field(description="Completed share of non-cancelled tasks, in percent")


class EscalationSummary(BaseModel):
    """Open tasks grouped by reminder escalation level."""

    family_id: str
    total_escalated: int
    by_level: dict[int, int]
    escalated_task_ids: list[str]
