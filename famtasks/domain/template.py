"""Recurring task template (schedule) owned by the recurrence engine."""

from datetime import date

from pydantic import BaseModel, Field

from famtasks.core.config import settings
from famtasks.domain.task import RecurrencePattern, TaskCategory, TaskPriority


class RecurringTemplate(BaseModel):
    """Schedule for a recurring task: family, template content, assignee and pattern.

    ``next_run_date`` and ``last_materialized_date`` are engine bookkeeping and
    are only ever written by the recurrence engine.
    """

    id: str = Field(default="", description="Assigned on registration when empty")
    family_id: str
    title: str
    description: str = ""
    category: TaskCategory | None = None
    assigned_to: str | None = None
    created_by: str = "system"
    priority: TaskPriority = TaskPriority.MEDIUM
    points: int = Field(default=0, ge=0)
    requires_photo: bool = False
    reminder_enabled: bool = True

    pattern: RecurrencePattern
    timezone: str = Field(default_factory=lambda: settings.default_timezone)
    start_date: date | None = Field(default=None, description="First eligible occurrence date (default: today)")

    is_active: bool = True
    next_run_date: date | None = None
    last_materialized_date: date | None = None
