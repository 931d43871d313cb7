"""Task domain models and enums."""

from datetime import UTC, date, datetime, time
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field, model_validator

from famtasks.core.config import Constants


class TaskStatus(StrEnum):
    """Task lifecycle state."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class TaskPriority(StrEnum):
    """How urgent a task is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ValidationStatus(StrEnum):
    """Photo validation sub-state, meaningful only for photo-required tasks."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RecurrenceFrequency(StrEnum):
    """How often a recurring task repeats."""

    DAILY = "daily"
    WEEKLY = "weekly"


class TaskCategory(BaseModel):
    """Family-defined task category (referenced, not owned, by tasks)."""

    id: str
    name: str
    color: str = "#9E9E9E"
    icon: str = "checkbox"


class RecurrencePattern(BaseModel):
    """Schedule parameters for a recurring task.

    Days of week use 0 = Sunday .. 6 = Saturday. Structural checks (weekly
    patterns need days, interval must be positive) are made when a template is
    registered, not here, so stored occurrences always load.
    """

    frequency: RecurrenceFrequency
    interval: int = Field(default=1, description="Repeat every N days or weeks")
    days_of_week: list[int] = Field(default_factory=list, description="0=Sunday .. 6=Saturday")
    time_of_day: time = Field(default=time(hour=Constants.DEFAULT_OCCURRENCE_HOUR))
    end_date: date | None = Field(default=None, description="No occurrences are generated after this date")


class Actor(BaseModel):
    """A member acting on a task, with the capability resolved by the role provider."""

    member_id: str
    is_manager: bool = False


SYSTEM_ACTOR = Actor(member_id="system", is_manager=True)


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID")
    family_id: str = Field(..., description="Owning family")
    title: str = Field(..., description="Task title (e.g., 'Empty the dishwasher')")
    description: str = Field(default="", description="Detailed task description")
    category: TaskCategory | None = None

    assigned_to: str | None = Field(default=None, description="Member responsible for the task")
    assigned_by: str | None = None
    created_by: str = Field(..., description="Member who created the task")

    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None

    requires_photo: bool = False
    photo_url: str | None = None
    validation_status: ValidationStatus = ValidationStatus.NONE
    validation_notes: str | None = None
    photo_validated_by: str | None = None
    rejection_count: int = Field(default=0, ge=0)

    completed_at: datetime | None = None
    completed_by: str | None = None

    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None
    template_id: str | None = Field(default=None, description="Schedule key of the template that produced this")
    scheduled_date: date | None = Field(default=None, description="Occurrence date within the schedule")

    reminder_enabled: bool = True
    last_reminder_sent: datetime | None = None
    escalation_level: int = Field(default=0, ge=0)

    points: int = Field(default=0, ge=0)
    points_awarded: bool = False

    revision: int = Field(default=0, ge=0, description="Store-assigned document revision")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_invariants(self) -> Self:
        if self.validation_status != ValidationStatus.NONE:
            if not self.requires_photo:
                msg = "validation_status is only meaningful for photo-required tasks"
                raise ValueError(msg)
            if not self.photo_url:
                msg = "photo_url must be present before validation_status leaves 'none'"
                raise ValueError(msg)
        if self.status == TaskStatus.COMPLETED and self.validation_status == ValidationStatus.REJECTED:
            msg = "a task cannot be completed while its validation is rejected"
            raise ValueError(msg)
        if self.is_recurring and self.recurrence_pattern is None:
            msg = "recurring tasks need a recurrence_pattern"
            raise ValueError(msg)
        return self

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def reminder_fired(self) -> bool:
        """Whether a reminder at the current escalation level has already gone out."""
        return self.last_reminder_sent is not None

    def evolve(self, **changes: Any) -> "Task":  # noqa: ANN401
        """Return a re-validated copy with ``changes`` applied."""
        return Task.model_validate({**self.model_dump(), **changes})

    def to_record(self) -> dict[str, Any]:
        """Serialize for the document store."""
        return self.model_dump(mode="json", exclude={"revision"})

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Task":
        """Build a task from a document store record."""
        data = {key: value for key, value in record.items() if key not in {"created", "updated"}}
        return cls.model_validate(data)
