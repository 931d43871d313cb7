"""Ports (interfaces) the lifecycle engine depends on.

Collaborators outside the engine (storage, roles, points, notification
delivery) and the engine's own scheduler state are reached through these
Protocols so each can be swapped or faked independently.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from famtasks.domain.events import TaskEvent
from famtasks.domain.reminder import ClaimOutcome, ReminderEvent, ReminderState
from famtasks.domain.task import Task, TaskStatus
from famtasks.domain.template import RecurringTemplate


if TYPE_CHECKING:
    from famtasks.services.reminder_policy import ReminderPolicy


TaskEventHandler = Callable[[TaskEvent], Awaitable[None]]


class TaskStore(Protocol):
    """CRUD over persisted tasks; owns no business logic."""

    async def create(self, task: Task) -> Task: ...

    async def update(self, task_id: str, patch: dict[str, Any], *, expected_revision: int | None = None) -> Task: ...

    async def get(self, task_id: str) -> Task: ...

    async def query_by_family(self, family_id: str, *, status: TaskStatus | None = None) -> list[Task]: ...

    async def query_open(self, family_id: str) -> list[Task]: ...

    async def list_family_ids(self) -> list[str]: ...


class RoleProvider(Protocol):
    async def is_manager(self, member_id: str, family_id: str) -> bool: ...

    async def get_managers(self, family_id: str) -> list[str]: ...


class PointsLedger(Protocol):
    async def award(self, member_id: str, points: int, reason: str) -> bool: ...


class NotificationTransport(Protocol):
    """Delivery mechanics live behind this port; the engine only decides when."""

    async def send(self, event: ReminderEvent, task: Task) -> bool: ...


class ReminderStateStore(Protocol):
    """Active reminder set and per-level fire claims, owned by the reminder scheduler."""

    async def set_active(self, state: ReminderState) -> None: ...

    async def remove_active(self, task_id: str) -> None: ...

    async def get_active(self, task_id: str) -> ReminderState | None: ...

    async def list_active(self, family_id: str | None = None) -> list[ReminderState]: ...

    async def claim_fire(self, task_id: str, level: int, *, due_key: str) -> ClaimOutcome: ...

    async def release_claim(self, task_id: str, level: int, *, due_key: str) -> None: ...


class TemplateStore(Protocol):
    """Recurring templates and their last-materialized dates, owned by the recurrence engine."""

    async def save(self, template: RecurringTemplate) -> RecurringTemplate: ...

    async def get(self, template_id: str) -> RecurringTemplate: ...

    async def delete(self, template_id: str) -> None: ...

    async def list(self, family_id: str | None = None) -> list[RecurringTemplate]: ...


class ReminderPolicyProvider(Protocol):
    """Resolves the reminder policy that applies to a family."""

    async def get_policy(self, family_id: str) -> "ReminderPolicy": ...
