"""Task lifecycle service: validate with the state machine, persist, then publish."""

import logging
import uuid
from datetime import UTC, datetime

from famtasks.core.errors import AlreadyProcessedError, StoreConflictError
from famtasks.core.event_bus import EventBus
from famtasks.core.logging import log_with_task_context, span
from famtasks.core.ports import RoleProvider, TaskStore
from famtasks.domain.events import TaskEvent, TaskEventType
from famtasks.domain.task import Actor, Task, TaskCategory, TaskPriority
from famtasks.models.service_models import TaskOperationResult
from famtasks.services.state_machine import TaskAction, transition
from famtasks.services.task_store import diff_task


logger = logging.getLogger(__name__)

# A conflicting write is retried against the fresh document this many times
MAX_CONFLICT_RETRIES = 2


class TaskService:
    """Entry point for every task status change.

    Each operation loads the task, asks the pure state machine for the next
    state, writes it conditional on the loaded revision, and publishes the
    resulting event once the write is durable. A concurrent writer shows up
    as a StoreConflictError; the operation is then re-evaluated against the
    fresh document, which turns a lost race into an idempotent no-op.
    """

    def __init__(self, *, store: TaskStore, roles: RoleProvider, bus: EventBus) -> None:
        self._store = store
        self._roles = roles
        self._bus = bus

    @property
    def store(self) -> TaskStore:
        return self._store

    async def resolve_actor(self, member_id: str, family_id: str) -> Actor:
        is_manager = await self._roles.is_manager(member_id, family_id)
        return Actor(member_id=member_id, is_manager=is_manager)

    async def create_task(
        self,
        *,
        family_id: str,
        title: str,
        created_by: str,
        description: str = "",
        assigned_to: str | None = None,
        due_date: datetime | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        category: TaskCategory | None = None,
        requires_photo: bool = False,
        reminder_enabled: bool = True,
        points: int = 0,
    ) -> Task:
        """Create a pending task and publish its CREATED event.

        Raises:
            StoreConflictError: If the generated id collides with an existing task
        """
        with span("task_service.create_task"):
            task = Task(
                id=uuid.uuid4().hex,
                family_id=family_id,
                title=title,
                description=description,
                category=category,
                assigned_to=assigned_to,
                assigned_by=created_by if assigned_to else None,
                created_by=created_by,
                due_date=due_date,
                priority=priority,
                requires_photo=requires_photo,
                reminder_enabled=reminder_enabled,
                points=points,
            )
            created = await self._store.create(task)
            log_with_task_context(
                logger, "info", "Created task", task_id=created.id, family_id=family_id, assigned_to=assigned_to
            )
            await self._bus.publish(TaskEvent.for_task(created, TaskEventType.CREATED, actor=created_by))
            return created

    async def get_task(self, task_id: str) -> Task:
        return await self._store.get(task_id)

    async def start(self, *, task_id: str, member_id: str) -> TaskOperationResult:
        return await self._run(task_id=task_id, action=TaskAction.START, member_id=member_id)

    async def complete(self, *, task_id: str, member_id: str, photo_url: str | None = None) -> TaskOperationResult:
        """Complete a task, with photo proof when the task requires it.

        Raises:
            PhotoRequiredError: If the task requires a photo and none was given
            NotAuthorizedError: If the member is neither the assignee nor a manager
            InvalidTransitionError: If the task was cancelled
        """
        return await self._run(task_id=task_id, action=TaskAction.COMPLETE, member_id=member_id, photo_url=photo_url)

    async def cancel(self, *, task_id: str, member_id: str) -> TaskOperationResult:
        return await self._run(task_id=task_id, action=TaskAction.CANCEL, member_id=member_id)

    async def reopen(
        self, *, task_id: str, member_id: str, expected_revision: int | None = None, notes: str | None = None
    ) -> TaskOperationResult:
        """Send a completed task back to pending.

        With ``expected_revision`` the reopen only applies to that exact version
        of the task and a StoreConflictError is raised otherwise.
        """
        return await self._run(
            task_id=task_id,
            action=TaskAction.REOPEN,
            member_id=member_id,
            expected_revision=expected_revision,
            notes=notes,
        )

    async def apply(
        self,
        *,
        task_id: str,
        action: TaskAction,
        member_id: str,
        photo_url: str | None = None,
        expected_revision: int | None = None,
    ) -> TaskOperationResult:
        """Run any lifecycle action by name."""
        return await self._run(
            task_id=task_id,
            action=action,
            member_id=member_id,
            photo_url=photo_url,
            expected_revision=expected_revision,
        )

    async def _run(
        self,
        *,
        task_id: str,
        action: TaskAction,
        member_id: str,
        photo_url: str | None = None,
        expected_revision: int | None = None,
        notes: str | None = None,
    ) -> TaskOperationResult:
        with span(f"task_service.{action}"):
            for attempt in range(MAX_CONFLICT_RETRIES + 1):
                task = await self._store.get(task_id)
                if expected_revision is not None and task.revision != expected_revision:
                    msg = f"Task {task_id} is at revision {task.revision}, expected {expected_revision}"
                    raise StoreConflictError(
                        msg, record_id=task_id, expected_revision=expected_revision, actual_revision=task.revision
                    )
                actor = await self.resolve_actor(member_id, task.family_id)
                now = datetime.now(UTC)

                try:
                    step = transition(task, action, actor, photo_url=photo_url, notes=notes, now=now)
                except AlreadyProcessedError as exc:
                    log_with_task_context(
                        logger, "info", "Ignoring repeated action", task_id=task_id, action=str(action), reason=str(exc)
                    )
                    return TaskOperationResult(task=task, already_processed=True, notice=str(exc))

                try:
                    saved = await self._store.update(
                        task_id, diff_task(step.before, step.after), expected_revision=task.revision
                    )
                except StoreConflictError:
                    if attempt == MAX_CONFLICT_RETRIES or expected_revision is not None:
                        raise
                    logger.info("Task %s changed during %s, re-evaluating (attempt %d)", task_id, action, attempt + 1)
                    continue

                event = TaskEvent.for_task(
                    saved,
                    step.event_type,
                    actor=actor.member_id,
                    from_status=step.from_status,
                    timestamp=now,
                )
                log_with_task_context(
                    logger,
                    "info",
                    f"Task {step.from_status} -> {step.to_status}",
                    task_id=task_id,
                    family_id=saved.family_id,
                    member_id=member_id,
                )
                await self._bus.publish(event)
                return TaskOperationResult(task=saved, event=event)

        msg = f"Task {task_id} kept changing during {action}"
        raise StoreConflictError(msg, record_id=task_id)
