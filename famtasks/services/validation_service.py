"""Photo validation workflow for tasks that require photo proof."""

import logging
from datetime import UTC, datetime

from famtasks.core.errors import NotAuthorizedError, StoreConflictError
from famtasks.core.event_bus import EventBus
from famtasks.core.logging import log_with_task_context, span
from famtasks.core.ports import TaskStore
from famtasks.domain.events import TaskEvent, TaskEventType
from famtasks.domain.task import Task, TaskStatus, ValidationStatus
from famtasks.models.service_models import TaskOperationResult
from famtasks.services.task_service import TaskService
from famtasks.services.task_store import diff_task


logger = logging.getLogger(__name__)


class ValidationService:
    """Approve or reject photo completions.

    Approval is terminal and earns the task's points once; rejection reopens the
    task through the state machine so the member can try again.
    """

    def __init__(self, *, task_service: TaskService, store: TaskStore, bus: EventBus) -> None:
        self._task_service = task_service
        self._store = store
        self._bus = bus

    async def submit_for_validation(self, *, task_id: str, photo_url: str, member_id: str) -> TaskOperationResult:
        """Complete a photo task with its proof; the task then awaits a manager's review.

        Raises:
            PhotoRequiredError: If ``photo_url`` is empty
        """
        return await self._task_service.complete(task_id=task_id, member_id=member_id, photo_url=photo_url)

    async def validate(
        self,
        *,
        task_id: str,
        approver_id: str,
        approved: bool,
        notes: str | None = None,
    ) -> TaskOperationResult:
        """Approve or reject a pending photo validation.

        Repeating a decision, or deciding on a task that is not awaiting
        validation, is a silent no-op.

        Raises:
            NotAuthorizedError: If the approver is not a manager of the task's family
            KeyError: If the task does not exist
        """
        with span("validation_service.validate"):
            task = await self._store.get(task_id)
            actor = await self._task_service.resolve_actor(approver_id, task.family_id)
            if not actor.is_manager:
                msg = f"Only a manager can validate task {task_id}"
                raise NotAuthorizedError(msg, member_id=approver_id)

            if not _awaiting_validation(task):
                return _no_op(task)

            if not approved:
                return await self._reject(task, approver_id=approver_id, notes=notes)

            now = datetime.now(UTC)
            after = task.evolve(
                validation_status=ValidationStatus.APPROVED,
                validation_notes=notes,
                photo_validated_by=approver_id,
                points_awarded=True,
                updated_at=now,
            )
            try:
                saved = await self._store.update(task_id, diff_task(task, after), expected_revision=task.revision)
            except StoreConflictError:
                current = await self._store.get(task_id)
                if not _awaiting_validation(current):
                    return _no_op(current)
                raise

            event = TaskEvent.for_task(
                saved,
                TaskEventType.VALIDATED,
                actor=approver_id,
                from_status=task.status,
                timestamp=now,
            )
            log_with_task_context(
                logger, "info", "Photo approved", task_id=task_id, family_id=task.family_id, approver_id=approver_id
            )
            await self._bus.publish(event)
            return TaskOperationResult(task=saved, event=event)

    async def _reject(self, task: Task, *, approver_id: str, notes: str | None) -> TaskOperationResult:
        try:
            result = await self._task_service.reopen(
                task_id=task.id, member_id=approver_id, expected_revision=task.revision, notes=notes
            )
        except StoreConflictError:
            current = await self._store.get(task.id)
            if not _awaiting_validation(current):
                return _no_op(current)
            raise
        if not result.already_processed:
            log_with_task_context(
                logger,
                "info",
                "Photo rejected",
                task_id=task.id,
                family_id=task.family_id,
                rejection_count=result.task.rejection_count,
            )
        return result

    async def list_pending_validations(self, family_id: str) -> list[Task]:
        tasks = await self._store.query_by_family(family_id, status=TaskStatus.COMPLETED)
        return [task for task in tasks if task.validation_status == ValidationStatus.PENDING]


def _awaiting_validation(task: Task) -> bool:
    return task.status == TaskStatus.COMPLETED and task.validation_status == ValidationStatus.PENDING


def _no_op(task: Task) -> TaskOperationResult:
    logger.info("Task %s is not awaiting validation (%s); ignoring", task.id, task.validation_status)
    return TaskOperationResult(
        task=task,
        already_processed=True,
        notice=f"Task {task.id} was already reviewed",
    )
