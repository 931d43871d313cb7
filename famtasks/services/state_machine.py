"""Pure state transition rules for the task lifecycle.

``transition`` never touches storage: it validates an action against a task
and returns the task as it should be stored next plus the domain event the
change produces. Persistence and event publication live in ``task_service``.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from famtasks.core.errors import (
    AlreadyProcessedError,
    InvalidTransitionError,
    NotAuthorizedError,
    PhotoRequiredError,
)
from famtasks.domain.events import TaskEventType
from famtasks.domain.task import Actor, Task, TaskStatus, ValidationStatus


logger = logging.getLogger(__name__)


class TaskAction(StrEnum):
    """Actions that drive the task state machine."""

    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    REOPEN = "reopen"


# Allowed source states per action
ALLOWED_SOURCES: dict[TaskAction, frozenset[TaskStatus]] = {
    TaskAction.START: frozenset({TaskStatus.PENDING}),
    TaskAction.COMPLETE: frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS}),
    TaskAction.CANCEL: frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS}),
    TaskAction.REOPEN: frozenset({TaskStatus.COMPLETED}),
}

TARGET_STATUS: dict[TaskAction, TaskStatus] = {
    TaskAction.START: TaskStatus.IN_PROGRESS,
    TaskAction.COMPLETE: TaskStatus.COMPLETED,
    TaskAction.CANCEL: TaskStatus.CANCELLED,
    TaskAction.REOPEN: TaskStatus.PENDING,
}

EVENT_TYPES: dict[TaskAction, TaskEventType] = {
    TaskAction.START: TaskEventType.STARTED,
    TaskAction.COMPLETE: TaskEventType.COMPLETED,
    TaskAction.CANCEL: TaskEventType.CANCELLED,
    TaskAction.REOPEN: TaskEventType.REOPENED,
}


@dataclass(frozen=True)
class Transition:
    """Outcome of a valid state machine step, not yet persisted."""

    action: TaskAction
    before: Task
    after: Task
    event_type: TaskEventType
    actor: Actor
    at: datetime
    award_points: bool = False

    @property
    def from_status(self) -> TaskStatus:
        return self.before.status

    @property
    def to_status(self) -> TaskStatus:
        return self.after.status


def check_authorized(task: Task, action: TaskAction, actor: Actor) -> None:
    """Raise NotAuthorizedError unless ``actor`` may perform ``action`` on ``task``."""
    if actor.is_manager:
        return

    if action in (TaskAction.START, TaskAction.COMPLETE):
        if task.assigned_to is None or task.assigned_to == actor.member_id:
            return
        msg = f"Member {actor.member_id} is not assigned to task {task.id}"
        raise NotAuthorizedError(msg, member_id=actor.member_id)

    if action == TaskAction.CANCEL:
        if task.created_by == actor.member_id:
            return
        msg = f"Only the creator or a manager can cancel task {task.id}"
        raise NotAuthorizedError(msg, member_id=actor.member_id)

    msg = f"Only a manager can {action} task {task.id}"
    raise NotAuthorizedError(msg, member_id=actor.member_id)


def _check_idempotent(task: Task, action: TaskAction, actor: Actor, photo_url: str | None) -> None:
    """Raise AlreadyProcessedError when the action's effect is already in place."""
    target = TARGET_STATUS[action]
    if task.status != target or action == TaskAction.REOPEN:
        return

    if action == TaskAction.COMPLETE:
        same_completion = task.completed_by == actor.member_id and (photo_url is None or photo_url == task.photo_url)
        detail = "by the same member" if same_completion else f"by {task.completed_by}"
        msg = f"Task {task.id} already completed {detail}"
        raise AlreadyProcessedError(msg, task_id=task.id, processed_by=task.completed_by)

    msg = f"Task {task.id} is already {target}"
    raise AlreadyProcessedError(msg, task_id=task.id)


def _apply(
    task: Task, action: TaskAction, actor: Actor, photo_url: str | None, notes: str | None, now: datetime
) -> tuple[Task, bool]:
    changes: dict[str, object] = {"status": TARGET_STATUS[action], "updated_at": now}
    award_points = False

    if action == TaskAction.COMPLETE:
        if task.requires_photo and not photo_url:
            raise PhotoRequiredError(task.id)
        changes.update(completed_at=now, completed_by=actor.member_id)
        if photo_url:
            changes["photo_url"] = photo_url
        if task.requires_photo:
            changes["validation_status"] = ValidationStatus.PENDING
        elif not task.points_awarded:
            changes["points_awarded"] = True
            award_points = True

    elif action == TaskAction.REOPEN:
        changes.update(
            photo_url=None,
            validation_status=ValidationStatus.NONE,
            photo_validated_by=None,
            completed_at=None,
            completed_by=None,
            rejection_count=task.rejection_count + 1,
            escalation_level=0,
            last_reminder_sent=None,
            validation_notes=notes,
        )

    return task.evolve(**changes), award_points


def transition(
    task: Task,
    action: TaskAction,
    actor: Actor,
    *,
    photo_url: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Transition:
    """Validate ``action`` against ``task`` and compute the resulting task.

    ``notes`` become the task's validation notes when it is reopened.

    Raises:
        NotAuthorizedError: If the actor may not perform the action
        AlreadyProcessedError: If the action's effect is already in place (idempotent repeat)
        InvalidTransitionError: If the action is not allowed from the current status
        PhotoRequiredError: If completing a photo-required task without a photo
    """
    now = now or datetime.now(UTC)
    check_authorized(task, action, actor)
    _check_idempotent(task, action, actor, photo_url)

    if task.status not in ALLOWED_SOURCES[action]:
        msg = f"Cannot {action}: task {task.id} is {task.status}"
        raise InvalidTransitionError(msg, task_id=task.id, status=task.status)

    after, award_points = _apply(task, action, actor, photo_url, notes, now)
    logger.debug("Task %s: %s -> %s via %s", task.id, task.status, after.status, action)

    return Transition(
        action=action,
        before=task,
        after=after,
        event_type=EVENT_TYPES[action],
        actor=actor,
        at=now,
        award_points=award_points,
    )
