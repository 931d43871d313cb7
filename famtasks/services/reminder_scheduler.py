"""Reminder and escalation scheduler.

A periodic tick calls ``fire``; there are no per-task timers. For each open
task with a due date the scheduler works out which escalation level is due
now under the family's policy and delivers it at most once:

- level 0 fires at ``due_date - reminder_offset`` and targets the assignee
- level k >= 1 fires at ``due_date + k * grace`` and targets the family managers
- levels stop at ``max_escalation_level``
- fire times inside the family's quiet hours move to the end of the window

Delivery is claimed in the state store before the task is written. The task's
``escalation_level``/``last_reminder_sent`` are the source of truth and are
written with a revision check; a failed write releases the claim so the level
can fire on a later tick. Levels missed while the loop was down are not
replayed; only the current one fires.
"""

import logging
from datetime import UTC, datetime

from famtasks.core.config import settings
from famtasks.core.errors import StoreConflictError
from famtasks.core.logging import log_with_task_context, span
from famtasks.core.ports import ReminderPolicyProvider, ReminderStateStore, RoleProvider, TaskStore
from famtasks.domain.events import TaskEvent
from famtasks.domain.reminder import ClaimOutcome, ReminderEvent, ReminderState
from famtasks.domain.task import TERMINAL_STATUSES, Task
from famtasks.services.notification_service import NotificationDispatcher
from famtasks.services.reminder_policy import ReminderPolicy, StaticPolicyProvider, as_utc


logger = logging.getLogger(__name__)


def fired_level(task: Task) -> int:
    """Highest level already delivered for the task, -1 if none."""
    return task.escalation_level if task.reminder_fired else -1


def is_eligible(task: Task) -> bool:
    return task.is_open and task.reminder_enabled and task.due_date is not None


def due_key(task: Task) -> str:
    """Claim key part that changes when the due date moves or a rejection restarts escalation."""
    return f"{as_utc(task.due_date).isoformat()}:{task.rejection_count}"


class ReminderScheduler:
    """Decides when reminders and escalations logically fire."""

    def __init__(
        self,
        *,
        tasks: TaskStore,
        roles: RoleProvider,
        state: ReminderStateStore,
        dispatcher: NotificationDispatcher | None = None,
        policies: ReminderPolicyProvider | None = None,
        policy: ReminderPolicy | None = None,
    ) -> None:
        self._tasks = tasks
        self._roles = roles
        self._state = state
        self._dispatcher = dispatcher
        self.policies = policies or StaticPolicyProvider(policy)
        self.last_tick_failures: list[tuple[str, str]] = []

    async def schedule(self, task: Task, policy: ReminderPolicy | None = None) -> ReminderState | None:
        """Record the task's next reminder, or drop it when none is left.

        Returns None for tasks that are not eligible (closed, reminders off, no
        due date) and for tasks that already reached the maximum level.
        """
        policy = policy or await self.policies.get_policy(task.family_id)
        next_level = fired_level(task) + 1
        if not is_eligible(task) or task.due_date is None or next_level > policy.max_level:
            await self._state.remove_active(task.id)
            return None

        reminder = ReminderState(
            task_id=task.id,
            family_id=task.family_id,
            next_fire_at=policy.fire_time(task.due_date, next_level),
            escalation_level=next_level,
            target_member_id=task.assigned_to if next_level == 0 else None,
        )
        await self._state.set_active(reminder)
        return reminder

    async def acknowledge(self, task_id: str) -> None:
        """Stop reminding about a task (completed, cancelled or otherwise handled)."""
        await self._state.remove_active(task_id)
        logger.debug("Acknowledged reminders for task %s", task_id)

    async def fire(self, now: datetime | None = None) -> list[ReminderEvent]:
        """Deliver every reminder due at ``now``.

        Open tasks are re-read from the store on every tick. A failure on one
        task is logged and counted in ``last_tick_failures``; the tick carries on.
        """
        with span("reminder_scheduler.fire"):
            now = as_utc(now or datetime.now(UTC))
            fired: list[ReminderEvent] = []
            self.last_tick_failures = []

            family_ids = (
                [settings.scheduler_family_id] if settings.scheduler_family_id else await self._tasks.list_family_ids()
            )
            for family_id in family_ids:
                policy = await self.policies.get_policy(family_id)
                for task in await self._tasks.query_open(family_id):
                    try:
                        fired.extend(await self._fire_task(task, now, policy))
                    except Exception as e:
                        logger.exception("Reminder processing failed for task %s", task.id)
                        self.last_tick_failures.append((task.id, str(e)))

            if fired:
                logger.info("Fired %d reminders", len(fired))
            return fired

    async def _fire_task(self, task: Task, now: datetime, policy: ReminderPolicy) -> list[ReminderEvent]:
        if not is_eligible(task) or task.due_date is None:
            await self._state.remove_active(task.id)
            return []

        level = policy.level_due(task.due_date, now)
        if level is None or level <= fired_level(task):
            await self.schedule(task, policy)
            return []

        key = due_key(task)
        outcome = await self._state.claim_fire(task.id, level, due_key=key)
        if outcome is ClaimOutcome.HELD:
            log_with_task_context(
                logger, "info", "Reminder level already claimed", task_id=task.id, escalation_level=level
            )
            return []
        if outcome is ClaimOutcome.UNAVAILABLE:
            log_with_task_context(
                logger,
                "warning",
                "Reminder claim unavailable; retrying next tick",
                task_id=task.id,
                escalation_level=level,
            )
            return []

        try:
            updated = await self._tasks.update(
                task.id,
                {"escalation_level": level, "last_reminder_sent": now.isoformat()},
                expected_revision=task.revision,
            )
        except StoreConflictError:
            await self._state.release_claim(task.id, level, due_key=key)
            log_with_task_context(logger, "info", "Task changed before reminder; skipping", task_id=task.id)
            return []
        except Exception:
            await self._state.release_claim(task.id, level, due_key=key)
            raise

        targets = await self._targets(task, level)
        if not targets:
            log_with_task_context(
                logger,
                "warning",
                "No one to remind",
                task_id=task.id,
                family_id=task.family_id,
                escalation_level=level,
            )

        events = [
            ReminderEvent(
                task_id=task.id,
                family_id=task.family_id,
                target_member_id=target,
                escalation_level=level,
                fired_at=now,
            )
            for target in targets
        ]
        log_with_task_context(
            logger,
            "info",
            "Reminder fired",
            task_id=task.id,
            family_id=task.family_id,
            escalation_level=level,
            targets=targets,
        )

        await self.schedule(updated, policy)
        if self._dispatcher:
            for event in events:
                await self._dispatcher.dispatch(event)
        return events

    async def _targets(self, task: Task, level: int) -> list[str]:
        if level == 0 and task.assigned_to:
            return [task.assigned_to]
        managers = await self._roles.get_managers(task.family_id)
        if managers:
            return managers
        return [task.assigned_to] if task.assigned_to else []

    async def handle_task_event(self, event: TaskEvent) -> None:
        """Event bus subscriber: re-evaluate the task's reminders after any change."""
        if event.to_status in TERMINAL_STATUSES:
            await self.acknowledge(event.task_id)
        else:
            await self.schedule(event.task)
