"""Wiring: build the engine's services and subscribe them to the event bus."""

import logging
from dataclasses import dataclass

from famtasks.core.event_bus import EventBus
from famtasks.core.ports import NotificationTransport, ReminderStateStore, RoleProvider, TemplateStore
from famtasks.services import activity_service
from famtasks.services.member_service import MemberRoleProvider
from famtasks.services.notification_service import LoggingTransport, NotificationDispatcher
from famtasks.services.points_service import PointsLedger
from famtasks.services.recurrence_engine import RecurrenceEngine
from famtasks.services.reminder_policy import FamilyPolicyProvider, ReminderPolicy
from famtasks.services.reminder_scheduler import ReminderScheduler
from famtasks.services.reminder_state_store import build_reminder_state_store
from famtasks.services.sync_coordinator import SyncHub
from famtasks.services.task_service import TaskService
from famtasks.services.task_store import TaskStore
from famtasks.services.template_store import DbTemplateStore
from famtasks.services.validation_service import ValidationService


logger = logging.getLogger(__name__)


@dataclass
class TaskRuntime:
    """All engine services sharing one store and one event bus."""

    bus: EventBus
    store: TaskStore
    roles: RoleProvider
    tasks: TaskService
    validation: ValidationService
    recurrence: RecurrenceEngine
    reminders: ReminderScheduler
    policies: FamilyPolicyProvider
    dispatcher: NotificationDispatcher
    points: PointsLedger
    sync_hub: SyncHub


def build_runtime(
    *,
    store: TaskStore | None = None,
    roles: RoleProvider | None = None,
    templates: TemplateStore | None = None,
    reminder_state: ReminderStateStore | None = None,
    transport: NotificationTransport | None = None,
    policy: ReminderPolicy | None = None,
) -> TaskRuntime:
    """Build the runtime with document-store defaults for every collaborator not given.

    Subscribers run in data-flow order: connected clients first, then
    reminders, recurrence, points and finally the activity log.
    """
    bus = EventBus()
    store = store or TaskStore()
    roles = roles or MemberRoleProvider()

    tasks = TaskService(store=store, roles=roles, bus=bus)
    dispatcher = NotificationDispatcher(tasks=store, transport=transport or LoggingTransport())
    policies = FamilyPolicyProvider(default=policy)
    reminders = ReminderScheduler(
        tasks=store,
        roles=roles,
        state=reminder_state or build_reminder_state_store(),
        dispatcher=dispatcher,
        policies=policies,
    )
    recurrence = RecurrenceEngine(templates=templates or DbTemplateStore(), tasks=store, bus=bus)
    points = PointsLedger()
    sync_hub = SyncHub()

    bus.subscribe(sync_hub.handle_task_event, name="sync_hub")
    bus.subscribe(reminders.handle_task_event, name="reminder_scheduler")
    bus.subscribe(recurrence.handle_task_event, name="recurrence_engine")
    bus.subscribe(points.handle_task_event, name="points_ledger")
    bus.subscribe(activity_service.log_activity, name="activity_log")
    logger.info("Task runtime ready with subscribers: %s", ", ".join(bus.subscriber_names))

    return TaskRuntime(
        bus=bus,
        store=store,
        roles=roles,
        tasks=tasks,
        validation=ValidationService(task_service=tasks, store=store, bus=bus),
        recurrence=recurrence,
        reminders=reminders,
        policies=policies,
        dispatcher=dispatcher,
        points=points,
        sync_hub=sync_hub,
    )
