"""Multi-device sync: optimistic local changes reconciled against the store.

Each connected client owns a ``SyncCoordinator``. Local actions are applied
optimistically through the pure state machine and kept as pending intents
until committed. Authoritative task versions (from commits, or pushed by the
``SyncHub``) are merged by store revision, never by client clock.
"""

import logging

from pydantic import BaseModel

from famtasks.core import message_templates
from famtasks.core.errors import AlreadyProcessedError, StoreConflictError, TaskEngineError
from famtasks.core.logging import span
from famtasks.domain.events import TaskEvent
from famtasks.domain.task import Actor, Task, TaskStatus
from famtasks.models.service_models import ReconcileResult
from famtasks.services.state_machine import TaskAction, transition
from famtasks.services.task_service import TaskService


logger = logging.getLogger(__name__)

# Conflicts on commit are refetched and retried this many times
MAX_COMMIT_ATTEMPTS = 3


class LocalMutation(BaseModel):
    """A not-yet-committed action taken on this client."""

    task_id: str
    action: TaskAction
    photo_url: str | None = None
    base_revision: int


class SyncCoordinator:
    """One client's view of a family's tasks."""

    def __init__(self, *, client_id: str, family_id: str, actor: Actor, task_service: TaskService) -> None:
        self.client_id = client_id
        self.family_id = family_id
        self._actor = actor
        self._service = task_service
        self._remote: dict[str, Task] = {}
        self._optimistic: dict[str, Task] = {}
        self._pending: dict[str, LocalMutation] = {}
        self.notices: list[str] = []

    def view(self, task_id: str) -> Task:
        """The task as this client should display it."""
        if task_id in self._optimistic:
            return self._optimistic[task_id]
        return self._remote[task_id]

    def pending(self, task_id: str) -> LocalMutation | None:
        return self._pending.get(task_id)

    async def refresh(self) -> list[Task]:
        """Load the family's tasks from the store."""
        tasks = await self._service.store.query_by_family(self.family_id)
        for task in tasks:
            self.reconcile(task)
        return [self.view(task.id) for task in tasks]

    def apply_local(
        self,
        *,
        task_id: str,
        action: TaskAction,
        photo_url: str | None = None,
    ) -> Task:
        """Apply an action optimistically and queue it for commit.

        State machine errors (photo missing, not allowed) surface immediately
        and leave the local view unchanged.
        """
        base = self.view(task_id)
        try:
            step = transition(base, action, self._actor, photo_url=photo_url)
        except AlreadyProcessedError as exc:
            logger.debug("Local %s on %s has no effect: %s", action, task_id, exc)
            return base

        self._pending[task_id] = LocalMutation(
            task_id=task_id,
            action=action,
            photo_url=photo_url,
            base_revision=self._remote[task_id].revision,
        )
        self._optimistic[task_id] = step.after
        return step.after

    def reconcile(self, remote: Task) -> ReconcileResult:
        """Merge an authoritative task version into this client's view."""
        known = self._remote.get(remote.id)
        if known is not None and remote.revision < known.revision:
            logger.debug("Ignoring stale revision %d of task %s", remote.revision, remote.id)
            return ReconcileResult(task=self.view(remote.id))

        self._remote[remote.id] = remote
        mutation = self._pending.get(remote.id)
        if mutation is None:
            self._optimistic.pop(remote.id, None)
            return ReconcileResult(task=remote)

        if mutation.action == TaskAction.COMPLETE and remote.status == TaskStatus.COMPLETED:
            self._drop(remote.id)
            if remote.completed_by == self._actor.member_id:
                return ReconcileResult(task=remote)
            return self._notify(
                ReconcileResult(
                    task=remote,
                    notice=message_templates.already_completed(completed_by=remote.completed_by),
                    already_processed=True,
                    discarded_local=True,
                )
            )

        try:
            step = transition(remote, mutation.action, self._actor, photo_url=mutation.photo_url)
        except AlreadyProcessedError:
            self._drop(remote.id)
            return ReconcileResult(task=remote)
        except TaskEngineError as exc:
            logger.info("Discarding local %s on %s: %s", mutation.action, remote.id, exc)
            self._drop(remote.id)
            return self._notify(
                ReconcileResult(task=remote, notice=message_templates.already_updated(), discarded_local=True)
            )

        self._pending[remote.id] = mutation.model_copy(update={"base_revision": remote.revision})
        self._optimistic[remote.id] = step.after
        return ReconcileResult(task=step.after)

    async def commit(self, task_id: str) -> ReconcileResult:
        """Push the pending intent for ``task_id`` to the store.

        The write is conditional on the revision the intent was based on; a
        conflict is resolved by refetching and reconciling, then retrying if the
        intent still applies.
        """
        with span("sync_coordinator.commit"):
            result = ReconcileResult(task=self.view(task_id))
            for _ in range(MAX_COMMIT_ATTEMPTS):
                mutation = self._pending.get(task_id)
                if mutation is None:
                    return result

                try:
                    outcome = await self._service.apply(
                        task_id=task_id,
                        action=mutation.action,
                        member_id=self._actor.member_id,
                        photo_url=mutation.photo_url,
                        expected_revision=mutation.base_revision,
                    )
                except StoreConflictError:
                    logger.info("Client %s: task %s changed remotely, reconciling", self.client_id, task_id)
                    result = self.reconcile(await self._service.get_task(task_id))
                    continue

                if not outcome.already_processed:
                    self._drop(task_id)
                return self.reconcile(outcome.task)

            return result

    def _drop(self, task_id: str) -> None:
        self._pending.pop(task_id, None)
        self._optimistic.pop(task_id, None)

    def _notify(self, result: ReconcileResult) -> ReconcileResult:
        if result.notice:
            self.notices.append(result.notice)
        return result


class SyncHub:
    """Fans committed task events out to every connected client of the family."""

    def __init__(self) -> None:
        self._clients: dict[str, SyncCoordinator] = {}

    def connect(self, coordinator: SyncCoordinator) -> None:
        self._clients[coordinator.client_id] = coordinator
        logger.info("Client %s connected to family %s", coordinator.client_id, coordinator.family_id)

    def disconnect(self, client_id: str) -> None:
        self._clients.pop(client_id, None)

    def clients_for(self, family_id: str) -> list[SyncCoordinator]:
        return [client for client in self._clients.values() if client.family_id == family_id]

    async def handle_task_event(self, event: TaskEvent) -> None:
        """Event bus subscriber."""
        for client in self.clients_for(event.family_id):
            client.reconcile(event.task)
