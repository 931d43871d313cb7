"""Task Store Adapter: typed CRUD over the document store's ``tasks`` collection."""

import logging
from datetime import UTC, datetime
from typing import Any

from famtasks.core import db_client
from famtasks.core.logging import span
from famtasks.domain.task import OPEN_STATUSES, Task, TaskStatus


logger = logging.getLogger(__name__)

TASKS_COLLECTION = "tasks"


def diff_task(before: Task, after: Task) -> dict[str, Any]:
    """Return the JSON-ready fields of ``after`` that differ from ``before``."""
    old = before.to_record()
    new = after.to_record()
    return {key: value for key, value in new.items() if old.get(key) != value}


class TaskStore:
    """Persist tasks as documents; the store assigns every write a new revision."""

    def __init__(self, collection: str = TASKS_COLLECTION) -> None:
        self._collection = collection

    async def create(self, task: Task) -> Task:
        """Create a task document.

        Raises:
            StoreConflictError: If a task with the same id already exists
        """
        with span("task_store.create"):
            record = await db_client.create_record(
                collection=self._collection,
                data=task.to_record(),
                record_id=task.id,
            )
            logger.debug("Stored task %s for family %s", record["id"], task.family_id)
            return Task.from_record(record)

    async def update(self, task_id: str, patch: dict[str, Any], *, expected_revision: int | None = None) -> Task:
        """Apply a field patch to a task.

        Raises:
            KeyError: If the task does not exist
            StoreConflictError: If ``expected_revision`` is stale
        """
        with span("task_store.update"):
            data = {**patch, "updated_at": datetime.now(UTC).isoformat()}
            record = await db_client.update_record(
                collection=self._collection,
                record_id=task_id,
                data=data,
                expected_revision=expected_revision,
            )
            return Task.from_record(record)

    async def get(self, task_id: str) -> Task:
        """Fetch a task by id, raising KeyError if not found."""
        record = await db_client.get_record(collection=self._collection, record_id=task_id)
        return Task.from_record(record)

    async def query_by_family(self, family_id: str, *, status: TaskStatus | None = None) -> list[Task]:
        filters = {"status": status.value} if status else None
        records = await db_client.list_all_records(collection=self._collection, family_id=family_id, filters=filters)
        return [Task.from_record(record) for record in records]

    async def query_open(self, family_id: str) -> list[Task]:
        """Tasks still awaiting work, so scans do not grow with completed history."""
        filters = {"status": sorted(status.value for status in OPEN_STATUSES)}
        records = await db_client.list_all_records(collection=self._collection, family_id=family_id, filters=filters)
        return [Task.from_record(record) for record in records]

    async def list_family_ids(self) -> list[str]:
        return await db_client.list_family_ids(collection=self._collection)
