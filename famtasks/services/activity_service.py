"""Activity audit trail: every committed task event is written to ``activity``."""

import logging
from typing import Any

from famtasks.core import db_client
from famtasks.domain.events import TaskEvent


logger = logging.getLogger(__name__)

ACTIVITY_COLLECTION = "activity"


async def log_activity(event: TaskEvent) -> None:
    """Event bus subscriber: append the event to the family's activity log.

    A failed write is logged and dropped; the task change itself already happened.
    """
    data = {
        "family_id": event.family_id,
        "task_id": event.task_id,
        "task_title": event.task.title,
        "action": event.event_type,
        "from_status": event.from_status,
        "to_status": event.to_status,
        "actor": event.actor,
        "revision": event.revision,
        "timestamp": event.timestamp.isoformat(),
    }
    try:
        await db_client.create_record(collection=ACTIVITY_COLLECTION, data=data)
    except Exception:
        logger.exception("Failed to record %s activity for task %s", event.event_type, event.task_id)


async def get_activity(
    *,
    family_id: str,
    task_id: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Most recent activity entries for a family, newest first."""
    filters = {"task_id": task_id} if task_id else None
    records = await db_client.list_all_records(collection=ACTIVITY_COLLECTION, family_id=family_id, filters=filters)
    records.sort(key=lambda record: record.get("timestamp", ""), reverse=True)
    return records[:limit]
