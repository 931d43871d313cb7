"""Points ledger: one award document per (reason, member), so replays pay nothing."""

import logging
from datetime import UTC, datetime
from typing import Any

from famtasks.core import db_client
from famtasks.core.errors import StoreConflictError
from famtasks.core.logging import span
from famtasks.domain.events import TaskEvent, TaskEventType
from famtasks.domain.task import ValidationStatus


logger = logging.getLogger(__name__)

POINT_AWARDS_COLLECTION = "point_awards"


def award_reason(task_id: str, rejection_count: int = 0) -> str:
    """Ledger reason for a task's payout; a reopened task earns at most once per attempt."""
    return f"task:{task_id}:{rejection_count}"


class PointsLedger:
    """Idempotent points ledger stored in the ``point_awards`` collection."""

    def __init__(self, collection: str = POINT_AWARDS_COLLECTION) -> None:
        self._collection = collection

    async def award(self, member_id: str, points: int, reason: str, *, family_id: str | None = None) -> bool:
        """Record an award; returns False if this reason was already paid to the member."""
        with span("points_service.award"):
            try:
                await db_client.create_record(
                    collection=self._collection,
                    data={
                        "family_id": family_id,
                        "member_id": member_id,
                        "points": points,
                        "reason": reason,
                        "awarded_at": datetime.now(UTC).isoformat(),
                    },
                    record_id=f"{reason}:{member_id}",
                )
            except StoreConflictError:
                logger.info("Points for %s already awarded to %s", reason, member_id)
                return False

            logger.info("Awarded %d points to %s for %s", points, member_id, reason)
            return True

    async def get_balance(self, member_id: str, family_id: str) -> int:
        awards = await self.list_awards(family_id, member_id=member_id)
        return sum(int(award.get("points", 0)) for award in awards)

    async def list_awards(self, family_id: str, *, member_id: str | None = None) -> list[dict[str, Any]]:
        filters = {"member_id": member_id} if member_id else None
        return await db_client.list_all_records(collection=self._collection, family_id=family_id, filters=filters)

    async def handle_task_event(self, event: TaskEvent) -> None:
        """Event bus subscriber: pay the completer once the task's points are earned.

        Non-photo tasks earn on completion; photo tasks earn on approval.
        """
        task = event.task
        earned = (event.event_type == TaskEventType.COMPLETED and not task.requires_photo) or (
            event.event_type == TaskEventType.VALIDATED and task.validation_status == ValidationStatus.APPROVED
        )
        if not earned or not task.completed_by or task.points <= 0:
            return
        await self.award(
            task.completed_by,
            task.points,
            award_reason(task.id, task.rejection_count),
            family_id=task.family_id,
        )
