"""Unit tests for notification dispatch and reminder rendering."""

from datetime import UTC, datetime, timedelta

import pytest

from famtasks.domain.reminder import ReminderEvent
from famtasks.domain.task import TaskStatus
from famtasks.services.notification_service import LoggingTransport, NotificationDispatcher, render_reminder
from famtasks.services.task_store import TaskStore
from tests.unit.conftest import FAMILY_ID, KID_ID, PARENT_ID, make_task


DUE = datetime(2026, 10, 18, 17, 0, tzinfo=UTC)


def _event(level: int = 0, target: str = KID_ID, fired_at: datetime = DUE) -> ReminderEvent:
    return ReminderEvent(
        task_id="task1", family_id=FAMILY_ID, target_member_id=target, escalation_level=level, fired_at=fired_at
    )


class ExplodingTransport:
    async def send(self, event, task):
        raise ConnectionError("push gateway down")


@pytest.mark.unit
class TestRenderReminder:
    def test_first_reminder_shows_due_time(self):
        text = render_reminder(_event(), make_task(due_date=DUE))

        assert "Empty the dishwasher" in text
        assert "17:00 UTC" in text

    def test_escalation_shows_overdue_minutes(self):
        text = render_reminder(
            _event(level=2, target=PARENT_ID, fired_at=DUE + timedelta(minutes=65)), make_task(due_date=DUE)
        )

        assert "65 minutes overdue" in text
        assert "escalation level 2" in text
        assert KID_ID in text


@pytest.mark.unit
class TestNotificationDispatcher:
    async def test_open_task_is_delivered(self, patched_db):
        store = TaskStore()
        await store.create(make_task(due_date=DUE))
        transport = LoggingTransport()

        delivered = await NotificationDispatcher(tasks=store, transport=transport).dispatch(_event())

        assert delivered is True
        assert [event.target_member_id for event, _ in transport.sent] == [KID_ID]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": TaskStatus.COMPLETED, "completed_by": KID_ID, "completed_at": DUE},
            {"status": TaskStatus.CANCELLED},
            {"reminder_enabled": False},
        ],
    )
    async def test_closed_or_muted_task_is_suppressed(self, patched_db, overrides):
        store = TaskStore()
        await store.create(make_task(due_date=DUE, **overrides))
        transport = LoggingTransport()

        delivered = await NotificationDispatcher(tasks=store, transport=transport).dispatch(_event())

        assert delivered is False
        assert transport.sent == []

    async def test_missing_task_is_dropped(self, patched_db):
        dispatcher = NotificationDispatcher(tasks=TaskStore(), transport=LoggingTransport())

        assert await dispatcher.dispatch(_event()) is False

    async def test_transport_failure_is_contained(self, patched_db):
        store = TaskStore()
        await store.create(make_task(due_date=DUE))

        delivered = await NotificationDispatcher(tasks=store, transport=ExplodingTransport()).dispatch(_event())

        assert delivered is False
