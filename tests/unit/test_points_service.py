"""Unit tests for the points ledger, member roles and the activity log."""

import pytest

from famtasks.domain.events import TaskEvent, TaskEventType
from famtasks.domain.task import TaskStatus, ValidationStatus
from famtasks.services import activity_service
from famtasks.services.member_service import MemberRole, MemberRoleProvider, register_member
from famtasks.services.points_service import PointsLedger, award_reason
from tests.unit.conftest import FAMILY_ID, KID_ID, PARENT_ID, make_task


@pytest.mark.unit
class TestPointsLedger:
    async def test_award_is_idempotent_per_reason(self, patched_db):
        ledger = PointsLedger()

        first = await ledger.award(KID_ID, 10, award_reason("t1"), family_id=FAMILY_ID)
        second = await ledger.award(KID_ID, 10, award_reason("t1"), family_id=FAMILY_ID)

        assert (first, second) == (True, False)
        assert await ledger.get_balance(KID_ID, FAMILY_ID) == 10

    async def test_new_attempt_after_rejection_is_a_new_reason(self, patched_db):
        ledger = PointsLedger()

        await ledger.award(KID_ID, 10, award_reason("t1", 0), family_id=FAMILY_ID)
        await ledger.award(KID_ID, 10, award_reason("t1", 1), family_id=FAMILY_ID)

        assert len(await ledger.list_awards(FAMILY_ID, member_id=KID_ID)) == 2

    async def test_photo_completion_earns_nothing_until_approved(self, patched_db):
        ledger = PointsLedger()
        submitted = make_task(
            status=TaskStatus.COMPLETED,
            requires_photo=True,
            photo_url="https://img/1.jpg",
            validation_status=ValidationStatus.PENDING,
            completed_by=KID_ID,
        )
        approved = submitted.evolve(validation_status=ValidationStatus.APPROVED, points_awarded=True)

        await ledger.handle_task_event(TaskEvent.for_task(submitted, TaskEventType.COMPLETED, actor=KID_ID))
        assert patched_db.records("point_awards") == []

        await ledger.handle_task_event(TaskEvent.for_task(approved, TaskEventType.VALIDATED, actor=PARENT_ID))
        assert await ledger.get_balance(KID_ID, FAMILY_ID) == 10

    async def test_zero_point_task_is_not_recorded(self, patched_db):
        done = make_task(status=TaskStatus.COMPLETED, completed_by=KID_ID, points=0)

        await PointsLedger().handle_task_event(TaskEvent.for_task(done, TaskEventType.COMPLETED, actor=KID_ID))

        assert patched_db.records("point_awards") == []


@pytest.mark.unit
class TestMemberRoleProvider:
    async def test_parents_and_managers_manage_their_family(self, patched_db):
        await register_member(member_id="mom", family_id=FAMILY_ID, name="Mom", role=MemberRole.PARENT)
        await register_member(member_id="nanny", family_id=FAMILY_ID, name="Sam", role=MemberRole.MANAGER)
        await register_member(member_id="kid", family_id=FAMILY_ID, name="Alex", role=MemberRole.CHILD)
        roles = MemberRoleProvider()

        assert await roles.is_manager("mom", FAMILY_ID) is True
        assert await roles.is_manager("kid", FAMILY_ID) is False
        assert await roles.is_manager("mom", "other-family") is False
        assert sorted(await roles.get_managers(FAMILY_ID)) == ["mom", "nanny"]

    async def test_unknown_member_is_not_a_manager(self, patched_db):
        assert await MemberRoleProvider().is_manager("ghost", FAMILY_ID) is False


@pytest.mark.unit
class TestActivityLog:
    async def test_events_are_recorded_newest_first(self, patched_db):
        task = make_task()
        await activity_service.log_activity(TaskEvent.for_task(task, TaskEventType.CREATED, actor=PARENT_ID))
        started = task.evolve(status=TaskStatus.IN_PROGRESS, revision=2)
        await activity_service.log_activity(
            TaskEvent.for_task(
                started, TaskEventType.STARTED, actor=KID_ID, timestamp=task.updated_at.replace(year=2030)
            )
        )

        entries = await activity_service.get_activity(family_id=FAMILY_ID, task_id=task.id)

        assert [entry["action"] for entry in entries] == ["started", "created"]

    async def test_store_failure_is_swallowed(self, patched_db):
        patched_db.fail_on.add(("create", "activity"))

        await activity_service.log_activity(TaskEvent.for_task(make_task(), TaskEventType.CREATED, actor=PARENT_ID))

        assert patched_db.records("activity") == []
