"""Pytest configuration and fixtures for unit tests."""

from datetime import UTC, datetime, timedelta

import pytest

from famtasks.domain.task import Task
from famtasks.services.notification_service import LoggingTransport
from famtasks.services.reminder_policy import ReminderPolicy
from famtasks.services.reminder_state_store import InMemoryReminderStateStore
from famtasks.services.runtime import build_runtime
from famtasks.services.task_store import TaskStore
from famtasks.services.template_store import InMemoryTemplateStore
from tests.unit.mocks import InMemoryDBClient


FAMILY_ID = "fam1"
PARENT_ID = "parent1"
KID_ID = "kid1"
OTHER_KID_ID = "kid2"


class FakeRoleProvider:
    """Role provider with fixed managers per family."""

    def __init__(self, managers: dict[str, list[str]] | None = None):
        self.managers = managers if managers is not None else {FAMILY_ID: [PARENT_ID]}

    async def is_manager(self, member_id: str, family_id: str) -> bool:
        return member_id in self.managers.get(family_id, [])

    async def get_managers(self, family_id: str) -> list[str]:
        return list(self.managers.get(family_id, []))


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches famtasks.core.db_client functions to use InMemoryDBClient."""
    monkeypatch.setattr("famtasks.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("famtasks.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("famtasks.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("famtasks.core.db_client.delete_record", in_memory_db.delete_record)
    monkeypatch.setattr("famtasks.core.db_client.list_records", in_memory_db.list_records)
    monkeypatch.setattr("famtasks.core.db_client.list_all_records", in_memory_db.list_all_records)
    monkeypatch.setattr("famtasks.core.db_client.list_family_ids", in_memory_db.list_family_ids)
    return in_memory_db


@pytest.fixture
def roles():
    return FakeRoleProvider()


@pytest.fixture
def transport():
    return LoggingTransport()


@pytest.fixture
def reminder_state():
    return InMemoryReminderStateStore()


@pytest.fixture
def runtime(patched_db, roles, transport, reminder_state):
    """Fully wired runtime over the in-memory document store."""
    return build_runtime(
        store=TaskStore(),
        roles=roles,
        templates=InMemoryTemplateStore(),
        reminder_state=reminder_state,
        transport=transport,
        policy=ReminderPolicy(offset=timedelta(0), grace=timedelta(minutes=30), max_level=3),
    )


def make_task(**overrides) -> Task:
    """Build a pending task assigned to the kid, with sensible defaults."""
    data = {
        "id": "task1",
        "family_id": FAMILY_ID,
        "title": "Empty the dishwasher",
        "assigned_to": KID_ID,
        "assigned_by": PARENT_ID,
        "created_by": PARENT_ID,
        "points": 10,
        "revision": 1,
    }
    data.update(overrides)
    return Task(**data)


@pytest.fixture
def due_at():
    """A fixed due datetime used by reminder tests."""
    return datetime(2026, 10, 18, 17, 0, tzinfo=UTC)
