"""Tests for the SQLite document store client against a real temporary database."""

import pytest

from famtasks.core import db_client
from famtasks.core.config import settings
from famtasks.core.errors import StoreConflictError


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch):
    """Point the document store at a fresh database file."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "famtasks-test.db"))
    await db_client.init_db()
    yield
    await db_client.close_connection()


@pytest.mark.unit
class TestDocumentStore:
    async def test_create_assigns_first_revision(self, sqlite_db):
        record = await db_client.create_record(
            collection="tasks", data={"family_id": "fam1", "title": "Laundry"}, record_id="t1"
        )

        assert record["id"] == "t1"
        assert record["revision"] == 1
        assert record["title"] == "Laundry"
        assert record["created"] == record["updated"]

    async def test_duplicate_id_conflicts(self, sqlite_db):
        await db_client.create_record(collection="tasks", data={"family_id": "fam1"}, record_id="t1")

        with pytest.raises(StoreConflictError):
            await db_client.create_record(collection="tasks", data={"family_id": "fam1"}, record_id="t1")

    async def test_update_merges_and_bumps_revision(self, sqlite_db):
        await db_client.create_record(
            collection="tasks", data={"family_id": "fam1", "title": "Laundry", "status": "pending"}, record_id="t1"
        )

        updated = await db_client.update_record(
            collection="tasks", record_id="t1", data={"status": "completed"}, expected_revision=1
        )

        assert updated["revision"] == 2
        assert updated["status"] == "completed"
        assert updated["title"] == "Laundry"

    async def test_stale_revision_is_rejected(self, sqlite_db):
        await db_client.create_record(collection="tasks", data={"family_id": "fam1"}, record_id="t1")
        await db_client.update_record(collection="tasks", record_id="t1", data={"status": "in_progress"})

        with pytest.raises(StoreConflictError) as exc_info:
            await db_client.update_record(
                collection="tasks", record_id="t1", data={"status": "completed"}, expected_revision=1
            )

        assert exc_info.value.actual_revision == 2
        assert (await db_client.get_record(collection="tasks", record_id="t1"))["status"] == "in_progress"

    async def test_reserved_keys_are_not_stored_in_body(self, sqlite_db):
        await db_client.create_record(collection="tasks", data={"family_id": "fam1"}, record_id="t1")

        updated = await db_client.update_record(
            collection="tasks", record_id="t1", data={"revision": 99, "title": "Dishes"}
        )

        assert updated["revision"] == 2
        assert updated["title"] == "Dishes"

    async def test_missing_record_raises_key_error(self, sqlite_db):
        with pytest.raises(KeyError):
            await db_client.get_record(collection="tasks", record_id="nope")
        with pytest.raises(KeyError):
            await db_client.update_record(collection="tasks", record_id="nope", data={"title": "x"})
        with pytest.raises(KeyError):
            await db_client.delete_record(collection="tasks", record_id="nope")

    async def test_list_filters_by_family_and_field(self, sqlite_db):
        seed = [("a", "fam1", "pending"), ("b", "fam1", "completed"), ("c", "fam2", "pending")]
        for record_id, family_id, status in seed:
            await db_client.create_record(
                collection="tasks", data={"family_id": family_id, "status": status}, record_id=record_id
            )

        pending = await db_client.list_records(collection="tasks", family_id="fam1", filters={"status": "pending"})
        families = await db_client.list_family_ids(collection="tasks")

        assert [record["id"] for record in pending] == ["a"]
        assert families == ["fam1", "fam2"]

    async def test_delete_removes_record(self, sqlite_db):
        await db_client.create_record(collection="tasks", data={"family_id": "fam1"}, record_id="t1")

        await db_client.delete_record(collection="tasks", record_id="t1")

        assert await db_client.list_records(collection="tasks") == []

    async def test_invalid_collection_name_is_rejected(self, sqlite_db):
        with pytest.raises(ValueError, match="Invalid identifier"):
            await db_client.get_record(collection="tasks; DROP TABLE tasks", record_id="t1")

    async def test_list_filter_accepts_several_values(self, sqlite_db):
        for record_id, status in [("a", "pending"), ("b", "completed"), ("c", "in_progress")]:
            await db_client.create_record(
                collection="tasks", data={"family_id": "fam1", "status": status}, record_id=record_id
            )

        open_records = await db_client.list_records(
            collection="tasks", family_id="fam1", filters={"status": ["pending", "in_progress"]}
        )

        assert sorted(record["id"] for record in open_records) == ["a", "c"]
        assert await db_client.list_records(collection="tasks", filters={"status": []}) == []


@pytest.mark.unit
class TestPaging:
    async def _seed(self, count: int) -> None:
        for index in range(count):
            await db_client.create_record(
                collection="tasks", data={"family_id": "fam1", "status": "pending"}, record_id=f"t{index:04d}"
            )

    async def test_pages_do_not_overlap(self, sqlite_db):
        await self._seed(5)

        first = await db_client.list_records(collection="tasks", page=1, per_page=2)
        second = await db_client.list_records(collection="tasks", page=2, per_page=2)
        last = await db_client.list_records(collection="tasks", page=3, per_page=2)

        assert [record["id"] for record in first] == ["t0000", "t0001"]
        assert [record["id"] for record in second] == ["t0002", "t0003"]
        assert [record["id"] for record in last] == ["t0004"]

    async def test_list_all_reads_every_page(self, sqlite_db):
        await self._seed(7)

        records = await db_client.list_all_records(collection="tasks", family_id="fam1", per_page=3)

        assert [record["id"] for record in records] == [f"t{index:04d}" for index in range(7)]

    async def test_family_larger_than_default_page(self, sqlite_db):
        await self._seed(501)

        records = await db_client.list_all_records(collection="tasks", family_id="fam1")

        assert len(records) == 501
        assert len(await db_client.list_records(collection="tasks", family_id="fam1")) == 500
