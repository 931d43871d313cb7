"""Pure Python in-memory document store for unit testing."""

import copy
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from famtasks.core.errors import StoreConflictError


def _matches(actual: Any, expected: Any) -> bool:
    if isinstance(expected, list | tuple | set | frozenset):
        return any(_matches(actual, item) for item in expected)
    return actual == (expected.value if isinstance(expected, Enum) else expected)


class InMemoryDBClient:
    """In-memory stand-in for ``famtasks.core.db_client``.

    Mirrors the module's keyword-only CRUD functions, including per-document
    revisions, revision-checked updates and duplicate-id rejection, without
    touching SQLite.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.fail_on: set[tuple[str, str]] = set()

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _check_failure(self, operation: str, collection: str) -> None:
        if (operation, collection) in self.fail_on:
            raise RuntimeError(f"Simulated {operation} failure in {collection}")

    async def create_record(
        self, *, collection: str, data: dict[str, Any], record_id: str | None = None
    ) -> dict[str, Any]:
        self._check_failure("create", collection)
        records = self._collection(collection)
        record_id = record_id or data.get("id") or uuid.uuid4().hex
        if record_id in records:
            raise StoreConflictError(f"Record already exists in {collection}: {record_id}", record_id=record_id)

        now = datetime.now(UTC).isoformat()
        records[record_id] = {
            **copy.deepcopy(data),
            "id": record_id,
            "revision": 1,
            "created": now,
            "updated": now,
        }
        return copy.deepcopy(records[record_id])

    async def get_record(self, *, collection: str, record_id: str) -> dict[str, Any]:
        records = self._collection(collection)
        if record_id not in records:
            raise KeyError(f"Record not found in {collection}: {record_id}")
        return copy.deepcopy(records[record_id])

    async def update_record(
        self,
        *,
        collection: str,
        record_id: str,
        data: dict[str, Any],
        expected_revision: int | None = None,
    ) -> dict[str, Any]:
        self._check_failure("update", collection)
        if not data:
            raise ValueError("Empty update payload")
        records = self._collection(collection)
        if record_id not in records:
            raise KeyError(f"Record not found in {collection}: {record_id}")

        record = records[record_id]
        if expected_revision is not None and record["revision"] != expected_revision:
            raise StoreConflictError(
                f"Revision mismatch for {collection}/{record_id}",
                record_id=record_id,
                expected_revision=expected_revision,
                actual_revision=record["revision"],
            )

        payload = {key: value for key, value in copy.deepcopy(data).items() if key not in {"id", "revision"}}
        record.update(payload)
        record["revision"] += 1
        record["updated"] = datetime.now(UTC).isoformat()
        return copy.deepcopy(record)

    async def delete_record(self, *, collection: str, record_id: str) -> None:
        records = self._collection(collection)
        if record_id not in records:
            raise KeyError(f"Record not found in {collection}: {record_id}")
        del records[record_id]

    async def list_records(
        self,
        *,
        collection: str,
        family_id: str | None = None,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        per_page: int = 500,
    ) -> list[dict[str, Any]]:
        results = []
        for record in self._collection(collection).values():
            if family_id is not None and record.get("family_id") != family_id:
                continue
            if not all(_matches(record.get(field), value) for field, value in (filters or {}).items()):
                continue
            results.append(copy.deepcopy(record))
        start = (page - 1) * per_page
        return results[start : start + per_page]

    async def list_all_records(
        self,
        *,
        collection: str,
        family_id: str | None = None,
        filters: dict[str, Any] | None = None,
        per_page: int = 500,
    ) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        page = 1
        while batch := await self.list_records(
            collection=collection, family_id=family_id, filters=filters, page=page, per_page=per_page
        ):
            records.extend(batch)
            page += 1
        return records

    async def list_family_ids(self, *, collection: str) -> list[str]:
        return sorted({r["family_id"] for r in self._collection(collection).values() if r.get("family_id")})

    def records(self, collection: str) -> list[dict[str, Any]]:
        """Synchronous snapshot of a collection, for assertions."""
        return [copy.deepcopy(record) for record in self._collection(collection).values()]
