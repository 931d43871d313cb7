"""SQLite document store client with revision-checked CRUD operations.

Every collection is a table of JSON documents keyed by id. Each document
carries a store-assigned ``revision`` that increases by one on every write;
callers pass ``expected_revision`` to make an update conditional on it.
"""

import asyncio
import json
import logging
import re
import threading
import uuid
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from famtasks.core.config import constants, settings
from famtasks.core.errors import StoreConflictError


logger = logging.getLogger(__name__)

COLLECTIONS = ("tasks", "recurring_templates", "members", "point_awards", "activity", "family_settings")

# Document keys that live in their own columns rather than inside the JSON body
_RESERVED_KEYS = {"id", "revision", "created", "updated"}


def _validate_identifier(name: str) -> None:
    """Validate that a collection or field name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name):
        msg = f"Invalid identifier: {name}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _json_default(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def _dump(data: dict[str, Any]) -> str:
    body = {key: value for key, value in data.items() if key not in _RESERVED_KEYS}
    return json.dumps(body, default=_json_default)


def _row_to_record(row: aiosqlite.Row | tuple[Any, ...]) -> dict[str, Any]:
    record_id, revision, created, updated, body = row
    record = json.loads(body)
    record.update({"id": record_id, "revision": revision, "created": created, "updated": updated})
    return record


def _filter_value(value: Any) -> Any:  # noqa: ANN401
    return value.value if isinstance(value, Enum) else value


def _now() -> str:
    return datetime.now(UTC).isoformat()


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = asyncio.Lock()


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    async with _db_lock:
        conn = _db_connections.pop(cache_key, None)
    if conn is None:
        return

    await conn.close()
    logger.info("Closed SQLite connection", extra={"db_path": str(path), "loop_id": loop_id})


async def init_db(*, db_path: str | None = None, collections: tuple[str, ...] = COLLECTIONS) -> None:
    """Create the document tables if they do not exist."""
    conn = await get_connection(db_path=db_path)
    for collection in collections:
        _validate_identifier(collection)
        await conn.execute(
            f"CREATE TABLE IF NOT EXISTS {collection} ("  # noqa: S608 - collection is validated
            "id TEXT PRIMARY KEY, "
            "family_id TEXT, "
            "revision INTEGER NOT NULL DEFAULT 1, "
            "created TEXT NOT NULL, "
            "updated TEXT NOT NULL, "
            "data TEXT NOT NULL)"
        )
        await conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{collection}_family ON {collection} (family_id)")
    await conn.commit()
    logger.info("Document store initialized", extra={"collections": list(collections)})


async def create_record(
    *,
    collection: str,
    data: dict[str, Any],
    record_id: str | None = None,
) -> dict[str, Any]:
    """Insert a new document and return it with its id and first revision.

    Raises:
        StoreConflictError: If a document with the same id already exists
    """
    _validate_identifier(collection)
    record_id = record_id or data.get("id") or uuid.uuid4().hex
    now = _now()

    try:
        conn = await get_connection()
        await conn.execute(
            f"INSERT INTO {collection} (id, family_id, revision, created, updated, data) "  # noqa: S608
            "VALUES (?, ?, 1, ?, ?, ?)",
            (record_id, data.get("family_id"), now, now, _dump(data)),
        )
        await conn.commit()
    except aiosqlite.IntegrityError as e:
        msg = f"Record already exists in {collection}: {record_id}"
        raise StoreConflictError(msg, record_id=record_id) from e
    except aiosqlite.OperationalError as e:
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to create record in {collection}: {e}"
        raise RuntimeError(msg) from e

    logger.info("Created record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single document by id, raising KeyError if not found."""
    _validate_identifier(collection)
    try:
        conn = await get_connection()
        cursor = await conn.execute(
            f"SELECT id, revision, created, updated, data FROM {collection} WHERE id = ?",  # noqa: S608
            (record_id,),
        )
        row = await cursor.fetchone()
    except aiosqlite.Error as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise RuntimeError(msg) from e

    if row is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise KeyError(msg)

    return _row_to_record(row)


async def update_record(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected_revision: int | None = None,
) -> dict[str, Any]:
    """Merge ``data`` into a document and bump its revision.

    The write is conditional on the revision read (or ``expected_revision``
    when given), so concurrent writers cannot silently overwrite each other.

    Raises:
        KeyError: If the document does not exist
        StoreConflictError: If the document's revision changed
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    current = await get_record(collection=collection, record_id=record_id)
    if expected_revision is not None and current["revision"] != expected_revision:
        msg = f"Revision mismatch for {collection}/{record_id}"
        raise StoreConflictError(
            msg,
            record_id=record_id,
            expected_revision=expected_revision,
            actual_revision=current["revision"],
        )

    merged = {**current, **data}
    try:
        conn = await get_connection()
        cursor = await conn.execute(
            f"UPDATE {collection} SET data = ?, family_id = ?, revision = revision + 1, updated = ? "  # noqa: S608
            "WHERE id = ? AND revision = ?",
            (_dump(merged), merged.get("family_id"), _now(), record_id, current["revision"]),
        )
        await conn.commit()
    except aiosqlite.Error as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to update record in {collection}: {e}"
        raise RuntimeError(msg) from e

    if cursor.rowcount == 0:
        msg = f"Concurrent write detected for {collection}/{record_id}"
        raise StoreConflictError(msg, record_id=record_id, expected_revision=current["revision"])

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a document by id, raising KeyError if not found."""
    _validate_identifier(collection)
    conn = await get_connection()
    cursor = await conn.execute(f"DELETE FROM {collection} WHERE id = ?", (record_id,))  # noqa: S608
    await conn.commit()

    if cursor.rowcount == 0:
        msg = f"Record not found in {collection}: {record_id}"
        raise KeyError(msg)

    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})


async def list_records(
    *,
    collection: str,
    family_id: str | None = None,
    filters: dict[str, Any] | None = None,
    page: int = 1,
    per_page: int = constants.DEFAULT_PER_PAGE_LIMIT,
) -> list[dict[str, Any]]:
    """List one page of documents, optionally scoped to a family and filtered by field values.

    A filter value that is a list, tuple or set matches any of its members.
    """
    _validate_identifier(collection)
    conditions: list[str] = []
    params: list[Any] = []

    if family_id is not None:
        conditions.append("family_id = ?")
        params.append(family_id)

    for field, value in (filters or {}).items():
        _validate_identifier(field)
        if isinstance(value, list | tuple | set | frozenset):
            values = [_filter_value(item) for item in value]
            if not values:
                return []
            placeholders = ", ".join("?" for _ in values)
            conditions.append(f"json_extract(data, '$.{field}') IN ({placeholders})")
            params.extend(values)
        else:
            conditions.append(f"json_extract(data, '$.{field}') = ?")
            params.append(_filter_value(value))

    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    query = (
        f"SELECT id, revision, created, updated, data FROM {collection} {where_clause} "  # noqa: S608
        "ORDER BY created ASC, id ASC LIMIT ? OFFSET ?"
    )
    params.extend([per_page, (page - 1) * per_page])

    try:
        conn = await get_connection()
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
    except aiosqlite.Error as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise RuntimeError(msg) from e

    return [_row_to_record(row) for row in rows]


async def list_all_records(
    *,
    collection: str,
    family_id: str | None = None,
    filters: dict[str, Any] | None = None,
    per_page: int = constants.DEFAULT_PER_PAGE_LIMIT,
) -> list[dict[str, Any]]:
    """List every matching document, fetching page by page until a short page."""
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await list_records(
            collection=collection, family_id=family_id, filters=filters, page=page, per_page=per_page
        )
        records.extend(batch)
        if len(batch) < per_page:
            return records
        page += 1


async def list_family_ids(*, collection: str) -> list[str]:
    """Return the distinct family ids that own documents in a collection."""
    _validate_identifier(collection)
    conn = await get_connection()
    cursor = await conn.execute(
        f"SELECT DISTINCT family_id FROM {collection} WHERE family_id IS NOT NULL ORDER BY family_id"  # noqa: S608
    )
    rows = await cursor.fetchall()
    return [row[0] for row in rows]
