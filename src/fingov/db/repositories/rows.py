"""Owner-scoped row repository.

Every governance and finance table is accessed through ``RowRepository``.
Rows are plain dicts carrying the repository-assigned ``id`` and
``creation_time`` plus their own fields. Lookups are by user id, by owner
key, or by id; there are no whole-store scans outside ``list_all``.
"""

import asyncio
import copy
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from uuid_utils import uuid7

from fingov.core.clock import Clock, now_ms
from fingov.core.exceptions import NotFoundError, TransientStorageError
from fingov.core.logging import get_logger
from fingov.db.models.document import Document

logger = get_logger(__name__)

Row = dict[str, Any]

# Keys managed by the repository; callers cannot overwrite them
SYSTEM_KEYS = frozenset({"id", "creation_time"})

# Attempts at an optimistic update before giving up
MAX_WRITE_ATTEMPTS = 5


def new_id() -> str:
    """Generate a new time-ordered row identifier."""
    return str(uuid7())


class RowRepository(Protocol):
    """Protocol for owner-scoped table access."""

    async def list_owned_by_user(self, table: str, user_id: str) -> list[Row]:
        """List rows of ``table`` whose ``user_id`` matches."""
        ...

    async def list_by_owner_key(self, table: str, owner_key: str) -> list[Row]:
        """List rows of ``table`` whose ``owner_key`` matches."""
        ...

    async def list_all(self, table: str) -> list[Row]:
        """List every row of ``table``. Best-effort: empty on storage errors."""
        ...

    async def get(self, table: str, record_id: str) -> Row | None:
        """Get a row by id, or None."""
        ...

    async def get_owned_or_fail(self, table: str, record_id: str, user_id: str) -> Row:
        """Get a row by id that belongs to ``user_id``.

        Raises:
            NotFoundError: If the row is missing or owned by someone else
        """
        ...

    async def insert(self, table: str, values: Row) -> str:
        """Insert a row and return its id."""
        ...

    async def patch(self, table: str, record_id: str, values: Row) -> Row:
        """Merge ``values`` into an existing row and return the result.

        Raises:
            NotFoundError: If the row does not exist
        """
        ...

    async def patch_if(
        self, table: str, record_id: str, expected: Row, values: Row
    ) -> Row | None:
        """Merge ``values`` only if every ``expected`` field still matches.

        The check and the write are atomic. Returns the updated row, or None
        when a field differs.

        Raises:
            NotFoundError: If the row does not exist
        """
        ...

    async def increment(
        self, table: str, record_id: str, field: str, amount: int = 1, values: Row | None = None
    ) -> Row:
        """Atomically add ``amount`` to a numeric field, merging ``values`` too.

        Raises:
            NotFoundError: If the row does not exist
        """
        ...

    async def delete(self, table: str, record_id: str) -> None:
        """Delete a row.

        Raises:
            NotFoundError: If the row does not exist
        """
        ...

    async def distinct_user_ids(self, tables: Iterable[str]) -> list[str]:
        """Distinct non-empty user ids referenced by any of ``tables``, sorted."""
        ...


def _clean(values: Row) -> Row:
    return {k: v for k, v in values.items() if k not in SYSTEM_KEYS}


def _matches(row: Row, expected: Row) -> bool:
    return all(row.get(key) == value for key, value in expected.items())


def _incremented(row: Row, field: str, amount: int, values: Row | None) -> Row:
    merged = {**row, **copy.deepcopy(_clean(values or {}))}
    merged[field] = int(row.get(field) or 0) + amount
    return merged


class InMemoryRowRepository:
    """In-memory implementation of RowRepository for testing and local tools."""

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._tables: dict[str, dict[str, Row]] = {}

    def _table(self, table: str) -> dict[str, Row]:
        return self._tables.setdefault(table, {})

    async def list_owned_by_user(self, table: str, user_id: str) -> list[Row]:
        return [
            copy.deepcopy(row)
            for row in self._table(table).values()
            if row.get("user_id") == user_id
        ]

    async def list_by_owner_key(self, table: str, owner_key: str) -> list[Row]:
        return [
            copy.deepcopy(row)
            for row in self._table(table).values()
            if row.get("owner_key") == owner_key
        ]

    async def list_all(self, table: str) -> list[Row]:
        return [copy.deepcopy(row) for row in self._table(table).values()]

    async def get(self, table: str, record_id: str) -> Row | None:
        row = self._table(table).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def get_owned_or_fail(self, table: str, record_id: str, user_id: str) -> Row:
        row = await self.get(table, record_id)
        if row is None or row.get("user_id") != user_id:
            raise NotFoundError(table, record_id)
        return row

    async def insert(self, table: str, values: Row) -> str:
        record_id = new_id()
        row = copy.deepcopy(_clean(values))
        row["id"] = record_id
        row["creation_time"] = self._clock()
        self._table(table)[record_id] = row
        return record_id

    async def patch(self, table: str, record_id: str, values: Row) -> Row:
        rows = self._table(table)
        if record_id not in rows:
            raise NotFoundError(table, record_id)
        rows[record_id].update(copy.deepcopy(_clean(values)))
        return copy.deepcopy(rows[record_id])

    async def patch_if(
        self, table: str, record_id: str, expected: Row, values: Row
    ) -> Row | None:
        rows = self._table(table)
        if record_id not in rows:
            raise NotFoundError(table, record_id)
        if not _matches(rows[record_id], expected):
            return None
        rows[record_id].update(copy.deepcopy(_clean(values)))
        return copy.deepcopy(rows[record_id])

    async def increment(
        self, table: str, record_id: str, field: str, amount: int = 1, values: Row | None = None
    ) -> Row:
        rows = self._table(table)
        if record_id not in rows:
            raise NotFoundError(table, record_id)
        rows[record_id] = _incremented(rows[record_id], field, amount, values)
        return copy.deepcopy(rows[record_id])

    async def delete(self, table: str, record_id: str) -> None:
        rows = self._table(table)
        if record_id not in rows:
            raise NotFoundError(table, record_id)
        del rows[record_id]

    async def distinct_user_ids(self, tables: Iterable[str]) -> list[str]:
        user_ids: set[str] = set()
        for table in tables:
            for row in self._table(table).values():
                user_id = row.get("user_id")
                if isinstance(user_id, str) and user_id:
                    user_ids.add(user_id)
        return sorted(user_ids)

    def count(self, table: str) -> int:
        """Number of rows in ``table``."""
        return len(self._table(table))


class SqlRowRepository:
    """RowRepository backed by the ``documents`` table.

    Each call runs in its own session and transaction, which gives
    per-row atomicity and nothing more. Read-modify-write calls are
    serialized within the process and checked against the row revision
    across processes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = now_ms,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _to_row(document: Document) -> Row:
        row = copy.deepcopy(document.data or {})
        row["id"] = document.id
        row["creation_time"] = document.creation_time
        return row

    async def _select(self, *criteria) -> list[Row]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document).where(*criteria).order_by(Document.creation_time, Document.id)
            )
            return [self._to_row(doc) for doc in result.scalars().all()]

    async def list_owned_by_user(self, table: str, user_id: str) -> list[Row]:
        return await self._select(Document.table_name == table, Document.user_id == user_id)

    async def list_by_owner_key(self, table: str, owner_key: str) -> list[Row]:
        return await self._select(
            Document.table_name == table, Document.owner_key == owner_key
        )

    async def list_all(self, table: str) -> list[Row]:
        try:
            return await self._select(Document.table_name == table)
        except SQLAlchemyError as e:
            logger.warning("Table scan failed", table=table, error=str(e))
            return []

    async def get(self, table: str, record_id: str) -> Row | None:
        async with self._session_factory() as session:
            document = await session.get(Document, record_id)
            if document is None or document.table_name != table:
                return None
            return self._to_row(document)

    async def get_owned_or_fail(self, table: str, record_id: str, user_id: str) -> Row:
        row = await self.get(table, record_id)
        if row is None or row.get("user_id") != user_id:
            raise NotFoundError(table, record_id)
        return row

    async def insert(self, table: str, values: Row) -> str:
        data = copy.deepcopy(_clean(values))
        document = Document(
            id=new_id(),
            table_name=table,
            user_id=data.get("user_id"),
            owner_key=data.get("owner_key"),
            data=data,
            creation_time=self._clock(),
        )
        async with self._session_factory() as session, session.begin():
            session.add(document)
        return document.id

    async def _modify(
        self, table: str, record_id: str, change: Callable[[Row], Row | None]
    ) -> Row | None:
        """Read-modify-write one document under its revision check.

        ``change`` receives a copy of the stored payload and returns the new
        payload, or None to leave the row untouched. A concurrent writer
        makes the update match no row; the read and ``change`` are then
        repeated against the fresh revision.

        Raises:
            NotFoundError: If the row does not exist
            TransientStorageError: If every attempt lost a race
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                async with self._write_lock, self._session_factory() as session, session.begin():
                    document = await session.get(Document, record_id, with_for_update=True)
                    if document is None or document.table_name != table:
                        raise NotFoundError(table, record_id)
                    data = change(copy.deepcopy(document.data or {}))
                    if data is None:
                        return None
                    # Reassign so the JSON column is flagged dirty
                    document.data = data
                    document.user_id = data.get("user_id")
                    document.owner_key = data.get("owner_key")
                    row = self._to_row(document)
                return row
            except StaleDataError:
                logger.debug(
                    "Concurrent document update, retrying",
                    table=table,
                    record_id=record_id,
                    attempt=attempt,
                )
        raise TransientStorageError("Too many concurrent updates", table, record_id)

    async def patch(self, table: str, record_id: str, values: Row) -> Row:
        cleaned = copy.deepcopy(_clean(values))
        row = await self._modify(table, record_id, lambda data: {**data, **cleaned})
        assert row is not None
        return row

    async def patch_if(
        self, table: str, record_id: str, expected: Row, values: Row
    ) -> Row | None:
        cleaned = copy.deepcopy(_clean(values))

        def change(data: Row) -> Row | None:
            if not _matches(data, expected):
                return None
            return {**data, **cleaned}

        return await self._modify(table, record_id, change)

    async def increment(
        self, table: str, record_id: str, field: str, amount: int = 1, values: Row | None = None
    ) -> Row:
        row = await self._modify(
            table, record_id, lambda data: _incremented(data, field, amount, values)
        )
        assert row is not None
        return row

    async def delete(self, table: str, record_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(Document).where(
                    Document.id == record_id, Document.table_name == table
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(table, record_id)

    async def distinct_user_ids(self, tables: Iterable[str]) -> list[str]:
        table_list = list(tables)
        if not table_list:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.user_id)
                .where(Document.table_name.in_(table_list), Document.user_id.is_not(None))
                .distinct()
            )
            return sorted(uid for uid in result.scalars().all() if uid)
