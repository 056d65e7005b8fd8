"""Blob storage for generated export artifacts."""

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fingov.core.clock import Clock, now_ms
from fingov.db.models.document import Blob
from fingov.db.repositories.rows import new_id


@dataclass(frozen=True)
class StoredBlob:
    """A blob fetched from storage."""

    storage_id: str
    data: bytes
    content_type: str

    @property
    def byte_size(self) -> int:
        return len(self.data)


class BlobStore(Protocol):
    """Protocol for binary artifact storage."""

    async def store(self, data: bytes, content_type: str) -> str:
        """Persist ``data`` and return its storage id."""
        ...

    async def get(self, storage_id: str) -> StoredBlob | None:
        """Fetch a blob, or None if it does not exist."""
        ...

    async def delete(self, storage_id: str) -> None:
        """Delete a blob. Unknown ids are ignored."""
        ...


class InMemoryBlobStore:
    """In-memory implementation of BlobStore for testing."""

    def __init__(self) -> None:
        self._blobs: dict[str, StoredBlob] = {}

    async def store(self, data: bytes, content_type: str) -> str:
        storage_id = new_id()
        self._blobs[storage_id] = StoredBlob(storage_id, bytes(data), content_type)
        return storage_id

    async def get(self, storage_id: str) -> StoredBlob | None:
        return self._blobs.get(storage_id)

    async def delete(self, storage_id: str) -> None:
        self._blobs.pop(storage_id, None)

    def __contains__(self, storage_id: object) -> bool:
        return storage_id in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class SqlBlobStore:
    """BlobStore backed by the ``blobs`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = now_ms,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def store(self, data: bytes, content_type: str) -> str:
        blob = Blob(
            id=new_id(),
            content_type=content_type,
            byte_size=len(data),
            data=data,
            created_at=self._clock(),
        )
        async with self._session_factory() as session, session.begin():
            session.add(blob)
        return blob.id

    async def get(self, storage_id: str) -> StoredBlob | None:
        async with self._session_factory() as session:
            blob = await session.get(Blob, storage_id)
            if blob is None:
                return None
            return StoredBlob(blob.id, blob.data, blob.content_type)

    async def delete(self, storage_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(delete(Blob).where(Blob.id == storage_id))
