"""Batch deletion helpers.

Deletions run row by row. A failing item is recorded and the batch moves
on, so a retry of the whole operation only has the leftovers to do. A row
that is already gone, for example removed by a concurrent sweep, counts as
already absent rather than failed.
"""

from collections.abc import Iterable

from fingov.core.exceptions import NotFoundError, TransientStorageError
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.types import BatchFailure, BatchResult
from fingov.storage.blobs import BlobStore

logger = get_logger(__name__)

STORAGE = "storage"


def _failure(table: str, record_id: str, exc: Exception) -> BatchFailure:
    error = TransientStorageError(str(exc) or type(exc).__name__, table, record_id)
    logger.warning("Batch item failed", table=table, record_id=record_id, error=str(error))
    return BatchFailure(table=table, record_id=record_id, error=str(error))


async def delete_rows(
    repository: RowRepository, table: str, record_ids: Iterable[str]
) -> BatchResult:
    """Delete rows one at a time, collecting failures."""
    result = BatchResult()
    for record_id in record_ids:
        result.attempted += 1
        try:
            await repository.delete(table, record_id)
        except NotFoundError:
            result.already_absent += 1
        except Exception as e:
            result.failed.append(_failure(table, record_id, e))
        else:
            result.succeeded += 1
    return result


async def delete_blobs(blobs: BlobStore, storage_ids: Iterable[str]) -> BatchResult:
    """Delete stored blobs one at a time, collecting failures."""
    result = BatchResult()
    for storage_id in dict.fromkeys(storage_ids):
        result.attempted += 1
        try:
            await blobs.delete(storage_id)
        except Exception as e:
            result.failed.append(_failure(STORAGE, storage_id, e))
        else:
            result.succeeded += 1
    return result
