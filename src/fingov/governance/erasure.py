"""Account erasure workflow.

Erasure is two-phase. A dry run reports what would be deleted. A
confirmed run deletes every row the user owns across the erasure table
set, rows keyed by the user's owner key, and stored export blobs.

Confirmed runs bracket their deletions with a durable erasure marker.
The marker lives outside every erasure table, so if a run dies half-way
the marker survives and ``find_interrupted_erasures`` reports it.
"""

from fingov.core.clock import Clock, now_ms
from fingov.core.exceptions import ValidationError
from fingov.core.logging import LogContext, get_logger
from fingov.db.repositories.rows import Row, RowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.batch import delete_blobs, delete_rows
from fingov.governance.tables import (
    ERASURE_MARKERS,
    ERASURE_OWNER_KEY_TABLES,
    ERASURE_USER_TABLES,
    FINANCE_AUDIT_EVENTS,
    STORAGE_REFERENCING_TABLES,
)
from fingov.governance.types import (
    BatchResult,
    ErasureCounts,
    ErasureMarker,
    ErasureResult,
    FailureEntry,
    InterruptedErasure,
)
from fingov.observability.metrics import ERASURE_COUNT
from fingov.storage.blobs import BlobStore

logger = get_logger(__name__)

DRY_RUN_NOTE = (
    "Dry run only. Re-run with dry_run=false and the confirmation phrase to erase the account."
)
EXECUTE_NOTE = (
    "Account data erased. Shared reference data and other users' data were not touched."
)


class AccountErasureWorkflow:
    """Deletes everything a user owns."""

    def __init__(
        self,
        repository: RowRepository,
        blobs: BlobStore,
        audit: AuditWriter,
        clock: Clock = now_ms,
        confirmation_phrase: str = "DELETE ALL MY DATA",
        owner_key_prefix: str = "clerk:",
    ):
        self._repository = repository
        self._blobs = blobs
        self._audit = audit
        self._clock = clock
        self.confirmation_phrase = confirmation_phrase
        self.owner_key_prefix = owner_key_prefix

    def owner_key_for(self, user_id: str) -> str:
        return f"{self.owner_key_prefix}{user_id}"

    async def _collect(
        self, user_id: str, owner_key: str
    ) -> tuple[dict[str, list[Row]], dict[str, list[Row]], list[str]]:
        user_rows = {
            table: await self._repository.list_owned_by_user(table, user_id)
            for table in ERASURE_USER_TABLES
        }
        owner_rows = {
            table: await self._repository.list_by_owner_key(table, owner_key)
            for table in ERASURE_OWNER_KEY_TABLES
        }
        storage_ids: list[str] = []
        for table in STORAGE_REFERENCING_TABLES:
            for row in user_rows.get(table, []):
                storage_id = row.get("storage_id")
                if isinstance(storage_id, str) and storage_id:
                    storage_ids.append(storage_id)
        return user_rows, owner_rows, list(dict.fromkeys(storage_ids))

    @staticmethod
    def _counts(
        user_rows: dict[str, list[Row]],
        owner_rows: dict[str, list[Row]],
        storage_files: int,
    ) -> ErasureCounts:
        by_user = {table: len(rows) for table, rows in user_rows.items()}
        by_owner = {table: len(rows) for table, rows in owner_rows.items()}
        return ErasureCounts(
            total_rows=sum(by_user.values()) + sum(by_owner.values()),
            storage_files=storage_files,
            by_user_table=by_user,
            by_owner_key_table=by_owner,
        )

    async def erase(
        self,
        user_id: str,
        dry_run: bool = True,
        confirmation_text: str | None = None,
    ) -> ErasureResult:
        """Report or execute erasure of a user's data.

        Args:
            user_id: The account to erase
            dry_run: Only report candidate counts
            confirmation_text: Must equal the confirmation phrase when
                ``dry_run`` is False

        Returns:
            Candidate counts, and deleted counts for confirmed runs

        Raises:
            ValidationError: If a confirmed run has the wrong phrase
        """
        if not dry_run and (confirmation_text or "").strip() != self.confirmation_phrase:
            ERASURE_COUNT.labels(mode="execute", status="rejected").inc()
            raise ValidationError(
                f'Type "{self.confirmation_phrase}" to confirm account erasure',
                field="confirmation_text",
            )

        owner_key = self.owner_key_for(user_id)
        with LogContext(user_id=user_id, erasure_dry_run=dry_run):
            user_rows, owner_rows, storage_ids = await self._collect(user_id, owner_key)
            candidates = self._counts(user_rows, owner_rows, len(storage_ids))

            if dry_run:
                return await self._report_dry_run(user_id, owner_key, candidates)
            return await self._execute(
                user_id, owner_key, candidates, user_rows, owner_rows, storage_ids
            )

    async def _report_dry_run(
        self, user_id: str, owner_key: str, candidates: ErasureCounts
    ) -> ErasureResult:
        await self._audit.record(
            "account_data_erasure_dry_run",
            "account",
            user_id,
            user_id,
            metadata={
                "total_rows": candidates.total_rows,
                "storage_files": candidates.storage_files,
            },
        )
        ERASURE_COUNT.labels(mode="dry_run", status="completed").inc()
        logger.info(
            "Account erasure dry run",
            candidate_rows=candidates.total_rows,
            candidate_files=candidates.storage_files,
        )
        return ErasureResult(
            dry_run=True,
            user_id=user_id,
            owner_key=owner_key,
            confirmation_required_phrase=self.confirmation_phrase,
            candidates=candidates,
            note=DRY_RUN_NOTE,
        )

    async def _execute(
        self,
        user_id: str,
        owner_key: str,
        candidates: ErasureCounts,
        user_rows: dict[str, list[Row]],
        owner_rows: dict[str, list[Row]],
        storage_ids: list[str],
    ) -> ErasureResult:
        started = self._clock()
        marker_id = await self._write_marker(user_id, owner_key, started, candidates)

        # Ephemeral receipt: removed again once the audit table is cleared
        receipt_id = await self._audit.record(
            "account_data_erasure_execute",
            "account",
            user_id,
            user_id,
            metadata={
                "will_be_deleted_by_erasure": True,
                "total_rows": candidates.total_rows,
                "storage_files": candidates.storage_files,
                "marker_id": marker_id,
            },
        )
        if marker_id and receipt_id:
            await self._safe_patch_marker(marker_id, {"receipt_id": receipt_id})

        blob_result = await delete_blobs(self._blobs, storage_ids)

        deleted_by_user: dict[str, int] = {}
        failures = BatchResult()
        failures.merge(blob_result)
        touched: list[str] = []
        for table, rows in user_rows.items():
            result = await delete_rows(self._repository, table, [r["id"] for r in rows])
            deleted_by_user[table] = result.succeeded
            failures.failed.extend(result.failed)
            if result.succeeded:
                touched.append(table)

        deleted_by_owner: dict[str, int] = {}
        for table, rows in owner_rows.items():
            result = await delete_rows(self._repository, table, [r["id"] for r in rows])
            deleted_by_owner[table] = result.succeeded
            failures.failed.extend(result.failed)
            if result.succeeded:
                touched.append(table)

        # The receipt was inserted after collection, so remove it explicitly
        if receipt_id:
            await self._safe_delete(FINANCE_AUDIT_EVENTS, receipt_id)
        if failures.failed:
            logger.warning(
                "Account erasure incomplete; marker kept",
                marker_id=marker_id,
                failures=len(failures.failed),
            )
        else:
            # Also clears markers left behind by earlier interrupted runs
            for marker in await self._repository.list_owned_by_user(ERASURE_MARKERS, user_id):
                await self._safe_delete(ERASURE_MARKERS, marker["id"])

        deleted = ErasureCounts(
            total_rows=sum(deleted_by_user.values()) + sum(deleted_by_owner.values()),
            storage_files=blob_result.succeeded,
            by_user_table=deleted_by_user,
            by_owner_key_table=deleted_by_owner,
        )
        status = "partial" if failures.failed else "completed"
        ERASURE_COUNT.labels(mode="execute", status=status).inc()
        logger.info(
            "Account erasure executed",
            deleted_rows=deleted.total_rows,
            deleted_files=deleted.storage_files,
            failures=len(failures.failed),
        )

        return ErasureResult(
            dry_run=False,
            user_id=user_id,
            owner_key=owner_key,
            confirmation_required_phrase=self.confirmation_phrase,
            candidates=candidates,
            deleted=deleted,
            failures=[
                FailureEntry(table=f.table, record_id=f.record_id, error=f.error)
                for f in failures.failed
            ],
            touched_tables=touched,
            note=EXECUTE_NOTE,
        )

    async def _write_marker(
        self, user_id: str, owner_key: str, started: int, candidates: ErasureCounts
    ) -> str | None:
        try:
            return await self._repository.insert(
                ERASURE_MARKERS,
                {
                    "user_id": user_id,
                    "owner_key": owner_key,
                    "started_at": started,
                    "candidate_rows": candidates.total_rows,
                    "candidate_storage_files": candidates.storage_files,
                },
            )
        except Exception as e:
            logger.warning("Failed to write erasure marker", error=str(e))
            return None

    async def _safe_patch_marker(self, marker_id: str, values: Row) -> None:
        try:
            await self._repository.patch(ERASURE_MARKERS, marker_id, values)
        except Exception as e:
            logger.warning("Failed to update erasure marker", marker_id=marker_id, error=str(e))

    async def _safe_delete(self, table: str, record_id: str) -> None:
        try:
            await self._repository.delete(table, record_id)
        except Exception as e:
            logger.warning("Cleanup delete failed", table=table, record_id=record_id, error=str(e))

    async def find_interrupted_erasures(self, older_than_ms: int) -> list[InterruptedErasure]:
        """List erasure markers older than ``older_than_ms``.

        Detection only: interrupted erasures are reported, not resumed. A
        user can re-run the erasure to finish the job.
        """
        now = self._clock()
        interrupted: list[InterruptedErasure] = []
        for row in await self._repository.list_all(ERASURE_MARKERS):
            marker = ErasureMarker.from_row(row)
            age = now - marker.started_at
            if age < older_than_ms:
                continue
            interrupted.append(
                InterruptedErasure(
                    marker_id=marker.id,
                    user_id=marker.user_id,
                    owner_key=marker.owner_key,
                    started_at=marker.started_at,
                    age_ms=age,
                    candidate_rows=marker.candidate_rows,
                    receipt_id=marker.receipt_id,
                )
            )
        return sorted(interrupted, key=lambda m: (m.started_at, m.marker_id))
