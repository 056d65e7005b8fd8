"""Deletion job tracking.

Jobs move forward through a fixed transition graph. Completed, failed and
cancelled jobs are terminal and reject every further transition.
"""

from typing import Any

from fingov.core.clock import Clock, now_ms
from fingov.core.exceptions import ConflictError, ValidationError
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.tables import DELETION_JOBS
from fingov.governance.types import (
    DeletionJob,
    DeletionJobStatus,
    DeletionJobType,
    DeletionScope,
    parse_enum,
)

logger = get_logger(__name__)

JOB_TRANSITIONS: dict[DeletionJobStatus, frozenset[DeletionJobStatus]] = {
    DeletionJobStatus.REQUESTED: frozenset(
        {
            DeletionJobStatus.SCHEDULED,
            DeletionJobStatus.RUNNING,
            DeletionJobStatus.CANCELLED,
            DeletionJobStatus.FAILED,
        }
    ),
    DeletionJobStatus.SCHEDULED: frozenset(
        {DeletionJobStatus.RUNNING, DeletionJobStatus.CANCELLED, DeletionJobStatus.FAILED}
    ),
    DeletionJobStatus.RUNNING: frozenset(
        {DeletionJobStatus.COMPLETED, DeletionJobStatus.FAILED, DeletionJobStatus.CANCELLED}
    ),
    DeletionJobStatus.COMPLETED: frozenset(),
    DeletionJobStatus.FAILED: frozenset(),
    DeletionJobStatus.CANCELLED: frozenset(),
}

# Lifecycle timestamp stamped when a job enters the status
STATUS_TIMESTAMP_FIELDS: dict[DeletionJobStatus, str] = {
    DeletionJobStatus.RUNNING: "started_at",
    DeletionJobStatus.COMPLETED: "completed_at",
    DeletionJobStatus.CANCELLED: "cancelled_at",
    DeletionJobStatus.FAILED: "failed_at",
}


def can_transition(current: DeletionJobStatus, target: DeletionJobStatus) -> bool:
    return target in JOB_TRANSITIONS[current]


class DeletionJobTracker:
    """Creates deletion jobs and moves them through their lifecycle."""

    def __init__(self, repository: RowRepository, audit: AuditWriter, clock: Clock = now_ms):
        self._repository = repository
        self._audit = audit
        self._clock = clock

    async def list_jobs(self, user_id: str) -> list[DeletionJob]:
        rows = await self._repository.list_owned_by_user(DELETION_JOBS, user_id)
        return [DeletionJob.from_row(r) for r in rows]

    async def get_job(self, user_id: str, job_id: str) -> DeletionJob:
        row = await self._repository.get_owned_or_fail(DELETION_JOBS, job_id, user_id)
        return DeletionJob.from_row(row)

    async def request_job(
        self,
        user_id: str,
        job_type: str | DeletionJobType | None = None,
        scope: str | DeletionScope | None = None,
        target_entity_type: str | None = None,
        target_entity_id: str | None = None,
        dry_run: bool | None = True,
        scheduled_at: int | None = None,
        reason: str | None = None,
        note: str | None = None,
        source: str = "user_request",
    ) -> DeletionJob:
        """Record a deletion request.

        The job is not executed here; it only enters the ``requested`` state.

        Args:
            user_id: Owner of the job
            job_type: Job type (default account_erasure)
            scope: Job scope (default account)
            target_entity_type: Entity type for single-record jobs
            target_entity_id: Entity id for single-record jobs
            dry_run: Whether the job should only report (default True)
            scheduled_at: Desired start, clamped to no earlier than now
            reason: Why the job was requested
            note: Free-text note
            source: Who created the job

        Returns:
            The created job

        Raises:
            ValidationError: If job_type or scope is not recognised
        """
        parsed_type = parse_enum(
            DeletionJobType, job_type, DeletionJobType.ACCOUNT_ERASURE, "job_type"
        )
        parsed_scope = parse_enum(DeletionScope, scope, DeletionScope.ACCOUNT, "scope")

        now = self._clock()
        values: dict[str, Any] = {
            "user_id": user_id,
            "job_type": parsed_type.value,
            "scope": parsed_scope.value,
            "target_entity_type": (target_entity_type or "").strip() or None,
            "target_entity_id": (target_entity_id or "").strip() or None,
            "status": DeletionJobStatus.REQUESTED.value,
            "dry_run": True if dry_run is None else bool(dry_run),
            "reason": reason,
            "note": note,
            "source": source,
            "requested_at": now,
            "scheduled_at": max(now, scheduled_at or now),
            "created_at": now,
            "updated_at": now,
        }
        job_id = await self._repository.insert(DELETION_JOBS, values)

        await self._audit.record(
            "deletion_job_request",
            "deletion_job",
            job_id,
            user_id,
            after=values,
        )
        logger.info(
            "Deletion job requested",
            user_id=user_id,
            job_id=job_id,
            job_type=parsed_type.value,
            scope=parsed_scope.value,
        )
        return DeletionJob.from_row({**values, "id": job_id, "creation_time": now})

    async def update_status(
        self,
        user_id: str,
        job_id: str,
        status: str | DeletionJobStatus,
        note: str | None = None,
    ) -> DeletionJob:
        """Move a job to a new status.

        Raises:
            NotFoundError: If the job is not owned by the user
            ValidationError: If the status is not recognised
            ConflictError: If the transition is not allowed
        """
        if status is None or not str(status).strip():
            raise ValidationError("Status is required", field="status")
        target = parse_enum(DeletionJobStatus, status, DeletionJobStatus.REQUESTED, "status")
        row = await self._repository.get_owned_or_fail(DELETION_JOBS, job_id, user_id)
        job = DeletionJob.from_row(row)

        if not can_transition(job.status, target):
            raise ConflictError(
                f"Deletion job cannot move from {job.status.value} to {target.value}",
                entity_type="deletion_job",
                current_status=job.status.value,
                requested_status=target.value,
            )

        now = self._clock()
        patch: dict[str, Any] = {"status": target.value, "updated_at": now}
        stamp_field = STATUS_TIMESTAMP_FIELDS.get(target)
        if stamp_field and getattr(job, stamp_field) is None:
            patch[stamp_field] = now
        if note is not None:
            patch["note"] = note

        # Compare-and-set on the status we validated against
        updated = await self._repository.patch_if(
            DELETION_JOBS, job_id, {"status": row.get("status")}, patch
        )
        if updated is None:
            raise ConflictError(
                "Deletion job status changed concurrently",
                entity_type="deletion_job",
                current_status=job.status.value,
                requested_status=target.value,
            )

        await self._audit.record(
            "deletion_job_status_update",
            "deletion_job",
            job_id,
            user_id,
            before={"status": job.status.value},
            after={"status": target.value},
            metadata={"note": note},
        )
        logger.info(
            "Deletion job status updated",
            user_id=user_id,
            job_id=job_id,
            from_status=job.status.value,
            to_status=target.value,
        )
        return DeletionJob.from_row(updated)

    async def record_completed(
        self,
        user_id: str,
        job_type: DeletionJobType,
        scope: DeletionScope,
        payload: dict[str, Any],
        source: str,
        reason: str | None = None,
    ) -> str:
        """Insert a job that already ran, such as a retention sweep."""
        now = self._clock()
        return await self._repository.insert(
            DELETION_JOBS,
            {
                "user_id": user_id,
                "job_type": job_type.value,
                "scope": scope.value,
                "status": DeletionJobStatus.COMPLETED.value,
                "dry_run": False,
                "reason": reason,
                "source": source,
                "payload": payload,
                "requested_at": now,
                "scheduled_at": now,
                "started_at": now,
                "completed_at": now,
                "created_at": now,
                "updated_at": now,
            },
        )
