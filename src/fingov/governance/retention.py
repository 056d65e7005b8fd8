"""Retention sweep engine.

A sweep visits one user (manual run) or every user referenced by a
governance table (scheduled run), merges that user's retention policies
over the defaults, and deletes rows older than each category's cutoff.

Deletion order per user:
1. Blobs referenced by qualifying downloads
2. Downloads, export requests, deletion jobs, consent logs, audit events

A download whose blob could not be deleted is kept for the next sweep so
no blob is ever orphaned.
"""

import time
from dataclasses import dataclass, field

from fingov.core.clock import Clock, days_to_ms, now_ms
from fingov.core.logging import LogContext, get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.batch import delete_blobs, delete_rows
from fingov.governance.jobs import DeletionJobTracker
from fingov.governance.policies import RetentionPolicyStore
from fingov.governance.tables import (
    CONSENT_LOGS,
    DELETION_JOBS,
    FINANCE_AUDIT_EVENTS,
    SWEEP_USER_SOURCE_TABLES,
    USER_EXPORT_DOWNLOADS,
    USER_EXPORTS,
)
from fingov.governance.types import (
    AppliedPolicy,
    AuditEvent,
    BatchResult,
    CategoryCounts,
    ConsentLog,
    DeletionJob,
    DeletionJobType,
    DeletionScope,
    ExportDownload,
    ExportRequest,
    FailedUser,
    FailureEntry,
    RetentionCategory,
    SweepSummary,
    UserSweepReport,
)
from fingov.observability.metrics import (
    RETENTION_DELETED_ROWS,
    RETENTION_SWEEP_COUNT,
    RETENTION_SWEEP_DURATION,
)
from fingov.storage.blobs import BlobStore

logger = get_logger(__name__)


@dataclass
class SweepCandidates:
    """Rows and blobs that qualify for deletion for one user."""

    downloads: list[ExportDownload] = field(default_factory=list)
    exports: list[ExportRequest] = field(default_factory=list)
    jobs: list[DeletionJob] = field(default_factory=list)
    consent_logs: list[ConsentLog] = field(default_factory=list)
    audit_events: list[AuditEvent] = field(default_factory=list)

    @property
    def storage_ids(self) -> list[str]:
        return list(dict.fromkeys(d.storage_id for d in self.downloads if d.storage_id))

    def counts(self) -> CategoryCounts:
        return CategoryCounts(
            user_export_downloads=len(self.downloads),
            user_exports=len(self.exports),
            deletion_jobs=len(self.jobs),
            consent_logs=len(self.consent_logs),
            finance_audit_events=len(self.audit_events),
            storage_files=len(self.storage_ids),
        )


def _failures(result: BatchResult) -> list[FailureEntry]:
    return [
        FailureEntry(table=f.table, record_id=f.record_id, error=f.error) for f in result.failed
    ]


class RetentionSweepEngine:
    """Applies retention policies to governance tables."""

    def __init__(
        self,
        repository: RowRepository,
        blobs: BlobStore,
        audit: AuditWriter,
        policies: RetentionPolicyStore,
        jobs: DeletionJobTracker,
        clock: Clock = now_ms,
    ):
        self._repository = repository
        self._blobs = blobs
        self._audit = audit
        self._policies = policies
        self._jobs = jobs
        self._clock = clock

    async def sweep(
        self, dry_run: bool, source: str, user_id: str | None = None
    ) -> SweepSummary:
        """Run a sweep for one user or for every governed user.

        A failure while sweeping one user is recorded in the summary and
        the sweep continues with the next user.

        Args:
            dry_run: Report candidates without deleting anything
            source: Trigger label stored on jobs and audit events
            user_id: Restrict the sweep to this user

        Returns:
            Aggregated and per-user counts
        """
        timer = time.perf_counter()
        if user_id is not None:
            users = [user_id]
        else:
            users = await self._repository.distinct_user_ids(SWEEP_USER_SOURCE_TABLES)

        summary = SweepSummary(dry_run=dry_run, source=source, user_count=len(users))
        for uid in users:
            try:
                with LogContext(sweep_source=source, user_id=uid):
                    report = await self._sweep_user(uid, dry_run, source)
            except Exception as e:
                logger.error("Retention sweep failed for user", user_id=uid, error=str(e))
                summary.failed_users.append(FailedUser(user_id=uid, error=str(e)))
                continue
            summary.per_user.append(report)
            summary.deleted.add(report.deleted)
            summary.candidates.add(report.candidates)

        RETENTION_SWEEP_COUNT.labels(source=source, mode="dry_run" if dry_run else "execute").inc()
        RETENTION_SWEEP_DURATION.labels(source=source).observe(time.perf_counter() - timer)
        if not dry_run:
            for category, count in summary.deleted.model_dump().items():
                if count:
                    RETENTION_DELETED_ROWS.labels(category=category).inc(count)

        logger.info(
            "Retention sweep complete",
            source=source,
            dry_run=dry_run,
            user_count=summary.user_count,
            deleted_rows=summary.deleted.total_rows,
            deleted_files=summary.deleted.storage_files,
            candidate_rows=summary.candidates.total_rows,
            failed_users=len(summary.failed_users),
        )
        return summary

    async def collect_candidates(
        self, user_id: str, policies: dict[str, AppliedPolicy], now: int
    ) -> SweepCandidates:
        """Find the user's rows that are past retention."""
        candidates = SweepCandidates()

        def cutoff_for(category: RetentionCategory) -> int | None:
            policy = policies.get(category.value)
            if policy is None or not policy.enabled:
                return None
            return now - days_to_ms(policy.retention_days)

        cutoff = cutoff_for(RetentionCategory.EXPORTS)
        if cutoff is not None:
            downloads = await self._repository.list_owned_by_user(USER_EXPORT_DOWNLOADS, user_id)
            for row in downloads:
                download = ExportDownload.from_row(row)
                expired = download.expires_at is not None and download.expires_at <= now
                if expired or download.age_reference_ms <= cutoff:
                    candidates.downloads.append(download)
            exports = await self._repository.list_owned_by_user(USER_EXPORTS, user_id)
            for row in exports:
                export = ExportRequest.from_row(row)
                if export.status.is_terminal and export.age_reference_ms <= cutoff:
                    candidates.exports.append(export)

        cutoff = cutoff_for(RetentionCategory.DELETION_JOBS)
        if cutoff is not None:
            for row in await self._repository.list_owned_by_user(DELETION_JOBS, user_id):
                job = DeletionJob.from_row(row)
                if job.status.is_terminal and job.age_reference_ms <= cutoff:
                    candidates.jobs.append(job)

        cutoff = cutoff_for(RetentionCategory.CONSENT_LOGS)
        if cutoff is not None:
            for row in await self._repository.list_owned_by_user(CONSENT_LOGS, user_id):
                log = ConsentLog.from_row(row)
                if log.age_reference_ms <= cutoff:
                    candidates.consent_logs.append(log)

        cutoff = cutoff_for(RetentionCategory.FINANCE_AUDIT_EVENTS)
        if cutoff is not None:
            for row in await self._repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, user_id):
                event = AuditEvent.from_row(row)
                if event.age_reference_ms <= cutoff:
                    candidates.audit_events.append(event)

        return candidates

    async def _sweep_user(self, user_id: str, dry_run: bool, source: str) -> UserSweepReport:
        merged = await self._policies.merged(user_id)
        applied = [merged[key] for key in sorted(merged)]
        now = self._clock()

        candidates = await self.collect_candidates(user_id, merged, now)
        report = UserSweepReport(
            user_id=user_id,
            candidates=candidates.counts(),
            applied_policies=applied,
        )

        if dry_run:
            await self._audit.record(
                "retention_cleanup_dry_run",
                "retention_cleanup",
                user_id,
                user_id,
                metadata={
                    "source": source,
                    "candidates": report.candidates.model_dump(),
                },
            )
            return report

        blob_result = await delete_blobs(self._blobs, candidates.storage_ids)
        failed_blobs = {f.record_id for f in blob_result.failed}
        downloads = [d for d in candidates.downloads if d.storage_id not in failed_blobs]

        results = {
            USER_EXPORT_DOWNLOADS: await delete_rows(
                self._repository, USER_EXPORT_DOWNLOADS, [d.id for d in downloads]
            ),
            USER_EXPORTS: await delete_rows(
                self._repository, USER_EXPORTS, [e.id for e in candidates.exports]
            ),
            DELETION_JOBS: await delete_rows(
                self._repository, DELETION_JOBS, [j.id for j in candidates.jobs]
            ),
            CONSENT_LOGS: await delete_rows(
                self._repository, CONSENT_LOGS, [c.id for c in candidates.consent_logs]
            ),
            FINANCE_AUDIT_EVENTS: await delete_rows(
                self._repository, FINANCE_AUDIT_EVENTS, [a.id for a in candidates.audit_events]
            ),
        }

        report.deleted = CategoryCounts(
            user_export_downloads=results[USER_EXPORT_DOWNLOADS].succeeded,
            user_exports=results[USER_EXPORTS].succeeded,
            deletion_jobs=results[DELETION_JOBS].succeeded,
            consent_logs=results[CONSENT_LOGS].succeeded,
            finance_audit_events=results[FINANCE_AUDIT_EVENTS].succeeded,
            storage_files=blob_result.succeeded,
        )
        report.failures = _failures(blob_result)
        for result in results.values():
            report.failures.extend(_failures(result))

        if report.deleted.total_rows or report.deleted.storage_files:
            payload = {
                "deleted": report.deleted.model_dump(),
                "candidates": report.candidates.model_dump(),
                "policies": [p.model_dump(mode="json") for p in applied],
                "failures": len(report.failures),
                "source": source,
            }
            job_id = await self._jobs.record_completed(
                user_id,
                DeletionJobType.RETENTION_CLEANUP,
                DeletionScope.ACCOUNT,
                payload=payload,
                source=source,
                reason="Retention policy enforcement",
            )
            await self._audit.record(
                "retention_cleanup_execute",
                "deletion_job",
                job_id,
                user_id,
                after=payload,
                metadata={"source": source},
            )

        logger.info(
            "User retention sweep complete",
            user_id=user_id,
            deleted_rows=report.deleted.total_rows,
            deleted_files=report.deleted.storage_files,
            failures=len(report.failures),
        )
        return report
