"""Governance workspace read model.

Assembles everything the privacy and data-governance screens show for
one user: export history, consent state, retention settings, deletion
jobs and the filtered audit trail.
"""

from pydantic import BaseModel, Field

from fingov.core.clock import Clock, now_ms
from fingov.governance.audit import AuditTrail, AuditTrailFilters, AuditWriter
from fingov.governance.consent import ConsentState, ConsentTracker
from fingov.governance.exports.workflow import ExportWorkflow, download_url_path
from fingov.governance.jobs import DeletionJobTracker
from fingov.governance.policies import RetentionPolicyStore
from fingov.governance.types import (
    AppliedPolicy,
    ConsentLog,
    DeletionJob,
    DeletionJobStatus,
    DownloadStatus,
    ExportDownload,
    ExportRequest,
    ExportStatus,
)

JOB_STATUS_ORDER: dict[DeletionJobStatus, int] = {
    DeletionJobStatus.RUNNING: 0,
    DeletionJobStatus.SCHEDULED: 1,
    DeletionJobStatus.REQUESTED: 2,
    DeletionJobStatus.FAILED: 3,
    DeletionJobStatus.COMPLETED: 4,
    DeletionJobStatus.CANCELLED: 5,
}

OPEN_JOB_STATUSES = frozenset(
    {DeletionJobStatus.REQUESTED, DeletionJobStatus.SCHEDULED, DeletionJobStatus.RUNNING}
)


class DownloadView(BaseModel):
    """A download as shown to its owner. The token only appears in the URL."""

    id: str
    export_id: str
    status: DownloadStatus
    filename: str
    format: str
    byte_size: int
    checksum_sha256: str
    content_type: str
    expires_at: int | None = None
    download_count: int
    last_downloaded_at: int | None = None
    created_at: int
    dataset_count: int
    row_count: int
    is_expired: bool
    download_url_path: str | None = None


class ExportCenterStats(BaseModel):
    total_requests: int = 0
    pending_requests: int = 0
    ready_downloads: int = 0
    last_requested_at: int | None = None


class ExportCenter(BaseModel):
    requests: list[ExportRequest] = Field(default_factory=list)
    downloads: list[DownloadView] = Field(default_factory=list)
    stats: ExportCenterStats = Field(default_factory=ExportCenterStats)


class PrivacyStats(BaseModel):
    log_count: int = 0
    last_changed_at: int | None = None


class PrivacySection(BaseModel):
    consent: ConsentState
    logs: list[ConsentLog] = Field(default_factory=list)
    stats: PrivacyStats = Field(default_factory=PrivacyStats)


class RetentionStats(BaseModel):
    policy_count: int = 0
    enabled_policy_count: int = 0
    open_jobs: int = 0
    last_job_at: int | None = None


class RetentionSection(BaseModel):
    policies: list[AppliedPolicy] = Field(default_factory=list)
    jobs: list[DeletionJob] = Field(default_factory=list)
    stats: RetentionStats = Field(default_factory=RetentionStats)


class GovernanceWorkspace(BaseModel):
    """Everything the governance screens need for one user."""

    user_id: str
    generated_at: int
    export_center: ExportCenter
    privacy: PrivacySection
    retention: RetentionSection
    audit_trail: AuditTrail


def sort_jobs(jobs: list[DeletionJob]) -> list[DeletionJob]:
    """Open jobs first by urgency, then finished jobs; newest first within a status."""
    newest_first = sorted(jobs, key=lambda j: (j.age_reference_ms, j.id), reverse=True)
    return sorted(newest_first, key=lambda j: JOB_STATUS_ORDER[j.status])


def _download_view(download: ExportDownload, now: int) -> DownloadView:
    is_expired = download.expires_at is None or download.expires_at <= now
    url = None
    if download.status == DownloadStatus.READY and not is_expired and download.download_token:
        url = download_url_path(download.id, download.download_token)
    return DownloadView(
        id=download.id,
        export_id=download.export_id,
        status=download.status,
        filename=download.filename,
        format=download.format.value,
        byte_size=download.byte_size,
        checksum_sha256=download.checksum_sha256,
        content_type=download.content_type,
        expires_at=download.expires_at,
        download_count=download.download_count,
        last_downloaded_at=download.last_downloaded_at,
        created_at=download.age_reference_ms,
        dataset_count=download.dataset_count,
        row_count=download.row_count,
        is_expired=is_expired,
        download_url_path=url,
    )


class WorkspaceBuilder:
    """Builds the governance workspace from the component stores."""

    def __init__(
        self,
        exports: ExportWorkflow,
        consent: ConsentTracker,
        policies: RetentionPolicyStore,
        jobs: DeletionJobTracker,
        audit: AuditWriter,
        clock: Clock = now_ms,
    ):
        self._exports = exports
        self._consent = consent
        self._policies = policies
        self._jobs = jobs
        self._audit = audit
        self._clock = clock

    async def build(
        self, user_id: str, filters: AuditTrailFilters | None = None
    ) -> GovernanceWorkspace:
        now = self._clock()

        requests = await self._exports.list_requests(user_id)
        downloads = [_download_view(d, now) for d in await self._exports.list_downloads(user_id)]
        export_center = ExportCenter(
            requests=requests,
            downloads=downloads,
            stats=ExportCenterStats(
                total_requests=len(requests),
                pending_requests=sum(
                    1
                    for r in requests
                    if r.status in (ExportStatus.REQUESTED, ExportStatus.PROCESSING)
                ),
                ready_downloads=sum(
                    1 for d in downloads if d.status == DownloadStatus.READY and not d.is_expired
                ),
                last_requested_at=requests[0].age_reference_ms if requests else None,
            ),
        )

        logs = await self._consent.list_logs(user_id)
        privacy = PrivacySection(
            consent=await self._consent.get_state(user_id),
            logs=logs,
            stats=PrivacyStats(
                log_count=len(logs),
                last_changed_at=logs[0].age_reference_ms if logs else None,
            ),
        )

        policies = await self._policies.list_policies(user_id)
        jobs = sort_jobs(await self._jobs.list_jobs(user_id))
        retention = RetentionSection(
            policies=policies,
            jobs=jobs,
            stats=RetentionStats(
                policy_count=len(policies),
                enabled_policy_count=sum(1 for p in policies if p.enabled),
                open_jobs=sum(1 for j in jobs if j.status in OPEN_JOB_STATUSES),
                last_job_at=max((j.age_reference_ms for j in jobs), default=None),
            ),
        )

        return GovernanceWorkspace(
            user_id=user_id,
            generated_at=now,
            export_center=export_center,
            privacy=privacy,
            retention=retention,
            audit_trail=await self._audit.query_trail(user_id, filters),
        )
