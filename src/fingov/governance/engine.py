"""Governance engine facade.

Wires the governance components over one row repository and blob store.
User-facing operations take the caller's ``user_id`` explicitly; the
scheduled retention sweep is a separate entry point that needs no
identity.
"""

from typing import Any

from fingov.config.settings import Settings, get_settings
from fingov.core.clock import Clock, now_ms
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import InMemoryRowRepository, RowRepository
from fingov.governance.audit import AuditTrail, AuditTrailFilters, AuditWriter
from fingov.governance.consent import ConsentState, ConsentTracker, ConsentUpdateResult
from fingov.governance.erasure import AccountErasureWorkflow
from fingov.governance.exports.tokens import DownloadTokenIssuer
from fingov.governance.exports.workflow import ExportWorkflow, GeneratedExport
from fingov.governance.jobs import DeletionJobTracker
from fingov.governance.policies import RetentionPolicyStore
from fingov.governance.retention import RetentionSweepEngine
from fingov.governance.types import (
    AppliedPolicy,
    DeletionJob,
    DownloadDecision,
    ErasureResult,
    ExportRequest,
    InterruptedErasure,
    SweepSummary,
)
from fingov.governance.workspace import GovernanceWorkspace, WorkspaceBuilder
from fingov.storage.blobs import BlobStore, InMemoryBlobStore, StoredBlob

logger = get_logger(__name__)

MANUAL_SWEEP_SOURCE = "manual"
SCHEDULED_SWEEP_SOURCE = "retention_cron_6h"


class GovernanceEngine:
    """Entry point for all data-governance operations."""

    def __init__(
        self,
        repository: RowRepository,
        blobs: BlobStore,
        settings: Settings | None = None,
        clock: Clock = now_ms,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.blobs = blobs
        self.clock = clock

        secret = self.settings.EXPORT_TOKEN_SECRET
        self.audit = AuditWriter(
            repository,
            clock=clock,
            default_limit=self.settings.AUDIT_TRAIL_DEFAULT_LIMIT,
            min_limit=self.settings.AUDIT_TRAIL_MIN_LIMIT,
            max_limit=self.settings.AUDIT_TRAIL_MAX_LIMIT,
        )
        self.consent = ConsentTracker(repository, self.audit, clock=clock)
        self.policies = RetentionPolicyStore(repository, self.audit, clock=clock)
        self.jobs = DeletionJobTracker(repository, self.audit, clock=clock)
        self.exports = ExportWorkflow(
            repository,
            blobs,
            self.audit,
            clock=clock,
            token_issuer=DownloadTokenIssuer(secret.get_secret_value() if secret else None),
            link_ttl_days=self.settings.EXPORT_LINK_TTL_DAYS,
        )
        self.retention = RetentionSweepEngine(
            repository, blobs, self.audit, self.policies, self.jobs, clock=clock
        )
        self.erasure = AccountErasureWorkflow(
            repository,
            blobs,
            self.audit,
            clock=clock,
            confirmation_phrase=self.settings.ERASURE_CONFIRMATION_PHRASE,
            owner_key_prefix=self.settings.OWNER_KEY_PREFIX,
        )
        self.workspace = WorkspaceBuilder(
            self.exports, self.consent, self.policies, self.jobs, self.audit, clock=clock
        )

    # =========================================================================
    # Exports
    # =========================================================================

    async def request_export(self, user_id: str, **options: Any) -> ExportRequest:
        return await self.exports.request_export(user_id, **options)

    async def generate_export(self, user_id: str, request_id: str) -> GeneratedExport:
        return await self.exports.generate(user_id, request_id)

    async def update_export_status(
        self, user_id: str, request_id: str, status: str, note: str | None = None
    ) -> ExportRequest:
        return await self.exports.update_status(user_id, request_id, status, note)

    async def check_download_access(
        self, download_id: str | None, token: str | None
    ) -> DownloadDecision:
        return await self.exports.check_download_access(download_id, token)

    async def record_download_access(self, download_id: str) -> None:
        await self.exports.record_download_access(download_id)

    async def open_download(
        self, download_id: str | None, token: str | None
    ) -> tuple[DownloadDecision, StoredBlob | None]:
        return await self.exports.open_download(download_id, token)

    # =========================================================================
    # Retention and deletion jobs
    # =========================================================================

    async def list_retention_policies(self, user_id: str) -> list[AppliedPolicy]:
        return await self.policies.list_policies(user_id)

    async def upsert_retention_policy(self, user_id: str, **fields: Any) -> AppliedPolicy:
        return await self.policies.upsert_policy(user_id, **fields)

    async def request_deletion_job(self, user_id: str, **fields: Any) -> DeletionJob:
        return await self.jobs.request_job(user_id, **fields)

    async def update_deletion_job_status(
        self, user_id: str, job_id: str, status: str, note: str | None = None
    ) -> DeletionJob:
        return await self.jobs.update_status(user_id, job_id, status, note)

    async def run_retention_cleanup(self, user_id: str, dry_run: bool = True) -> SweepSummary:
        """Manual sweep of the caller's own data."""
        summary = await self.retention.sweep(
            dry_run=dry_run, source=MANUAL_SWEEP_SOURCE, user_id=user_id
        )
        await self.audit.record(
            "retention_cleanup_run",
            "retention_cleanup",
            user_id,
            user_id,
            after=summary.model_dump(mode="json", exclude={"per_user"}),
            metadata={"dry_run": dry_run},
        )
        return summary

    async def run_scheduled_retention_sweep(
        self, dry_run: bool = False, source: str = SCHEDULED_SWEEP_SOURCE
    ) -> SweepSummary:
        """System-wide sweep. Internal capability; takes no caller identity."""
        return await self.retention.sweep(dry_run=dry_run, source=source)

    # =========================================================================
    # Consent
    # =========================================================================

    async def get_consent(self, user_id: str) -> ConsentState:
        return await self.consent.get_state(user_id)

    async def update_consent(self, user_id: str, **fields: Any) -> ConsentUpdateResult:
        return await self.consent.update(user_id, **fields)

    # =========================================================================
    # Erasure
    # =========================================================================

    async def erase_account(
        self, user_id: str, dry_run: bool = True, confirmation_text: str | None = None
    ) -> ErasureResult:
        return await self.erasure.erase(user_id, dry_run, confirmation_text)

    async def find_interrupted_erasures(
        self, older_than_ms: int | None = None
    ) -> list[InterruptedErasure]:
        if older_than_ms is None:
            older_than_ms = self.settings.INTERRUPTED_ERASURE_AFTER_MINUTES * 60_000
        return await self.erasure.find_interrupted_erasures(older_than_ms)

    # =========================================================================
    # Read models
    # =========================================================================

    async def get_workspace(
        self, user_id: str, filters: AuditTrailFilters | None = None
    ) -> GovernanceWorkspace:
        return await self.workspace.build(user_id, filters)

    async def get_audit_trail(
        self, user_id: str, filters: AuditTrailFilters | None = None
    ) -> AuditTrail:
        return await self.audit.query_trail(user_id, filters)


# Module-level engine instance
_engine: GovernanceEngine | None = None


def get_governance_engine() -> GovernanceEngine:
    """Get the global governance engine.

    Falls back to in-memory storage when nothing has been initialized.
    """
    global _engine
    if _engine is None:
        _engine = GovernanceEngine(InMemoryRowRepository(), InMemoryBlobStore())
    return _engine


def initialize_governance_engine(
    repository: RowRepository,
    blobs: BlobStore,
    settings: Settings | None = None,
    clock: Clock = now_ms,
) -> GovernanceEngine:
    """Initialize the global governance engine."""
    global _engine
    _engine = GovernanceEngine(repository, blobs, settings=settings, clock=clock)
    logger.info("Governance engine initialized", repository=type(repository).__name__)
    return _engine


def reset_governance_engine() -> None:
    """Drop the global engine (used by tests and app shutdown)."""
    global _engine
    _engine = None
