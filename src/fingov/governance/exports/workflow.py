"""Export workflow.

Drives an export request through ``requested -> processing -> ready|failed``
and guards access to the resulting artifact with a download token.

Generation flow:
1. Claim: compare-and-set ``requested -> processing`` before any expensive work
2. Build the bundle, serialize it and checksum the exact bytes
3. Store the artifact and issue a download token
4. Finalize: write the download row, then compare-and-set
   ``processing -> ready`` for this generation only

Every transition is a conditional write on the stored status, so of two
concurrent generations only one gets past step 1. Any failure after step 1
marks the request ``failed`` (unless it already reached a terminal state),
removes artifacts that were never finalized, and re-raises.
"""

import hashlib
import time
from typing import Any

from pydantic import BaseModel

from fingov.core.clock import Clock, days_to_ms, now_ms
from fingov.core.exceptions import ConflictError, ValidationError
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.exports.bundle import build_bundle
from fingov.governance.exports.serializer import build_filename, serialize_bundle
from fingov.governance.exports.tokens import DownloadTokenIssuer, tokens_match
from fingov.governance.tables import USER_EXPORT_DOWNLOADS, USER_EXPORTS
from fingov.governance.types import (
    DownloadDecision,
    DownloadDenialReason,
    DownloadGrant,
    DownloadStatus,
    ExportDownload,
    ExportFormat,
    ExportKind,
    ExportRequest,
    ExportScope,
    ExportStatus,
    parse_enum,
)
from fingov.observability.metrics import (
    DOWNLOAD_ACCESS_COUNT,
    EXPORT_GENERATION_COUNT,
    EXPORT_GENERATION_DURATION,
    EXPORT_SIZE_BYTES,
)
from fingov.storage.blobs import BlobStore, StoredBlob

logger = get_logger(__name__)

DOWNLOAD_PATH = "/governance/export-download"

EXPORT_TRANSITIONS: dict[ExportStatus, frozenset[ExportStatus]] = {
    ExportStatus.REQUESTED: frozenset({ExportStatus.PROCESSING, ExportStatus.CANCELLED}),
    ExportStatus.PROCESSING: frozenset(
        {ExportStatus.READY, ExportStatus.FAILED, ExportStatus.CANCELLED}
    ),
    ExportStatus.READY: frozenset(),
    ExportStatus.FAILED: frozenset(),
    ExportStatus.CANCELLED: frozenset(),
}

# Only generation may move a request into these states
GENERATION_OWNED_STATUSES = frozenset({ExportStatus.PROCESSING, ExportStatus.READY})


def download_url_path(download_id: str, token: str) -> str:
    return f"{DOWNLOAD_PATH}?download_id={download_id}&token={token}"


class GeneratedExport(BaseModel):
    """Result of a successful generation."""

    request: ExportRequest
    download: ExportDownload
    download_url_path: str


class ExportWorkflow:
    """Export request lifecycle and download gate."""

    def __init__(
        self,
        repository: RowRepository,
        blobs: BlobStore,
        audit: AuditWriter,
        clock: Clock = now_ms,
        token_issuer: DownloadTokenIssuer | None = None,
        link_ttl_days: int = 7,
    ):
        self._repository = repository
        self._blobs = blobs
        self._audit = audit
        self._clock = clock
        self._tokens = token_issuer or DownloadTokenIssuer()
        self.link_ttl_days = link_ttl_days

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_request(self, user_id: str, request_id: str) -> ExportRequest:
        row = await self._repository.get_owned_or_fail(USER_EXPORTS, request_id, user_id)
        return ExportRequest.from_row(row)

    async def list_requests(self, user_id: str) -> list[ExportRequest]:
        """List export requests, newest first."""
        rows = await self._repository.list_owned_by_user(USER_EXPORTS, user_id)
        requests = [ExportRequest.from_row(r) for r in rows]
        return sorted(requests, key=lambda r: (r.age_reference_ms, r.id), reverse=True)

    async def list_downloads(self, user_id: str) -> list[ExportDownload]:
        """List issued downloads, newest first."""
        rows = await self._repository.list_owned_by_user(USER_EXPORT_DOWNLOADS, user_id)
        downloads = [ExportDownload.from_row(r) for r in rows]
        return sorted(downloads, key=lambda d: (d.age_reference_ms, d.id), reverse=True)

    # =========================================================================
    # Request lifecycle
    # =========================================================================

    async def request_export(
        self,
        user_id: str,
        export_kind: str | ExportKind | None = None,
        format: str | ExportFormat | None = None,
        scope: str | ExportScope | None = None,
        include_audit_trail: bool | None = True,
        include_deleted_artifacts: bool | None = False,
        note: str | None = None,
    ) -> ExportRequest:
        """Create an export request in the ``requested`` state.

        Raises:
            ValidationError: If kind, format or scope is not recognised
        """
        kind = parse_enum(ExportKind, export_kind, ExportKind.FULL_ACCOUNT, "export_kind")
        export_format = parse_enum(ExportFormat, format, ExportFormat.JSON, "format")
        export_scope = parse_enum(ExportScope, scope, ExportScope.FULL_ACCOUNT, "scope")

        now = self._clock()
        values: dict[str, Any] = {
            "user_id": user_id,
            "export_kind": kind.value,
            "format": export_format.value,
            "scope": export_scope.value,
            "status": ExportStatus.REQUESTED.value,
            "include_audit_trail": True if include_audit_trail is None else include_audit_trail,
            "include_deleted_artifacts": bool(include_deleted_artifacts),
            "note": (note or "").strip() or None,
            "requested_at": now,
            "created_at": now,
            "updated_at": now,
        }
        request_id = await self._repository.insert(USER_EXPORTS, values)

        await self._audit.record(
            "export_request_create", "user_export", request_id, user_id, after=values
        )
        logger.info(
            "Export requested",
            user_id=user_id,
            request_id=request_id,
            export_kind=kind.value,
            format=export_format.value,
            scope=export_scope.value,
        )
        return ExportRequest.from_row({**values, "id": request_id, "creation_time": now})

    async def update_status(
        self,
        user_id: str,
        request_id: str,
        status: str | ExportStatus,
        note: str | None = None,
    ) -> ExportRequest:
        """Apply a caller-driven status change, such as cancellation.

        Raises:
            NotFoundError: If the request is not owned by the user
            ValidationError: If the status is blank or unknown
            ConflictError: If the transition is outside the graph or reserved
                for generation
        """
        if status is None or not str(status).strip():
            raise ValidationError("Status is required", field="status")
        target = parse_enum(ExportStatus, status, ExportStatus.REQUESTED, "status")
        row = await self._repository.get_owned_or_fail(USER_EXPORTS, request_id, user_id)
        request = ExportRequest.from_row(row)

        if target in GENERATION_OWNED_STATUSES:
            raise ConflictError(
                f"Exports move to {target.value} only through generation",
                entity_type="user_export",
                current_status=request.status.value,
                requested_status=target.value,
            )
        if target not in EXPORT_TRANSITIONS[request.status]:
            raise ConflictError(
                f"Export request cannot move from {request.status.value} to {target.value}",
                entity_type="user_export",
                current_status=request.status.value,
                requested_status=target.value,
            )

        now = self._clock()
        patch: dict[str, Any] = {"status": target.value, "updated_at": now}
        if target == ExportStatus.CANCELLED:
            patch["cancelled_at"] = request.cancelled_at or now
        if target == ExportStatus.FAILED:
            patch["failure_reason"] = note or "Marked failed by user"
        if note is not None:
            patch["note"] = note

        updated = await self._repository.patch_if(
            USER_EXPORTS, request_id, {"status": row.get("status")}, patch
        )
        if updated is None:
            raise await self._changed_concurrently(request, target)
        await self._audit.record(
            "export_request_status_update",
            "user_export",
            request_id,
            user_id,
            before={"status": request.status.value},
            after={"status": target.value},
            metadata={"note": note},
        )
        logger.info(
            "Export status updated",
            user_id=user_id,
            request_id=request_id,
            from_status=request.status.value,
            to_status=target.value,
        )
        return ExportRequest.from_row(updated)

    async def cancel(self, user_id: str, request_id: str, note: str | None = None) -> ExportRequest:
        return await self.update_status(user_id, request_id, ExportStatus.CANCELLED, note)

    @staticmethod
    def _claim(request: ExportRequest) -> dict[str, Any]:
        """Stored fields that identify this generation's hold on a request."""
        return {
            "status": ExportStatus.PROCESSING.value,
            "processing_started_at": request.processing_started_at,
        }

    async def _changed_concurrently(
        self, request: ExportRequest, requested: ExportStatus
    ) -> ConflictError:
        """Build the conflict for a conditional write that lost a race."""
        row = await self._repository.get(USER_EXPORTS, request.id)
        current = ExportRequest.from_row(row).status.value if row else "deleted"
        return ConflictError(
            f"Export request became {current} concurrently",
            entity_type="user_export",
            current_status=current,
            requested_status=requested.value,
        )

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate(self, user_id: str, request_id: str) -> GeneratedExport:
        """Generate the artifact for a requested export.

        Args:
            user_id: Owner of the request
            request_id: The export request to generate

        Returns:
            The ready request, its download row (including the token) and
            the relative download URL

        Raises:
            NotFoundError: If the request is not owned by the user
            ConflictError: If the request is not in the ``requested`` state
            UnsupportedFormatError: For ZIP exports (request is marked failed)
        """
        row = await self._repository.get_owned_or_fail(USER_EXPORTS, request_id, user_id)
        request = ExportRequest.from_row(row)
        if request.status == ExportStatus.CANCELLED:
            raise ConflictError(
                "Export request was cancelled and cannot be generated",
                entity_type="user_export",
                current_status=request.status.value,
                requested_status=ExportStatus.PROCESSING.value,
            )
        if request.status != ExportStatus.REQUESTED:
            raise ConflictError(
                f"Export request is {request.status.value}; "
                "only requested exports can be generated",
                entity_type="user_export",
                current_status=request.status.value,
                requested_status=ExportStatus.PROCESSING.value,
            )

        started = self._clock()
        claimed = await self._repository.patch_if(
            USER_EXPORTS,
            request_id,
            {"status": row.get("status")},
            {
                "status": ExportStatus.PROCESSING.value,
                "processing_started_at": started,
                "updated_at": started,
                "failure_reason": None,
            },
        )
        if claimed is None:
            raise await self._changed_concurrently(request, ExportStatus.PROCESSING)
        request = request.model_copy(
            update={"status": ExportStatus.PROCESSING, "processing_started_at": started}
        )

        timer = time.perf_counter()
        artifacts: dict[str, str] = {}
        try:
            result = await self._build_and_finalize(request, started, artifacts)
        except Exception as exc:
            await self._fail(request, exc, artifacts)
            EXPORT_GENERATION_COUNT.labels(format=request.format.value, status="failed").inc()
            raise

        EXPORT_GENERATION_COUNT.labels(format=request.format.value, status="ready").inc()
        EXPORT_GENERATION_DURATION.labels(format=request.format.value).observe(
            time.perf_counter() - timer
        )
        EXPORT_SIZE_BYTES.labels(format=request.format.value).observe(result.download.byte_size)
        return result

    async def _build_and_finalize(
        self, request: ExportRequest, generated_at: int, artifacts: dict[str, str]
    ) -> GeneratedExport:
        bundle = await build_bundle(self._repository, request, generated_at)
        serialized = serialize_bundle(bundle, request.format)
        checksum = hashlib.sha256(serialized.data).hexdigest()

        artifacts["storage_id"] = await self._blobs.store(
            serialized.data, serialized.content_type
        )

        expires_at = generated_at + days_to_ms(self.link_ttl_days)
        token = self._tokens.issue(request.id, expires_at)
        filename = build_filename(
            request.export_kind, request.scope, generated_at, request.format
        )

        now = self._clock()
        download_values: dict[str, Any] = {
            "user_id": request.user_id,
            "export_id": request.id,
            "status": DownloadStatus.READY.value,
            "filename": filename,
            "format": request.format.value,
            "requested_format": request.format.value,
            "byte_size": len(serialized.data),
            "checksum_sha256": checksum,
            "content_type": serialized.content_type,
            "storage_id": artifacts["storage_id"],
            "download_token": token,
            "expires_at": expires_at,
            "download_count": 0,
            "created_at": now,
            "updated_at": now,
            "dataset_count": bundle.summary.table_count,
            "row_count": bundle.summary.total_rows,
        }
        download_id = await self._repository.insert(USER_EXPORT_DOWNLOADS, download_values)
        artifacts["download_id"] = download_id

        ready_patch = {
            "status": ExportStatus.READY.value,
            "completed_at": now,
            "updated_at": now,
            "latest_download_status": DownloadStatus.READY.value,
            "latest_filename": filename,
            "latest_expires_at": expires_at,
        }
        # A cancel may have landed while we were building
        updated = await self._repository.patch_if(
            USER_EXPORTS, request.id, self._claim(request), ready_patch
        )
        if updated is None:
            raise await self._changed_concurrently(request, ExportStatus.READY)
        ready = ExportRequest.from_row(updated)

        await self._audit.record(
            "export_request_ready",
            "user_export",
            request.id,
            request.user_id,
            before=request.to_row(),
            after=ready.to_row(),
            metadata={
                "download_id": download_id,
                "byte_size": len(serialized.data),
                "checksum_sha256": checksum,
                "table_count": bundle.summary.table_count,
                "total_rows": bundle.summary.total_rows,
            },
        )
        logger.info(
            "Export ready",
            user_id=request.user_id,
            request_id=request.id,
            download_id=download_id,
            byte_size=len(serialized.data),
            rows=bundle.summary.total_rows,
        )

        return GeneratedExport(
            request=ready,
            download=ExportDownload.from_row(
                {**download_values, "id": download_id, "creation_time": now}
            ),
            download_url_path=download_url_path(download_id, token),
        )

    async def _fail(
        self, request: ExportRequest, exc: Exception, artifacts: dict[str, str]
    ) -> None:
        """Record a generation failure. Never raises."""
        reason = str(exc) or type(exc).__name__
        try:
            if "download_id" in artifacts:
                await self._repository.delete(USER_EXPORT_DOWNLOADS, artifacts["download_id"])
            if "storage_id" in artifacts:
                await self._blobs.delete(artifacts["storage_id"])

            now = self._clock()
            failed = None
            if await self._repository.get(USER_EXPORTS, request.id) is not None:
                failed = await self._repository.patch_if(
                    USER_EXPORTS,
                    request.id,
                    self._claim(request),
                    {
                        "status": ExportStatus.FAILED.value,
                        "failure_reason": reason,
                        "updated_at": now,
                    },
                )
            if failed is None:
                logger.warning(
                    "Export generation discarded",
                    user_id=request.user_id,
                    request_id=request.id,
                    reason=reason,
                )
                return

            await self._audit.record(
                "export_request_failed",
                "user_export",
                request.id,
                request.user_id,
                before=request.to_row(),
                after=ExportRequest.from_row(failed).to_row(),
                metadata={"error_type": type(exc).__name__},
            )
            logger.warning(
                "Export generation failed",
                user_id=request.user_id,
                request_id=request.id,
                error=reason,
            )
        except Exception as cleanup_error:
            logger.error(
                "Failed to record export failure",
                request_id=request.id,
                error=str(cleanup_error),
                original_error=reason,
            )

    # =========================================================================
    # Download gate
    # =========================================================================

    async def check_download_access(
        self, download_id: str | None, token: str | None
    ) -> DownloadDecision:
        """Decide whether ``token`` grants access to a download. Read-only."""
        decision = await self._check(download_id, token)
        DOWNLOAD_ACCESS_COUNT.labels(
            outcome="ok" if decision.ok else decision.reason.value
        ).inc()
        return decision

    async def _check(self, download_id: str | None, token: str | None) -> DownloadDecision:
        if not download_id:
            return DownloadDecision.deny(DownloadDenialReason.NOT_FOUND)
        row = await self._repository.get(USER_EXPORT_DOWNLOADS, download_id)
        if row is None:
            return DownloadDecision.deny(DownloadDenialReason.NOT_FOUND)

        download = ExportDownload.from_row(row)
        if not tokens_match(download.download_token, token):
            return DownloadDecision.deny(DownloadDenialReason.INVALID_TOKEN)
        # Legacy row without a link expiry: the token cannot be trusted
        if download.expires_at is None:
            return DownloadDecision.deny(DownloadDenialReason.EXPIRED)
        if not self._tokens.verify(token, download.export_id, download.expires_at):
            return DownloadDecision.deny(DownloadDenialReason.INVALID_TOKEN)
        if download.status != DownloadStatus.READY:
            return DownloadDecision.deny(DownloadDenialReason.NOT_READY)
        if download.expires_at <= self._clock():
            return DownloadDecision.deny(DownloadDenialReason.EXPIRED)
        if not download.storage_id:
            return DownloadDecision.deny(DownloadDenialReason.MISSING_STORAGE)

        return DownloadDecision.allow(
            DownloadGrant(
                download_id=download.id,
                storage_id=download.storage_id,
                filename=download.filename,
                content_type=download.content_type,
                expires_at=download.expires_at,
                user_id=download.user_id,
            )
        )

    async def record_download_access(self, download_id: str) -> None:
        """Count a successful download.

        Raises:
            NotFoundError: If the download no longer exists
        """
        now = self._clock()
        await self._repository.increment(
            USER_EXPORT_DOWNLOADS,
            download_id,
            "download_count",
            values={"last_downloaded_at": now, "updated_at": now},
        )

    async def open_download(
        self, download_id: str | None, token: str | None
    ) -> tuple[DownloadDecision, StoredBlob | None]:
        """Gate check, blob fetch, then best-effort access recording."""
        decision = await self.check_download_access(download_id, token)
        if not decision.ok:
            return decision, None

        blob = await self._blobs.get(decision.grant.storage_id)
        if blob is None:
            return DownloadDecision.deny(DownloadDenialReason.MISSING_STORAGE), None

        try:
            await self.record_download_access(decision.grant.download_id)
        except Exception as e:
            logger.warning(
                "Failed to record download access",
                download_id=decision.grant.download_id,
                error=str(e),
            )
        return decision, blob
