"""Unit tests for the export workflow and download gate."""

import asyncio
import hashlib
import json
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio

from fingov.core.clock import MS_PER_DAY, FixedClock
from fingov.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnsupportedFormatError,
    ValidationError,
)
from fingov.db.repositories.rows import InMemoryRowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.exports.tokens import DownloadTokenIssuer
from fingov.governance.exports.workflow import ExportWorkflow, GeneratedExport
from fingov.governance.tables import (
    FINANCE_AUDIT_EVENTS,
    LEDGER_ENTRIES,
    USER_EXPORT_DOWNLOADS,
    USER_EXPORTS,
)
from fingov.governance.types import (
    DownloadDenialReason,
    DownloadStatus,
    ExportFormat,
    ExportKind,
    ExportStatus,
)
from fingov.storage.blobs import InMemoryBlobStore


@pytest.fixture
def workflow(
    repository: InMemoryRowRepository, blobs: InMemoryBlobStore, clock: FixedClock
) -> ExportWorkflow:
    """Create an export workflow with a 7 day link TTL."""
    return ExportWorkflow(
        repository, blobs, AuditWriter(repository, clock=clock), clock=clock, link_ttl_days=7
    )


def query_params(url_path: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url_path).query).items()}


async def audit_actions(repository: InMemoryRowRepository, user_id: str = "user_1") -> list[str]:
    rows = await repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, user_id)
    return [r["action"] for r in sorted(rows, key=lambda r: (r["creation_time"], r["id"]))]


@pytest.mark.asyncio
class TestRequestExport:
    """Tests for creating export requests."""

    async def test_defaults(self, workflow: ExportWorkflow):
        """Test blank options select defaults."""
        request = await workflow.request_export("user_1", export_kind="", format=None, scope=" ")

        assert request.export_kind == ExportKind.FULL_ACCOUNT
        assert request.format == ExportFormat.JSON
        assert request.status == ExportStatus.REQUESTED
        assert request.include_audit_trail is True

    async def test_unknown_format_rejected(self, workflow: ExportWorkflow):
        """Test an unknown format is a validation error."""
        with pytest.raises(ValidationError):
            await workflow.request_export("user_1", format="xlsx")

    async def test_request_is_audited(
        self, workflow: ExportWorkflow, repository: InMemoryRowRepository
    ):
        """Test request creation writes an audit event."""
        await workflow.request_export("user_1")
        assert await audit_actions(repository) == ["export_request_create"]


@pytest.mark.asyncio
class TestGenerate:
    """Tests for export generation."""

    async def test_generate_json(
        self,
        workflow: ExportWorkflow,
        repository: InMemoryRowRepository,
        blobs: InMemoryBlobStore,
        clock: FixedClock,
    ):
        """Test generation produces a ready request, a download and a stored blob."""
        await repository.insert(LEDGER_ENTRIES, {"user_id": "user_1", "amount": 12})
        request = await workflow.request_export("user_1", export_kind="ledger")

        generated = await workflow.generate("user_1", request.id)

        assert generated.request.status == ExportStatus.READY
        assert generated.request.latest_filename == generated.download.filename
        download = generated.download
        assert download.status == DownloadStatus.READY
        assert download.expires_at == clock.current + 7 * MS_PER_DAY
        assert download.row_count == 1
        assert download.dataset_count == 2

        blob = await blobs.get(download.storage_id)
        assert blob is not None
        assert hashlib.sha256(blob.data).hexdigest() == download.checksum_sha256
        assert download.byte_size == len(blob.data)
        parsed = json.loads(blob.data)
        assert parsed["tables"][0]["rows"][0]["amount"] == 12

    async def test_download_url_carries_id_and_token(self, workflow: ExportWorkflow):
        """Test the download URL references the download and its token."""
        request = await workflow.request_export("user_1")
        generated = await workflow.generate("user_1", request.id)

        assert generated.download_url_path.startswith("/governance/export-download?")
        params = query_params(generated.download_url_path)
        assert params["download_id"] == generated.download.id
        assert params["token"] == generated.download.download_token

    async def test_generation_audit_trail(
        self, workflow: ExportWorkflow, repository: InMemoryRowRepository
    ):
        """Test a successful generation records the ready event."""
        request = await workflow.request_export("user_1")
        await workflow.generate("user_1", request.id)

        assert await audit_actions(repository) == [
            "export_request_create",
            "export_request_ready",
        ]

    async def test_generate_twice_conflicts(self, workflow: ExportWorkflow):
        """Test a ready export cannot be generated again."""
        request = await workflow.request_export("user_1")
        await workflow.generate("user_1", request.id)

        with pytest.raises(ConflictError):
            await workflow.generate("user_1", request.id)

    async def test_cancelled_export_cannot_generate(
        self, workflow: ExportWorkflow, repository: InMemoryRowRepository
    ):
        """Test cancel followed by generate is a conflict and writes nothing."""
        request = await workflow.request_export("user_1")
        await workflow.cancel("user_1", request.id)

        with pytest.raises(ConflictError) as exc_info:
            await workflow.generate("user_1", request.id)

        assert exc_info.value.current_status == "cancelled"
        assert repository.count(USER_EXPORT_DOWNLOADS) == 0

    async def test_zip_fails_request(
        self,
        workflow: ExportWorkflow,
        repository: InMemoryRowRepository,
        blobs: InMemoryBlobStore,
    ):
        """Test ZIP generation marks the request failed and stores nothing."""
        request = await workflow.request_export("user_1", format="zip")

        with pytest.raises(UnsupportedFormatError):
            await workflow.generate("user_1", request.id)

        failed = await workflow.get_request("user_1", request.id)
        assert failed.status == ExportStatus.FAILED
        assert "ZIP" in failed.failure_reason
        assert len(blobs) == 0
        assert repository.count(USER_EXPORT_DOWNLOADS) == 0
        assert (await audit_actions(repository))[-1] == "export_request_failed"

    async def test_cancel_during_generation_discards_artifacts(
        self,
        repository: InMemoryRowRepository,
        blobs: InMemoryBlobStore,
        clock: FixedClock,
    ):
        """Test a cancel that lands mid-generation wins and leaves no artifacts."""

        class CancellingBlobStore(InMemoryBlobStore):
            async def store(self, data, content_type):
                storage_id = await super().store(data, content_type)
                await repository.patch(USER_EXPORTS, request.id, {"status": "cancelled"})
                return storage_id

        store = CancellingBlobStore()
        workflow = ExportWorkflow(
            repository, store, AuditWriter(repository, clock=clock), clock=clock
        )
        request = await workflow.request_export("user_1")

        with pytest.raises(ConflictError):
            await workflow.generate("user_1", request.id)

        final = await workflow.get_request("user_1", request.id)
        assert final.status == ExportStatus.CANCELLED
        assert len(store) == 0
        assert repository.count(USER_EXPORT_DOWNLOADS) == 0

    async def test_ready_audit_records_request_snapshots(
        self, workflow: ExportWorkflow, repository: InMemoryRowRepository
    ):
        """Test the ready event keeps the processing and ready request rows."""
        request = await workflow.request_export("user_1")
        await workflow.generate("user_1", request.id)

        rows = await repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, "user_1")
        ready = next(r for r in rows if r["action"] == "export_request_ready")
        before = json.loads(ready["before_json"])
        after = json.loads(ready["after_json"])
        assert before["status"] == "processing"
        assert before["user_id"] == "user_1"
        assert after["status"] == "ready"
        assert after["completed_at"] is not None

    async def test_concurrent_generation_has_one_winner(
        self,
        repository: InMemoryRowRepository,
        blobs: InMemoryBlobStore,
        clock: FixedClock,
    ):
        """Test two generate calls that both saw ``requested`` issue one download."""

        class YieldingRepository(InMemoryRowRepository):
            async def get_owned_or_fail(self, table, record_id, user_id):
                row = await super().get_owned_or_fail(table, record_id, user_id)
                await asyncio.sleep(0)
                return row

        racing = YieldingRepository(clock=clock)
        workflow = ExportWorkflow(
            racing, blobs, AuditWriter(racing, clock=clock), clock=clock
        )
        request = await workflow.request_export("user_1")

        results = await asyncio.gather(
            workflow.generate("user_1", request.id),
            workflow.generate("user_1", request.id),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, GeneratedExport)]) == 1
        assert len([r for r in results if isinstance(r, ConflictError)]) == 1
        assert racing.count(USER_EXPORT_DOWNLOADS) == 1
        assert len(blobs) == 1
        final = await workflow.get_request("user_1", request.id)
        assert final.status == ExportStatus.READY

    async def test_other_users_export_not_found(self, workflow: ExportWorkflow):
        """Test a user cannot generate another user's export."""
        request = await workflow.request_export("user_2")

        with pytest.raises(NotFoundError):
            await workflow.generate("user_1", request.id)


@pytest.mark.asyncio
class TestUpdateStatus:
    """Tests for caller-driven status changes."""

    async def test_cancel_requested(self, workflow: ExportWorkflow, clock: FixedClock):
        """Test a requested export can be cancelled."""
        request = await workflow.request_export("user_1")
        cancelled = await workflow.update_status("user_1", request.id, "cancelled", note="oops")

        assert cancelled.status == ExportStatus.CANCELLED
        assert cancelled.cancelled_at == clock.current
        assert cancelled.note == "oops"

    async def test_generation_owned_statuses_rejected(self, workflow: ExportWorkflow):
        """Test callers cannot move an export to processing or ready."""
        request = await workflow.request_export("user_1")

        for status in ("processing", "ready"):
            with pytest.raises(ConflictError):
                await workflow.update_status("user_1", request.id, status)

    async def test_terminal_export_is_immutable(self, workflow: ExportWorkflow):
        """Test a ready export cannot be cancelled or failed."""
        request = await workflow.request_export("user_1")
        await workflow.generate("user_1", request.id)

        for status in ("cancelled", "failed", "requested"):
            with pytest.raises(ConflictError):
                await workflow.update_status("user_1", request.id, status)

    async def test_blank_status_rejected(self, workflow: ExportWorkflow):
        """Test a blank status is a validation error."""
        request = await workflow.request_export("user_1")

        with pytest.raises(ValidationError):
            await workflow.update_status("user_1", request.id, "")


@pytest.mark.asyncio
class TestDownloadGate:
    """Tests for check_download_access and open_download."""

    @pytest_asyncio.fixture
    async def generated(self, workflow: ExportWorkflow):
        request = await workflow.request_export("user_1", format="csv")
        return await workflow.generate("user_1", request.id)

    async def test_valid_token_allowed(self, workflow: ExportWorkflow, generated):
        """Test the issued token grants access."""
        decision = await workflow.check_download_access(
            generated.download.id, generated.download.download_token
        )

        assert decision.ok
        assert decision.grant.filename.endswith(".csv")
        assert decision.grant.content_type.startswith("text/csv")

    async def test_unknown_download(self, workflow: ExportWorkflow):
        """Test unknown or missing ids are not found."""
        assert (await workflow.check_download_access("nope", "t")).reason == (
            DownloadDenialReason.NOT_FOUND
        )
        assert (await workflow.check_download_access(None, "t")).reason == (
            DownloadDenialReason.NOT_FOUND
        )

    async def test_wrong_token(self, workflow: ExportWorkflow, generated):
        """Test a wrong or missing token is rejected."""
        wrong = await workflow.check_download_access(generated.download.id, "guess")
        missing = await workflow.check_download_access(generated.download.id, None)

        assert wrong.reason == DownloadDenialReason.INVALID_TOKEN
        assert missing.reason == DownloadDenialReason.INVALID_TOKEN

    async def test_expired(self, workflow: ExportWorkflow, generated, clock: FixedClock):
        """Test the link is refused at exactly its expiry time."""
        clock.current = generated.download.expires_at

        decision = await workflow.check_download_access(
            generated.download.id, generated.download.download_token
        )
        assert decision.reason == DownloadDenialReason.EXPIRED

    async def test_not_ready(
        self, workflow: ExportWorkflow, generated, repository: InMemoryRowRepository
    ):
        """Test revoked downloads are refused."""
        await repository.patch(USER_EXPORT_DOWNLOADS, generated.download.id, {"status": "revoked"})

        decision = await workflow.check_download_access(
            generated.download.id, generated.download.download_token
        )
        assert decision.reason == DownloadDenialReason.NOT_READY

    async def test_missing_storage(
        self, workflow: ExportWorkflow, generated, blobs: InMemoryBlobStore
    ):
        """Test a download whose blob is gone is refused."""
        await blobs.delete(generated.download.storage_id)

        decision, blob = await workflow.open_download(
            generated.download.id, generated.download.download_token
        )
        assert blob is None
        assert decision.reason == DownloadDenialReason.MISSING_STORAGE

    async def test_open_download_counts_access(
        self,
        workflow: ExportWorkflow,
        generated,
        repository: InMemoryRowRepository,
        clock: FixedClock,
    ):
        """Test a successful download increments the counter."""
        token = generated.download.download_token
        await workflow.open_download(generated.download.id, token)
        clock.advance(5000)
        decision, blob = await workflow.open_download(generated.download.id, token)

        assert decision.ok
        assert blob.data.startswith(b"table,row_id")
        row = await repository.get(USER_EXPORT_DOWNLOADS, generated.download.id)
        assert row["download_count"] == 2
        assert row["last_downloaded_at"] == clock.current

    async def test_missing_expiry_is_expired(
        self, workflow: ExportWorkflow, generated, repository: InMemoryRowRepository
    ):
        """Test a download row without an expiry is refused as expired."""
        await repository.patch(USER_EXPORT_DOWNLOADS, generated.download.id, {"expires_at": None})

        decision = await workflow.check_download_access(
            generated.download.id, generated.download.download_token
        )
        assert decision.reason == DownloadDenialReason.EXPIRED

    async def test_concurrent_opens_are_all_counted(
        self, workflow: ExportWorkflow, generated, repository: InMemoryRowRepository
    ):
        """Test simultaneous downloads each bump the counter."""
        token = generated.download.download_token
        await asyncio.gather(
            *(workflow.open_download(generated.download.id, token) for _ in range(4))
        )

        row = await repository.get(USER_EXPORT_DOWNLOADS, generated.download.id)
        assert row["download_count"] == 4

    async def test_check_is_read_only(
        self, workflow: ExportWorkflow, generated, repository: InMemoryRowRepository
    ):
        """Test checking access does not count as a download."""
        await workflow.check_download_access(
            generated.download.id, generated.download.download_token
        )

        row = await repository.get(USER_EXPORT_DOWNLOADS, generated.download.id)
        assert row["download_count"] == 0


@pytest.mark.asyncio
class TestSignedTokens:
    """Tests for the gate with HMAC-signed tokens."""

    async def test_copied_token_rejected(
        self, repository: InMemoryRowRepository, blobs: InMemoryBlobStore, clock: FixedClock
    ):
        """Test a valid token copied onto another download fails signature checks."""
        workflow = ExportWorkflow(
            repository,
            blobs,
            AuditWriter(repository, clock=clock),
            clock=clock,
            token_issuer=DownloadTokenIssuer(secret="s3cret"),
        )
        first = await workflow.generate("user_1", (await workflow.request_export("user_1")).id)
        second = await workflow.generate("user_1", (await workflow.request_export("user_1")).id)

        await repository.patch(
            USER_EXPORT_DOWNLOADS,
            second.download.id,
            {"download_token": first.download.download_token},
        )

        assert (
            await workflow.check_download_access(first.download.id, first.download.download_token)
        ).ok
        decision = await workflow.check_download_access(
            second.download.id, first.download.download_token
        )
        assert decision.reason == DownloadDenialReason.INVALID_TOKEN
