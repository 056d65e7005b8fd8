"""Integration tests for the export download endpoint."""

import hashlib

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient

from fingov.core.clock import MS_PER_DAY, FixedClock
from fingov.db.repositories.rows import InMemoryRowRepository
from fingov.governance.engine import GovernanceEngine
from fingov.governance.exports.workflow import GeneratedExport
from fingov.governance.tables import USER_EXPORT_DOWNLOADS
from fingov.storage.blobs import InMemoryBlobStore

PATH = "/governance/export-download"


@pytest_asyncio.fixture
async def generated(engine: GovernanceEngine) -> GeneratedExport:
    request = await engine.request_export("user_1", format="csv")
    return await engine.generate_export("user_1", request.id)


def params_for(generated: GeneratedExport, **overrides) -> dict:
    params = {"download_id": generated.download.id, "token": generated.download.download_token}
    params.update(overrides)
    return params


@pytest.mark.asyncio
class TestDownloadSuccess:
    """Tests for successful downloads."""

    async def test_download_returns_file(
        self,
        test_client: AsyncClient,
        generated: GeneratedExport,
        blobs: InMemoryBlobStore,
    ):
        """Test the file is served with attachment and no-store headers."""
        response = await test_client.get(PATH, params=params_for(generated))

        assert response.status_code == 200
        assert hashlib.sha256(response.content).hexdigest() == generated.download.checksum_sha256
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"] == (
            f'attachment; filename="{generated.download.filename}"'
        )
        assert response.headers["cache-control"] == "private, no-store, max-age=0"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["expires"].endswith("GMT")

    async def test_download_via_url_path(
        self, test_client: AsyncClient, generated: GeneratedExport
    ):
        """Test the URL handed to the owner works as-is."""
        response = await test_client.get(generated.download_url_path)

        assert response.status_code == 200

    async def test_download_is_counted(
        self,
        test_client: AsyncClient,
        generated: GeneratedExport,
        repository: InMemoryRowRepository,
    ):
        """Test each download bumps the counter."""
        await test_client.get(PATH, params=params_for(generated))
        await test_client.get(PATH, params=params_for(generated))

        row = await repository.get(USER_EXPORT_DOWNLOADS, generated.download.id)
        assert row["download_count"] == 2

    async def test_client_origin_cors_headers(
        self, test_app: FastAPI, test_client: AsyncClient, generated: GeneratedExport
    ):
        """Test the configured client origin is allowed."""
        test_app.state.settings.CLIENT_ORIGIN = "https://app.example.com"

        response = await test_client.get(PATH, params=params_for(generated))

        assert response.headers["access-control-allow-origin"] == "https://app.example.com"
        assert response.headers["vary"] == "Origin"


@pytest.mark.asyncio
class TestDownloadDenied:
    """Tests for denied downloads."""

    async def test_missing_params_is_400(self, test_client: AsyncClient):
        """Test missing parameters are rejected before any lookup."""
        response = await test_client.get(PATH, params={"download_id": "abc"})

        assert response.status_code == 400
        assert response.headers["cache-control"] == "private, no-store, max-age=0"

    async def test_unknown_download_is_404(self, test_client: AsyncClient):
        """Test an unknown download id is 404."""
        response = await test_client.get(PATH, params={"download_id": "nope", "token": "t"})

        assert response.status_code == 404
        assert response.text == "Export not found"

    async def test_wrong_token_is_403(self, test_client: AsyncClient, generated: GeneratedExport):
        """Test a wrong token is 403."""
        response = await test_client.get(PATH, params=params_for(generated, token="guess"))

        assert response.status_code == 403
        assert response.text == "Invalid download token"

    async def test_expired_is_410(
        self, test_client: AsyncClient, generated: GeneratedExport, clock: FixedClock
    ):
        """Test an expired link is 410."""
        clock.advance(7 * MS_PER_DAY)

        response = await test_client.get(PATH, params=params_for(generated))

        assert response.status_code == 410

    async def test_revoked_is_409(
        self,
        test_client: AsyncClient,
        generated: GeneratedExport,
        repository: InMemoryRowRepository,
    ):
        """Test a download that is no longer ready is 409."""
        await repository.patch(USER_EXPORT_DOWNLOADS, generated.download.id, {"status": "revoked"})

        response = await test_client.get(PATH, params=params_for(generated))

        assert response.status_code == 409

    async def test_missing_blob_is_404(
        self,
        test_client: AsyncClient,
        generated: GeneratedExport,
        blobs: InMemoryBlobStore,
        repository: InMemoryRowRepository,
    ):
        """Test a download whose file is gone is 404 and not counted."""
        await blobs.delete(generated.download.storage_id)

        response = await test_client.get(PATH, params=params_for(generated))

        assert response.status_code == 404
        assert response.text == "Export file is no longer available"
        row = await repository.get(USER_EXPORT_DOWNLOADS, generated.download.id)
        assert row["download_count"] == 0
