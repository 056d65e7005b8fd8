"""Export download endpoint.

Serves export artifacts to anyone holding a valid download token. The
token is the credential, so no signed-in user is required.
"""

import re
from email.utils import format_datetime
from typing import Annotated

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import PlainTextResponse

from fingov.api.dependencies import EngineDep
from fingov.core.clock import ms_to_datetime
from fingov.core.logging import get_logger
from fingov.governance.types import DownloadDenialReason

logger = get_logger(__name__)

router = APIRouter(tags=["exports"])

DENIAL_STATUS: dict[DownloadDenialReason, int] = {
    DownloadDenialReason.INVALID_TOKEN: 403,
    DownloadDenialReason.EXPIRED: 410,
    DownloadDenialReason.NOT_READY: 409,
    DownloadDenialReason.NOT_FOUND: 404,
    DownloadDenialReason.MISSING_STORAGE: 404,
}

DENIAL_MESSAGE: dict[DownloadDenialReason, str] = {
    DownloadDenialReason.INVALID_TOKEN: "Invalid download token",
    DownloadDenialReason.EXPIRED: "Download link has expired",
    DownloadDenialReason.NOT_READY: "Export is not ready for download",
    DownloadDenialReason.NOT_FOUND: "Export not found",
    DownloadDenialReason.MISSING_STORAGE: "Export file is no longer available",
}

NO_STORE = {"Cache-Control": "private, no-store, max-age=0"}

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_filename(filename: str) -> str:
    """Strip characters that could break the Content-Disposition header."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", filename).strip("._")
    return cleaned or "export"


def _cors_headers(request: Request) -> dict[str, str]:
    origin = request.app.state.settings.CLIENT_ORIGIN
    if not origin:
        return {}
    return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}


@router.get(
    "/governance/export-download",
    summary="Download an export artifact",
    responses={
        200: {"description": "The export file"},
        400: {"description": "Missing download_id or token"},
        403: {"description": "Invalid token"},
        404: {"description": "Unknown download or missing file"},
        409: {"description": "Export not ready"},
        410: {"description": "Link expired"},
    },
)
async def download_export(
    request: Request,
    engine: EngineDep,
    download_id: Annotated[str | None, Query(description="Download id")] = None,
    token: Annotated[str | None, Query(description="Download token")] = None,
) -> Response:
    """Stream an export file after checking its download token."""
    headers = {**NO_STORE, **_cors_headers(request)}
    if not download_id or not token:
        return PlainTextResponse("Missing download_id or token", status_code=400, headers=headers)

    decision, blob = await engine.open_download(download_id, token)
    if not decision.ok or blob is None:
        reason = decision.reason or DownloadDenialReason.MISSING_STORAGE
        logger.info("Export download denied", download_id=download_id, reason=reason.value)
        return PlainTextResponse(
            DENIAL_MESSAGE[reason], status_code=DENIAL_STATUS[reason], headers=headers
        )

    grant = decision.grant
    headers.update(
        {
            "Content-Disposition": f'attachment; filename="{safe_filename(grant.filename)}"',
            "X-Content-Type-Options": "nosniff",
            "Expires": format_datetime(ms_to_datetime(grant.expires_at), usegmt=True),
        }
    )
    return Response(
        content=blob.data,
        media_type=grant.content_type or blob.content_type,
        headers=headers,
    )
