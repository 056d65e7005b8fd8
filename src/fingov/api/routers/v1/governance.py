"""Governance API endpoints.

All endpoints act on the signed-in user's own data:
- /v1/governance/exports - export requests and generation
- /v1/governance/policies - retention policies
- /v1/governance/deletion-jobs - deletion job requests and status
- /v1/governance/consent - analytics and diagnostics consent
- /v1/governance/retention-cleanup - manual retention sweep
- /v1/governance/erasure - account erasure
- /v1/governance/workspace, /v1/governance/audit-trail - read models
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from fingov.api.dependencies import EngineDep, ViewerDep
from fingov.api.schemas.errors import APIError
from fingov.api.schemas.governance import (
    AccountErasureRequest,
    ConsentUpdate,
    DeletionJobCreate,
    DeletionJobList,
    ExportRequestCreate,
    ExportRequestList,
    RetentionCleanupRun,
    RetentionPolicyList,
    RetentionPolicyUpsert,
    StatusUpdate,
)
from fingov.governance.audit import AuditTrail, AuditTrailFilters
from fingov.governance.consent import ConsentState, ConsentUpdateResult
from fingov.governance.exports.workflow import GeneratedExport
from fingov.governance.types import (
    AppliedPolicy,
    DeletionJob,
    ErasureResult,
    ExportRequest,
    SweepSummary,
)
from fingov.governance.workspace import GovernanceWorkspace

router = APIRouter(prefix="/governance", tags=["governance"])

ERROR_RESPONSES = {
    401: {"model": APIError, "description": "Not signed in"},
    404: {"model": APIError, "description": "Record not found"},
    422: {"model": APIError, "description": "Validation error"},
}

CONFLICT_RESPONSES = {
    **ERROR_RESPONSES,
    409: {"model": APIError, "description": "Illegal status transition"},
}


def audit_filters(
    from_ms: Annotated[int | None, Query(alias="from", description="Epoch ms, inclusive")] = None,
    to_ms: Annotated[int | None, Query(alias="to", description="Epoch ms, inclusive")] = None,
    action: Annotated[str | None, Query()] = None,
    entity_type: Annotated[str | None, Query()] = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
    limit: Annotated[int | None, Query()] = None,
) -> AuditTrailFilters:
    return AuditTrailFilters(
        from_ms=from_ms,
        to_ms=to_ms,
        action=action,
        entity_type=entity_type,
        search=search,
        limit=limit,
    )


# =============================================================================
# Exports
# =============================================================================


@router.post(
    "/exports",
    response_model=ExportRequest,
    status_code=status.HTTP_201_CREATED,
    summary="Request a data export",
    responses=ERROR_RESPONSES,
)
async def create_export(
    body: ExportRequestCreate, viewer: ViewerDep, engine: EngineDep
) -> ExportRequest:
    """Create an export request in the ``requested`` state."""
    return await engine.request_export(viewer, **body.model_dump())


@router.get("/exports", response_model=ExportRequestList, summary="List export requests")
async def list_exports(viewer: ViewerDep, engine: EngineDep) -> ExportRequestList:
    return ExportRequestList(items=await engine.exports.list_requests(viewer))


@router.post(
    "/exports/{request_id}/generate",
    response_model=GeneratedExport,
    summary="Generate an export artifact",
    description="""
    Builds, serializes and stores the export, then issues a download link.

    Only exports in the ``requested`` state can be generated. ZIP exports
    are rejected with ``unsupported_format``.
    """,
    responses={
        **CONFLICT_RESPONSES,
        422: {"model": APIError, "description": "Unsupported format"},
    },
)
async def generate_export(request_id: str, viewer: ViewerDep, engine: EngineDep) -> GeneratedExport:
    return await engine.generate_export(viewer, request_id)


@router.post(
    "/exports/{request_id}/status",
    response_model=ExportRequest,
    summary="Change an export request's status",
    responses=CONFLICT_RESPONSES,
)
async def update_export_status(
    request_id: str, body: StatusUpdate, viewer: ViewerDep, engine: EngineDep
) -> ExportRequest:
    return await engine.update_export_status(viewer, request_id, body.status, body.note)


# =============================================================================
# Retention policies and deletion jobs
# =============================================================================


@router.get("/policies", response_model=RetentionPolicyList, summary="List retention policies")
async def list_policies(viewer: ViewerDep, engine: EngineDep) -> RetentionPolicyList:
    """Defaults merged with the user's overrides, sorted by key."""
    return RetentionPolicyList(policies=await engine.list_retention_policies(viewer))


@router.put(
    "/policies",
    response_model=AppliedPolicy,
    summary="Create or update a retention policy",
    responses=ERROR_RESPONSES,
)
async def upsert_policy(
    body: RetentionPolicyUpsert, viewer: ViewerDep, engine: EngineDep
) -> AppliedPolicy:
    return await engine.upsert_retention_policy(viewer, **body.model_dump())


@router.post(
    "/deletion-jobs",
    response_model=DeletionJob,
    status_code=status.HTTP_201_CREATED,
    summary="Request a deletion job",
    responses=ERROR_RESPONSES,
)
async def create_deletion_job(
    body: DeletionJobCreate, viewer: ViewerDep, engine: EngineDep
) -> DeletionJob:
    return await engine.request_deletion_job(viewer, **body.model_dump())


@router.get("/deletion-jobs", response_model=DeletionJobList, summary="List deletion jobs")
async def list_deletion_jobs(viewer: ViewerDep, engine: EngineDep) -> DeletionJobList:
    return DeletionJobList(items=await engine.jobs.list_jobs(viewer))


@router.post(
    "/deletion-jobs/{job_id}/status",
    response_model=DeletionJob,
    summary="Change a deletion job's status",
    responses=CONFLICT_RESPONSES,
)
async def update_deletion_job_status(
    job_id: str, body: StatusUpdate, viewer: ViewerDep, engine: EngineDep
) -> DeletionJob:
    return await engine.update_deletion_job_status(viewer, job_id, body.status, body.note)


@router.post(
    "/retention-cleanup",
    response_model=SweepSummary,
    summary="Run retention cleanup for the signed-in user",
    responses=ERROR_RESPONSES,
)
async def run_retention_cleanup(
    body: RetentionCleanupRun, viewer: ViewerDep, engine: EngineDep
) -> SweepSummary:
    return await engine.run_retention_cleanup(viewer, dry_run=body.dry_run)


# =============================================================================
# Consent
# =============================================================================


@router.get("/consent", response_model=ConsentState, summary="Get consent settings")
async def get_consent(viewer: ViewerDep, engine: EngineDep) -> ConsentState:
    return await engine.get_consent(viewer)


@router.put(
    "/consent",
    response_model=ConsentUpdateResult,
    summary="Update consent settings",
    responses=ERROR_RESPONSES,
)
async def update_consent(
    body: ConsentUpdate, viewer: ViewerDep, engine: EngineDep
) -> ConsentUpdateResult:
    return await engine.update_consent(viewer, **body.model_dump())


# =============================================================================
# Account erasure
# =============================================================================


@router.post(
    "/erasure",
    response_model=ErasureResult,
    summary="Erase all of the signed-in user's data",
    description="""
    Defaults to a dry run that only counts what would be deleted.

    Executing requires ``confirmation_text`` to match the confirmation
    phrase exactly.
    """,
    responses=ERROR_RESPONSES,
)
async def erase_account(
    body: AccountErasureRequest, viewer: ViewerDep, engine: EngineDep
) -> ErasureResult:
    return await engine.erase_account(
        viewer, dry_run=body.dry_run, confirmation_text=body.confirmation_text
    )


# =============================================================================
# Read models
# =============================================================================


@router.get("/workspace", response_model=GovernanceWorkspace, summary="Governance workspace")
async def get_workspace(
    viewer: ViewerDep,
    engine: EngineDep,
    filters: Annotated[AuditTrailFilters, Depends(audit_filters)],
) -> GovernanceWorkspace:
    return await engine.get_workspace(viewer, filters)


@router.get("/audit-trail", response_model=AuditTrail, summary="Filtered audit trail")
async def get_audit_trail(
    viewer: ViewerDep,
    engine: EngineDep,
    filters: Annotated[AuditTrailFilters, Depends(audit_filters)],
) -> AuditTrail:
    return await engine.get_audit_trail(viewer, filters)
