"""Request and response schemas for the governance API."""

from pydantic import BaseModel, Field

from fingov.governance.types import AppliedPolicy, DeletionJob, ExportRequest


class ExportRequestCreate(BaseModel):
    """Body for creating an export request. Blank values select defaults."""

    export_kind: str | None = Field(
        default=None, description="full_account, transactions, ledger, audit, gdpr_bundle"
    )
    format: str | None = Field(default=None, description="json, csv or zip")
    scope: str | None = Field(
        default=None, description="full_account, finance_only, privacy_only, audit_only"
    )
    include_audit_trail: bool = True
    include_deleted_artifacts: bool = False
    note: str | None = Field(default=None, max_length=500)


class StatusUpdate(BaseModel):
    """Body for caller-driven status changes."""

    status: str
    note: str | None = Field(default=None, max_length=500)


class ExportRequestList(BaseModel):
    items: list[ExportRequest]


class RetentionPolicyUpsert(BaseModel):
    """Body for creating or updating a retention policy."""

    policy_key: str
    retention_days: int = Field(..., description="Clamped to 0..3650")
    enabled: bool | None = True
    policy_id: str | None = None


class RetentionPolicyList(BaseModel):
    policies: list[AppliedPolicy]


class DeletionJobCreate(BaseModel):
    """Body for requesting a deletion job."""

    job_type: str | None = None
    scope: str | None = None
    target_entity_type: str | None = None
    target_entity_id: str | None = None
    dry_run: bool | None = True
    scheduled_at: int | None = Field(default=None, description="Epoch ms; clamped to now")
    reason: str | None = Field(default=None, max_length=500)
    note: str | None = Field(default=None, max_length=500)


class DeletionJobList(BaseModel):
    items: list[DeletionJob]


class ConsentUpdate(BaseModel):
    """Body for updating consent flags. Omitted flags keep their value."""

    analytics_enabled: bool | None = None
    diagnostics_enabled: bool | None = None
    version: str | None = None
    reason: str | None = Field(default=None, max_length=500)


class RetentionCleanupRun(BaseModel):
    dry_run: bool = True


class AccountErasureRequest(BaseModel):
    dry_run: bool = True
    confirmation_text: str | None = None
