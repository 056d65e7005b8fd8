"""Type definitions for data governance.

Entity records are parsed from raw rows at the repository boundary.
Stored values that are unknown or legacy are coerced to defaults, while
caller input is validated strictly through ``parse_enum``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fingov.core.exceptions import ValidationError

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], value: Any, default: E) -> E:
    """Coerce a stored value to ``enum_cls``, falling back to ``default``."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            return default
    return default


def coerce_text(value: Any, default: str) -> str:
    """Coerce a stored value to trimmed text, falling back to ``default``."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def parse_enum(enum_cls: type[E], value: Any, default: E, field_name: str) -> E:
    """Parse caller input into ``enum_cls``.

    None or a blank string selects ``default``.

    Raises:
        ValidationError: If the value is not a member of ``enum_cls``
    """
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Unsupported {field_name}: {value!r}", field=field_name)
    cleaned = value.strip().lower()
    if not cleaned:
        return default
    try:
        return enum_cls(cleaned)
    except ValueError:
        raise ValidationError(
            f"Unsupported {field_name}: {value!r}", field=field_name
        ) from None


# =============================================================================
# Enums
# =============================================================================


class ExportKind(str, Enum):
    """What an export contains."""

    FULL_ACCOUNT = "full_account"
    """Everything in the selected scope."""

    TRANSACTIONS = "transactions"
    """Purchases, splits and ledger rows."""

    LEDGER = "ledger"
    """Ledger entries and lines only."""

    AUDIT = "audit"
    """Audit events only."""

    GDPR_BUNDLE = "gdpr_bundle"
    """Full account plus every privacy table."""

    @classmethod
    def _missing_(cls, value: object) -> "ExportKind | None":
        if value == "gdpr":
            return cls.GDPR_BUNDLE
        return None


class ExportFormat(str, Enum):
    """Serialized export format."""

    JSON = "json"
    CSV = "csv"
    ZIP = "zip"


class ExportScope(str, Enum):
    """Base table selection for an export."""

    FULL_ACCOUNT = "full_account"
    FINANCE_ONLY = "finance_only"
    PRIVACY_ONLY = "privacy_only"
    AUDIT_ONLY = "audit_only"


class ExportStatus(str, Enum):
    """Lifecycle state of an export request."""

    REQUESTED = "requested"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EXPORT_STATUSES


TERMINAL_EXPORT_STATUSES = frozenset(
    {ExportStatus.READY, ExportStatus.FAILED, ExportStatus.CANCELLED}
)


class DownloadStatus(str, Enum):
    """State of an issued download."""

    READY = "ready"
    EXPIRED = "expired"
    REVOKED = "revoked"


class DeletionJobType(str, Enum):
    """Kind of deletion work a job describes."""

    ACCOUNT_ERASURE = "account_erasure"
    HARD_DELETE = "hard_delete"
    RETENTION_CLEANUP = "retention_cleanup"
    EXPORT_CLEANUP = "export_cleanup"


class DeletionScope(str, Enum):
    """Reach of a deletion job."""

    ACCOUNT = "account"
    SINGLE_RECORD = "single_record"
    EXPORTS_ONLY = "exports_only"
    AUDIT_ONLY = "audit_only"


class DeletionJobStatus(str, Enum):
    """Lifecycle state of a deletion job."""

    REQUESTED = "requested"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset(
    {DeletionJobStatus.COMPLETED, DeletionJobStatus.FAILED, DeletionJobStatus.CANCELLED}
)


class ConsentType(str, Enum):
    """Consent flags a user can toggle."""

    ANALYTICS = "analytics"
    DIAGNOSTICS = "diagnostics"


class RetentionCategory(str, Enum):
    """Categories the retention sweep enforces."""

    EXPORTS = "exports"
    DELETION_JOBS = "deletion_jobs"
    CONSENT_LOGS = "consent_logs"
    FINANCE_AUDIT_EVENTS = "finance_audit_events"


class PolicySource(str, Enum):
    """Where a merged retention policy came from."""

    DEFAULT = "default"
    DB = "db"


class DownloadDenialReason(str, Enum):
    """Why the download gate refused access."""

    NOT_FOUND = "not_found"
    INVALID_TOKEN = "invalid_token"
    NOT_READY = "not_ready"
    EXPIRED = "expired"
    MISSING_STORAGE = "missing_storage"


DEFAULT_RETENTION_DAYS: dict[RetentionCategory, int] = {
    RetentionCategory.EXPORTS: 7,
    RetentionCategory.DELETION_JOBS: 30,
    RetentionCategory.CONSENT_LOGS: 730,
    RetentionCategory.FINANCE_AUDIT_EVENTS: 365,
}

MAX_RETENTION_DAYS = 3650


# =============================================================================
# Entity records
# =============================================================================


class EntityRecord(BaseModel):
    """Base for typed rows. Extra stored keys are ignored."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str
    """Repository-assigned identifier."""

    creation_time: int = 0
    """Repository insertion time, epoch ms."""

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Self:
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        """Dump to a storable dict without repository-managed keys."""
        return self.model_dump(mode="json", exclude={"id", "creation_time"})


class ExportRequest(EntityRecord):
    """A user's request to export their data."""

    user_id: str
    export_kind: ExportKind = ExportKind.FULL_ACCOUNT
    format: ExportFormat = ExportFormat.JSON
    scope: ExportScope = ExportScope.FULL_ACCOUNT
    status: ExportStatus = ExportStatus.REQUESTED
    include_audit_trail: bool = True
    include_deleted_artifacts: bool = False
    note: str | None = None
    requested_at: int | None = None
    created_at: int | None = None
    updated_at: int | None = None
    processing_started_at: int | None = None
    completed_at: int | None = None
    cancelled_at: int | None = None
    failure_reason: str | None = None
    latest_download_status: DownloadStatus | None = None
    latest_filename: str | None = None
    latest_expires_at: int | None = None

    @field_validator("export_kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v: Any) -> ExportKind:
        return coerce_enum(ExportKind, v, ExportKind.FULL_ACCOUNT)

    @field_validator("format", mode="before")
    @classmethod
    def _coerce_format(cls, v: Any) -> ExportFormat:
        return coerce_enum(ExportFormat, v, ExportFormat.JSON)

    @field_validator("scope", mode="before")
    @classmethod
    def _coerce_scope(cls, v: Any) -> ExportScope:
        return coerce_enum(ExportScope, v, ExportScope.FULL_ACCOUNT)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> ExportStatus:
        return coerce_enum(ExportStatus, v, ExportStatus.REQUESTED)

    @field_validator("latest_download_status", mode="before")
    @classmethod
    def _coerce_download_status(cls, v: Any) -> DownloadStatus | None:
        if v is None:
            return None
        return coerce_enum(DownloadStatus, v, DownloadStatus.READY)

    @property
    def age_reference_ms(self) -> int:
        return self.created_at or self.creation_time


class ExportDownload(EntityRecord):
    """An issued, token-protected download for a completed export."""

    user_id: str
    export_id: str
    status: DownloadStatus = DownloadStatus.READY
    filename: str = ""
    format: ExportFormat = ExportFormat.JSON
    requested_format: ExportFormat | None = None
    byte_size: int = 0
    checksum_sha256: str = ""
    content_type: str = ""
    storage_id: str | None = None
    download_token: str | None = None
    expires_at: int | None = None
    """Link expiry, epoch ms. Legacy rows without one never expire by date."""
    download_count: int = 0
    last_downloaded_at: int | None = None
    created_at: int | None = None
    updated_at: int | None = None
    dataset_count: int = 0
    row_count: int = 0

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> DownloadStatus:
        return coerce_enum(DownloadStatus, v, DownloadStatus.READY)

    @field_validator("format", mode="before")
    @classmethod
    def _coerce_format(cls, v: Any) -> ExportFormat:
        return coerce_enum(ExportFormat, v, ExportFormat.JSON)

    @field_validator("requested_format", mode="before")
    @classmethod
    def _coerce_requested_format(cls, v: Any) -> ExportFormat | None:
        if v is None:
            return None
        return coerce_enum(ExportFormat, v, ExportFormat.JSON)

    @property
    def age_reference_ms(self) -> int:
        return self.created_at or self.creation_time


class RetentionPolicy(EntityRecord):
    """A user's override of a retention category."""

    user_id: str
    policy_key: str
    retention_days: int
    enabled: bool = True
    updated_at: int | None = None


class DeletionJob(EntityRecord):
    """A tracked unit of deletion work."""

    user_id: str
    job_type: DeletionJobType = DeletionJobType.ACCOUNT_ERASURE
    scope: DeletionScope = DeletionScope.ACCOUNT
    target_entity_type: str | None = None
    target_entity_id: str | None = None
    status: DeletionJobStatus = DeletionJobStatus.REQUESTED
    dry_run: bool = True
    reason: str | None = None
    note: str | None = None
    source: str | None = None
    payload: dict[str, Any] | None = None
    requested_at: int | None = None
    scheduled_at: int | None = None
    started_at: int | None = None
    completed_at: int | None = None
    cancelled_at: int | None = None
    failed_at: int | None = None
    created_at: int | None = None
    updated_at: int | None = None

    @field_validator("job_type", mode="before")
    @classmethod
    def _coerce_job_type(cls, v: Any) -> DeletionJobType:
        return coerce_enum(DeletionJobType, v, DeletionJobType.ACCOUNT_ERASURE)

    @field_validator("scope", mode="before")
    @classmethod
    def _coerce_scope(cls, v: Any) -> DeletionScope:
        return coerce_enum(DeletionScope, v, DeletionScope.ACCOUNT)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> DeletionJobStatus:
        return coerce_enum(DeletionJobStatus, v, DeletionJobStatus.REQUESTED)

    @property
    def age_reference_ms(self) -> int:
        return self.created_at or self.creation_time


class ConsentSettings(EntityRecord):
    """Current consent flags for a user."""

    user_id: str
    analytics_enabled: bool = False
    diagnostics_enabled: bool = False
    updated_at: int | None = None


class ConsentLog(EntityRecord):
    """One consent flag change.

    ``consent_type`` is a ``ConsentType`` value for rows this package writes.
    Older rows may hold other labels, which are kept as text.
    """

    user_id: str
    consent_type: str = "unknown"
    enabled: bool = False
    version: str = "v2"
    reason: str | None = None
    created_at: int | None = None

    @field_validator("consent_type", mode="before")
    @classmethod
    def _coerce_consent_type(cls, v: Any) -> str:
        if isinstance(v, ConsentType):
            return v.value
        return coerce_text(v, "unknown").lower()

    @field_validator("enabled", mode="before")
    @classmethod
    def _coerce_enabled(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in {"true", "1", "yes", "on"}
        return bool(v)

    @property
    def age_reference_ms(self) -> int:
        return self.created_at or self.creation_time


class AuditEvent(EntityRecord):
    """Immutable record of a governance action."""

    action: str = "unknown"
    entity_type: str = ""
    entity_id: str = ""
    user_id: str | None = None
    before_json: str | None = None
    after_json: str | None = None
    metadata_json: str | None = None
    created_at: int | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, v: Any) -> str:
        return coerce_text(v, "unknown")

    @field_validator("entity_type", "entity_id", mode="before")
    @classmethod
    def _coerce_entity(cls, v: Any) -> str:
        return coerce_text(v, "")

    @field_validator("before_json", "after_json", "metadata_json", mode="before")
    @classmethod
    def _coerce_payload(cls, v: Any) -> str | None:
        return v if isinstance(v, str) else None

    @property
    def age_reference_ms(self) -> int:
        return self.created_at or self.creation_time


class ErasureMarker(EntityRecord):
    """Durable record that an account erasure started and has not finished."""

    user_id: str
    owner_key: str
    started_at: int
    candidate_rows: int = 0
    candidate_storage_files: int = 0
    receipt_id: str | None = None


# =============================================================================
# Merged policies
# =============================================================================


class AppliedPolicy(BaseModel):
    """A retention policy after merging user overrides over defaults."""

    id: str | None = None
    policy_key: str
    retention_days: int
    enabled: bool
    source: PolicySource
    updated_at: int | None = None


# =============================================================================
# Batch and sweep results
# =============================================================================


@dataclass
class BatchFailure:
    """One failed item inside a batch operation."""

    table: str
    record_id: str
    error: str


@dataclass
class BatchResult:
    """Outcome of a batch of row or blob deletions."""

    attempted: int = 0
    succeeded: int = 0
    already_absent: int = 0
    failed: list[BatchFailure] = field(default_factory=list)

    def merge(self, other: "BatchResult") -> None:
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.already_absent += other.already_absent
        self.failed.extend(other.failed)


class CategoryCounts(BaseModel):
    """Row counts per retention category, plus blob count."""

    user_export_downloads: int = 0
    user_exports: int = 0
    deletion_jobs: int = 0
    consent_logs: int = 0
    finance_audit_events: int = 0
    storage_files: int = 0

    @property
    def total_rows(self) -> int:
        return (
            self.user_export_downloads
            + self.user_exports
            + self.deletion_jobs
            + self.consent_logs
            + self.finance_audit_events
        )

    def add(self, other: "CategoryCounts") -> None:
        for name in type(self).model_fields:
            setattr(self, name, getattr(self, name) + getattr(other, name))


class FailureEntry(BaseModel):
    """Serializable form of a batch failure."""

    table: str
    record_id: str
    error: str


class UserSweepReport(BaseModel):
    """Sweep outcome for one user."""

    user_id: str
    deleted: CategoryCounts = Field(default_factory=CategoryCounts)
    candidates: CategoryCounts = Field(default_factory=CategoryCounts)
    applied_policies: list[AppliedPolicy] = Field(default_factory=list)
    failures: list[FailureEntry] = Field(default_factory=list)


class FailedUser(BaseModel):
    """A user whose sweep raised before completing."""

    user_id: str
    error: str


class SweepSummary(BaseModel):
    """Aggregate outcome of one sweep."""

    dry_run: bool
    source: str
    user_count: int = 0
    deleted: CategoryCounts = Field(default_factory=CategoryCounts)
    candidates: CategoryCounts = Field(default_factory=CategoryCounts)
    per_user: list[UserSweepReport] = Field(default_factory=list)
    failed_users: list[FailedUser] = Field(default_factory=list)


# =============================================================================
# Erasure results
# =============================================================================


class ErasureCounts(BaseModel):
    """Per-table row counts for an erasure."""

    total_rows: int = 0
    storage_files: int = 0
    by_user_table: dict[str, int] = Field(default_factory=dict)
    by_owner_key_table: dict[str, int] = Field(default_factory=dict)


class ErasureResult(BaseModel):
    """Report of an account erasure, dry or executed."""

    dry_run: bool
    user_id: str
    owner_key: str
    confirmation_required_phrase: str
    candidates: ErasureCounts
    deleted: ErasureCounts | None = None
    failures: list[FailureEntry] = Field(default_factory=list)
    touched_tables: list[str] = Field(default_factory=list)
    note: str


class InterruptedErasure(BaseModel):
    """An erasure whose marker outlived the expected run time."""

    marker_id: str
    user_id: str
    owner_key: str
    started_at: int
    age_ms: int
    candidate_rows: int
    receipt_id: str | None = None


# =============================================================================
# Export artifacts
# =============================================================================


class ExportTable(BaseModel):
    """Rows exported from one table."""

    table: str
    row_count: int
    rows: list[dict[str, Any]]


class ExportSummary(BaseModel):
    table_count: int
    total_rows: int


class ExportBundle(BaseModel):
    """The complete, format-independent content of an export."""

    version: str = "export-v1"
    generated_at: str
    user_id: str
    export_kind: ExportKind
    scope: ExportScope
    include_audit_trail: bool
    include_deleted_artifacts: bool
    summary: ExportSummary
    tables: list[ExportTable]


@dataclass(frozen=True)
class SerializedExport:
    """Bytes produced by a serializer."""

    data: bytes
    content_type: str
    extension: str


@dataclass(frozen=True)
class DownloadGrant:
    """What a valid download token unlocks."""

    download_id: str
    storage_id: str
    filename: str
    content_type: str
    expires_at: int
    user_id: str


@dataclass(frozen=True)
class DownloadDecision:
    """Result of the download gate."""

    reason: DownloadDenialReason | None = None
    grant: DownloadGrant | None = None

    @property
    def ok(self) -> bool:
        return self.grant is not None

    @classmethod
    def deny(cls, reason: DownloadDenialReason) -> "DownloadDecision":
        return cls(reason=reason)

    @classmethod
    def allow(cls, grant: DownloadGrant) -> "DownloadDecision":
        return cls(grant=grant)
