"""Export bundle construction.

Resolves which tables an export covers and collects the user's rows from
each of them into a format-independent ``ExportBundle``.
"""

import copy
from typing import Any

from fingov.core.clock import iso_timestamp
from fingov.db.repositories.rows import RowRepository
from fingov.governance.tables import (
    CONSENT_LOGS,
    CONSENT_SETTINGS,
    DELETION_JOBS,
    FINANCE_AUDIT_EVENTS,
    FINANCE_TABLES,
    LEDGER_ENTRIES,
    LEDGER_LINES,
    PRIVACY_TABLES,
    PURCHASE_SPLITS,
    PURCHASES,
    RETENTION_POLICIES,
    USER_EXPORT_DOWNLOADS,
    USER_EXPORTS,
)
from fingov.governance.types import (
    ExportBundle,
    ExportKind,
    ExportRequest,
    ExportScope,
    ExportSummary,
    ExportTable,
)

BUNDLE_VERSION = "export-v1"

SCOPE_TABLES: dict[ExportScope, tuple[str, ...]] = {
    ExportScope.FULL_ACCOUNT: FINANCE_TABLES
    + (
        RETENTION_POLICIES,
        DELETION_JOBS,
        CONSENT_SETTINGS,
        CONSENT_LOGS,
        USER_EXPORTS,
        USER_EXPORT_DOWNLOADS,
        FINANCE_AUDIT_EVENTS,
    ),
    ExportScope.FINANCE_ONLY: FINANCE_TABLES,
    ExportScope.PRIVACY_ONLY: PRIVACY_TABLES,
    ExportScope.AUDIT_ONLY: (FINANCE_AUDIT_EVENTS,),
}

# These kinds replace the scope's table list outright
KIND_TABLES: dict[ExportKind, tuple[str, ...]] = {
    ExportKind.TRANSACTIONS: (PURCHASES, PURCHASE_SPLITS, LEDGER_ENTRIES, LEDGER_LINES),
    ExportKind.LEDGER: (LEDGER_ENTRIES, LEDGER_LINES),
    ExportKind.AUDIT: (FINANCE_AUDIT_EVENTS,),
}

# Secrets never leave the system inside an export
REDACTED_FIELDS: dict[str, frozenset[str]] = {
    USER_EXPORT_DOWNLOADS: frozenset({"download_token"}),
}


def resolve_export_tables(
    kind: ExportKind, scope: ExportScope, include_audit_trail: bool
) -> list[str]:
    """Compute the ordered, de-duplicated table list for an export."""
    if kind in KIND_TABLES:
        tables = list(KIND_TABLES[kind])
    elif kind == ExportKind.GDPR_BUNDLE:
        tables = [*SCOPE_TABLES[ExportScope.FULL_ACCOUNT], *PRIVACY_TABLES]
    else:
        tables = list(SCOPE_TABLES[scope])

    if not include_audit_trail:
        tables = [t for t in tables if t != FINANCE_AUDIT_EVENTS]

    return list(dict.fromkeys(tables))


def sanitize_row(table: str, row: dict[str, Any]) -> dict[str, Any]:
    """Deep-copy a row and drop fields that must not be exported."""
    cleaned = copy.deepcopy(row)
    for name in REDACTED_FIELDS.get(table, ()):
        cleaned.pop(name, None)
    return cleaned


async def build_bundle(
    repository: RowRepository,
    request: ExportRequest,
    generated_at_ms: int,
) -> ExportBundle:
    """Collect the requesting user's rows for every table in the export."""
    tables = resolve_export_tables(
        request.export_kind, request.scope, request.include_audit_trail
    )

    exported: list[ExportTable] = []
    for table in tables:
        rows = await repository.list_owned_by_user(table, request.user_id)
        ordered = sorted(rows, key=lambda r: (r.get("creation_time") or 0, r.get("id") or ""))
        cleaned = [sanitize_row(table, row) for row in ordered]
        exported.append(ExportTable(table=table, row_count=len(cleaned), rows=cleaned))

    return ExportBundle(
        version=BUNDLE_VERSION,
        generated_at=iso_timestamp(generated_at_ms),
        user_id=request.user_id,
        export_kind=request.export_kind,
        scope=request.scope,
        include_audit_trail=request.include_audit_trail,
        include_deleted_artifacts=request.include_deleted_artifacts,
        summary=ExportSummary(
            table_count=len(exported),
            total_rows=sum(t.row_count for t in exported),
        ),
        tables=exported,
    )
