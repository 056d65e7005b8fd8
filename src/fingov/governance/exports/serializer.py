"""Export serialization to JSON and CSV."""

import csv
import io
import json
import re
from typing import Any

from fingov.core.clock import iso_timestamp
from fingov.core.exceptions import UnsupportedFormatError
from fingov.governance.types import (
    ExportBundle,
    ExportFormat,
    ExportKind,
    ExportScope,
    SerializedExport,
)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
CSV_CONTENT_TYPE = "text/csv; charset=utf-8"

CSV_COLUMNS = [
    "table",
    "row_id",
    "created_at",
    "updated_at",
    "user_id",
    "entity_type",
    "entity_id",
    "action",
    "status",
    "json",
]

_MILLIS_SUFFIX = re.compile(r"\.\d{3}Z$")


def content_type_for(export_format: ExportFormat) -> str:
    if export_format == ExportFormat.CSV:
        return CSV_CONTENT_TYPE
    return JSON_CONTENT_TYPE


def build_filename(
    kind: ExportKind, scope: ExportScope, generated_at_ms: int, export_format: ExportFormat
) -> str:
    """Build the download filename.

    Example: ``finance-full_account-full_account-2026-03-01T12-30-45Z.json``
    """
    stamp = _MILLIS_SUFFIX.sub("Z", iso_timestamp(generated_at_ms)).replace(":", "-")
    return f"finance-{kind.value}-{scope.value}-{stamp}.{export_format.value}"


def _compact_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return _compact_json(value)
    return str(value)


def serialize_json(bundle: ExportBundle) -> bytes:
    """Pretty-printed JSON of the whole bundle."""
    return json.dumps(
        bundle.model_dump(mode="json"), indent=2, ensure_ascii=False
    ).encode("utf-8")


def serialize_csv(bundle: ExportBundle) -> bytes:
    """One CSV line per exported row with a fixed header.

    The ``json`` column carries the complete row so nothing is lost to
    the fixed column set.
    """
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)

    for table in bundle.tables:
        for row in table.rows:
            created_at = row.get("created_at")
            if created_at is None:
                created_at = row.get("creation_time")
            status = row.get("status")
            if status is None:
                status = row.get("latest_download_status")
            writer.writerow(
                [
                    table.table,
                    _cell(row.get("id")),
                    _cell(created_at),
                    _cell(row.get("updated_at")),
                    _cell(row.get("user_id")),
                    _cell(row.get("entity_type")),
                    _cell(row.get("entity_id")),
                    _cell(row.get("action")),
                    _cell(status),
                    _compact_json(row),
                ]
            )

    return output.getvalue().encode("utf-8")


def serialize_bundle(bundle: ExportBundle, export_format: ExportFormat) -> SerializedExport:
    """Serialize a bundle in the requested format.

    Raises:
        UnsupportedFormatError: For ZIP, which has no serializer
    """
    if export_format == ExportFormat.JSON:
        return SerializedExport(serialize_json(bundle), JSON_CONTENT_TYPE, "json")
    if export_format == ExportFormat.CSV:
        return SerializedExport(serialize_csv(bundle), CSV_CONTENT_TYPE, "csv")
    raise UnsupportedFormatError(
        "ZIP export generation is not implemented yet; use JSON or CSV.",
        format=export_format.value,
    )
