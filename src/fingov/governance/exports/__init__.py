"""User data exports: bundle building, serialization, tokens and workflow."""

from fingov.governance.exports.bundle import build_bundle, resolve_export_tables
from fingov.governance.exports.serializer import build_filename, serialize_bundle
from fingov.governance.exports.tokens import DownloadTokenIssuer, tokens_match
from fingov.governance.exports.workflow import ExportWorkflow, GeneratedExport

__all__ = [
    "DownloadTokenIssuer",
    "ExportWorkflow",
    "GeneratedExport",
    "build_bundle",
    "build_filename",
    "resolve_export_tables",
    "serialize_bundle",
    "tokens_match",
]
