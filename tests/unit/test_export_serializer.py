"""Unit tests for export serialization."""

import csv
import io
import json

import pytest

from fingov.core.exceptions import UnsupportedFormatError
from fingov.governance.exports.serializer import (
    CSV_COLUMNS,
    CSV_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    build_filename,
    serialize_bundle,
    serialize_csv,
    serialize_json,
)
from fingov.governance.types import (
    ExportBundle,
    ExportFormat,
    ExportKind,
    ExportScope,
    ExportSummary,
    ExportTable,
)


@pytest.fixture
def bundle() -> ExportBundle:
    """A small bundle with tricky CSV content."""
    tables = [
        ExportTable(
            table="purchases",
            row_count=2,
            rows=[
                {
                    "id": "p1",
                    "creation_time": 100,
                    "user_id": "user_1",
                    "status": "posted",
                    "memo": 'Coffee, "large"\nwith milk',
                    "tags": ["food", "daily"],
                },
                {"id": "p2", "creation_time": 200, "user_id": "user_1", "created_at": 150},
            ],
        ),
        ExportTable(
            table="user_exports",
            row_count=1,
            rows=[
                {
                    "id": "e1",
                    "creation_time": 300,
                    "user_id": "user_1",
                    "latest_download_status": "ready",
                    "include_audit_trail": True,
                }
            ],
        ),
    ]
    return ExportBundle(
        generated_at="2026-01-01T00:00:00.000Z",
        user_id="user_1",
        export_kind=ExportKind.FULL_ACCOUNT,
        scope=ExportScope.FULL_ACCOUNT,
        include_audit_trail=True,
        include_deleted_artifacts=False,
        summary=ExportSummary(table_count=2, total_rows=3),
        tables=tables,
    )


class TestSerializeJson:
    """Tests for JSON serialization."""

    def test_round_trip(self, bundle: ExportBundle):
        """Test the JSON artifact parses back to the bundle."""
        parsed = json.loads(serialize_json(bundle).decode("utf-8"))

        assert parsed["version"] == "export-v1"
        assert parsed["summary"] == {"table_count": 2, "total_rows": 3}
        assert parsed["tables"][0]["rows"][0]["memo"] == 'Coffee, "large"\nwith milk'

    def test_pretty_printed(self, bundle: ExportBundle):
        """Test JSON output is indented."""
        assert b'\n  "version": "export-v1"' in serialize_json(bundle)

    def test_deterministic(self, bundle: ExportBundle):
        """Test serializing the same bundle twice gives identical bytes."""
        assert serialize_json(bundle) == serialize_json(bundle)


class TestSerializeCsv:
    """Tests for CSV serialization."""

    def _read(self, data: bytes) -> list[list[str]]:
        return list(csv.reader(io.StringIO(data.decode("utf-8"))))

    def test_header_and_row_count(self, bundle: ExportBundle):
        """Test one header line plus one line per row."""
        rows = self._read(serialize_csv(bundle))

        assert rows[0] == CSV_COLUMNS
        assert len(rows) == 4

    def test_quoting_survives_round_trip(self, bundle: ExportBundle):
        """Test commas, quotes and newlines are escaped correctly."""
        rows = self._read(serialize_csv(bundle))
        payload = json.loads(rows[1][CSV_COLUMNS.index("json")])

        assert payload["memo"] == 'Coffee, "large"\nwith milk'
        assert payload["tags"] == ["food", "daily"]

    def test_column_fallbacks(self, bundle: ExportBundle):
        """Test created_at and status fall back to other fields."""
        rows = self._read(serialize_csv(bundle))
        created = CSV_COLUMNS.index("created_at")
        status = CSV_COLUMNS.index("status")

        assert rows[1][created] == "100"
        assert rows[2][created] == "150"
        assert rows[1][status] == "posted"
        assert rows[3][status] == "ready"
        assert rows[3][CSV_COLUMNS.index("table")] == "user_exports"


class TestSerializeBundle:
    """Tests for format dispatch."""

    def test_json(self, bundle: ExportBundle):
        """Test JSON dispatch."""
        result = serialize_bundle(bundle, ExportFormat.JSON)
        assert result.content_type == JSON_CONTENT_TYPE
        assert result.extension == "json"

    def test_csv(self, bundle: ExportBundle):
        """Test CSV dispatch."""
        result = serialize_bundle(bundle, ExportFormat.CSV)
        assert result.content_type == CSV_CONTENT_TYPE
        assert result.extension == "csv"

    def test_zip_unsupported(self, bundle: ExportBundle):
        """Test ZIP raises UnsupportedFormatError."""
        with pytest.raises(UnsupportedFormatError) as exc_info:
            serialize_bundle(bundle, ExportFormat.ZIP)

        assert exc_info.value.format == "zip"
        assert "use JSON or CSV" in exc_info.value.args[0]


class TestBuildFilename:
    """Tests for build_filename."""

    def test_filename(self):
        """Test the filename embeds kind, scope and a colon-free timestamp."""
        name = build_filename(
            ExportKind.LEDGER, ExportScope.FULL_ACCOUNT, 1_767_225_600_123, ExportFormat.CSV
        )
        assert name == "finance-ledger-full_account-2026-01-01T00-00-00Z.csv"
