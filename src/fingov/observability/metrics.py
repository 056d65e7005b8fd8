"""Prometheus metrics for Fingov governance operations.

Tracks:
- Export generation outcomes, size and duration
- Download gate decisions
- Retention sweep runs and deleted rows per category
- Account erasure runs
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

__all__ = [
    "EXPORT_GENERATION_COUNT",
    "EXPORT_GENERATION_DURATION",
    "EXPORT_SIZE_BYTES",
    "DOWNLOAD_ACCESS_COUNT",
    "RETENTION_SWEEP_COUNT",
    "RETENTION_DELETED_ROWS",
    "RETENTION_SWEEP_DURATION",
    "ERASURE_COUNT",
    "get_metrics",
]

EXPORT_GENERATION_COUNT = Counter(
    "fingov_export_generation_total",
    "Export generation attempts by format and outcome",
    ["format", "status"],
)

EXPORT_GENERATION_DURATION = Histogram(
    "fingov_export_generation_duration_seconds",
    "Time spent building, serializing and storing an export",
    ["format"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

EXPORT_SIZE_BYTES = Histogram(
    "fingov_export_size_bytes",
    "Size of generated export artifacts",
    ["format"],
    buckets=(1e3, 1e4, 1e5, 1e6, 1e7, 1e8),
)

DOWNLOAD_ACCESS_COUNT = Counter(
    "fingov_export_download_access_total",
    "Download gate decisions by outcome",
    ["outcome"],
)

RETENTION_SWEEP_COUNT = Counter(
    "fingov_retention_sweep_total",
    "Retention sweeps by trigger source and mode",
    ["source", "mode"],
)

RETENTION_DELETED_ROWS = Counter(
    "fingov_retention_deleted_total",
    "Rows and blobs deleted by the retention sweep",
    ["category"],
)

RETENTION_SWEEP_DURATION = Histogram(
    "fingov_retention_sweep_duration_seconds",
    "Duration of retention sweeps",
    ["source"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
)

ERASURE_COUNT = Counter(
    "fingov_account_erasure_total",
    "Account erasure runs by mode and outcome",
    ["mode", "status"],
)


def get_metrics(registry: CollectorRegistry | None = None) -> bytes:
    """Render metrics in Prometheus text exposition format."""
    return generate_latest(registry or REGISTRY)
