"""Observability: Prometheus metrics."""

from fingov.observability.metrics import get_metrics

__all__ = ["get_metrics"]
