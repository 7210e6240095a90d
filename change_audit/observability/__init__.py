"""Observability layer: in-memory pipeline metrics. No external SaaS."""

from change_audit.observability.metrics import MetricsCollector

__all__ = [
    "MetricsCollector",
]
