"""Pipeline metrics. Thread-safe, in-memory counters and latency histograms."""

import threading
from typing import Any

# Counter names emitted by the pipeline.
RECORDS_COMMITTED = "audit_records_committed"
RECORDS_REJECTED = "audit_records_rejected"
COMMIT_LATENCY_MS = "audit_commit_latency_ms"
PROVISION_OUTCOME = "provision_outcome"
TRANSFORM_FAILURES = "transform_failures"
CHANGE_FEED_FAILURES = "change_feed_failures"
CHANGE_FEED_ABANDONED = "change_feed_abandoned"
CHANGE_EVENTS_IGNORED = "change_events_ignored"
OBSERVER_FAILURES = "observer_failures"


class MetricsCollector:
    """
    In-memory registry of counters (optionally labelled by category, e.g. the
    collection name) and latency histograms. Exposes increment, observe_latency,
    count, export_metrics.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._counters_by_labels: dict[str, dict[str, float]] = {}
        self._histograms: dict[str, list[float]] = {}

    def increment(
        self,
        name: str,
        value: float = 1.0,
        *,
        category: str | None = None,
    ) -> None:
        """Increment a counter. Labelled counters also roll up into the unlabelled total."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value
            if category is not None:
                key = f"{name}:category={category}"
                by_label = self._counters_by_labels.setdefault(name, {})
                by_label[key] = by_label.get(key, 0) + value

    def observe_latency(
        self,
        name: str,
        latency_ms: float,
        *,
        category: str | None = None,
    ) -> None:
        with self._lock:
            bucket = name if category is None else f"{name}:category={category}"
            self._histograms.setdefault(bucket, []).append(latency_ms)

    def count(self, name: str, *, category: str | None = None) -> float:
        """Current counter value; 0 if never incremented."""
        with self._lock:
            if category is None:
                return self._counters.get(name, 0)
            key = f"{name}:category={category}"
            return self._counters_by_labels.get(name, {}).get(key, 0)

    def export_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "counters_by_labels": {
                    k: dict(v) for k, v in self._counters_by_labels.items()
                },
                "histograms": {
                    k: {
                        "count": len(v),
                        "sum": sum(v),
                        "values": list(v),
                    }
                    for k, v in self._histograms.items()
                },
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._counters_by_labels.clear()
            self._histograms.clear()
