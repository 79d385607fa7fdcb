"""
Prometheus metrics for metasync
===============================

- Sync cycle counts and durations per backend and outcome
- Inventory gauges (buckets, objects, bytes) from the last successful sync
- Provider error counts per operation
- Query counts per outcome
- Optional HTTP exporter
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    generate_latest,
    start_http_server,
)

logger = logging.getLogger(__name__)


class SyncMetrics:
    """Prometheus metrics for the metadata sync engine."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self.server_started = False

        self.sync_cycles = Counter(
            "metasync_sync_cycles_total",
            "Completed sync cycles",
            ["backend_id", "outcome"],
            registry=self.registry,
        )
        self.sync_duration = Histogram(
            "metasync_sync_duration_seconds",
            "Wall time of a full sync cycle",
            ["backend_id"],
            buckets=[0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 3600.0],
            registry=self.registry,
        )
        self.bucket_count = Gauge(
            "metasync_backend_buckets",
            "Buckets recorded by the last successful sync",
            ["backend_id"],
            registry=self.registry,
        )
        self.object_count = Gauge(
            "metasync_backend_objects",
            "Objects recorded by the last successful sync",
            ["backend_id"],
            registry=self.registry,
        )
        self.total_bytes = Gauge(
            "metasync_backend_bytes",
            "Total object bytes recorded by the last successful sync",
            ["backend_id"],
            registry=self.registry,
        )
        self.provider_errors = Counter(
            "metasync_provider_errors_total",
            "Provider call failures",
            ["operation"],
            registry=self.registry,
        )
        self.queries = Counter(
            "metasync_queries_total",
            "Metadata list queries",
            ["outcome"],
            registry=self.registry,
        )

    def start_metrics_server(self, port: int) -> bool:
        if self.server_started:
            return True
        try:
            start_http_server(int(port), registry=self.registry)
        except OSError as e:
            logger.error("Failed to start metrics server on port %s: %s", port, e)
            return False
        self.server_started = True
        logger.info("Prometheus metrics server started on port %s", port)
        return True

    def get_metrics_text(self) -> str:
        return generate_latest(self.registry).decode("utf-8")

    def record_sync(self, backend_id: str, outcome: str, duration: float) -> None:
        self.sync_cycles.labels(backend_id=backend_id, outcome=outcome).inc()
        self.sync_duration.labels(backend_id=backend_id).observe(duration)

    def record_inventory(self, backend_id: str, buckets: int, objects: int, total_bytes: int) -> None:
        self.bucket_count.labels(backend_id=backend_id).set(buckets)
        self.object_count.labels(backend_id=backend_id).set(objects)
        self.total_bytes.labels(backend_id=backend_id).set(total_bytes)

    def record_provider_error(self, operation: str) -> None:
        self.provider_errors.labels(operation=operation).inc()

    def record_query(self, outcome: str) -> None:
        self.queries.labels(outcome=outcome).inc()


_metrics: Optional[SyncMetrics] = None
_metrics_lock = threading.Lock()


def get_metrics() -> SyncMetrics:
    """Process-wide metrics on the default registry, created on first use."""
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = SyncMetrics()
        return _metrics


def init_metrics(port: Optional[int] = None) -> SyncMetrics:
    metrics = get_metrics()
    if port:
        metrics.start_metrics_server(port)
    return metrics
