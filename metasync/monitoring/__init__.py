"""
Monitoring for metasync
=======================

Prometheus metrics for sync cycles, provider errors and queries.
"""

from .prom_metrics import SyncMetrics, get_metrics, init_metrics

__all__ = [
    'SyncMetrics',
    'get_metrics',
    'init_metrics',
]
