"""
Monitoring module for application metrics
"""

from permsearch.monitoring.metrics import (
    get_metrics,
    metrics_registry,
    track_query_latency,
    track_request,
)

__all__ = [
    "get_metrics",
    "metrics_registry",
    "track_query_latency",
    "track_request",
]
