"""
Prometheus metrics for the permission-aware retrieval engine
"""

import time
from functools import wraps
from typing import Callable

from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest

# Create a custom registry
metrics_registry = CollectorRegistry()

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=metrics_registry
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=(.005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0),
    registry=metrics_registry
)

# Identity & group expansion metrics
identity_resolutions_total = Counter(
    "identity_resolutions_total",
    "External principal resolutions by outcome",
    ["outcome"],
    registry=metrics_registry
)

group_expansion_events_total = Counter(
    "group_expansion_events_total",
    "Notable events during group expansion",
    ["event"],
    registry=metrics_registry
)

# ACL metrics
acl_cache_lookups_total = Counter(
    "acl_cache_lookups_total",
    "ACL cache lookups by cache shape and result",
    ["shape", "result"],
    registry=metrics_registry
)

acl_fail_closed_total = Counter(
    "acl_fail_closed_total",
    "ACL checks denied because a cache or store lookup failed",
    ["operation"],
    registry=metrics_registry
)

acl_recompute_total = Counter(
    "acl_recompute_total",
    "ExpandedACL recomputations",
    ["status"],
    registry=metrics_registry
)

acl_recompute_duration_seconds = Histogram(
    "acl_recompute_duration_seconds",
    "ExpandedACL recomputation time",
    buckets=(.005, .01, .025, .05, .1, .25, .5, 1.0, 2.5, 5.0, 10.0),
    registry=metrics_registry
)

# Search metrics
search_duration_seconds = Histogram(
    "search_duration_seconds",
    "Fused search time",
    ["stage"],
    buckets=(.005, .01, .025, .05, .075, .1, .15, .2, .3, .5, 1.0),
    registry=metrics_registry
)

search_branch_failures_total = Counter(
    "search_branch_failures_total",
    "Search branches that failed or timed out",
    ["branch", "reason"],
    registry=metrics_registry
)

retrieval_requeries_total = Counter(
    "retrieval_requeries_total",
    "Re-queries with an expanded window after post-filter under-fill",
    registry=metrics_registry
)

# Answer & citation metrics
rag_queries_total = Counter(
    "rag_queries_total",
    "Total answer queries processed",
    ["status"],
    registry=metrics_registry
)

rag_query_duration_seconds = Histogram(
    "rag_query_duration_seconds",
    "Answer query processing time",
    ["llm_provider"],
    buckets=(.1, .25, .5, .75, 1.0, 1.5, 2.0, 2.5, 3.0, 5.0, 10.0),
    registry=metrics_registry
)

rag_query_stage_duration_seconds = Histogram(
    "rag_query_stage_duration_seconds",
    "Answer query stage processing time",
    ["stage"],
    buckets=(.01, .025, .05, .075, .1, .25, .5, .75, 1.0),
    registry=metrics_registry
)

citations_total = Counter(
    "citations_total",
    "Citation markers found in generated answers",
    ["result"],
    registry=metrics_registry
)

# Error metrics
errors_total = Counter(
    "errors_total",
    "Total errors",
    ["error_type", "endpoint"],
    registry=metrics_registry
)


def track_request(method: str, endpoint: str):
    """Decorator to track HTTP requests"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "success"
            try:
                result = await func(*args, **kwargs)
                return result
            except Exception as e:
                status = "error"
                errors_total.labels(
                    error_type=type(e).__name__,
                    endpoint=endpoint
                ).inc()
                raise
            finally:
                duration = time.time() - start_time
                http_requests_total.labels(
                    method=method,
                    endpoint=endpoint,
                    status=status
                ).inc()
                http_request_duration_seconds.labels(
                    method=method,
                    endpoint=endpoint
                ).observe(duration)
        return wrapper
    return decorator


def track_query_latency(llm_provider: str = "ollama"):
    """Decorator to track answer query latency"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "success"
            try:
                result = await func(*args, **kwargs)
                if getattr(result, "stage_timings", None):
                    for stage_metric in result.stage_timings:
                        rag_query_stage_duration_seconds.labels(
                            stage=stage_metric.stage_name
                        ).observe(stage_metric.duration_ms / 1000.0)
                return result
            except Exception:
                status = "error"
                raise
            finally:
                duration = time.time() - start_time
                rag_queries_total.labels(status=status).inc()
                rag_query_duration_seconds.labels(
                    llm_provider=llm_provider
                ).observe(duration)
        return wrapper
    return decorator


def get_metrics() -> bytes:
    """Generate Prometheus metrics exposition format"""
    return generate_latest(metrics_registry)
