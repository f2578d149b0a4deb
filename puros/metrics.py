"""Prometheus metrics collection and export.

This module provides Prometheus instrumentation for Puros: relational store
calls, feed fetches, optimistic toggles, notification delivery and the HTTP
surface.

Metric Types:
    Counters (always increase):
        - puros_http_requests_total: HTTP requests by status, path, method
        - puros_store_operations_total: Store calls by operation, collection, status
        - puros_feed_fetches_total: Feed fetches by outcome
        - puros_toggles_total: Optimistic toggles by kind and outcome
        - puros_notifications_total: Notifications by kind and outcome
        - puros_errors_total: Errors by type and component

    Gauges (can go up or down):
        - puros_pending_notifications: Notification tasks still in flight

    Histograms (track distributions):
        - puros_store_duration_seconds: Store call latency
        - puros_http_request_duration_seconds: HTTP request latency

Usage:
    ```python
    from puros.metrics import toggles_total

    toggles_total.labels(kind="like", outcome="rolled_back").inc()
    ```

    Exposing the metrics endpoint:

    ```python
    from puros.metrics import generate_metrics_output

    @app.get("/metrics")
    def metrics():
        return Response(generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)
    ```
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry for explicit metric control
registry = CollectorRegistry()

# Latency bucket definitions (in seconds)
STORE_LATENCY_BUCKETS = (
    0.001,  # 1ms
    0.005,  # 5ms
    0.01,   # 10ms
    0.05,   # 50ms
    0.1,    # 100ms
    0.25,   # 250ms
    0.5,    # 500ms
    1.0,    # 1s
    2.5,    # 2.5s
)

HTTP_LATENCY_BUCKETS = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
)


# ========== COUNTER METRICS ==========

http_requests_total = Counter(
    "puros_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["status", "path", "method"],
    registry=registry,
)
"""Counter for HTTP requests.

Labels:
    status: HTTP status code (e.g., "200", "404")
    path: Route template (e.g., "/api/follow")
    method: HTTP method
"""

store_operations_total = Counter(
    "puros_store_operations_total",
    "Total number of relational store operations",
    labelnames=["operation", "collection", "status"],
    registry=registry,
)
"""Counter for store calls.

Labels:
    operation: find, count, insert, update, delete
    collection: reviews, comments, likes, follows, profiles
    status: success or error
"""

feed_fetches_total = Counter(
    "puros_feed_fetches_total",
    "Total number of feed page fetches",
    labelnames=["outcome"],
    registry=registry,
)
"""Counter for feed fetches.

Labels:
    outcome: applied, stale, failed, cancelled, clamped
"""

toggles_total = Counter(
    "puros_toggles_total",
    "Total number of optimistic toggles",
    labelnames=["kind", "outcome"],
    registry=registry,
)
"""Counter for optimistic toggles.

Labels:
    kind: like or follow
    outcome: committed, rolled_back, coalesced
"""

notifications_total = Counter(
    "puros_notifications_total",
    "Total number of outbound notifications",
    labelnames=["kind", "outcome"],
    registry=registry,
)
"""Counter for notifications.

Labels:
    kind: follow or newPost
    outcome: delivered, failed, skipped
"""

errors_total = Counter(
    "puros_errors_total",
    "Total number of errors encountered",
    labelnames=["error_type", "component"],
    registry=registry,
)


# ========== GAUGE METRICS ==========

pending_notifications = Gauge(
    "puros_pending_notifications",
    "Number of notification tasks still in flight",
    registry=registry,
)


# ========== HISTOGRAM METRICS ==========

store_duration_seconds = Histogram(
    "puros_store_duration_seconds",
    "Duration of relational store calls in seconds",
    labelnames=["operation", "collection"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=registry,
)
"""Histogram for store call latency.

Buckets: 1ms, 5ms, 10ms, 50ms, 100ms, 250ms, 500ms, 1s, 2.5s
"""

http_request_duration_seconds = Histogram(
    "puros_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    labelnames=["status", "path", "method"],
    buckets=HTTP_LATENCY_BUCKETS,
    registry=registry,
)


# ========== HELPER FUNCTIONS ==========


def generate_metrics_output() -> bytes:
    """Generate Prometheus metrics output in text format.

    Returns:
        Metrics output as bytes (suitable for an HTTP response body)
    """
    return generate_latest(registry)


__all__ = [
    "CONTENT_TYPE_LATEST",
    "errors_total",
    "feed_fetches_total",
    "generate_metrics_output",
    "http_request_duration_seconds",
    "http_requests_total",
    "notifications_total",
    "pending_notifications",
    "registry",
    "store_duration_seconds",
    "store_operations_total",
    "toggles_total",
]
