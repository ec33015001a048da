"""
Prometheus metrics for the chat API.

This module provides:
- HTTP request counter (method, path, status)
- Message operation outcome counter (operation, result)
- Delta-sync message counter (status)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# operation: write, update, delete
# result: ok, validation_error, not_found, forbidden
message_operations_total = Counter(
    "message_operations_total",
    "Total message mutation outcomes",
    labelnames=["operation", "result"]
)

# status: new, updated, deleted
sync_messages_total = Counter(
    "sync_messages_total",
    "Messages returned by delta queries, by classified status",
    labelnames=["status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]
    # DELETE /api/message/<id> would otherwise create one label per message
    if normalized_path.startswith("/api/message/") and normalized_path.rsplit("/", 1)[-1].isdigit():
        normalized_path = "/api/message/{id}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_outcome(operation: str, result: str) -> None:
    """Record the outcome of a write, update or delete."""
    message_operations_total.labels(operation=operation, result=result).inc()


def record_sync_statuses(statuses) -> None:
    """Count classified statuses from one delta response."""
    for status in statuses:
        sync_messages_total.labels(status=status.value).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
