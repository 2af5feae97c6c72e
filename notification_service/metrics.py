"""
Prometheus metrics for the notification service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Event fire outcome counter (result)
- Per-recipient notification counter (outcome)
- Subscription outcome counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: delivered, partial, failed, no_subscribers, no_recipients
event_fire_total = Counter(
    "event_fire_total",
    "Total event fire outcomes",
    labelnames=["result"]
)

# outcome: sent, failed
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Chat notifications attempted per recipient",
    labelnames=["outcome"]
)

# result: created, or the error reason (subscription_already_exists,
# invalid_phone_number, event_not_found, ...)
subscriptions_total = Counter(
    "subscriptions_total",
    "Total subscribe outcomes",
    labelnames=["result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path or route template
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_fire_outcome(result: str) -> None:
    event_fire_total.labels(result=result).inc()


def record_notification(sent: bool) -> None:
    notifications_sent_total.labels(outcome="sent" if sent else "failed").inc()


def record_subscription_outcome(result: str) -> None:
    subscriptions_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
