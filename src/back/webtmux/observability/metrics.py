"""Prometheus metrics for webtmux.

Metric naming follows Prometheus conventions. Everything registers on
the default global registry so prometheus_client's process collectors
(CPU, memory, GC) are exported alongside application metrics.

Usage::

    from webtmux.observability.metrics import AUTH_FAILURES_TOTAL

    AUTH_FAILURES_TOTAL.inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "http_server_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_server_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "http_server_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Session bridge metrics
# ---------------------------------------------------------------------------

SESSIONS_ACTIVE = Gauge(
    "webtmux_sessions_active",
    "Terminal sessions currently bridged to a websocket.",
    registry=REGISTRY,
)

MULTIPLEXER_COMMANDS_TOTAL = Counter(
    "webtmux_multiplexer_commands_total",
    "External multiplexer invocations by verb and outcome.",
    labelnames=["verb", "outcome"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Authentication metrics
# ---------------------------------------------------------------------------

AUTH_FAILURES_TOTAL = Counter(
    "webtmux_auth_failures_total",
    "Credential mismatches recorded by the rate limiter.",
    registry=REGISTRY,
)

AUTH_LOCKOUTS_TOTAL = Counter(
    "webtmux_auth_lockouts_total",
    "Requests rejected because a lockout was active.",
    labelnames=["scope"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
