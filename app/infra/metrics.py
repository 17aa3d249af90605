"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# Tool dispatch metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total tool dispatches by outcome",
    ["tool_name", "status"],  # status: success or an error category
)

tool_call_duration = Histogram(
    "tool_call_duration_seconds",
    "Tool dispatch duration in seconds",
    ["tool_name"],
)

tool_rate_limited_total = Counter(
    "tool_rate_limited_total",
    "Tool calls rejected by rate limiting",
    ["tool_name"],
)

tool_policy_violations_total = Counter(
    "tool_policy_violations_total",
    "Tool calls blocked by security policy",
    ["tool_name"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
