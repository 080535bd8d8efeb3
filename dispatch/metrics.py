# dispatch/metrics.py
from __future__ import annotations
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY, start_http_server
)

# Dispatch outcomes
MESSAGES_TOTAL = Counter(
    "dispatch_messages_total",
    "Campaign messages processed by the dispatcher",
    ["status"]  # sent|failed|skipped
)

# WhatsApp Cloud API metrics
API_CALLS_TOTAL = Counter(
    "whatsapp_api_calls_total",
    "Calls made to the WhatsApp Cloud API",
    ["outcome"]  # HTTP status code or 'exception'
)

API_LATENCY_SECONDS = Histogram(
    "whatsapp_api_latency_seconds",
    "Latency of WhatsApp Cloud API calls in seconds",
)

# Rate limiter
LIMITER_ACQUIRED_TOTAL = Counter(
    "rate_limiter_acquired_total",
    "Tokens granted by the outbound rate limiter",
)

LIMITER_WAIT_SECONDS = Histogram(
    "rate_limiter_wait_seconds",
    "Time callers spent waiting in acquire()",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

LIMITER_RATE = Gauge(
    "rate_limiter_rate",
    "Configured messages per second of the most recently configured limiter",
)

def start_worker_metrics_server(port: int = 9000, addr: str = "0.0.0.0"):
    """
    Serves the default registry on the given port so Prometheus can scrape
    the worker while a campaign is running.
    """
    start_http_server(port, addr=addr)

def render_prometheus() -> bytes:
    """
    Used by the FastAPI /metrics route.
    """
    return generate_latest(REGISTRY)

def content_type() -> str:
    return CONTENT_TYPE_LATEST
