"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

_REGISTRY = CollectorRegistry()

REQUESTS_SENT = Counter(
    "fadecandy_requests_total",
    "Requests sent to fcserver",
    ["type"],
    registry=_REGISTRY,
)
REQUEST_RESULTS = Counter(
    "fadecandy_request_results_total",
    "Request outcomes",
    ["type", "result"],
    registry=_REGISTRY,
)
REQUEST_DURATION = Histogram(
    "fadecandy_request_duration_seconds",
    "Time between sending a request and settling it",
    ["type", "result"],
    registry=_REGISTRY,
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
)
PROTOCOL_ERRORS = Counter(
    "fadecandy_protocol_errors_total",
    "Inbound frames dropped as malformed",
    ["reason"],
    registry=_REGISTRY,
)
PENDING_REQUESTS = Gauge(
    "fadecandy_pending_requests",
    "Requests awaiting a reply",
    registry=_REGISTRY,
)
MAPPED_PIXELS = Gauge(
    "fadecandy_mapped_pixels",
    "Output pixels assigned by the most recently used mapping compiler",
    registry=_REGISTRY,
)


def get_registry() -> CollectorRegistry:
    """Return the registry holding the client metrics."""

    return _REGISTRY


def record_request_sent(request_type: str) -> None:
    REQUESTS_SENT.labels(type=request_type).inc()


def observe_request(request_type: str, result: str, duration_seconds: float) -> None:
    """Record how a request was settled and how long it took."""

    REQUEST_RESULTS.labels(type=request_type, result=result).inc()
    REQUEST_DURATION.labels(type=request_type, result=result).observe(duration_seconds)


def record_protocol_error(reason: str) -> None:
    PROTOCOL_ERRORS.labels(reason=reason).inc()


def set_pending_requests(count: int) -> None:
    PENDING_REQUESTS.set(count)


def set_mapped_pixels(count: int) -> None:
    MAPPED_PIXELS.set(count)
