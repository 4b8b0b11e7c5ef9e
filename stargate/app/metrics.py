"""Prometheus metrics exposed on ``/metrics``."""
from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

REGISTRY = CollectorRegistry(auto_describe=True)

AUTH_REQUESTS = Counter(
    "stargate_auth_requests_total",
    "Authentication attempts by method and result.",
    ["method", "result"],
    registry=REGISTRY,
)
HERALD_CALLS = Counter(
    "stargate_herald_calls_total",
    "Calls to the credential broker by operation and result.",
    ["operation", "result"],
    registry=REGISTRY,
)
HERALD_LATENCY = Histogram(
    "stargate_herald_latency_seconds",
    "Credential broker call latency.",
    ["operation"],
    registry=REGISTRY,
)
WARDEN_CALLS = Counter(
    "stargate_warden_calls_total",
    "Calls to the allowlist directory by result.",
    ["result"],
    registry=REGISTRY,
)
WARDEN_LATENCY = Histogram(
    "stargate_warden_latency_seconds",
    "Allowlist directory call latency.",
    registry=REGISTRY,
)
SESSIONS_CREATED = Counter(
    "stargate_session_created_total",
    "Sessions authenticated by a login.",
    registry=REGISTRY,
)
SESSIONS_DESTROYED = Counter(
    "stargate_session_destroyed_total",
    "Sessions destroyed by a logout.",
    registry=REGISTRY,
)
AUTH_REFRESH = Counter(
    "stargate_auth_refresh_total",
    "Directory refreshes of authenticated sessions.",
    ["result"],
    registry=REGISTRY,
)
AUTH_REFRESH_DURATION = Histogram(
    "stargate_auth_refresh_duration_seconds",
    "Time spent refreshing a session from the directory.",
    registry=REGISTRY,
)


def record_auth_request(method: str, result: str) -> None:
    AUTH_REQUESTS.labels(method=method, result=result).inc()


def record_herald_call(operation: str, result: str, duration: float) -> None:
    HERALD_CALLS.labels(operation=operation, result=result).inc()
    HERALD_LATENCY.labels(operation=operation).observe(duration)


def record_warden_call(result: str, duration: float) -> None:
    WARDEN_CALLS.labels(result=result).inc()
    WARDEN_LATENCY.observe(duration)


def record_session_created() -> None:
    SESSIONS_CREATED.inc()


def record_session_destroyed() -> None:
    SESSIONS_DESTROYED.inc()


def record_auth_refresh(result: str, duration: float) -> None:
    AUTH_REFRESH.labels(result=result).inc()
    AUTH_REFRESH_DURATION.observe(duration)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "record_auth_refresh",
    "record_auth_request",
    "record_herald_call",
    "record_session_created",
    "record_session_destroyed",
    "record_warden_call",
    "render_latest",
]
