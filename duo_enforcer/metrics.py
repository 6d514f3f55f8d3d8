"""
Enforcement Metrics
===================
Prometheus metrics for decisions and upstream calls.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Custom registry so embedding applications keep their own default registry
ENFORCER_REGISTRY = CollectorRegistry()

DECISIONS_TOTAL = Counter(
    name="duo_enforcer_decisions_total",
    documentation="Enforcement decisions by outcome and reason",
    labelnames=["outcome", "reason"],
    registry=ENFORCER_REGISTRY,
)

UPSTREAM_REQUESTS_TOTAL = Counter(
    name="duo_enforcer_upstream_requests_total",
    documentation="Calls to the authentication provider",
    labelnames=["endpoint", "status"],
    registry=ENFORCER_REGISTRY,
)

UPSTREAM_REQUEST_LATENCY = Histogram(
    name="duo_enforcer_upstream_request_duration_seconds",
    documentation="Time spent on calls to the authentication provider",
    labelnames=["endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=ENFORCER_REGISTRY,
)

CACHE_LOOKUPS_TOTAL = Counter(
    name="duo_enforcer_cache_lookups_total",
    documentation="Verdict cache lookups by result (hit, miss, joined)",
    labelnames=["result"],
    registry=ENFORCER_REGISTRY,
)

LOCKOUTS_TOTAL = Counter(
    name="duo_enforcer_lockouts_total",
    documentation="Principals placed in lockout",
    registry=ENFORCER_REGISTRY,
)

PENDING_CHALLENGES = Gauge(
    name="duo_enforcer_pending_challenges",
    documentation="Challenges currently in flight",
    registry=ENFORCER_REGISTRY,
)


def record_decision(outcome: str, reason: str) -> None:
    DECISIONS_TOTAL.labels(outcome=outcome, reason=reason).inc()


def record_upstream_call(endpoint: str, status: str, duration_seconds: float) -> None:
    """
    Record metrics for one provider call.

    Args:
        endpoint: Logical endpoint name (auth, auth_status, ...)
        status: success, unauthorized, rate_limited, unavailable, malformed, rejected
        duration_seconds: Wall time of the HTTP exchange
    """
    UPSTREAM_REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    UPSTREAM_REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration_seconds)


def get_metrics_text() -> bytes:
    """Prometheus exposition of the enforcer registry."""
    return generate_latest(ENFORCER_REGISTRY)


__all__ = [
    "ENFORCER_REGISTRY",
    "CONTENT_TYPE_LATEST",
    "DECISIONS_TOTAL",
    "UPSTREAM_REQUESTS_TOTAL",
    "UPSTREAM_REQUEST_LATENCY",
    "CACHE_LOOKUPS_TOTAL",
    "LOCKOUTS_TOTAL",
    "PENDING_CHALLENGES",
    "record_decision",
    "record_upstream_call",
    "get_metrics_text",
]
