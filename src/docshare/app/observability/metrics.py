"""Prometheus metrics for docshare.

Usage::

    from docshare.app.observability.metrics import record_decision

    record_decision("redeem", "share_exhausted")
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    generate_latest,
)

HTTP_REQUESTS_TOTAL = Counter(
    "docshare_http_requests_total",
    "Total HTTP requests by method, route template, and status code.",
    labelnames=["method", "route", "status"],
    registry=REGISTRY,
)

SHARE_DECISIONS_TOTAL = Counter(
    "docshare_share_decisions_total",
    "Share access decisions by operation and outcome code.",
    labelnames=["operation", "outcome"],
    registry=REGISTRY,
)

INTEGRITY_FAULTS_TOTAL = Counter(
    "docshare_integrity_faults_total",
    "Corrupted persisted share state encountered while serving requests.",
    registry=REGISTRY,
)


def record_decision(operation: str, outcome: str) -> None:
    SHARE_DECISIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
