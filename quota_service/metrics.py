"""
metrics.py - Prometheus metrics for quota decisions and counter store latency
"""

from __future__ import annotations

from typing import Optional

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

METRIC_NAMESPACE = "quota"

# Store calls are expected to finish well under the default 50ms budget
STORE_LATENCY_BUCKETS = (0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)


class QuotaMetrics:
    """Metric handles, bound to one registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY
        reg_kw = {"registry": self.registry}

        self.decisions_total = Counter(
            "decisions_total",
            "Quota decisions by outcome",
            ["category", "tier", "outcome"],
            namespace=METRIC_NAMESPACE,
            **reg_kw
        )

        self.store_latency = Histogram(
            "store_latency_seconds",
            "Counter store round trip latency",
            ["operation"],
            buckets=STORE_LATENCY_BUCKETS,
            namespace=METRIC_NAMESPACE,
            **reg_kw
        )

        self.store_errors_total = Counter(
            "store_errors_total",
            "Counter store calls that failed or timed out",
            ["operation", "kind"],
            namespace=METRIC_NAMESPACE,
            **reg_kw
        )

    def record_decision(self, category: str, tier: str, outcome: str) -> None:
        self.decisions_total.labels(category=category, tier=tier, outcome=outcome).inc()

    def observe_store_call(self, operation: str, seconds: float) -> None:
        self.store_latency.labels(operation=operation).observe(seconds)

    def record_store_error(self, operation: str, kind: str) -> None:
        self.store_errors_total.labels(operation=operation, kind=kind).inc()


_default_metrics: Optional[QuotaMetrics] = None


def get_quota_metrics() -> QuotaMetrics:
    """Process-wide metrics on the default registry, created on first use."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = QuotaMetrics()
    return _default_metrics


def metrics_response(registry: Optional[CollectorRegistry] = None) -> Response:
    """Prometheus exposition of ``registry`` (default registry if omitted)."""
    payload = generate_latest(registry if registry is not None else REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
