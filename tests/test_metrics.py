"""
Tests for quota metrics
"""

from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

from quota_service.metrics import QuotaMetrics, get_quota_metrics, metrics_response


def test_record_decision():
    metrics = QuotaMetrics(registry=CollectorRegistry())

    metrics.record_decision("api", "PRO", "allowed")
    metrics.record_decision("api", "PRO", "allowed")

    assert metrics.registry.get_sample_value(
        "quota_decisions_total", {"category": "api", "tier": "PRO", "outcome": "allowed"}
    ) == 2.0


def test_store_call_and_error():
    metrics = QuotaMetrics(registry=CollectorRegistry())

    metrics.observe_store_call("mget", 0.004)
    metrics.record_store_error("mget", "timeout")

    assert metrics.registry.get_sample_value("quota_store_latency_seconds_count", {"operation": "mget"}) == 1.0
    assert metrics.registry.get_sample_value(
        "quota_store_latency_seconds_bucket", {"operation": "mget", "le": "0.005"}
    ) == 1.0
    assert metrics.registry.get_sample_value(
        "quota_store_errors_total", {"operation": "mget", "kind": "timeout"}
    ) == 1.0


def test_default_metrics_singleton():
    assert get_quota_metrics() is get_quota_metrics()


def test_metrics_response():
    metrics = QuotaMetrics(registry=CollectorRegistry())
    metrics.record_decision("public", "FREE", "denied")

    response = metrics_response(metrics.registry)

    assert response.media_type.startswith("text/plain")
    families = {family.name: family for family in text_string_to_metric_families(response.body.decode())}
    samples = [sample for sample in families["quota_decisions"].samples if sample.name == "quota_decisions_total"]
    assert [(sample.labels, sample.value) for sample in samples] == [
        ({"category": "public", "tier": "FREE", "outcome": "denied"}, 1.0)
    ]
