"""Tests for Prometheus metrics.

Run with: pytest tests/test_metrics.py -v --noconftest
"""

from prometheus_client import REGISTRY, generate_latest

from mviews.core.metrics import (
    refresh_schedulers_active,
    view_builds_total,
    view_index_failures_total,
    view_refreshes_total,
)


def test_registry_contains_view_metrics():
    metric_names = {m.name for m in REGISTRY.collect()}
    expected = [
        "mviews_http_requests",
        "mviews_view_builds",
        "mviews_view_build_duration_seconds",
        "mviews_view_fields_skipped",
        "mviews_view_index_failures",
        "mviews_view_refreshes",
        "mviews_refresh_schedulers_active",
        "mviews_audit_tenants_missing_views",
    ]
    for name in expected:
        # prometheus_client strips the _total suffix in the registry
        assert any(name in m for m in metric_names), (
            f"Metric {name} not found in registry. Available: {metric_names}"
        )


def test_build_counter_by_model_and_status():
    before = view_builds_total.labels(model="Session", status="built")._value.get()
    view_builds_total.labels(model="Session", status="built").inc()
    after = view_builds_total.labels(model="Session", status="built")._value.get()
    assert after == before + 1


def test_refresh_outcome_labels_exported():
    view_refreshes_total.labels(outcome="skipped_in_flight").inc()
    view_index_failures_total.labels(kind="trigram").inc()
    output = generate_latest().decode("utf-8")
    assert 'outcome="skipped_in_flight"' in output
    assert 'kind="trigram"' in output


def test_scheduler_gauge():
    refresh_schedulers_active.set(3)
    assert refresh_schedulers_active._value.get() == 3
    refresh_schedulers_active.set(0)
