"""Prometheus middleware and domain counters.

The default registry is global and counters never reset, so every test
asserts on the delta between a before and an after reading.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY


def _get_sample(name: str, labels: dict | None = None) -> float:
    """Read a metric sample's current value from the global registry."""
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    """Each HTTP request should increment the request counter."""
    before = _get_sample(
        "http_requests_total",
        {"method": "GET", "endpoint": "/health", "status_code": "200"},
    )
    client.get("/health")
    after = _get_sample(
        "http_requests_total",
        {"method": "GET", "endpoint": "/health", "status_code": "200"},
    )
    assert after - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    """Each request should add an observation to the duration histogram."""
    before = _get_sample(
        "http_request_duration_seconds_count",
        {"method": "GET", "endpoint": "/health"},
    )
    client.get("/health")
    after = _get_sample(
        "http_request_duration_seconds_count",
        {"method": "GET", "endpoint": "/health"},
    )
    assert after - before >= 1


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    """GET /metrics should return Prometheus text exposition format."""
    # Make a request first so there's data to report
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    # Prometheus text format contains HELP and TYPE lines
    assert "http_requests_total" in resp.text
    assert "http_request_duration_seconds" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    """Requests to /metrics itself should not be counted in metrics."""
    before = _get_sample(
        "http_requests_total",
        {"method": "GET", "endpoint": "/metrics", "status_code": "200"},
    )
    client.get("/metrics")
    client.get("/metrics")
    after = _get_sample(
        "http_requests_total",
        {"method": "GET", "endpoint": "/metrics", "status_code": "200"},
    )
    # Should not have incremented (we skip /metrics in the middleware)
    assert after == before


def test_endpoint_label_is_route_template(client: TestClient, token: str) -> None:
    labels = {
        "method": "GET",
        "endpoint": "/v1/progress/modules/{module_id}",
        "status_code": "200",
    }
    before = _get_sample("http_requests_total", labels)
    client.get("/v1/progress/modules/m-1", headers={"Authorization": f"Bearer {token}"})
    client.get("/v1/progress/modules/m-2", headers={"Authorization": f"Bearer {token}"})
    after = _get_sample("http_requests_total", labels)
    assert after - before == 2


def test_unknown_paths_share_one_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get("/no/such/path")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_lesson_view_metric_counts_outcomes(client: TestClient, token: str) -> None:
    first = {"result": "first_view"}
    repeat = {"result": "repeat_view"}
    before_first = _get_sample("lesson_views_total", first)
    before_repeat = _get_sample("lesson_views_total", repeat)
    body = {"course_id": "c1", "module_id": "m1", "lesson_id": "l1"}
    for _ in range(2):
        client.post(
            "/v1/progress/views", json=body, headers={"Authorization": f"Bearer {token}"}
        )
    assert _get_sample("lesson_views_total", first) - before_first == 1
    assert _get_sample("lesson_views_total", repeat) - before_repeat == 1
