from fastapi.testclient import TestClient

import catalogstudio.api.main as api_main
from catalogstudio.core.metrics import record_admission_denied, record_job_finished


def test_metrics_endpoint_returns_prometheus_payload(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)
    record_admission_denied(reason="concurrency_limit")
    record_job_finished(workflow_key="apparel.catalog.v1", status="ready")

    client = TestClient(api_main.app)
    version_response = client.get("/version")
    assert version_response.status_code == 200

    metrics_response = client.get("/metrics")
    assert metrics_response.status_code == 200
    assert metrics_response.headers["content-type"].startswith("text/plain")
    body = metrics_response.text
    assert "catalogstudio_build_info" in body
    assert 'catalogstudio_http_requests_total{method="GET",path="/version",status="200"}' in body
    assert "catalogstudio_http_request_duration_seconds_sum" in body
    assert 'catalogstudio_admission_denied_total{reason="concurrency_limit"} 1' in body
    assert 'catalogstudio_generation_jobs_finished_total{workflow="apparel.catalog.v1",status="ready"} 1' in body


def test_metrics_endpoint_disabled_returns_404(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", False)
    client = TestClient(api_main.app)
    response = client.get("/metrics")
    assert response.status_code == 404
