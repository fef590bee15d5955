from __future__ import annotations


def test_metrics_endpoint_exposes_counters(client, close_event) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    client.post("/api/webhook/intercom", json=close_event("conv_metrics_1"))

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text
    assert "review_invites_requests_total" in body
    assert "review_invites_requests_5xx_total" in body
    assert 'review_invites_invitations_total{status="success"} 1' in body
    assert "review_invites_pending_retries 0" in body


def test_readiness_endpoint(client) -> None:
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"
