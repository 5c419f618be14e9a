from fastapi.testclient import TestClient

from src.portfolio.api.main import app
from src.portfolio.observability.metrics import sanitize_path


client = TestClient(app)


def test_metrics_endpoint_exposes_histogram():
    # Trigger a request to ensure histogram has an observation
    r = client.get("/health")
    assert r.status_code == 200

    m = client.get("/metrics")
    assert m.status_code == 200
    body = m.text

    assert "# HELP portfolio_request_latency_seconds" in body
    assert "# TYPE portfolio_request_latency_seconds histogram" in body
    assert "portfolio_request_latency_seconds_count" in body
    assert "portfolio_completion_latency_seconds" in body


def test_chat_outcomes_are_counted(api_client):
    api_client.post("/chat-with-ai", json={"userIdentifier": "g1"})
    api_client.post("/chat-with-ai", json={"message": "hi", "userIdentifier": "g1"})
    body = api_client.get("/metrics").text
    assert 'portfolio_chat_turns_total{outcome="validation_error"}' in body
    assert 'portfolio_chat_turns_total{outcome="ok"}' in body


def test_health_reports_components(monkeypatch):
    monkeypatch.setenv("PORTFOLIO_GATEWAY_IMPL", "REST")
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["timestamp"].endswith("Z")
    assert body["components"]["gateway"] == "rest"
    assert body["components"]["llm"] == "missing_key"


def test_sanitize_path():
    assert sanitize_path("") == "/"
    assert sanitize_path("/projects/p1/stats") == "/projects"
    assert sanitize_path("/chat-with-ai?x=1") == "/chat-with-ai"
