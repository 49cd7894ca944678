"""Tests for the HTTP API."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

import maas_dashboard.api
from conftest import prometheus_body
from maas_dashboard.api import app, envelope
from maas_dashboard.dashboard import DashboardState
from maas_dashboard.kube import PodInfo
from maas_dashboard.metrics_service import ISTIO_REQUESTS_QUERY
from maas_dashboard.policies import PolicyService
from maas_dashboard.simulator import SimulatorProxy

COMPLETION = {
    "model": "simulator-model",
    "choices": [{"message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 2, "completion_tokens": 1, "total_tokens": 3},
}


def upstream(request):
    if request.headers.get("authorization") == "APIKEY exhausted":
        return httpx.Response(429, text="Too Many Requests", headers={"x-request-id": "limited"})
    return httpx.Response(200, json=COMPLETION, headers={"x-request-id": "sim-ok"})


@pytest.fixture
def service(make_service, fake_kube):
    fake_kube.add_pods("llm", {"app": "gateway"}, [PodInfo("gw-1", "Running")])
    fake_kube.logs["gw-1"] = "\n".join([
        json.dumps({"request_id": "log-1", "status_code": 200, "timestamp": "2024-05-01T12:00:00Z"}),
        json.dumps({"request_id": "log-2", "status_code": 401, "timestamp": "2024-05-01T12:01:00Z"}),
    ])
    return make_service({})


@pytest.fixture
def client(monkeypatch, config, fake_kube, service, buffer, auth_policy_object):
    """API client wired to fakes through the module-level accessors."""
    fake_kube.custom_objects[("v1", "authpolicies", "llm")] = [auth_policy_object]
    fake_kube.custom_objects[("v1", "authpolicies", None)] = [auth_policy_object]
    policies = PolicyService(fake_kube, config)
    proxy = SimulatorProxy(config, buffer, transport=httpx.MockTransport(upstream))
    state = DashboardState()

    monkeypatch.setattr(maas_dashboard.api, "get_config", lambda: config)
    monkeypatch.setattr(maas_dashboard.api, "get_metrics_service", lambda: service)
    monkeypatch.setattr(maas_dashboard.api, "get_policy_service", lambda: policies)
    monkeypatch.setattr(maas_dashboard.api, "get_simulator_proxy", lambda: proxy)
    monkeypatch.setattr(maas_dashboard.api, "get_dashboard_state", lambda: state)
    monkeypatch.setattr(maas_dashboard.api, "get_kube_client", lambda: fake_kube)
    return TestClient(app)


def test_envelope_shape():
    body = envelope([1, 2])

    assert body["success"] is True
    assert body["data"] == [1, 2]
    assert "timestamp" in body


class TestMetricsEndpoints:
    def test_live_requests(self, client):
        response = client.get("/api/v1/metrics/live-requests")
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert [r["requestId"] for r in body["data"]] == ["log-2", "log-1"]
        assert body["data"][0]["decision"] == "reject"

    def test_request_details(self, client):
        response = client.get("/api/v1/metrics/requests/log-1")

        assert response.status_code == 200
        assert response.json()["data"]["statusCode"] == 200

    def test_request_not_found(self, client):
        response = client.get("/api/v1/metrics/requests/missing")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Request not found",
            "timestamp": response.json()["timestamp"],
        }

    def test_policy_stats(self, client):
        data = client.get("/api/v1/metrics/policy-stats").json()["data"]

        assert data["totalRequests"] == 2
        assert data["approvedRequests"] == 1
        assert data["rejectedRequests"] == 1

    def test_dashboard_falls_back_to_live_requests(self, client):
        data = client.get("/api/v1/metrics/dashboard").json()["data"]

        assert data["source"] == "live-requests-fallback"
        assert data["totalRequests"] == 2
        assert data["kuadrantStatus"]["hasRealTraffic"] is True

    def test_dashboard_from_prometheus(self, monkeypatch, client, make_service):
        service = make_service({ISTIO_REQUESTS_QUERY: prometheus_body([({"namespace": "llm"}, 12)])})
        monkeypatch.setattr(maas_dashboard.api, "get_metrics_service", lambda: service)

        data = client.get("/api/v1/metrics/dashboard").json()["data"]

        assert data["source"] == "prometheus-metrics"
        assert data["totalRequests"] == 12
        assert data["acceptedRequests"] == 12

    def test_components(self, client):
        data = client.get("/api/v1/metrics/components").json()["data"]

        assert set(data) == {"limitador", "authorino", "istio"}
        assert data["limitador"] == {"sampleCount": 0, "samples": []}

    def test_metrics_overview(self, client):
        data = client.get("/api/v1/metrics/", params={"timeRange": "24h"}).json()["data"]

        assert data["timeRange"] == "24h"
        assert data["message"] == "Metrics endpoint active"
        assert data["kuadrantStatus"]["limitadorConnected"] is False

    def test_service_failure_is_enveloped(self, monkeypatch, client):
        class Broken:
            async def get_live_requests(self):
                raise RuntimeError("boom")

        monkeypatch.setattr(maas_dashboard.api, "get_metrics_service", lambda: Broken())

        response = client.get("/api/v1/metrics/live-requests")

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()["error"] == "Failed to fetch live requests"


class TestSimulatorEndpoint:
    payload = {
        "model": "simulator-model",
        "messages": [{"role": "user", "content": "Hello"}],
        "max_tokens": 10,
        "tier": "free",
    }

    def test_forwards_and_records(self, client, buffer):
        response = client.post(
            "/api/v1/simulator/chat/completions",
            json=self.payload,
            headers={"Authorization": "APIKEY freeuser1_key"},
        )
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["usage"]["total_tokens"] == 3
        assert body["debug"]["requestHeaders"]["Authorization"] == "[REDACTED]"
        assert buffer.get("sim-ok") is not None

        live = client.get("/api/v1/metrics/live-requests").json()["data"]
        assert "sim-ok" in [r["requestId"] for r in live]

    def test_upstream_status_is_passed_through(self, client):
        response = client.post(
            "/api/v1/simulator/chat/completions",
            json=self.payload,
            headers={"Authorization": "APIKEY exhausted"},
        )

        assert response.status_code == 429
        assert response.json()["success"] is False

    def test_requires_authorization(self, client):
        response = client.post("/api/v1/simulator/chat/completions", json=self.payload)

        assert response.status_code == 401
        assert response.json()["error"] == "Authorization header required"

    def test_rejects_invalid_max_tokens(self, client):
        response = client.post(
            "/api/v1/simulator/chat/completions",
            json=dict(self.payload, max_tokens=0),
            headers={"Authorization": "APIKEY k"},
        )
        body = response.json()

        assert response.status_code == 422
        assert body["success"] is False
        assert body["error"] == "Invalid request"
        assert body["details"][0]["loc"] == ["body", "max_tokens"]
        assert "timestamp" in body

    def test_multipart_content_is_forwarded(self, client):
        parts = [{"type": "text", "text": "Describe this"}, {"type": "text", "text": "briefly"}]
        response = client.post(
            "/api/v1/simulator/chat/completions",
            json=dict(self.payload, messages=[{"role": "user", "content": parts}]),
            headers={"Authorization": "APIKEY freeuser1_key"},
        )
        body = response.json()

        assert response.status_code == 200
        assert body["debug"]["requestBody"]["messages"][0]["content"] == parts


class TestPolicyEndpoints:
    def test_list_all(self, client):
        data = client.get("/api/v1/policies").json()["data"]

        assert [p["id"] for p in data] == ["llm/gateway-auth"]
        assert data[0]["kind"] == "AuthPolicy"

    def test_filter_auth(self, client):
        data = client.get("/api/v1/policies", params={"type": "auth"}).json()["data"]

        assert len(data) == 1

    def test_filter_rate_limit(self, client):
        data = client.get("/api/v1/policies", params={"type": "rateLimit"}).json()["data"]

        assert data == []

    def test_invalid_type(self, client):
        response = client.get("/api/v1/policies", params={"type": "cost"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid policy type: cost"

    def test_connection(self, client):
        data = client.get("/api/v1/policies/connection").json()["data"]

        assert data == {"connected": True}

    def test_get_policy(self, client):
        data = client.get("/api/v1/policies/llm/gateway-auth").json()["data"]

        assert data["name"] == "gateway-auth"
        assert len(data["items"]) == 3

    def test_get_policy_not_found(self, client):
        response = client.get("/api/v1/policies/llm/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "Policy not found: llm/nope"


def test_health(client):
    response = client.get("/health")
    data = response.json()["data"]

    assert response.status_code == 200
    assert data["status"] == "healthy"
    assert data["namespace"] == "llm"
    assert data["kubernetes"] == "fake"
    assert data["mock_data"] is False
