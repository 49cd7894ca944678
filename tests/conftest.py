"""Pytest configuration and shared fixtures for dashboard tests."""

import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx
import pytest

from maas_dashboard.config import DashboardConfig
from maas_dashboard.kube import KubeUnavailableError, PodInfo, label_selector
from maas_dashboard.live_requests import RecentRequestBuffer
from maas_dashboard.metrics_service import MetricsService
from maas_dashboard.prometheus import PrometheusClient

PROM_A = "http://prom-a.test:9090"
PROM_B = "http://prom-b.test:9090"


class FakeKube:
    """In-memory stand-in for `KubeClient`.

    Values registered as exceptions are raised when requested.
    """

    mode = "fake"

    def __init__(self):
        self.pods: Dict[Tuple[str, str], Any] = {}
        self.logs: Dict[str, Any] = {}
        self.custom_objects: Dict[Tuple[str, str, Optional[str]], Any] = {}
        self.log_calls: List[Dict[str, Any]] = []
        self.custom_calls: List[Tuple[str, str, str, Optional[str]]] = []

    def add_pods(self, namespace: str, labels: Mapping[str, str], pods):
        self.pods[(namespace, label_selector(labels))] = pods

    async def find_pods(self, namespace: str, labels: Mapping[str, str]) -> List[PodInfo]:
        pods = self.pods.get((namespace, label_selector(labels)), [])
        if isinstance(pods, Exception):
            raise pods
        return list(pods)

    async def read_pod_logs(self, namespace, pod_name, tail_lines=None, since_seconds=None) -> str:
        self.log_calls.append({
            "namespace": namespace,
            "pod": pod_name,
            "tail_lines": tail_lines,
            "since_seconds": since_seconds,
        })
        logs = self.logs.get(pod_name, "")
        if isinstance(logs, Exception):
            raise logs
        return logs

    async def list_custom_objects(self, group, version, plural, namespace=None):
        self.custom_calls.append((group, version, plural, namespace))
        key = (version, plural, namespace)
        if key not in self.custom_objects:
            raise KubeUnavailableError(f"no fake objects for {key}")
        result = self.custom_objects[key]
        if isinstance(result, Exception):
            raise result
        return list(result)


def prometheus_body(samples: List[Tuple[Dict[str, str], Any]]) -> Dict[str, Any]:
    """A query API success wrapper around `(labels, value)` pairs."""
    return {
        "status": "success",
        "data": {
            "resultType": "vector",
            "result": [{"metric": labels, "value": [1700000000.0, str(value)]} for labels, value in samples],
        },
    }


def query_router(
    responses: Dict[str, Any],
    calls: Optional[List[httpx.Request]] = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Build a MockTransport handler answering queries by their `query` parameter.

    Unknown queries get an empty success result. Scrape URLs are matched on
    their host and answered with the text registered under that host.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.url.path == "/api/v1/query":
            body = responses.get(request.url.params.get("query"), prometheus_body([]))
            return httpx.Response(200, json=body)
        text = responses.get(request.url.host)
        if text is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=text)

    return handler


@pytest.fixture
def config():
    """Configuration pointing at fake endpoints."""
    return DashboardConfig(
        namespace="llm",
        prometheus_endpoints=[PROM_A, PROM_B],
        prometheus_token="test-token",
        qwen3_url="http://qwen3.upstream.test",
        simulator_url="http://simulator.upstream.test",
    )


@pytest.fixture
def fake_kube():
    return FakeKube()


@pytest.fixture
def buffer():
    return RecentRequestBuffer(max_size=100)


@pytest.fixture
def make_service(config, fake_kube, buffer):
    """Factory for a `MetricsService` whose Prometheus answers from `responses`."""

    def factory(responses: Optional[Dict[str, Any]] = None, calls: Optional[List[httpx.Request]] = None):
        transport = httpx.MockTransport(query_router(responses or {}, calls))
        prometheus = PrometheusClient(
            config.prometheus_endpoints, token="test-token", transport=transport
        )
        return MetricsService(config, prometheus, fake_kube, buffer)

    return factory


@pytest.fixture
def json_log_line():
    return json.dumps({
        "timestamp": "2024-05-01T12:00:00Z",
        "request_id": "abc-123",
        "method": "POST",
        "path": "/v1/chat/completions",
        "status_code": 200,
        "response_time": 123.5,
        "source_ip": "10.0.0.7",
        "user_agent": "curl/8.0",
    })


@pytest.fixture
def clf_log_line():
    return '10.1.2.3 - - [10/Oct/2023:13:55:36 +0000] "GET /v1/models HTTP/1.1" 429 17'


@pytest.fixture
def auth_policy_object():
    """A raw AuthPolicy as returned by the custom objects API."""
    return {
        "apiVersion": "kuadrant.io/v1",
        "kind": "AuthPolicy",
        "metadata": {
            "name": "gateway-auth",
            "namespace": "llm",
            "creationTimestamp": "2024-04-01T00:00:00Z",
            "resourceVersion": "4242",
        },
        "spec": {
            "targetRef": {"group": "gateway.networking.k8s.io", "kind": "Gateway", "name": "inference-gateway"},
            "rules": {
                "authentication": {"api-key-users": {"apiKey": {"selector": {}}}},
                "authorization": {"tier-check": {"opa": {"rego": "allow = true"}}},
                "response": {"success": {"headers": {}}},
            },
        },
        "status": {"conditions": [{"type": "Ready", "status": "True", "reason": "Enforced"}]},
    }
