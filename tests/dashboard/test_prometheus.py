"""Tests for Prometheus querying and component scraping."""

import logging

import httpx
import pytest

from conftest import PROM_A, PROM_B, prometheus_body
from maas_dashboard.config import DashboardConfig
from maas_dashboard.prometheus import PrometheusClient, load_bearer_token, parse_exposition

CONTROLLER_METRICS = """\
# HELP controller_runtime_reconcile_total Total number of reconciliations per controller
# TYPE controller_runtime_reconcile_total counter
controller_runtime_reconcile_total{controller="authconfig",result="success"} 12
controller_runtime_reconcile_total{controller="authconfig",result="error"} 3
# HELP controller_runtime_reconcile_time_seconds Length of time per reconciliation per controller
# TYPE controller_runtime_reconcile_time_seconds histogram
controller_runtime_reconcile_time_seconds_bucket{controller="authconfig",le="0.1"} 10
controller_runtime_reconcile_time_seconds_bucket{controller="authconfig",le="+Inf"} 15
controller_runtime_reconcile_time_seconds_sum{controller="authconfig"} 1.5
controller_runtime_reconcile_time_seconds_count{controller="authconfig"} 15
"""


def client_with(handler, endpoints=(PROM_A, PROM_B), token="test-token"):
    return PrometheusClient(list(endpoints), token=token, transport=httpx.MockTransport(handler))


class TestQueryFallback:
    """Endpoints are tried in order until one answers."""

    async def test_first_endpoint_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=prometheus_body([({"namespace": "llm"}, 42)]))

        samples = await client_with(handler).query("istio_requests_total")

        assert len(calls) == 1
        assert calls[0].url.host == "prom-a.test"
        assert calls[0].url.path == "/api/v1/query"
        assert calls[0].url.params["query"] == "istio_requests_total"
        assert calls[0].headers["authorization"] == "Bearer test-token"
        assert calls[0].headers["accept"] == "application/json"
        assert samples[0].labels == {"namespace": "llm"}
        assert samples[0].value == 42.0

    async def test_falls_back_after_http_error(self):
        def handler(request):
            if request.url.host == "prom-a.test":
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json=prometheus_body([({}, 7)]))

        samples = await client_with(handler).query("up")

        assert [s.value for s in samples] == [7.0]

    async def test_falls_back_after_connection_error(self):
        def handler(request):
            if request.url.host == "prom-a.test":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=prometheus_body([({}, 1)]))

        samples = await client_with(handler).query("up")

        assert len(samples) == 1

    async def test_non_success_status_falls_through(self):
        def handler(request):
            if request.url.host == "prom-a.test":
                return httpx.Response(200, json={"status": "error", "error": "bad query"})
            return httpx.Response(200, json=prometheus_body([({}, 3)]))

        samples = await client_with(handler).query("up")

        assert samples[0].value == 3.0

    async def test_invalid_json_falls_through(self):
        def handler(request):
            if request.url.host == "prom-a.test":
                return httpx.Response(200, text="<html>login</html>")
            return httpx.Response(200, json=prometheus_body([]))

        assert await client_with(handler).query("up") == []

    async def test_all_endpoints_fail(self, caplog):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with caplog.at_level(logging.WARNING, logger="maas_dashboard.prometheus"):
            samples = await client_with(handler).query("up")

        assert samples == []
        assert len(calls) == 2
        assert any("All Prometheus endpoints failed" in r.message for r in caplog.records)
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    async def test_success_with_missing_result(self):
        def handler(request):
            return httpx.Response(200, json={"status": "success", "data": {}})

        assert await client_with(handler).query("up") == []

    async def test_no_token_no_authorization_header(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=prometheus_body([]))

        await client_with(handler, token=None).query("up")

        assert "authorization" not in seen[0].headers

    async def test_values_are_coerced(self):
        def handler(request):
            return httpx.Response(200, json=prometheus_body([({}, "NaN"), ({}, "2.5")]))

        samples = await client_with(handler).query("up")

        assert [s.value for s in samples] == [0.0, 2.5]


class TestScrape:
    """Direct scraping of component /metrics endpoints."""

    async def test_scrape_component_builds_service_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text=CONTROLLER_METRICS)

        text = await client_with(handler).scrape_component("limitador", "kuadrant-system", 8080)

        assert text == CONTROLLER_METRICS
        assert str(seen[0].url) == "http://limitador.kuadrant-system.svc.cluster.local:8080/metrics"
        assert seen[0].headers["authorization"] == "Bearer test-token"

    async def test_scrape_custom_path(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text="")

        await client_with(handler).scrape_component(
            "inference-gateway-istio", "llm", 15090, "/stats/prometheus"
        )

        assert seen[0].url.path == "/stats/prometheus"
        assert seen[0].url.port == 15090

    async def test_scrape_failure_returns_empty(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert await client_with(handler).scrape("http://authorino.test/metrics") == ""

    async def test_scrape_http_error_returns_empty(self):
        def handler(request):
            return httpx.Response(403, text="forbidden")

        assert await client_with(handler).scrape("http://authorino.test/metrics") == ""


class TestParseExposition:
    """Text exposition parsing."""

    def test_parses_counters_and_histograms(self):
        samples = parse_exposition(CONTROLLER_METRICS)
        by_key = {(s.name, s.labels.get("result"), s.labels.get("le")): s.value for s in samples}

        assert by_key[("controller_runtime_reconcile_total", "success", None)] == 12.0
        assert by_key[("controller_runtime_reconcile_total", "error", None)] == 3.0
        assert by_key[("controller_runtime_reconcile_time_seconds_sum", None, None)] == 1.5
        assert by_key[("controller_runtime_reconcile_time_seconds_count", None, None)] == 15.0
        assert by_key[("controller_runtime_reconcile_time_seconds_bucket", None, "+Inf")] == 15.0

    def test_empty_text(self):
        assert parse_exposition("") == []

    def test_malformed_text(self):
        assert parse_exposition("metric_without_value\n") == []


class TestBearerToken:
    """Token resolution for Prometheus requests."""

    def test_explicit_token_wins(self, tmp_path):
        token_file = tmp_path / "token"
        token_file.write_text("from-file")
        config = DashboardConfig(prometheus_token="explicit", service_account_token_path=str(token_file))

        assert load_bearer_token(config) == "explicit"

    def test_service_account_token(self, tmp_path):
        token_file = tmp_path / "token"
        token_file.write_text("sa-token\n")
        config = DashboardConfig(service_account_token_path=str(token_file))

        assert load_bearer_token(config) == "sa-token"

    def test_missing_token_file(self, tmp_path):
        config = DashboardConfig(service_account_token_path=str(tmp_path / "absent"))

        assert load_bearer_token(config) is None

    def test_from_config(self, tmp_path):
        config = DashboardConfig(
            prometheus_endpoints=["http://p.test:9090/"],
            prometheus_token="t",
            prometheus_timeout=3,
            component_metrics_timeout=1,
        )
        client = PrometheusClient.from_config(config)

        assert client.endpoints == ["http://p.test:9090"]
        assert client.token == "t"
        assert client.timeout == 3
        assert client.scrape_timeout == 1


@pytest.mark.parametrize("value", ["Inf", "-Inf", "NaN", None, "x"])
def test_query_result_values_never_raise(value):
    from maas_dashboard.models import MetricSample

    assert MetricSample.from_query_result({"metric": {}, "value": [0, value]}).value == 0.0
