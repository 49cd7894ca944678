"""
Prometheus access: instant queries with endpoint fallback, and direct
scraping of component `/metrics` endpoints.

Both paths are best-effort. A failing endpoint is logged and skipped; when
nothing answers the caller gets an empty result, never an exception.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
from prometheus_client.parser import text_string_to_metric_families

from .config import DashboardConfig
from .models import MetricSample
from .telemetry import create_span, get_dashboard_metrics

logger = logging.getLogger(__name__)


def load_bearer_token(config: DashboardConfig) -> Optional[str]:
    """Token for Prometheus and component scrapes: explicit setting, else the pod's service account."""
    if config.prometheus_token:
        return config.prometheus_token
    try:
        return Path(config.service_account_token_path).read_text().strip() or None
    except OSError as e:
        logger.warning("Could not read service account token: %s", e)
        return None


def parse_exposition(text: str) -> List[MetricSample]:
    """Parse Prometheus text exposition into samples. Malformed text yields []."""
    if not text:
        return []
    samples: List[MetricSample] = []
    try:
        for family in text_string_to_metric_families(text):
            for sample in family.samples:
                samples.append(MetricSample(
                    labels={str(k): str(v) for k, v in sample.labels.items()},
                    value=MetricSample.coerce_value(sample.value),
                    name=sample.name,
                ))
    except (ValueError, TypeError, IndexError) as e:
        logger.warning("Failed to parse metrics exposition: %s", e)
        return []
    return samples


def _query_result(body: Any) -> Optional[List[Any]]:
    """The `data.result` list of a success wrapper, or None for anything else."""
    if not isinstance(body, dict) or body.get("status") != "success":
        return None
    data = body.get("data") or {}
    result = data.get("result") if isinstance(data, dict) else None
    return result if isinstance(result, list) else []


class PrometheusClient:
    """Queries a prioritized list of Prometheus-compatible endpoints."""

    def __init__(
        self,
        endpoints: Sequence[str],
        token: Optional[str] = None,
        timeout: float = 10.0,
        scrape_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoints = [e.rstrip("/") for e in endpoints]
        self.token = token
        self.timeout = timeout
        self.scrape_timeout = scrape_timeout
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: DashboardConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PrometheusClient":
        return cls(
            endpoints=config.prometheus_endpoints,
            token=load_bearer_token(config),
            timeout=config.prometheus_timeout,
            scrape_timeout=config.component_metrics_timeout,
            transport=transport,
        )

    def _headers(self, accept_json: bool = True) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if accept_json:
            headers["Accept"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def query(self, query: str) -> List[MetricSample]:
        """
        Run an instant query against each endpoint in order; first success wins.

        Returns an empty list when every endpoint fails.
        """
        with create_span("prometheus.query", {"query": query}):
            async with self._client(self.timeout) as client:
                for endpoint in self.endpoints:
                    url = f"{endpoint}/api/v1/query"
                    try:
                        resp = await client.get(url, params={"query": query}, headers=self._headers())
                        resp.raise_for_status()
                        result = _query_result(resp.json())
                    except (httpx.HTTPError, ValueError) as e:
                        logger.warning("Failed to connect to %s: %s", endpoint, e)
                        get_dashboard_metrics().record_prometheus_failure(endpoint)
                        continue

                    if result is None:
                        logger.warning("Non-success response from %s for query %s", endpoint, query)
                        get_dashboard_metrics().record_prometheus_failure(endpoint)
                        continue

                    return [MetricSample.from_query_result(item) for item in result]

        logger.error("All Prometheus endpoints failed for query %s", query)
        return []

    async def scrape(self, url: str) -> str:
        """Fetch a text exposition from a component. Failures return ""."""
        async with self._client(self.scrape_timeout) as client:
            try:
                resp = await client.get(url, headers=self._headers(accept_json=False))
                resp.raise_for_status()
                return resp.text
            except httpx.HTTPError as e:
                logger.warning("Failed to fetch metrics from %s: %s", url, e)
                return ""

    async def scrape_component(
        self,
        service_name: str,
        namespace: str,
        port: int,
        path: str = "/metrics",
    ) -> str:
        url = f"http://{service_name}.{namespace}.svc.cluster.local:{port}{path}"
        return await self.scrape(url)
