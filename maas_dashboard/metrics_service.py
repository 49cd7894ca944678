"""
Metrics facade used by the HTTP API: Prometheus aggregates, live requests,
component status and raw component scrapes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from .aggregator import aggregate_gateway_metrics
from .config import DashboardConfig, get_config
from .kube import KubeClient, get_kube_client
from .live_requests import LiveRequestService, RecentRequestBuffer
from .models import ComponentStatus, GatewayMetrics, MetricSample, RequestLogEntry
from .prometheus import PrometheusClient, parse_exposition
from .status import check_component_status

logger = logging.getLogger(__name__)

ISTIO_REQUESTS_QUERY = "istio_requests_total"
LIMITADOR_CHECKS_QUERY = "limitador_limit_checks_total"
AUTHORINO_RESPONSES_QUERY = 'http_requests_total{job=~".*authorino.*"}'


class MetricsService:
    """Gathers everything the dashboard shows about gateway traffic."""

    def __init__(
        self,
        config: DashboardConfig,
        prometheus: PrometheusClient,
        kube: KubeClient,
        buffer: Optional[RecentRequestBuffer] = None,
    ):
        self.config = config
        self.prometheus = prometheus
        self.kube = kube
        self.live = LiveRequestService(kube, config, buffer)

    @property
    def buffer(self) -> RecentRequestBuffer:
        return self.live.buffer

    async def fetch_prometheus_metrics(self) -> Optional[GatewayMetrics]:
        """Aggregate gateway counts from Prometheus; None if something unexpected breaks."""
        try:
            istio, limitador, authorino = await asyncio.gather(
                self.prometheus.query(ISTIO_REQUESTS_QUERY),
                self.prometheus.query(LIMITADOR_CHECKS_QUERY),
                self.prometheus.query(AUTHORINO_RESPONSES_QUERY),
            )
            metrics = aggregate_gateway_metrics(istio, limitador, authorino)
        except Exception as e:
            logger.error("Failed to fetch Prometheus metrics: %s", e)
            return None

        logger.info(
            "Prometheus metrics: %s total, %s success, %s auth failures, %s rate limited",
            metrics.total_requests, metrics.success_requests,
            metrics.auth_failed_requests, metrics.rate_limited_requests,
        )
        return metrics

    async def get_live_requests(self) -> List[RequestLogEntry]:
        return await self.live.get_live_requests()

    async def find_request(self, request_id: str) -> Optional[RequestLogEntry]:
        return await self.live.find_request(request_id)

    async def get_metrics_status(self) -> ComponentStatus:
        return await check_component_status(self.kube, self.get_live_requests, self.config)

    async def fetch_limitador_metrics(self) -> str:
        return await self.prometheus.scrape_component(
            "limitador", self.config.kuadrant_namespace, 8080
        )

    async def fetch_authorino_metrics(self) -> str:
        return await self.prometheus.scrape_component(
            "authorino-controller-manager-metrics-service", self.config.kuadrant_namespace, 8080
        )

    async def fetch_istio_metrics(self) -> str:
        return await self.prometheus.scrape_component(
            "inference-gateway-istio", self.config.namespace, 15090, "/stats/prometheus"
        )

    async def fetch_authorino_controller_samples(self) -> List[MetricSample]:
        return parse_exposition(await self.fetch_authorino_metrics())

    async def fetch_component_metrics(self) -> Dict[str, List[MetricSample]]:
        """Parsed scrapes of Limitador, Authorino and the Istio gateway."""
        limitador, authorino, istio = await asyncio.gather(
            self.fetch_limitador_metrics(),
            self.fetch_authorino_metrics(),
            self.fetch_istio_metrics(),
        )
        return {
            "limitador": parse_exposition(limitador),
            "authorino": parse_exposition(authorino),
            "istio": parse_exposition(istio),
        }


# Global service instance
_service: Optional[MetricsService] = None


def get_metrics_service() -> MetricsService:
    """Get the shared metrics service."""
    global _service
    if _service is None:
        config = get_config()
        _service = MetricsService(
            config,
            PrometheusClient.from_config(config),
            get_kube_client(),
        )
    return _service
