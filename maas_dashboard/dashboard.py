"""
Dashboard assembly.

Prometheus is the preferred source of counts. When it has nothing (no
endpoint answered, or no traffic recorded yet) the counts are derived from
the live request feed instead.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from .aggregator import summarize_authorino_controller, summarize_live_requests
from .models import (
    AuthorinoStats,
    ComponentStatus,
    DataSource,
    DashboardSummary,
    GatewayMetrics,
    RequestLogEntry,
)
from .telemetry import create_span, get_dashboard_metrics

if TYPE_CHECKING:
    from .metrics_service import MetricsService

logger = logging.getLogger(__name__)


@dataclass
class DashboardState:
    """State shared across dashboard builds: when Prometheus last produced counts."""

    last_metrics_update: Optional[float] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def mark_updated(self, at: Optional[float] = None) -> None:
        with self._lock:
            self.last_metrics_update = time.time() if at is None else at

    def cache_age_seconds(self, now: Optional[float] = None) -> Optional[int]:
        if self.last_metrics_update is None:
            return None
        now = time.time() if now is None else now
        return max(0, round(now - self.last_metrics_update))


def assemble_dashboard(
    prometheus_metrics: Optional[GatewayMetrics],
    live_requests: Sequence[RequestLogEntry],
    status: ComponentStatus,
    state: DashboardState,
    authorino_stats: Optional[AuthorinoStats] = None,
) -> DashboardSummary:
    """Combine one round of fetch results into a dashboard summary."""
    if prometheus_metrics is not None and prometheus_metrics.total_requests > 0:
        state.mark_updated()
        total = prometheus_metrics.total_requests
        accepted = prometheus_metrics.success_requests
        source = DataSource.PROMETHEUS
        auth_failed = prometheus_metrics.auth_failed_requests
        rate_limited = prometheus_metrics.rate_limited_requests
        rejected = total - accepted
        auth_by_namespace = prometheus_metrics.auth_by_namespace
        limits_by_namespace = prometheus_metrics.limits_by_namespace
    else:
        counts = summarize_live_requests(live_requests)
        total = counts["total"]
        accepted = counts["accepted"]
        rejected = counts["rejected"]
        auth_failed = counts["auth_failed"]
        rate_limited = counts["rate_limited"]
        source = DataSource.LIVE_REQUESTS
        auth_by_namespace = {}
        limits_by_namespace = {}

    logger.info(
        "Dashboard from %s: %s total, %s accepted, %s rejected",
        source.value, total, accepted, rejected,
    )

    return DashboardSummary(
        total_requests=total,
        accepted_requests=accepted,
        rejected_requests=rejected,
        auth_failed_requests=auth_failed,
        rate_limited_requests=rate_limited,
        source=source,
        status=status,
        auth_by_namespace=dict(auth_by_namespace),
        limits_by_namespace=dict(limits_by_namespace),
        authorino_stats=authorino_stats or AuthorinoStats(),
        live_requests_count=len(live_requests),
        recent_requests_time=live_requests[0].timestamp if live_requests else None,
        cache_age_seconds=state.cache_age_seconds(),
    )


def _settled(result, default, branch: str):
    if isinstance(result, BaseException):
        logger.error("Dashboard branch %s failed: %s", branch, result)
        return default
    return result


async def build_dashboard(service: "MetricsService", state: DashboardState) -> DashboardSummary:
    """Fetch every input concurrently and assemble the summary."""
    with create_span("dashboard.build"):
        results = await asyncio.gather(
            service.fetch_prometheus_metrics(),
            service.get_live_requests(),
            service.get_metrics_status(),
            service.fetch_authorino_controller_samples(),
            return_exceptions=True,
        )

    prometheus_metrics: Optional[GatewayMetrics] = _settled(results[0], None, "prometheus")
    live_requests: List[RequestLogEntry] = _settled(results[1], [], "live-requests")
    status: ComponentStatus = _settled(
        results[2], ComponentStatus(error="status check failed"), "status"
    )
    controller_samples = _settled(results[3], [], "authorino-controller")

    summary = assemble_dashboard(
        prometheus_metrics,
        live_requests,
        status,
        state,
        summarize_authorino_controller(controller_samples, prometheus_metrics),
    )
    get_dashboard_metrics().record_dashboard_build(summary.source.value)
    return summary


# Global dashboard state
_state: Optional[DashboardState] = None


def get_dashboard_state() -> DashboardState:
    global _state
    if _state is None:
        _state = DashboardState()
    return _state
