"""Kuadrant component connectivity."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from .config import DashboardConfig
from .kube import KubeClient
from .models import ComponentStatus, utc_now_iso

logger = logging.getLogger(__name__)


async def _any_running(kube: KubeClient, namespace: str, labels) -> bool:
    pods = await kube.find_pods(namespace, labels)
    return any(pod.is_running for pod in pods)


async def check_component_status(
    kube: KubeClient,
    live_requests: Callable[[], Awaitable[List[Any]]],
    config: DashboardConfig,
) -> ComponentStatus:
    """
    Check Limitador, Authorino and recent traffic independently.

    A failing check only clears its own flag; the first error message is kept
    on the returned status.
    """
    results = await asyncio.gather(
        _any_running(kube, config.kuadrant_namespace, config.limitador_labels),
        _any_running(kube, config.kuadrant_namespace, config.authorino_labels),
        live_requests(),
        return_exceptions=True,
    )

    error: Optional[str] = None
    flags = []
    for check, result in zip(("limitador", "authorino", "traffic"), results):
        if isinstance(result, BaseException):
            logger.warning("Component check %s failed: %s", check, result)
            error = error or f"{check}: {result}"
            flags.append(False)
        elif check == "traffic":
            flags.append(len(result) > 0)
        else:
            flags.append(bool(result))

    status = ComponentStatus(
        limitador_connected=flags[0],
        authorino_connected=flags[1],
        has_real_traffic=flags[2],
        last_update=utc_now_iso(),
        error=error,
    )
    logger.info(
        "Component status: limitador=%s authorino=%s traffic=%s",
        status.limitador_connected, status.authorino_connected, status.has_real_traffic,
    )
    return status
