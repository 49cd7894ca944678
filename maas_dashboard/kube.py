"""
Thin async wrapper over the Kubernetes Python client.

The official client is blocking, so each call is pushed to a worker thread.
Cluster credentials are resolved lazily on first use: in-cluster service
account first, then the local kubeconfig.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config import ConfigException
from urllib3.exceptions import HTTPError as TransportError

logger = logging.getLogger(__name__)


class KubeUnavailableError(RuntimeError):
    """No usable cluster configuration could be loaded."""


# Failures of a single API server call, including an unreachable server.
KUBE_ERRORS = (ApiException, KubeUnavailableError, TransportError)


@dataclass
class PodInfo:
    """The parts of a pod the dashboard cares about."""

    name: str
    phase: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.phase == "Running"


def label_selector(labels: Mapping[str, str]) -> str:
    """`{"app": "gateway"}` -> `app=gateway`."""
    return ",".join(f"{key}={value}" for key, value in labels.items())


class KubeClient:
    """Async access to pods, pod logs and custom resources."""

    def __init__(
        self,
        core_api: Optional[Any] = None,
        custom_api: Optional[Any] = None,
    ):
        self._core_api = core_api
        self._custom_api = custom_api
        self._mode: Optional[str] = "injected" if core_api or custom_api else None
        self._lock = threading.Lock()

    @property
    def mode(self) -> Optional[str]:
        """`in-cluster`, `kubeconfig`, `injected`, `unavailable`, or None before first use."""
        return self._mode

    def _load(self) -> None:
        with self._lock:
            if self._mode is not None:
                return
            try:
                config.load_incluster_config()
                self._mode = "in-cluster"
            except ConfigException:
                try:
                    config.load_kube_config()
                    self._mode = "kubeconfig"
                except (ConfigException, OSError) as e:
                    logger.warning("No Kubernetes configuration available: %s", e)
                    self._mode = "unavailable"
                    return
            self._core_api = client.CoreV1Api()
            self._custom_api = client.CustomObjectsApi()
            logger.info("Kubernetes client configured (%s)", self._mode)

    def _core(self) -> Any:
        self._load()
        if self._core_api is None:
            raise KubeUnavailableError("Kubernetes API is not configured")
        return self._core_api

    def _custom(self) -> Any:
        self._load()
        if self._custom_api is None:
            raise KubeUnavailableError("Kubernetes API is not configured")
        return self._custom_api

    async def find_pods(self, namespace: str, labels: Mapping[str, str]) -> List[PodInfo]:
        """Pods matching `labels` in `namespace`. Errors are logged and yield []."""
        selector = label_selector(labels)
        try:
            core = self._core()
            response = await asyncio.to_thread(
                core.list_namespaced_pod, namespace, label_selector=selector
            )
        except KUBE_ERRORS as e:
            logger.warning("Failed to list pods in %s (%s): %s", namespace, selector, e)
            return []

        pods = []
        for pod in response.items or []:
            name = pod.metadata.name if pod.metadata else None
            if not name:
                continue
            phase = pod.status.phase if pod.status else None
            pods.append(PodInfo(name=name, phase=phase))
        return pods

    async def read_pod_logs(
        self,
        namespace: str,
        pod_name: str,
        tail_lines: Optional[int] = None,
        since_seconds: Optional[int] = None,
    ) -> str:
        """Raw log text of a pod's (first) container."""
        kwargs: Dict[str, Any] = {}
        if tail_lines is not None:
            kwargs["tail_lines"] = tail_lines
        if since_seconds is not None:
            kwargs["since_seconds"] = since_seconds
        core = self._core()
        logs = await asyncio.to_thread(
            core.read_namespaced_pod_log, pod_name, namespace, **kwargs
        )
        return logs or ""

    async def list_custom_objects(
        self,
        group: str,
        version: str,
        plural: str,
        namespace: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List custom resources, namespaced when `namespace` is given and
        cluster-wide otherwise.

        Raises one of `KUBE_ERRORS` so callers can fall back.
        """
        custom = self._custom()
        if namespace:
            response = await asyncio.to_thread(
                custom.list_namespaced_custom_object, group, version, namespace, plural
            )
        else:
            response = await asyncio.to_thread(
                custom.list_cluster_custom_object, group, version, plural
            )
        items = response.get("items") if isinstance(response, dict) else None
        return list(items or [])


# Global client instance
_kube: Optional[KubeClient] = None


def get_kube_client() -> KubeClient:
    """Get the shared Kubernetes client."""
    global _kube
    if _kube is None:
        _kube = KubeClient()
    return _kube
