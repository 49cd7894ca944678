"""
Live request feed: gateway access logs tailed from Kubernetes, merged with the
requests the simulator proxy has sent recently.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from .access_log import parse_access_logs
from .config import DashboardConfig
from .kube import KubeClient
from .models import PolicyType, RequestLogEntry

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(entry: RequestLogEntry) -> datetime:
    try:
        parsed = datetime.fromisoformat(entry.timestamp.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def merge_recent(*batches: Iterable[RequestLogEntry], limit: int = 100) -> List[RequestLogEntry]:
    """Merge request batches newest first, keeping the first record seen per request id."""
    seen = set()
    merged: List[RequestLogEntry] = []
    for batch in batches:
        for entry in batch:
            if entry.request_id in seen:
                continue
            seen.add(entry.request_id)
            merged.append(entry)
    merged.sort(key=_sort_key, reverse=True)
    return merged[:limit]


class RecentRequestBuffer:
    """Bounded, most-recent-first store of request records keyed by request id."""

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._entries: "OrderedDict[str, RequestLogEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def record(self, entry: RequestLogEntry) -> None:
        with self._lock:
            self._entries.pop(entry.request_id, None)
            self._entries[entry.request_id] = entry
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def extend(self, entries: Iterable[RequestLogEntry]) -> None:
        for entry in entries:
            self.record(entry)

    def snapshot(self) -> List[RequestLogEntry]:
        """Newest first."""
        with self._lock:
            return list(reversed(self._entries.values()))

    def get(self, request_id: str) -> Optional[RequestLogEntry]:
        with self._lock:
            return self._entries.get(request_id)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        return len(self._entries)


def generate_mock_requests(count: int = 50) -> List[RequestLogEntry]:
    """Synthetic traffic, one request per minute going back from now."""
    now = datetime.now(timezone.utc)
    stamp = int(time.time() * 1000)
    requests: List[RequestLogEntry] = []

    for i in range(count):
        if random.random() > 0.8:
            status_code = 401 if random.random() > 0.5 else 429
        else:
            status_code = 200

        policy_type = None
        if status_code == 401:
            policy_type = PolicyType.AUTH
        elif status_code == 429:
            policy_type = PolicyType.RATE_LIMIT

        requests.append(RequestLogEntry(
            timestamp=(now - timedelta(minutes=i)).isoformat(),
            request_id=f"req-{stamp}-{i}",
            method="POST" if random.random() > 0.5 else "GET",
            path="/v1/chat/completions",
            status_code=status_code,
            response_time=float(random.randint(100, 2099)),
            decision=RequestLogEntry.decision_for_status(status_code),
            source_ip=f"10.0.0.{random.randint(0, 254)}",
            policy_type=policy_type,
        ))

    return requests


class LiveRequestService:
    """Reads recent gateway traffic for the dashboard."""

    def __init__(
        self,
        kube: KubeClient,
        config: DashboardConfig,
        buffer: Optional[RecentRequestBuffer] = None,
    ):
        self.kube = kube
        self.config = config
        self.buffer = buffer if buffer is not None else RecentRequestBuffer(config.live_request_cap)

    async def _pod_requests(self, pod_name: str) -> List[RequestLogEntry]:
        logs = await self.kube.read_pod_logs(
            self.config.namespace,
            pod_name,
            tail_lines=self.config.log_tail_lines,
            since_seconds=self.config.log_since_seconds,
        )
        return parse_access_logs(logs)

    async def fetch_live_requests(self) -> List[RequestLogEntry]:
        """
        Parse the recent access logs of every gateway pod.

        Pods are read concurrently; a pod whose logs can't be read is skipped.
        """
        if self.config.use_mock_data:
            return generate_mock_requests(50)

        pods = await self.kube.find_pods(self.config.namespace, self.config.gateway_labels)
        if not pods:
            logger.info("No gateway pods found in %s", self.config.namespace)
            return []

        results = await asyncio.gather(
            *(self._pod_requests(pod.name) for pod in pods),
            return_exceptions=True,
        )

        requests: List[RequestLogEntry] = []
        for pod, result in zip(pods, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to get logs from pod %s: %s", pod.name, result)
                continue
            requests.extend(result)

        logger.info("Parsed %d live requests from %d gateway pods", len(requests), len(pods))
        return requests[: self.config.live_request_cap]

    async def get_live_requests(self) -> List[RequestLogEntry]:
        """Log-derived requests merged with simulator traffic, newest first."""
        from_logs = await self.fetch_live_requests()
        return merge_recent(
            self.buffer.snapshot(), from_logs, limit=self.config.live_request_cap
        )

    async def find_request(self, request_id: str) -> Optional[RequestLogEntry]:
        buffered = self.buffer.get(request_id)
        if buffered is not None:
            return buffered
        for entry in await self.get_live_requests():
            if entry.request_id == request_id:
                return entry
        return None
