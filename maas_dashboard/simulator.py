"""
Request simulator.

`SimulatorProxy` forwards chat completions to a model upstream (directly, or
through the Kuadrant gateway with a tenant `Host` header) and records each
outcome in the recent-request buffer so it shows up on the dashboard.

`TrafficSimulator` generates a steady stream of such requests in the
background, spread across API-key tiers.
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import requests

from .config import DashboardConfig, ModelRoute, UIConfig, get_config
from .live_requests import RecentRequestBuffer
from .models import (
    AuthenticationDetails,
    AuthMethod,
    EnforcementPoint,
    ModelInferenceData,
    PolicyDecisionDetails,
    PolicyType,
    PolicyVerdict,
    RateLimitDetails,
    RequestLogEntry,
    utc_now_iso,
)
from .telemetry import create_span, get_dashboard_metrics

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
REDACTED_HEADERS = {"authorization", "cookie", "x-api-key"}


def redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Hide credential-bearing headers."""
    return {
        key: "[REDACTED]" if key.lower() in REDACTED_HEADERS else value
        for key, value in headers.items()
    }


def _api_key_id(authorization: str) -> str:
    """Short, non-reversible hint of which key was used."""
    token = authorization.split(" ", 1)[-1].strip()
    if len(token) <= 4:
        return "****"
    return f"{token[:4]}****"


def _as_int(raw: Any) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    try:
        return int(headers[name])
    except (KeyError, ValueError):
        return None


def derive_policy_decisions(status_code: int, route: ModelRoute) -> Tuple[List[PolicyDecisionDetails], Optional[PolicyType]]:
    """Infer which policies fired from the gateway's answer."""
    auth = PolicyDecisionDetails(
        policy_id=f"{route.key}-auth-policy",
        policy_name=f"{route.key}-auth-policy",
        policy_type=PolicyType.AUTH,
        decision=PolicyVerdict.ALLOW,
        enforcement_point=EnforcementPoint.AUTHORINO,
        reason="API key accepted",
    )
    if status_code == 401 or status_code == 403:
        auth.decision = PolicyVerdict.DENY
        auth.reason = "API key missing or invalid"
        return [auth], PolicyType.AUTH

    rate_limit = PolicyDecisionDetails(
        policy_id=f"{route.key}-rate-limit-policy",
        policy_name=f"{route.key}-rate-limit-policy",
        policy_type=PolicyType.RATE_LIMIT,
        decision=PolicyVerdict.ALLOW,
        enforcement_point=EnforcementPoint.LIMITADOR,
        reason="Within limits",
    )
    if status_code == 429:
        rate_limit.decision = PolicyVerdict.DENY
        rate_limit.reason = "Rate limit exceeded"
        return [auth, rate_limit], PolicyType.RATE_LIMIT

    return [auth, rate_limit], None


def _rate_limit_details(headers: httpx.Headers) -> Optional[List[RateLimitDetails]]:
    limit = _int_header(headers, "x-ratelimit-limit")
    remaining = _int_header(headers, "x-ratelimit-remaining")
    if limit is None or remaining is None:
        return None
    return [RateLimitDetails(
        limit_name="gateway",
        current=max(limit - remaining, 0),
        limit=limit,
        window=headers.get("x-ratelimit-window", ""),
        remaining=remaining,
        reset_time=headers.get("x-ratelimit-reset", ""),
    )]


def _model_inference(
    request_id: str,
    route: ModelRoute,
    request_body: Dict[str, Any],
    response_data: Any,
    elapsed_ms: float,
) -> Optional[ModelInferenceData]:
    if not isinstance(response_data, dict) or not isinstance(response_data.get("usage"), dict):
        return None
    usage = response_data["usage"]
    input_tokens = _as_int(usage.get("prompt_tokens"))
    output_tokens = _as_int(usage.get("completion_tokens"))

    completion = None
    finish_reason = None
    choices = response_data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        finish_reason = choices[0].get("finish_reason")
        message = choices[0].get("message") or {}
        completion = message.get("content") if isinstance(message, dict) else None

    prompt = None
    messages = request_body.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[-1], dict):
        content = messages[-1].get("content")
        prompt = content if isinstance(content, str) else None

    return ModelInferenceData(
        request_id=request_id,
        model_name=response_data.get("model") or route.model_name,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=_as_int(usage.get("total_tokens")) or input_tokens + output_tokens,
        response_time=elapsed_ms,
        prompt=prompt,
        completion=completion,
        max_tokens=request_body.get("max_tokens"),
        finish_reason=finish_reason,
    )


class SimulatorProxy:
    """Forwards simulator chat completions to the model serving upstream."""

    def __init__(
        self,
        config: DashboardConfig,
        buffer: RecentRequestBuffer,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.buffer = buffer
        self._transport = transport

    def target_for(self, route: ModelRoute) -> Tuple[str, Dict[str, str]]:
        """Upstream URL and extra headers; the gateway routes on `Host`."""
        if self.config.gateway_url:
            return (
                f"{self.config.gateway_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}",
                {"Host": route.host},
            )
        return f"{route.base_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}", {}

    async def forward_chat_completion(
        self,
        body: Dict[str, Any],
        authorization: Optional[str],
    ) -> Tuple[int, Dict[str, Any]]:
        """
        Proxy one chat completion.

        Returns `(status_code, envelope)`. The upstream status is passed
        through as-is; a missing Authorization header is refused with 401 and
        a transport failure becomes 500.
        """
        if not authorization:
            return 401, {"success": False, "error": "Authorization header required", "timestamp": utc_now_iso()}

        tier = str(body.get("tier") or "unknown")
        route = self.config.model_route(body.get("model"))
        request_body = {
            "model": route.model_name,
            "messages": body.get("messages") or [],
            "max_tokens": body.get("max_tokens"),
        }
        url, extra_headers = self.target_for(route)
        headers = {"Authorization": authorization, "Content-Type": "application/json", **extra_headers}

        logger.info("Proxying chat completion to %s (host=%s, model=%s, tier=%s)",
                    url, route.host, route.model_name, tier)

        started = time.perf_counter()
        try:
            with create_span("simulator.chat_completion", {"model": route.model_name, "tier": tier}):
                async with httpx.AsyncClient(
                    timeout=self.config.proxy_timeout, transport=self._transport
                ) as client:
                    response = await client.post(url, json=request_body, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Simulator proxy error: %s", e)
            return 500, {
                "success": False,
                "error": "Failed to proxy request to model server",
                "details": str(e),
                "timestamp": utc_now_iso(),
            }
        elapsed_ms = (time.perf_counter() - started) * 1000

        try:
            response_data = response.json()
        except ValueError:
            response_data = {"error": response.text}

        logger.info("Upstream answered %s (%d bytes)", response.status_code, len(response.content))
        get_dashboard_metrics().record_simulator_request(tier, response.status_code)

        self.buffer.record(self._request_entry(
            route, tier, authorization, request_body, response, response_data, elapsed_ms
        ))

        return response.status_code, {
            "success": 200 <= response.status_code < 300,
            "data": response_data,
            "debug": {
                "requestUrl": url,
                "requestHeaders": redact_headers(headers),
                "requestBody": request_body,
                "responseStatus": response.status_code,
                "responseHeaders": dict(response.headers),
            },
            "timestamp": utc_now_iso(),
        }

    def _request_entry(
        self,
        route: ModelRoute,
        tier: str,
        authorization: str,
        request_body: Dict[str, Any],
        response: httpx.Response,
        response_data: Any,
        elapsed_ms: float,
    ) -> RequestLogEntry:
        request_id = response.headers.get("x-request-id") or f"sim-{uuid.uuid4().hex[:12]}"
        decisions, policy_type = derive_policy_decisions(response.status_code, route)
        return RequestLogEntry(
            timestamp=utc_now_iso(),
            request_id=request_id,
            method="POST",
            path=CHAT_COMPLETIONS_PATH,
            status_code=response.status_code,
            response_time=elapsed_ms,
            decision=RequestLogEntry.decision_for_status(response.status_code),
            user_agent="maas-dashboard-simulator",
            policy_decisions=decisions,
            authentication=AuthenticationDetails(
                method=AuthMethod.API_KEY,
                is_valid=response.status_code not in (401, 403),
                principal=tier,
                groups=[tier],
                key_id=_api_key_id(authorization),
            ),
            rate_limits=_rate_limit_details(response.headers),
            policy_type=policy_type,
            model_inference=(
                _model_inference(request_id, route, request_body, response_data, elapsed_ms)
                if response.status_code < 400 else None
            ),
            namespace=self.config.namespace,
            service=route.host,
        )


# =============================================================================
# Background traffic generator
# =============================================================================

TIERS = ("free", "premium", "none")


@dataclass
class SimulatorConfig:
    """Configuration for the traffic simulator."""

    # Dashboard API base (the proxy route hangs off it)
    api_base_url: str = "http://localhost:8000/api/v1"

    # Request frequency (requests per second)
    requests_per_second: float = 1.0

    # Tier weights (should sum to 1.0)
    tier_weights: Dict[str, float] = field(
        default_factory=lambda: {"free": 0.6, "premium": 0.3, "none": 0.1}
    )

    api_keys: Dict[str, str] = field(
        default_factory=lambda: {"free": "freeuser1_key", "premium": "premiumuser1_key", "none": ""}
    )

    models: List[str] = field(default_factory=lambda: ["simulator-model", "qwen3-0-6b-instruct"])

    max_tokens: int = 50

    prompts: List[str] = field(
        default_factory=lambda: [
            "Hello, how are you?",
            "Summarize the plot of Hamlet in one sentence.",
            "What is the capital of France?",
            "Write a haiku about rate limits.",
            "Explain Kubernetes in simple terms.",
            "Give me three ideas for a team lunch.",
        ]
    )

    @classmethod
    def from_ui_config(cls, ui: UIConfig) -> "SimulatorConfig":
        return cls(
            api_base_url=ui.api_base_url,
            api_keys=dict(ui.api_keys),
            models=list(ui.models.values()),
        )


@dataclass
class SimulatorStats:
    """Statistics from the simulator."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    requests_by_tier: Dict[str, int] = field(default_factory=dict)
    requests_by_status: Dict[str, int] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    start_time: Optional[datetime] = None
    last_request_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": (
                round(self.successful_requests / self.total_requests * 100, 2)
                if self.total_requests > 0
                else 0
            ),
            "requests_by_tier": dict(self.requests_by_tier),
            "requests_by_status": dict(self.requests_by_status),
            "recent_errors": self.errors[-10:],
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "last_request_time": (
                self.last_request_time.isoformat() if self.last_request_time else None
            ),
            "duration_seconds": (
                (self.last_request_time - self.start_time).total_seconds()
                if self.start_time and self.last_request_time
                else 0
            ),
        }


class TrafficSimulator:
    """
    Fires chat completions through the dashboard's simulator proxy.

    Each request picks a tier by weight and uses that tier's API key; the
    `none` tier sends no key so authentication failures show up too.
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self.stats = SimulatorStats()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._callbacks: List[Callable[[str, int], None]] = []

    def add_callback(self, callback: Callable[[str, int], None]) -> None:
        """Add a callback notified with (tier, status_code) after each request."""
        self._callbacks.append(callback)

    def _notify_callbacks(self, tier: str, status_code: int) -> None:
        for callback in self._callbacks:
            try:
                callback(tier, status_code)
            except Exception:
                logger.exception("Simulator callback failed")

    def _choose_tier(self) -> str:
        tiers = list(self.config.tier_weights.keys())
        weights = list(self.config.tier_weights.values())
        return random.choices(tiers, weights=weights, k=1)[0]

    def _headers(self, tier: str) -> Dict[str, str]:
        key = self.config.api_keys.get(tier, "")
        return {"Authorization": f"APIKEY {key}"} if key else {}

    def send(
        self,
        tier: str,
        model: Optional[str] = None,
        prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Optional[requests.Response]:
        """Send one chat completion for `tier`; None on transport failure."""
        url = f"{self.config.api_base_url.rstrip('/')}/simulator/chat/completions"
        payload = {
            "model": model or random.choice(self.config.models),
            "messages": [{"role": "user", "content": prompt or random.choice(self.config.prompts)}],
            "max_tokens": max_tokens or self.config.max_tokens,
            "tier": tier,
        }
        try:
            return requests.post(url, json=payload, headers=self._headers(tier), timeout=10)
        except requests.RequestException as e:
            self.stats.errors.append({
                "time": datetime.now(timezone.utc).isoformat(),
                "tier": tier,
                "error": str(e),
            })
            return None

    def run_single(self) -> bool:
        """Run a single request."""
        tier = self._choose_tier()

        self.stats.total_requests += 1
        self.stats.last_request_time = datetime.now(timezone.utc)
        self.stats.requests_by_tier[tier] = self.stats.requests_by_tier.get(tier, 0) + 1

        response = self.send(tier)
        status_code = response.status_code if response is not None else 0
        status_key = str(status_code) if status_code else "error"
        self.stats.requests_by_status[status_key] = self.stats.requests_by_status.get(status_key, 0) + 1

        success = response is not None and 200 <= status_code < 300
        if success:
            self.stats.successful_requests += 1
        else:
            self.stats.failed_requests += 1

        self._notify_callbacks(tier, status_code)
        return success

    def _run_loop(self) -> None:
        self.stats.start_time = datetime.now(timezone.utc)

        while self._running:
            self.run_single()

            if self.config.requests_per_second > 0:
                sleep_time = 1.0 / self.config.requests_per_second
                # jitter
                sleep_time *= random.uniform(0.8, 1.2)
                time.sleep(sleep_time)

    def start(self) -> None:
        """Start the simulator in a background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return self.stats.to_dict()

    def reset_stats(self) -> None:
        self.stats = SimulatorStats()

    def update_config(
        self,
        requests_per_second: Optional[float] = None,
        tier_weights: Optional[Dict[str, float]] = None,
    ) -> None:
        """Update simulator configuration. Unknown tiers are ignored."""
        if requests_per_second is not None:
            self.config.requests_per_second = requests_per_second

        if tier_weights:
            for tier, weight in tier_weights.items():
                if tier in TIERS:
                    self.config.tier_weights[tier] = weight


# Global instances
_proxy: Optional[SimulatorProxy] = None
_simulator: Optional[TrafficSimulator] = None


def get_simulator_proxy() -> SimulatorProxy:
    """Get the shared proxy; it records into the metrics service's buffer."""
    global _proxy
    if _proxy is None:
        from .metrics_service import get_metrics_service

        _proxy = SimulatorProxy(get_config(), get_metrics_service().buffer)
    return _proxy


def get_simulator() -> TrafficSimulator:
    """Get the global traffic simulator."""
    global _simulator
    if _simulator is None:
        _simulator = TrafficSimulator(SimulatorConfig.from_ui_config(UIConfig.from_env()))
    return _simulator


def reset_simulator(config: Optional[SimulatorConfig] = None) -> TrafficSimulator:
    """Reset the global simulator with optional new config."""
    global _simulator
    if _simulator and _simulator.is_running():
        _simulator.stop()
    _simulator = TrafficSimulator(config)
    return _simulator
