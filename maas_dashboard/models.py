"""Data models for the MaaS gateway dashboard."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


class Decision(str, Enum):
    """Final gateway verdict for a request."""
    ACCEPT = "accept"
    REJECT = "reject"


class PolicyType(str, Enum):
    """Kinds of policy that can produce an enforcement decision."""
    AUTH = "AuthPolicy"
    RATE_LIMIT = "RateLimitPolicy"
    CONTENT = "ContentPolicy"
    COST = "CostPolicy"


class PolicyVerdict(str, Enum):
    """Outcome of a single policy evaluation."""
    ALLOW = "allow"
    DENY = "deny"


class EnforcementPoint(str, Enum):
    """Component that executed a policy decision."""
    AUTHORINO = "authorino"
    LIMITADOR = "limitador"
    ENVOY = "envoy"
    OPA = "opa"
    KUADRANT = "kuadrant"


class AuthMethod(str, Enum):
    """Authentication methods seen at the gateway."""
    API_KEY = "api-key"
    JWT = "jwt"
    OAUTH = "oauth"
    NONE = "none"


class DataSource(str, Enum):
    """Where the dashboard counts came from."""
    PROMETHEUS = "prometheus-metrics"
    LIVE_REQUESTS = "live-requests-fallback"


@dataclass
class MetricSample:
    """A labeled scalar observation from a time-series query or a scrape."""
    labels: Dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    name: str = ""

    @staticmethod
    def coerce_value(raw: Any) -> float:
        """Convert a raw sample value to float; anything unusable becomes 0."""
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(value) or math.isinf(value):
            return 0.0
        return value

    @classmethod
    def from_query_result(cls, item: Any) -> "MetricSample":
        """Build a sample from one `data.result[]` entry of the query API."""
        if not isinstance(item, dict):
            return cls()
        metric = item.get("metric") or {}
        labels = {str(k): str(v) for k, v in metric.items()} if isinstance(metric, dict) else {}
        raw_value = item.get("value")
        value = 0.0
        if isinstance(raw_value, (list, tuple)) and len(raw_value) > 1:
            value = cls.coerce_value(raw_value[1])
        return cls(labels=labels, value=value, name=labels.get("__name__", ""))

    def to_dict(self) -> dict:
        return {"name": self.name, "labels": self.labels, "value": self.value}


@dataclass
class PolicyDecisionDetails:
    """One enforcement verdict attached to a request."""
    policy_id: str
    policy_name: str
    policy_type: PolicyType
    decision: PolicyVerdict
    enforcement_point: EnforcementPoint
    reason: str = ""
    rule_triggered: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    processing_time: Optional[float] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "policyId": self.policy_id,
            "policyName": self.policy_name,
            "policyType": self.policy_type.value,
            "decision": self.decision.value,
            "reason": self.reason,
            "ruleTriggered": self.rule_triggered,
            "metadata": self.metadata,
            "enforcementPoint": self.enforcement_point.value,
            "processingTime": self.processing_time,
        })


@dataclass
class AuthenticationDetails:
    """How the caller authenticated and whether it held up."""
    method: AuthMethod
    is_valid: bool
    principal: Optional[str] = None
    groups: Optional[List[str]] = None
    scopes: Optional[List[str]] = None
    key_id: Optional[str] = None
    issuer: Optional[str] = None
    validation_errors: Optional[List[str]] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "method": self.method.value,
            "principal": self.principal,
            "groups": self.groups,
            "scopes": self.scopes,
            "keyId": self.key_id,
            "issuer": self.issuer,
            "isValid": self.is_valid,
            "validationErrors": self.validation_errors,
        })


@dataclass
class RateLimitDetails:
    """State of one rate-limit counter when the request was evaluated."""
    limit_name: str
    current: int
    limit: int
    window: str
    remaining: int
    reset_time: str

    def to_dict(self) -> dict:
        return {
            "limitName": self.limit_name,
            "current": self.current,
            "limit": self.limit,
            "window": self.window,
            "remaining": self.remaining,
            "resetTime": self.reset_time,
        }


@dataclass
class ModelInferenceData:
    """Token usage and timing for a chat-completion call."""
    request_id: str
    model_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    response_time: float = 0.0
    model_version: Optional[str] = None
    prompt: Optional[str] = None
    completion: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    finish_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "requestId": self.request_id,
            "modelName": self.model_name,
            "modelVersion": self.model_version,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "responseTime": self.response_time,
            "prompt": self.prompt,
            "completion": self.completion,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "stopSequences": self.stop_sequences,
            "finishReason": self.finish_reason,
        })


@dataclass(frozen=True)
class RequestLogEntry:
    """Normalized representation of one proxied request."""
    timestamp: str
    request_id: str
    method: str
    path: str
    status_code: int
    response_time: float
    decision: Decision
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    policy_decisions: Optional[List[PolicyDecisionDetails]] = None
    authentication: Optional[AuthenticationDetails] = None
    rate_limits: Optional[List[RateLimitDetails]] = None
    policy_type: Optional[PolicyType] = None
    model_inference: Optional[ModelInferenceData] = None
    namespace: Optional[str] = None
    service: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    estimated_cost: Optional[float] = None

    @staticmethod
    def decision_for_status(status_code: int) -> Decision:
        """Requests answered below 400 were let through by the gateway."""
        return Decision.ACCEPT if status_code < 400 else Decision.REJECT

    def to_dict(self) -> dict:
        return _drop_none({
            "timestamp": self.timestamp,
            "requestId": self.request_id,
            "method": self.method,
            "path": self.path,
            "statusCode": self.status_code,
            "responseTime": self.response_time,
            "userAgent": self.user_agent,
            "sourceIP": self.source_ip,
            "policyDecisions": (
                [p.to_dict() for p in self.policy_decisions]
                if self.policy_decisions is not None else None
            ),
            "authentication": self.authentication.to_dict() if self.authentication else None,
            "rateLimits": (
                [r.to_dict() for r in self.rate_limits]
                if self.rate_limits is not None else None
            ),
            "decision": self.decision.value,
            "policyType": self.policy_type.value if self.policy_type else None,
            "modelInference": self.model_inference.to_dict() if self.model_inference else None,
            "namespace": self.namespace,
            "service": self.service,
            "headers": self.headers,
            "estimatedCost": self.estimated_cost,
        })


@dataclass
class GatewayMetrics:
    """Scalar counts aggregated from Prometheus samples."""
    total_requests: float = 0.0
    success_requests: float = 0.0
    auth_failed_requests: float = 0.0
    rate_limited_requests: float = 0.0
    auth_requests: float = 0.0
    auth_by_namespace: Dict[str, float] = field(default_factory=dict)
    limits_by_namespace: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalRequests": self.total_requests,
            "successRequests": self.success_requests,
            "authFailedRequests": self.auth_failed_requests,
            "rateLimitedRequests": self.rate_limited_requests,
            "authRequests": self.auth_requests,
            "authByNamespace": dict(self.auth_by_namespace),
            "limitsByNamespace": dict(self.limits_by_namespace),
        }


@dataclass
class ComponentStatus:
    """Connectivity summary for the Kuadrant components."""
    limitador_connected: bool = False
    authorino_connected: bool = False
    has_real_traffic: bool = False
    last_update: str = field(default_factory=utc_now_iso)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "limitadorConnected": self.limitador_connected,
            "authorinoConnected": self.authorino_connected,
            "hasRealTraffic": self.has_real_traffic,
            "lastUpdate": self.last_update,
            "error": self.error,
        })


@dataclass
class AuthorinoStats:
    """Authorino controller activity, from Prometheus and its own /metrics."""
    auth_configs: int = 0
    total_evaluations: float = 0.0
    successful_reconciles: float = 0.0
    failed_reconciles: float = 0.0
    reconcile_operations: float = 0.0
    avg_reconcile_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "authConfigs": self.auth_configs,
            "totalEvaluations": self.total_evaluations,
            "successfulReconciles": self.successful_reconciles,
            "failedReconciles": self.failed_reconciles,
            "reconcileOperations": self.reconcile_operations,
            "avgReconcileTime": self.avg_reconcile_time,
        }


@dataclass
class DashboardSummary:
    """Aggregate snapshot served by the dashboard endpoint."""
    total_requests: float
    accepted_requests: float
    rejected_requests: float
    auth_failed_requests: float
    rate_limited_requests: float
    source: DataSource
    status: ComponentStatus
    auth_by_namespace: Dict[str, float] = field(default_factory=dict)
    limits_by_namespace: Dict[str, float] = field(default_factory=dict)
    authorino_stats: AuthorinoStats = field(default_factory=AuthorinoStats)
    live_requests_count: int = 0
    recent_requests_time: Optional[str] = None
    cache_age_seconds: Optional[int] = None
    last_update: str = field(default_factory=utc_now_iso)

    @property
    def policy_enforced_requests(self) -> float:
        return self.auth_failed_requests + self.rate_limited_requests

    def to_dict(self) -> dict:
        kuadrant_status = self.status.to_dict()
        kuadrant_status.update({
            "istioConnected": self.source is DataSource.PROMETHEUS,
            "metricsSource": self.source.value,
            "realData": self.total_requests > 0,
            "dataSource": self.source.value,
            "notFoundRequests": 0,
            "debugInfo": {
                "liveRequestsCount": self.live_requests_count,
                "recentRequestsTime": self.recent_requests_time,
                "cacheAge": self.cache_age_seconds,
            },
        })
        return {
            "totalRequests": self.total_requests,
            "acceptedRequests": self.accepted_requests,
            "rejectedRequests": self.rejected_requests,
            "authFailedRequests": self.auth_failed_requests,
            "rateLimitedRequests": self.rate_limited_requests,
            "policyEnforcedRequests": self.policy_enforced_requests,
            "authByNamespace": dict(self.auth_by_namespace),
            "limitsByNamespace": dict(self.limits_by_namespace),
            "source": self.source.value,
            "kuadrantStatus": kuadrant_status,
            "authorinoStats": self.authorino_stats.to_dict(),
            "lastUpdate": self.last_update,
        }


@dataclass
class PolicyItem:
    """One flattened sub-rule of a Kuadrant policy, for display."""
    id: str
    type: str
    config: Any

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type, "config": self.config}


@dataclass
class KuadrantPolicy:
    """Normalized view of an AuthPolicy, RateLimitPolicy or TokenRateLimitPolicy."""
    id: str
    name: str
    description: str
    type: str
    kind: str
    namespace: str
    target_ref: Dict[str, Any]
    config: Dict[str, Any]
    conditions: List[Dict[str, Any]]
    created: str
    modified: str
    is_active: bool
    items: List[PolicyItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "kind": self.kind,
            "namespace": self.namespace,
            "targetRef": self.target_ref,
            "config": self.config,
            "status": {"conditions": self.conditions},
            "created": self.created,
            "modified": self.modified,
            "isActive": self.is_active,
            "items": [item.to_dict() for item in self.items],
        }
