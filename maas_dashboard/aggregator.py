"""
Aggregation of gateway metrics and request records.

Everything here is pure: inputs are sample lists or request records, outputs
are plain numbers and mappings. Bad numeric input counts as zero.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Sequence

from .models import (
    AuthMethod,
    AuthorinoStats,
    Decision,
    EnforcementPoint,
    GatewayMetrics,
    MetricSample,
    PolicyType,
    PolicyVerdict,
    RequestLogEntry,
)

logger = logging.getLogger(__name__)

UNKNOWN_NAMESPACE = "unknown"


def sample_value(sample: Any) -> float:
    """Numeric value of a sample; accepts `MetricSample` or a raw query result item."""
    if isinstance(sample, MetricSample):
        return MetricSample.coerce_value(sample.value)
    return MetricSample.from_query_result(sample).value


def _labels(sample: Any) -> Dict[str, str]:
    if isinstance(sample, MetricSample):
        return sample.labels
    if isinstance(sample, dict) and isinstance(sample.get("metric"), dict):
        return sample["metric"]
    return {}


def sum_samples(samples: Iterable[Any]) -> float:
    return sum(sample_value(s) for s in samples)


def group_by_namespace(samples: Iterable[Any]) -> Dict[str, float]:
    """Sum sample values per `namespace` label."""
    by_namespace: Dict[str, float] = {}
    for sample in samples:
        namespace = _labels(sample).get("namespace") or UNKNOWN_NAMESPACE
        by_namespace[namespace] = by_namespace.get(namespace, 0.0) + sample_value(sample)
    return by_namespace


def _is_auth_failure(sample: Any) -> bool:
    status = _labels(sample).get("status_code")
    try:
        return status is not None and int(status) == 401
    except (TypeError, ValueError):
        return False


def _is_over_limit(sample: Any) -> bool:
    return _labels(sample).get("result") == "over_limit"


def aggregate_gateway_metrics(
    total_samples: Sequence[Any],
    limit_samples: Sequence[Any],
    auth_samples: Sequence[Any],
) -> GatewayMetrics:
    """
    Reduce raw samples for requests, limit checks and auth responses to counts.

    The rejected counts are clamped to what the total can hold, so
    `success == total - auth_failed - rate_limited` with no negative parts.
    """
    total = max(sum_samples(total_samples), 0.0)
    auth_failed = max(sum_samples(s for s in auth_samples if _is_auth_failure(s)), 0.0)
    rate_limited = max(sum_samples(s for s in limit_samples if _is_over_limit(s)), 0.0)

    if auth_failed + rate_limited > total:
        logger.debug(
            "Rejections exceed total (%s auth, %s limited, %s total); clamping",
            auth_failed, rate_limited, total,
        )
    auth_failed = min(auth_failed, total)
    rate_limited = min(rate_limited, total - auth_failed)

    return GatewayMetrics(
        total_requests=total,
        success_requests=total - auth_failed - rate_limited,
        auth_failed_requests=auth_failed,
        rate_limited_requests=rate_limited,
        auth_requests=max(sum_samples(auth_samples), 0.0),
        auth_by_namespace=group_by_namespace(auth_samples),
        limits_by_namespace=group_by_namespace(limit_samples),
    )


def _has_denial(entry: RequestLogEntry, policy_type: PolicyType) -> bool:
    """Whether a record was denied by the given kind of policy.

    Attached policy decisions are authoritative; the coarse `policy_type` tag
    is only consulted for records that carry no decisions.
    """
    if entry.policy_decisions:
        return any(
            p.policy_type is policy_type and p.decision is PolicyVerdict.DENY
            for p in entry.policy_decisions
        )
    return entry.policy_type is policy_type


def summarize_live_requests(requests: Sequence[RequestLogEntry]) -> Dict[str, int]:
    """The five dashboard counts derived from normalized request records."""
    accepted = sum(1 for r in requests if r.decision is Decision.ACCEPT)
    return {
        "total": len(requests),
        "accepted": accepted,
        "rejected": len(requests) - accepted,
        "auth_failed": sum(1 for r in requests if _has_denial(r, PolicyType.AUTH)),
        "rate_limited": sum(1 for r in requests if _has_denial(r, PolicyType.RATE_LIMIT)),
    }


def _policy_counts(requests: Sequence[RequestLogEntry], policy_type: PolicyType) -> Dict[str, int]:
    total = allowed = denied = 0
    for r in requests:
        for p in r.policy_decisions or []:
            if p.policy_type is not policy_type:
                continue
            total += 1
            if p.decision is PolicyVerdict.ALLOW:
                allowed += 1
            else:
                denied += 1
    return {"total": total, "allowed": allowed, "denied": denied}


def compute_policy_stats(requests: Sequence[RequestLogEntry]) -> Dict[str, Any]:
    """Policy enforcement statistics over a set of request records."""
    enforcement_points = {point.value: 0 for point in EnforcementPoint}
    for r in requests:
        for p in r.policy_decisions or []:
            enforcement_points[p.enforcement_point.value] += 1

    inferences = [r.model_inference for r in requests if r.model_inference]
    avg_response_time = (
        sum(i.response_time for i in inferences) / max(1, len(inferences))
    )

    authenticated = [r.authentication for r in requests if r.authentication]

    return {
        "totalRequests": len(requests),
        "approvedRequests": sum(1 for r in requests if r.decision is Decision.ACCEPT),
        "rejectedRequests": sum(1 for r in requests if r.decision is Decision.REJECT),
        "policyDecisions": {
            "authPolicy": _policy_counts(requests, PolicyType.AUTH),
            "rateLimitPolicy": _policy_counts(requests, PolicyType.RATE_LIMIT),
        },
        "enforcementPoints": enforcement_points,
        "modelInferences": {
            "total": len(inferences),
            "totalTokens": sum(i.total_tokens for i in inferences),
            "avgResponseTime": avg_response_time,
            "totalCost": sum(r.estimated_cost or 0.0 for r in requests),
        },
        "authentication": {
            "apiKey": sum(1 for a in authenticated if a.method is AuthMethod.API_KEY),
            "none": sum(1 for a in authenticated if a.method is AuthMethod.NONE),
            "valid": sum(1 for a in authenticated if a.is_valid),
            "invalid": sum(1 for a in authenticated if not a.is_valid),
        },
    }


def _sum_named(samples: Sequence[MetricSample], name: str, **labels: str) -> float:
    return sum(
        s.value for s in samples
        if s.name == name and all(s.labels.get(k) == v for k, v in labels.items())
    )


def summarize_authorino_controller(
    controller_samples: Sequence[MetricSample],
    metrics: Optional[GatewayMetrics] = None,
) -> AuthorinoStats:
    """
    Authorino activity: evaluation counts from Prometheus, reconcile counts
    and timings from the controller's own `/metrics` endpoint.
    """
    successes = _sum_named(controller_samples, "controller_runtime_reconcile_total", result="success")
    errors = _sum_named(controller_samples, "controller_runtime_reconcile_total", result="error")
    reconciles = _sum_named(controller_samples, "controller_runtime_reconcile_total")
    time_sum = _sum_named(controller_samples, "controller_runtime_reconcile_time_seconds_sum")
    time_count = _sum_named(controller_samples, "controller_runtime_reconcile_time_seconds_count")

    return AuthorinoStats(
        auth_configs=len(metrics.auth_by_namespace) if metrics else 0,
        total_evaluations=metrics.auth_requests if metrics else 0.0,
        successful_reconciles=successes,
        failed_reconciles=errors,
        reconcile_operations=reconciles,
        avg_reconcile_time=time_sum / time_count if time_count else 0.0,
    )
