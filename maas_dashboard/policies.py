"""
Read-only browser for Kuadrant policy resources.

AuthPolicy, RateLimitPolicy and TokenRateLimitPolicy objects are listed from
the configured namespace first; if that is refused the listing is retried
cluster-wide. Results are normalized into `KuadrantPolicy` records.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import DashboardConfig, get_config
from .kube import KUBE_ERRORS, KubeClient, get_kube_client
from .models import KuadrantPolicy, PolicyItem, utc_now_iso

logger = logging.getLogger(__name__)

KUADRANT_GROUP = "kuadrant.io"


@dataclass(frozen=True)
class PolicyResource:
    kind: str
    version: str
    plural: str
    type: str


AUTH_POLICY = PolicyResource("AuthPolicy", "v1", "authpolicies", "auth")
RATE_LIMIT_POLICY = PolicyResource("RateLimitPolicy", "v1beta2", "ratelimitpolicies", "rateLimit")
TOKEN_RATE_LIMIT_POLICY = PolicyResource(
    "TokenRateLimitPolicy", "v1beta1", "tokenratelimitpolicies", "rateLimit"
)


def is_policy_active(policy: Dict[str, Any]) -> bool:
    """Ready=True, or no conditions reported yet."""
    conditions = (policy.get("status") or {}).get("conditions") or []
    if not conditions:
        return True
    return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)


def _mapping_items(section: Any, prefix: str, item_type: str) -> List[PolicyItem]:
    if not isinstance(section, dict):
        return []
    return [PolicyItem(id=f"{prefix}-{key}", type=item_type, config=value) for key, value in section.items()]


def extract_auth_policy_items(spec: Dict[str, Any]) -> List[PolicyItem]:
    rules = spec.get("rules") or {}
    return (
        _mapping_items(rules.get("authentication"), "auth", "authentication")
        + _mapping_items(rules.get("authorization"), "authz", "authorization")
        + _mapping_items(rules.get("response"), "response", "response")
    )


def extract_rate_limit_policy_items(spec: Dict[str, Any]) -> List[PolicyItem]:
    return _mapping_items(spec.get("limits"), "limit", "rate-limit")


def extract_token_rate_limit_policy_items(spec: Dict[str, Any]) -> List[PolicyItem]:
    limits = spec.get("rateLimits")
    if not isinstance(limits, list):
        return []
    return [
        PolicyItem(id=f"token-limit-{index}", type="token-rate-limit", config=limit)
        for index, limit in enumerate(limits)
    ]


_ITEM_EXTRACTORS: Dict[str, Callable[[Dict[str, Any]], List[PolicyItem]]] = {
    AUTH_POLICY.kind: extract_auth_policy_items,
    RATE_LIMIT_POLICY.kind: extract_rate_limit_policy_items,
    TOKEN_RATE_LIMIT_POLICY.kind: extract_token_rate_limit_policy_items,
}


def transform_policy(policy: Dict[str, Any], resource: PolicyResource) -> KuadrantPolicy:
    """Normalize a raw custom object into a `KuadrantPolicy`."""
    metadata = policy.get("metadata") or {}
    spec = policy.get("spec") or {}
    target_ref = spec.get("targetRef") or {}
    namespace = metadata.get("namespace")
    name = metadata.get("name")

    return KuadrantPolicy(
        id=f"{namespace}/{name}",
        name=name or "Unknown",
        description=spec.get("description")
        or f"{resource.kind} for {target_ref.get('name') or 'unknown target'}",
        type=resource.type,
        kind=resource.kind,
        namespace=namespace or "default",
        target_ref=target_ref,
        config=spec,
        conditions=(policy.get("status") or {}).get("conditions") or [],
        created=metadata.get("creationTimestamp") or utc_now_iso(),
        modified=metadata.get("resourceVersion") or utc_now_iso(),
        is_active=is_policy_active(policy),
        items=_ITEM_EXTRACTORS[resource.kind](spec),
    )


class PolicyService:
    """Lists Kuadrant policies through the Kubernetes API."""

    def __init__(self, kube: KubeClient, config: DashboardConfig):
        self.kube = kube
        self.config = config

    async def _list(self, resource: PolicyResource) -> List[KuadrantPolicy]:
        namespace = self.config.namespace
        try:
            raw = await self.kube.list_custom_objects(
                KUADRANT_GROUP, resource.version, resource.plural, namespace
            )
            logger.info("Found %d %s in namespace %s", len(raw), resource.plural, namespace)
        except KUBE_ERRORS as ns_error:
            logger.warning(
                "Failed to get %s from namespace %s: %s", resource.plural, namespace, ns_error
            )
            try:
                raw = await self.kube.list_custom_objects(
                    KUADRANT_GROUP, resource.version, resource.plural
                )
                logger.info("Found %d %s cluster-wide", len(raw), resource.plural)
            except KUBE_ERRORS as cluster_error:
                logger.error("Failed to get %s cluster-wide: %s", resource.plural, cluster_error)
                return []

        policies = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            policies.append(transform_policy(item, resource))
        return policies

    async def get_auth_policies(self) -> List[KuadrantPolicy]:
        return await self._list(AUTH_POLICY)

    async def get_rate_limit_policies(self) -> List[KuadrantPolicy]:
        return await self._list(RATE_LIMIT_POLICY)

    async def get_token_rate_limit_policies(self) -> List[KuadrantPolicy]:
        return await self._list(TOKEN_RATE_LIMIT_POLICY)

    async def get_all_policies(self) -> List[KuadrantPolicy]:
        auth, rate_limit, token = await asyncio.gather(
            self.get_auth_policies(),
            self.get_rate_limit_policies(),
            self.get_token_rate_limit_policies(),
        )
        return auth + rate_limit + token

    async def get_policy_by_name(
        self, name: str, namespace: Optional[str] = None
    ) -> Optional[KuadrantPolicy]:
        for policy in await self.get_all_policies():
            if policy.name == name and (not namespace or policy.namespace == namespace):
                return policy
        return None

    async def check_connection(self) -> Dict[str, Any]:
        """Whether Kuadrant resources can be listed at all."""
        try:
            await self.kube.list_custom_objects(
                KUADRANT_GROUP, AUTH_POLICY.version, AUTH_POLICY.plural
            )
        except KUBE_ERRORS as e:
            return {"connected": False, "error": str(e)}
        return {"connected": True}


# Global service instance
_policies: Optional[PolicyService] = None


def get_policy_service() -> PolicyService:
    global _policies
    if _policies is None:
        _policies = PolicyService(get_kube_client(), get_config())
    return _policies
