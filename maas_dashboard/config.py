"""
Runtime configuration for the MaaS gateway dashboard.

Everything is read from environment variables; a local `.env` file is loaded
first so development setups don't need to export anything.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_PROMETHEUS_ENDPOINTS = [
    "http://thanos-querier.openshift-monitoring.svc.cluster.local:9091",
    "http://prometheus-k8s.openshift-monitoring.svc.cluster.local:9090",
    "http://prometheus-user-workload.openshift-user-workload-monitoring.svc.cluster.local:9091",
]

SERVICE_ACCOUNT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class ModelRoute:
    """Where a model lives behind the gateway."""

    key: str
    model_name: str
    host: str
    base_url: str


@dataclass
class DashboardConfig:
    """Configuration for the dashboard backend and its data sources."""

    # Namespaces
    namespace: str = "llm"
    kuadrant_namespace: str = "kuadrant-system"

    # Pod selectors
    gateway_labels: Dict[str, str] = field(default_factory=lambda: {"app": "gateway"})
    limitador_labels: Dict[str, str] = field(default_factory=lambda: {"app": "limitador"})
    authorino_labels: Dict[str, str] = field(
        default_factory=lambda: {"control-plane": "controller-manager"}
    )

    # Prometheus-compatible query endpoints, highest priority first
    prometheus_endpoints: List[str] = field(
        default_factory=lambda: list(DEFAULT_PROMETHEUS_ENDPOINTS)
    )
    prometheus_token: Optional[str] = None
    service_account_token_path: str = SERVICE_ACCOUNT_TOKEN_PATH
    prometheus_timeout: float = 10.0
    component_metrics_timeout: float = 5.0

    # Log tailing
    log_tail_lines: int = 100
    log_since_seconds: int = 3600
    live_request_cap: int = 100
    use_mock_data: bool = False

    # Simulator upstreams
    qwen3_url: str = "http://qwen3-llm.apps.summit-gpu.octo-emerging.redhataicoe.com"
    simulator_url: str = "http://simulator-llm.apps.summit-gpu.octo-emerging.redhataicoe.com"
    gateway_url: Optional[str] = None
    qwen3_host: str = "qwen3.maas.local"
    simulator_host: str = "simulator.maas.local"
    qwen3_model: str = "qwen3-0-6b-instruct"
    simulator_model: str = "simulator-model"
    proxy_timeout: float = 30.0

    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "DashboardConfig":
        """Build a configuration from the process environment."""
        gateway_url = os.getenv("KUADRANT_GATEWAY_URL", "").strip() or None
        return cls(
            namespace=os.getenv("NAMESPACE", "llm"),
            kuadrant_namespace=os.getenv("KUADRANT_NAMESPACE", "kuadrant-system"),
            prometheus_endpoints=_env_list("PROMETHEUS_ENDPOINTS", DEFAULT_PROMETHEUS_ENDPOINTS),
            prometheus_token=os.getenv("PROMETHEUS_TOKEN") or None,
            prometheus_timeout=_env_float("PROMETHEUS_TIMEOUT_SEC", 10.0),
            component_metrics_timeout=_env_float("COMPONENT_METRICS_TIMEOUT_SEC", 5.0),
            log_tail_lines=_env_int("LOG_TAIL_LINES", 100),
            log_since_seconds=_env_int("LOG_SINCE_SECONDS", 3600),
            live_request_cap=_env_int("LIVE_REQUEST_CAP", 100),
            use_mock_data=_env_flag("USE_MOCK_DATA"),
            qwen3_url=os.getenv("QWEN3_URL", cls.qwen3_url),
            simulator_url=os.getenv("SIMULATOR_URL", cls.simulator_url),
            gateway_url=gateway_url,
            qwen3_host=os.getenv("REACT_APP_QWEN3_HOST", cls.qwen3_host),
            simulator_host=os.getenv("REACT_APP_SIMULATOR_HOST", cls.simulator_host),
            qwen3_model=os.getenv("REACT_APP_QWEN3_MODEL", cls.qwen3_model),
            simulator_model=os.getenv("REACT_APP_SIMULATOR_MODEL", cls.simulator_model),
            proxy_timeout=_env_float("PROXY_TIMEOUT_SEC", 30.0),
            cors_origins=_env_list("CORS_ORIGINS", ["*"]),
        )

    def model_route(self, model: Optional[str]) -> ModelRoute:
        """Pick the upstream for a requested model name."""
        if model and "qwen" in model.lower():
            return ModelRoute("qwen3", self.qwen3_model, self.qwen3_host, self.qwen3_url)
        return ModelRoute("simulator", self.simulator_model, self.simulator_host, self.simulator_url)


@dataclass
class UIConfig:
    """Settings for the Streamlit operator UI."""

    api_base_url: str = "http://localhost:8000/api/v1"
    model_mode: str = "kuadrant"
    api_keys: Dict[str, str] = field(
        default_factory=lambda: {
            "free": "freeuser1_key",
            "premium": "premiumuser1_key",
            "none": "",
        }
    )
    models: Dict[str, str] = field(
        default_factory=lambda: {
            "simulator": "simulator-model",
            "qwen3": "qwen3-0-6b-instruct",
        }
    )

    @classmethod
    def from_env(cls) -> "UIConfig":
        return cls(
            api_base_url=os.getenv("REACT_APP_API_BASE_URL", cls.api_base_url).rstrip("/"),
            model_mode=os.getenv("REACT_APP_MODEL_MODE", cls.model_mode),
            api_keys={
                "free": os.getenv("REACT_APP_FREE_API_KEY", "freeuser1_key"),
                "premium": os.getenv("REACT_APP_PREMIUM_API_KEY", "premiumuser1_key"),
                "none": os.getenv("REACT_APP_NONE_API_KEY", ""),
            },
            models={
                "simulator": os.getenv("REACT_APP_SIMULATOR_MODEL", "simulator-model"),
                "qwen3": os.getenv("REACT_APP_QWEN3_MODEL", "qwen3-0-6b-instruct"),
            },
        )


# Global configuration instance
_config: Optional[DashboardConfig] = None


def get_config() -> DashboardConfig:
    """Get the process-wide configuration, reading the environment on first use."""
    global _config
    if _config is None:
        _config = DashboardConfig.from_env()
    return _config


def configure(config: Optional[DashboardConfig] = None) -> DashboardConfig:
    """Replace the process-wide configuration."""
    global _config
    _config = config or DashboardConfig.from_env()
    return _config
