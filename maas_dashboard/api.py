"""
FastAPI backend for the MaaS gateway dashboard.

Every JSON response uses the envelope `{success, data?, error?, timestamp}`.
Failures inside a handler are logged and reported as a 500 envelope rather
than raised.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .aggregator import compute_policy_stats
from .config import get_config
from .dashboard import build_dashboard, get_dashboard_state
from .kube import get_kube_client
from .logging_config import configure_logging
from .metrics_service import get_metrics_service
from .models import utc_now_iso
from .policies import get_policy_service
from .simulator import get_simulator_proxy
from .telemetry import OTEL_AVAILABLE, instrument_app, setup_telemetry

logger = logging.getLogger(__name__)


def envelope(data: Any = None) -> Dict[str, Any]:
    """Successful response body."""
    return {"success": True, "data": data, "timestamp": utc_now_iso()}


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    """Failed response with the same envelope shape."""
    body = {"success": False, "error": message, "timestamp": utc_now_iso()}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    configure_logging()
    setup_telemetry(
        otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        console_export=os.getenv("OTEL_CONSOLE_EXPORT", "").lower() in {"1", "true", "yes"},
    )
    config = get_config()
    logger.info(
        "MaaS dashboard API starting (namespace=%s, gateway=%s, mock=%s)",
        config.namespace, config.gateway_url or "direct", config.use_mock_data,
    )
    yield


app = FastAPI(
    title="MaaS Gateway Dashboard API",
    description="Live traffic, policy enforcement and metrics for a Kuadrant-protected model gateway",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for the Streamlit front end
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

instrument_app(app, excluded_urls="health,docs,openapi.json")


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return error_response(422, "Invalid request", details=jsonable_encoder(exc.errors()))


class ChatCompletionRequest(BaseModel):
    """Body accepted by the simulator proxy."""

    model: Optional[str] = None
    # Forwarded untouched, so multi-part content survives
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    tier: Optional[str] = None


# =============================================================================
# Metrics Endpoints
# =============================================================================


@app.get("/api/v1/metrics/live-requests", tags=["Metrics"])
async def live_requests():
    """Recent requests with policy enforcement data, newest first."""
    try:
        requests = await get_metrics_service().get_live_requests()
    except Exception:
        logger.exception("Failed to fetch live requests")
        return error_response(500, "Failed to fetch live requests")
    return envelope([r.to_dict() for r in requests])


@app.get("/api/v1/metrics/requests/{request_id}", tags=["Metrics"])
async def request_details(request_id: str):
    try:
        request = await get_metrics_service().find_request(request_id)
    except Exception:
        logger.exception("Failed to fetch request %s", request_id)
        return error_response(500, "Failed to fetch request details")
    if request is None:
        return error_response(404, "Request not found")
    return envelope(request.to_dict())


@app.get("/api/v1/metrics/policy-stats", tags=["Metrics"])
async def policy_stats():
    """Aggregated policy enforcement statistics over the live requests."""
    try:
        requests = await get_metrics_service().get_live_requests()
        stats = compute_policy_stats(requests)
    except Exception:
        logger.exception("Failed to compute policy stats")
        return error_response(500, "Failed to fetch policy statistics")
    return envelope(stats)


@app.get("/api/v1/metrics/dashboard", tags=["Metrics"])
async def dashboard():
    """Headline counts: Prometheus when it has data, live requests otherwise."""
    try:
        summary = await build_dashboard(get_metrics_service(), get_dashboard_state())
    except Exception:
        logger.exception("Failed to build dashboard")
        return error_response(500, "Failed to fetch dashboard statistics")
    return envelope(summary.to_dict())


@app.get("/api/v1/metrics/components", tags=["Metrics"])
async def component_metrics():
    """Samples scraped straight from Limitador, Authorino and the Istio gateway."""
    try:
        components = await get_metrics_service().fetch_component_metrics()
    except Exception:
        logger.exception("Failed to scrape component metrics")
        return error_response(500, "Failed to fetch component metrics")
    return envelope({
        name: {"sampleCount": len(samples), "samples": [s.to_dict() for s in samples]}
        for name, samples in components.items()
    })


@app.get("/api/v1/metrics/", tags=["Metrics"])
async def metrics_overview(time_range: str = Query("1h", alias="timeRange")):
    try:
        status = await get_metrics_service().get_metrics_status()
    except Exception:
        logger.exception("Failed to fetch metrics")
        return error_response(500, "Failed to fetch metrics")
    return envelope({
        "timeRange": time_range,
        "kuadrantStatus": status.to_dict(),
        "message": "Metrics endpoint active",
    })


# =============================================================================
# Simulator Endpoints
# =============================================================================


@app.post("/api/v1/simulator/chat/completions", tags=["Simulator"])
async def simulator_chat_completions(
    request: ChatCompletionRequest,
    authorization: Optional[str] = Header(None),
):
    """Forward a chat completion to the model upstream and report what the gateway did."""
    body = request.model_dump()
    status_code, payload = await get_simulator_proxy().forward_chat_completion(body, authorization)
    return JSONResponse(status_code=status_code, content=payload)


# =============================================================================
# Policy Endpoints
# =============================================================================


@app.get("/api/v1/policies", tags=["Policies"])
async def list_policies(policy_type: Optional[str] = Query(None, alias="type")):
    """Kuadrant policies, optionally only `auth` or `rateLimit` ones."""
    service = get_policy_service()
    try:
        if policy_type == "auth":
            policies = await service.get_auth_policies()
        elif policy_type == "rateLimit":
            policies = (
                await service.get_rate_limit_policies()
                + await service.get_token_rate_limit_policies()
            )
        elif policy_type is None:
            policies = await service.get_all_policies()
        else:
            return error_response(400, f"Invalid policy type: {policy_type}")
    except Exception:
        logger.exception("Failed to fetch policies")
        return error_response(500, "Failed to fetch policies")
    return envelope([p.to_dict() for p in policies])


@app.get("/api/v1/policies/connection", tags=["Policies"])
async def policies_connection():
    try:
        result = await get_policy_service().check_connection()
    except Exception:
        logger.exception("Failed to check Kuadrant connection")
        return error_response(500, "Failed to check Kuadrant connection")
    return envelope(result)


@app.get("/api/v1/policies/{namespace}/{name}", tags=["Policies"])
async def get_policy(namespace: str, name: str):
    try:
        policy = await get_policy_service().get_policy_by_name(name, namespace)
    except Exception:
        logger.exception("Failed to fetch policy %s/%s", namespace, name)
        return error_response(500, "Failed to fetch policy")
    if policy is None:
        return error_response(404, f"Policy not found: {namespace}/{name}")
    return envelope(policy.to_dict())


# =============================================================================
# Admin
# =============================================================================


@app.get("/health", tags=["Admin"])
def health_check() -> dict:
    """Health check endpoint."""
    config = get_config()
    return envelope({
        "status": "healthy",
        "namespace": config.namespace,
        "kubernetes": get_kube_client().mode,
        "mock_data": config.use_mock_data,
        "otel_enabled": OTEL_AVAILABLE,
    })
